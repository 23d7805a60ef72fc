"""
Calendars: sources of scheduled requests.

A calendar keeps a cache of `ScheduledEvent`s for the next few hours. Each
event starts a timer for its start time; when it fires the calendar's
trigger callback pushes the event (a `Request`) into the matching
thermostat(s), and a second timer at the event's `until` removes it again.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Type
import asyncio
import json
import logging
import os
import re

from .. import timers
from ..errors import CalendarError, ConfigurationError
from ..time_utils import now_ms
from .request import BOOST, OFF, Request, Special, encode_special, parse_until

logger = logging.getLogger(__name__)

HOURS = 60 * 60 * 1000  # ms

# Delay before the first calendar read after start-up
FIRST_UPDATE_DELAY_MS = 1000

_EVENT_SPEC = re.compile(
    r"\b([a-z][a-z0-9_]*)\s*(?:=\s*)?(boost\s*)?(off|\d+(?:\.\d+)?)",
    re.IGNORECASE,
)


class ScheduledEvent(Request):
    """
    A request that applies to a service between `start` and `until`.
    """

    def __init__(
        self,
        source: str,
        until: Any,
        temperature: Any,
        service: str,
        start: Any,
        id: Any = None,
    ) -> None:
        super().__init__(source=source, until=until, temperature=temperature)
        self.id = id
        self.service = service
        start_ms = parse_until(start)
        if isinstance(start_ms, Special):
            raise CalendarError(f"Bad event start {start!r}")
        self.start = start_ms
        # True between begin() and end()
        self.active = False
        self._begin_timer: Optional[str] = None
        self._end_timer: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], source: Optional[str] = None) -> "ScheduledEvent":  # type: ignore[override]
        try:
            return cls(
                source=data.get("source") or source,
                until=data["until"],
                temperature=data["temperature"],
                service=str(data["service"]).upper(),
                start=data["start"],
                id=data.get("id"),
            )
        except KeyError as exc:
            raise CalendarError(f"Event is missing {exc}") from exc

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"id": self.id, "service": self.service, "start": self.start})
        return data

    def schedule(self, calendar: "Calendar", now: Optional[float] = None) -> None:
        """
        Arrange for the event to begin at its start time. An event that has
        already started begins immediately; one that has finished is
        ignored.
        """
        now = now_ms() if now is None else now
        if self.start > now:
            logger.debug(
                "event.scheduled id=%s service=%s temperature=%s start=%s",
                self.id,
                self.service,
                encode_special(self.temperature),
                self.start,
            )
            self._begin_timer = timers.start_timer(
                f"event{self.id}", lambda: self.begin(calendar), self.start - now
            )
        elif self.until is BOOST or (
            not isinstance(self.until, Special) and self.until > now
        ):
            logger.debug("event.began_in_past id=%s", self.id)
            self.begin(calendar)
        else:
            logger.debug("event.finished id=%s", self.id)

    @property
    def key(self) -> tuple:
        """Identity used to match events across calendar reads."""
        return (self.id, self.service, self.start, self.until, self.temperature)

    def begin(self, calendar: "Calendar") -> None:
        self._begin_timer = None
        self.active = True
        calendar.trigger(self)
        if not isinstance(self.until, Special):
            self._end_timer = timers.run_at(
                f"end{self.id}", lambda: self.end(calendar), self.until
            )

    def end(self, calendar: "Calendar") -> None:
        self._end_timer = None
        self.active = False
        logger.debug("event.ended id=%s", self.id)
        calendar.remove(self)

    def cancel(self) -> None:
        """
        Cancel the event's timers. Does NOT remove the event from the
        calendar.
        """
        timers.cancel_timer(self._begin_timer)
        timers.cancel_timer(self._end_timer)
        self._begin_timer = None
        self._end_timer = None

    @staticmethod
    def parse(text: str) -> Iterator[Dict[str, Any]]:
        """
        Parse event specifications out of free text::

            events = event [ ";" events ]
            event = service [ "=" ] spec
            spec = [ "boost" ] temperature | "off"

        e.g. "CH BOOST 18", "hw=50; ch=20", "HW 40 CH OFF", "all off".
        Yields dicts with `service`, `temperature` and, for boosts,
        `until`.
        """
        for match in _EVENT_SPEC.finditer(text or ""):
            spec: Dict[str, Any] = {
                "service": match.group(1).upper(),
                "temperature": OFF if match.group(3).lower() == "off" else float(match.group(3)),
            }
            if match.group(2):
                spec["until"] = BOOST
            logger.debug("event.parsed spec=%s", spec)
            yield spec


TriggerHandler = Callable[[str, ScheduledEvent], None]
RemoveHandler = Callable[[ScheduledEvent], None]


class Calendar(ABC):
    """
    Base class of calendars. Subclasses implement `fill_cache` to fetch
    events from wherever they are kept.
    """

    def __init__(
        self,
        name: str,
        update_period: float = 6,
        cache_length: float = 24,
        prefix: Optional[str] = None,
    ) -> None:
        self.name = name
        # Delay between calendar reads, in hours
        self.update_period = update_period
        # Period of calendar entries to cache, in hours
        self.cache_length = cache_length
        self.prefix = prefix
        self.schedule: List[ScheduledEvent] = []
        self.services: List[str] = ["ALL"]
        self.pending_update = False
        self._on_trigger: Optional[TriggerHandler] = None
        self._on_remove: Optional[RemoveHandler] = None
        self._update_timer: Optional[str] = None
        self._stopped = False

    @property
    def source(self) -> str:
        """Source recorded on requests made by this calendar."""
        return f"Calendar '{self.name}'"

    async def initialise(self) -> "Calendar":
        return self

    def set_services(self, services: List[str]) -> None:
        self.services = ["ALL"] + [service.upper() for service in services]

    def on_trigger(self, handler: TriggerHandler) -> None:
        self._on_trigger = handler

    def on_remove(self, handler: RemoveHandler) -> None:
        self._on_remove = handler

    def trigger(self, event: ScheduledEvent) -> None:
        if self._on_trigger is not None:
            logger.info("calendar.trigger name=%s event=%s", self.name, event.to_dict())
            self._on_trigger(event.service, event)

    def remove(self, event: ScheduledEvent) -> None:
        if self._on_remove is not None:
            logger.info("calendar.remove name=%s event=%s", self.name, event.to_dict())
            self._on_remove(event)

    @abstractmethod
    async def fill_cache(self) -> None:
        """
        Fetch events for the next `cache_length` hours and pass them to
        `replace_schedule`.
        """

    def _discard(self, event: ScheduledEvent) -> None:
        event.cancel()
        if event.active:
            event.active = False
            self.remove(event)

    def clear_schedule(self) -> None:
        while self.schedule:
            self._discard(self.schedule.pop())

    def replace_schedule(self, events: List[ScheduledEvent]) -> None:
        """
        Install a freshly read set of events. Events already in the schedule
        keep their timers (and are not triggered again); events that have
        disappeared are cancelled and, if live, removed.
        """
        current = {event.key: event for event in self.schedule}
        incoming = {event.key: event for event in events}
        for key, event in current.items():
            if key not in incoming:
                self._discard(event)

        now = now_ms()
        schedule = []
        for key, event in incoming.items():
            existing = current.get(key)
            if existing is not None:
                schedule.append(existing)
            else:
                schedule.append(event)
                event.schedule(self, now)
        self.schedule = schedule

    def make_event(self, spec: Mapping[str, Any]) -> ScheduledEvent:
        service = str(spec["service"]).upper()
        if service not in self.services:
            raise CalendarError(f"Unknown service {service}")
        return ScheduledEvent(
            source=spec.get("source") or self.source,
            until=spec["until"],
            temperature=spec["temperature"],
            service=service,
            start=spec["start"],
            id=spec.get("id"),
        )

    def parse_events(self, start: Any, end: Any, description: str) -> List[ScheduledEvent]:
        """
        Build events from calendar text for an entry running from `start`
        to `end`. Events without an explicit boost last until `end`. Words
        that are not service names ("Party at 18") are ignored.
        """
        events = []
        for spec in ScheduledEvent.parse(description):
            if spec["service"] not in self.services:
                logger.debug("calendar.ignored name=%s service=%s", self.name, spec["service"])
                continue
            spec.setdefault("until", end)
            spec["start"] = start
            # Stable across re-reads of the same entry
            spec["id"] = f"{start}/{len(events)}"
            events.append(self.make_event(spec))
        return events

    def update(self, after_ms: float) -> None:
        """
        Re-read the calendar after `after_ms`, then every `update_period`
        hours.
        """
        if self._update_timer is not None:
            timers.cancel_timer(self._update_timer)
        self._stopped = False
        self._update_timer = timers.start_timer("calUp", self._update, after_ms)

    async def _update(self) -> None:
        self._update_timer = None
        logger.debug("calendar.updating name=%s", self.name)
        self.pending_update = True
        try:
            await self.fill_cache()
            logger.info("calendar.updated name=%s events=%s", self.name, len(self.schedule))
        except Exception as exc:  # noqa: BLE001 - keep the old schedule, retry later
            logger.error("calendar.update_failed name=%s error=%s", self.name, exc)
        finally:
            self.pending_update = False
        if not self._stopped:
            self._update_timer = timers.start_timer(
                "calUp", self._update, self.update_period * HOURS
            )

    def stop(self) -> None:
        """Cancel the update timer and all event timers."""
        logger.debug("calendar.stopped name=%s", self.name)
        self._stopped = True
        if self._update_timer is not None:
            timers.cancel_timer(self._update_timer)
            self._update_timer = None
        self.clear_schedule()

    async def get_serialisable_state(self) -> Dict[str, Any]:
        """
        The current (or next) event for each service.
        """
        state: Dict[str, Any] = {"events": {}}
        if self.pending_update:
            state["pending_update"] = True
        for event in self.schedule:
            if event.service not in state["events"]:
                state["events"][event.service] = {
                    "temperature": encode_special(event.temperature),
                    "start": event.start,
                    "end": encode_special(event.until),
                }
        return state


class FileCalendar(Calendar):
    """
    Simple calendar kept in a JSON file, editable through the HTTP API.
    """

    def __init__(self, name: str, file: str, **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        self.file = file

    def path(self) -> Path:
        return Path(os.path.expandvars(os.path.expanduser(self.file)))

    def _read(self) -> str:
        with self.path().open("r", encoding="utf-8") as fh:
            return fh.read()

    def _write(self, text: str) -> None:
        path = self.path()
        if not path.parent.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as fh:
            fh.write(text)

    async def load(self) -> List[Dict[str, Any]]:
        """
        Stored events that have not yet finished. A boost has no end time;
        it is kept until its start is more than `cache_length` hours old.
        """
        try:
            text = await asyncio.to_thread(self._read)
        except FileNotFoundError:
            return []
        if not text.strip():
            return []
        try:
            events = json.loads(text)
        except json.JSONDecodeError as exc:
            raise CalendarError(f"Calendar file {self.path()} is corrupt: {exc}") from exc
        now = now_ms()
        oldest_boost = now - self.cache_length * HOURS
        kept = []
        for event in events:
            until = event.get("until")
            if str(until).lower() == "boost":
                if float(event.get("start") or 0) >= oldest_boost:
                    kept.append(event)
            elif isinstance(until, (int, float)) and until >= now:
                kept.append(event)
        return kept

    async def save(self, events: List[Dict[str, Any]]) -> None:
        await asyncio.to_thread(self._write, json.dumps(events, indent=2))

    async def fill_cache(self) -> None:
        now = now_ms()
        horizon = now + self.cache_length * HOURS
        events = []
        for data in await self.load():
            event = ScheduledEvent.from_dict(data, self.source)
            if event.start <= horizon:
                events.append(event)
        self.replace_schedule(events)

    def data_to_events(self, data: Mapping[str, Any]) -> List[ScheduledEvent]:
        """
        Expand an editor entry `{title, description, start, end}` into
        events.
        """
        text = f"{data.get('title', '')} {data.get('description', '')}"
        events = self.parse_events(data.get("start"), data.get("end"), text)
        if not events:
            raise CalendarError(f'Unable to parse "{text.strip()}"')
        return events

    async def add_event(self, data: Mapping[str, Any]) -> int:
        """
        Store a new entry. One entry may yield several events; they share
        the returned id.
        """
        events = await self.load()
        new_id = max((int(event.get("id") or 0) for event in events), default=0) + 1
        for event in self.data_to_events(data):
            event.id = new_id
            events.append(event.to_dict())
        await self.save(events)
        await self.fill_cache()
        return new_id

    async def change_event(self, event_id: int, data: Mapping[str, Any]) -> None:
        replacements = self.data_to_events(data)
        events = [event for event in await self.load() if event.get("id") != event_id]
        for event in replacements:
            event.id = event_id
            events.append(event.to_dict())
        await self.save(events)
        await self.fill_cache()

    async def remove_event(self, event_id: int) -> None:
        events = await self.load()
        remaining = [event for event in events if event.get("id") != event_id]
        if len(remaining) == len(events):
            raise KeyError(f"No calendar event {event_id}")
        await self.save(remaining)
        await self.fill_cache()


# Capabilities every calendar type must provide
CALENDAR_CAPABILITIES = ("initialise", "fill_cache", "get_serialisable_state")

CALENDAR_TYPES: Dict[str, Type[Calendar]] = {}


def register_calendar_type(key: str, cls: Type[Calendar]) -> None:
    missing = [name for name in CALENDAR_CAPABILITIES if not callable(getattr(cls, name, None))]
    if missing:
        raise TypeError(f"Calendar type '{key}' lacks {', '.join(missing)}")
    CALENDAR_TYPES[key] = cls


def create_calendar(name: str, config: Mapping[str, Any]) -> Calendar:
    options = dict(config)
    key = options.pop("type", None)
    cls = CALENDAR_TYPES.get(key)  # type: ignore[arg-type]
    if cls is None:
        raise ConfigurationError(f"Unknown calendar type '{key}' for '{name}'")
    return cls(name, **options)


register_calendar_type("file", FileCalendar)
