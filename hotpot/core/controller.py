"""
The controller owns the thermostats, pins, rules, calendars and weather
agents, and is the only thing allowed to switch the valves.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional
import asyncio
import logging

from .. import timers
from ..errors import UnknownServiceError, WeatherError
from ..time_utils import now_ms
from .calendar import FIRST_UPDATE_DELAY_MS, Calendar, ScheduledEvent
from .pin import Pin
from .request import Request
from .rules import Rule
from .thermostat import AlertHandler, Thermostat
from .weather import Location, Weather

logger = logging.getLogger(__name__)

# Time for the Y-plan valve to settle after the grey wire changes
DEFAULT_VALVE_RETURN = 8000  # ms

# Interval between rule evaluations
DEFAULT_RULE_INTERVAL = 5000  # ms

LOG_KINDS = ("thermostat", "pin", "weather")


class Controller:
    """
    Couples thermostats to the CH and HW valves.

    On a Y-plan system the hot water control line (the "grey wire") also
    releases the central heating valve, so turning CH off while HW is off
    needs a pulse on HW. `set_channel_state` does that, and runs
    overlapping transitions one after the other.
    """

    def __init__(
        self,
        thermostats: Mapping[str, Thermostat],
        pins: Mapping[str, Pin],
        rules: Optional[List[Rule]] = None,
        calendars: Optional[Mapping[str, Calendar]] = None,
        weather: Optional[Mapping[str, Weather]] = None,
        valve_return: float = DEFAULT_VALVE_RETURN,
        rule_interval: float = DEFAULT_RULE_INTERVAL,
    ) -> None:
        self.thermostats: Dict[str, Thermostat] = dict(thermostats)
        self.pins: Dict[str, Pin] = dict(pins)
        self.rules: List[Rule] = list(rules or [])
        self.calendars: Dict[str, Calendar] = dict(calendars or {})
        self.weather: Dict[str, Weather] = dict(weather or {})
        self.location: Optional[Location] = None
        self.valve_return = valve_return
        self.rule_interval = rule_interval
        # Held for the whole of each valve transition
        self._valve_lock = asyncio.Lock()
        self.alert_handler: Optional[AlertHandler] = None
        self._rule_timer: Optional[str] = None
        self._stopped = False

    async def initialise(self) -> "Controller":
        logger.info(
            "controller.initialise thermostats=%s pins=%s rules=%s calendars=%s weather=%s",
            list(self.thermostats),
            list(self.pins),
            len(self.rules),
            list(self.calendars),
            list(self.weather),
        )
        self._stopped = False
        for pin in self.pins.values():
            await pin.initialise()
        await self.reset_valve()

        for thermostat in self.thermostats.values():
            thermostat.set_alert_handler(self.alert_handler)
            await thermostat.initialise()
            await thermostat.poll()

        for calendar in self.calendars.values():
            calendar.set_services(list(self.thermostats))
            calendar.on_trigger(self._calendar_trigger)
            calendar.on_remove(self._calendar_remove)
            await calendar.initialise()
            calendar.update(FIRST_UPDATE_DELAY_MS)

        for agent in self.weather.values():
            await agent.initialise()

        await self.poll_rules()
        return self

    def set_alert_handler(self, handler: Optional[AlertHandler]) -> None:
        self.alert_handler = handler
        for thermostat in self.thermostats.values():
            thermostat.set_alert_handler(handler)

    async def set_location(self, location: Location) -> None:
        """
        Tell every weather agent where the server is. An agent that cannot
        find a forecast for it is logged and left idle.
        """
        self.location = location
        for name, agent in self.weather.items():
            try:
                await agent.set_location(location)
            except WeatherError as exc:
                logger.error("controller.weather_location_failed weather=%s error=%s", name, exc)

    @property
    def pending(self) -> bool:
        """True while a valve transition is in flight."""
        return self._valve_lock.locked()

    async def reset_valve(self) -> None:
        """
        Drive the valve to a known position whatever state the power cut
        left it in: grey wire on, let the valve travel, then both off.
        """
        if "CH" not in self.pins or "HW" not in self.pins:
            logger.debug("controller.reset_skipped pins=%s", list(self.pins))
            return
        logger.info("controller.reset_valve valve_return=%s", self.valve_return)
        async with self._valve_lock:
            try:
                await self.pins["HW"].set_state(1, "Reset")
                await asyncio.sleep(self.valve_return / 1000)
                await self.pins["CH"].set_state(0, "Reset")
                await self.pins["HW"].set_state(0, "Reset")
            except Exception:  # noqa: BLE001 - rules will retry the pins
                logger.exception("controller.reset_failed")

    async def set_channel_state(self, channel: str, state: int) -> None:
        """
        Switch `channel` to `state`, pulsing HW when CH goes off and HW is
        already off. Transitions run one at a time, from the first pin read
        to the last write. Pin failures propagate.
        """
        pin = self.pins[channel]
        if self.pending:
            logger.debug("controller.pending channel=%s state=%s", channel, state)
        async with self._valve_lock:
            current = await pin.get_state()
            if current == state:
                return

            pulse = False
            if channel == "CH" and current == 1 and state == 0 and "HW" in self.pins:
                pulse = await self.pins["HW"].get_state() == 0

            if not pulse:
                logger.debug("controller.set channel=%s state=%s", channel, state)
                await pin.set_state(state)
                return

            logger.debug("controller.ch_off_via_hw valve_return=%s", self.valve_return)
            hw = self.pins["HW"]
            await pin.set_state(0)
            await hw.set_state(1)
            await asyncio.sleep(self.valve_return / 1000)
            await hw.set_state(0)

    def _services(self, service: str) -> List[Thermostat]:
        if service.upper() == "ALL":
            return list(self.thermostats.values())
        thermostat = self.thermostats.get(service)
        if thermostat is None:
            thermostat = self.thermostats.get(service.upper())
        if thermostat is None:
            raise UnknownServiceError(f"Unknown service {service}")
        return [thermostat]

    def make_request(self, service: str, request: Request) -> None:
        """
        Pass a request to the named thermostat, or to every thermostat for
        `ALL`. A CLEAR request removes the source's requests.
        """
        thermostats = self._services(service)
        logger.info("controller.request service=%s request=%s", service, request.to_dict())
        for thermostat in thermostats:
            thermostat.add_request(request)

    def _calendar_trigger(self, service: str, event: ScheduledEvent) -> None:
        try:
            self.make_request(service, event)
        except UnknownServiceError as exc:
            logger.error("controller.calendar_trigger_failed event=%s error=%s", event.id, exc)

    def _calendar_remove(self, event: ScheduledEvent) -> None:
        match = {"source": event.source, "until": event.until, "temperature": event.temperature}
        try:
            thermostats = self._services(event.service)
        except UnknownServiceError as exc:
            logger.error("controller.calendar_remove_failed event=%s error=%s", event.id, exc)
            return
        for thermostat in thermostats:
            thermostat.purge_requests(match, force=True)

    async def poll_rules(self) -> None:
        """
        Evaluate every rule, then schedule the next evaluation.
        """
        self._rule_timer = None
        for thermostat in self.thermostats.values():
            thermostat.purge_requests()
        for rule in self.rules:
            try:
                await rule.test(self)
            except Exception:  # noqa: BLE001 - one bad rule must not stop the rest
                logger.exception("controller.rule_failed rule=%s", rule.name)
        if self._stopped:
            return
        self._rule_timer = timers.start_timer("rules", self.poll_rules, self.rule_interval)

    def stop(self) -> None:
        if self._stopped:
            return
        logger.info("controller.stop")
        self._stopped = True
        timers.cancel_timer(self._rule_timer)
        self._rule_timer = None
        for thermostat in self.thermostats.values():
            thermostat.stop()
        for calendar in self.calendars.values():
            calendar.stop()
        for agent in self.weather.values():
            agent.stop()

    async def get_serialisable_state(self) -> Dict[str, Any]:
        state: Dict[str, Any] = {
            "time": now_ms(),
            "thermostat": {},
            "pin": {},
            "calendar": {},
            "weather": {},
        }
        for name, thermostat in self.thermostats.items():
            state["thermostat"][name] = await thermostat.get_serialisable_state()
        for name, pin in self.pins.items():
            state["pin"][name] = await pin.get_serialisable_state()
        for name, calendar in self.calendars.items():
            state["calendar"][name] = await calendar.get_serialisable_state()
        for name, agent in self.weather.items():
            state["weather"][name] = await agent.get_serialisable_state()
        return state

    def _loggable(self, kind: str) -> Mapping[str, Any]:
        if kind not in LOG_KINDS:
            raise UnknownServiceError(f"Unknown log kind {kind}")
        return {"thermostat": self.thermostats, "pin": self.pins, "weather": self.weather}[kind]

    async def get_serialisable_log(self, since: Optional[float] = None) -> Dict[str, Any]:
        log: Dict[str, Any] = {}
        for kind in LOG_KINDS:
            log[kind] = {}
            for name, item in self._loggable(kind).items():
                log[kind][name] = await item.get_serialisable_log(since)
        return log

    async def get_log(self, kind: str, name: str, since: Optional[float] = None) -> Optional[List[float]]:
        """
        Trace for one thermostat, pin or weather agent. Raises
        `UnknownServiceError` for anything else.
        """
        items = self._loggable(kind)
        if name not in items:
            raise UnknownServiceError(f"Unknown {kind} {name}")
        return await items[name].get_serialisable_log(since)
