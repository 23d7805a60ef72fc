"""
Thermostats: sensor polling plus arbitration of override requests against
the thermostat's timeline.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union
import inspect
import logging

from .. import timers
from ..hardware import BaseSensor
from ..time_utils import format_delta, now_ms, time_of_day
from .historian import Historian
from .request import BOOST, CLEAR, OFF, Request, Special
from .timeline import Timeline

logger = logging.getLogger(__name__)

# Default interval between polls
DEFAULT_POLL_INTERVAL = 20  # seconds

# If there has been no response from the sensor in this time, alert the
# admin
NO_RESPONSE_ALARM = 10 * 60 * 1000  # 10 mins in ms

# Reading assumed when the sensor cannot be read at start-up. High enough
# that every rule turns its service off until a real reading arrives.
FAILSAFE_TEMPERATURE = 100.0

AlertHandler = Callable[[str], Union[None, Awaitable[Any]]]


class Thermostat:
    """
    Polls a temperature sensor and decides the target temperature for one
    service.

    The target normally comes from the timeline. Requests override it: at
    most one live request is kept per source, and the most recent BOOST
    wins, then any OFF, then the most recently added request.
    """

    def __init__(
        self,
        name: str,
        sensor_id: str,
        timeline: Timeline,
        sensor: BaseSensor,
        poll_every: Optional[float] = None,
        history: Optional[Historian] = None,
        clock: Callable[[], float] = now_ms,
    ) -> None:
        self.name = name
        self.id = sensor_id
        self.timeline = timeline
        self.sensor = sensor
        self.poll_every = poll_every or DEFAULT_POLL_INTERVAL
        self.history = history
        self.clock = clock

        self.requests: List[Request] = []
        self.temperature = 0.0
        self.last_known_good = clock()
        self.alerted = False
        self.alert_handler: Optional[AlertHandler] = None

        self._poll_timer: Optional[str] = None
        self._sampling = False
        # Set by stop(), cleared only by initialise()
        self._stopped = False

    async def initialise(self) -> "Thermostat":
        """
        Take a first reading and start the historian. A sensor that cannot
        be read is logged and the thermostat reports `FAILSAFE_TEMPERATURE`
        until the poll loop gets a real reading.
        """
        self._stopped = False
        try:
            await self.sensor.initialise_sensor()
            self.temperature = await self.sensor.get_temperature()
            self.last_known_good = self.clock()
        except Exception as exc:  # noqa: BLE001 - poll loop owns recovery
            logger.error(
                "thermostat.init_failed name=%s id=%s error=%s",
                self.name,
                self.id,
                exc,
            )
            self.temperature = FAILSAFE_TEMPERATURE

        if self.history is not None:
            logger.debug(
                "thermostat.history_start name=%s temperature=%s",
                self.name,
                self.temperature,
            )
            self.history.start(lambda: round(self.temperature, 1))
        logger.info("thermostat.initialised name=%s temperature=%s", self.name, self.temperature)
        return self

    def set_alert_handler(self, handler: Optional[AlertHandler]) -> None:
        self.alert_handler = handler

    async def _raise_alert(self, message: str) -> None:
        if self.alert_handler is None:
            return
        try:
            result = self.alert_handler(message)
            if inspect.isawaitable(result):
                await result
        except Exception:  # noqa: BLE001 - an alert must not stop polling
            logger.exception("thermostat.alert_failed name=%s", self.name)

    async def poll(self) -> "Thermostat":
        """
        Sample the sensor once, then schedule the next poll. Does nothing
        once `stop()` has been called, even if the sample was already in
        flight or its timer had already fired.
        """
        if self._stopped:
            logger.debug("thermostat.poll_after_stop name=%s", self.name)
            return self
        # A no-op when the poll timer itself fired
        timers.cancel_timer(self._poll_timer)
        self._poll_timer = None
        self._sampling = True
        try:
            temperature = await self.sensor.get_temperature()
        except Exception as exc:  # noqa: BLE001 - keep the last good value
            waiting = self.clock() - self.last_known_good
            message = (
                f"{self.name} sensor {self.id} has had no reading "
                f"for {format_delta(waiting)}"
            )
            logger.warning("%s: %s", message, exc)
            if not self.alerted and waiting >= NO_RESPONSE_ALARM:
                self.alerted = True
                await self._raise_alert(message)
        else:
            logger.debug("thermostat.sample name=%s temperature=%s", self.name, temperature)
            self.temperature = temperature
            self.last_known_good = self.clock()
            self.alerted = False
        finally:
            self._sampling = False

        if self._stopped:
            logger.debug("thermostat.interrupted name=%s", self.name)
            return self

        self._poll_timer = timers.start_timer(
            f"poll{self.name}", self.poll, 1000 * self.poll_every
        )
        return self

    def stop(self) -> None:
        """
        Stop polling. Safe to call while a sample is in flight, and more
        than once.
        """
        self._stopped = True
        if self._poll_timer is not None:
            logger.debug("thermostat.stop name=%s timer=%s", self.name, self._poll_timer)
            timers.cancel_timer(self._poll_timer)
            self._poll_timer = None
        if self.history is not None:
            self.history.stop()

    @property
    def polling(self) -> bool:
        if self._stopped:
            return False
        return self._poll_timer is not None or self._sampling

    def add_request(self, request: Request) -> None:
        """
        Add a request, replacing any existing requests from the same source.
        A CLEAR request only removes them.
        """
        self.purge_requests({"source": request.source}, force=True)
        if request.until is CLEAR:
            return
        logger.info("thermostat.add_request name=%s request=%s", self.name, request.to_dict())
        self.requests.append(request)

    def purge_requests(
        self,
        match: Optional[Mapping[str, Any]] = None,
        force: bool = False,
    ) -> None:
        """
        Remove requests that have expired, or that match every field in
        `match` when `force` is set. A BOOST expires once the measured
        temperature reaches its target.
        """
        match = match or {}
        now = self.clock()
        kept: List[Request] = []
        for request in self.requests:
            matched = all(getattr(request, key, None) == value for key, value in match.items())
            purge = False
            if matched:
                if force:
                    purge = True
                elif request.until is BOOST:
                    if self.temperature >= request.temperature:  # type: ignore[operator]
                        logger.debug(
                            "thermostat.boost_reached name=%s temperature=%s target=%s",
                            self.name,
                            self.temperature,
                            request.temperature,
                        )
                        purge = True
                elif not isinstance(request.until, Special) and request.until < now:
                    purge = True
            if purge:
                logger.info("thermostat.purge name=%s request=%s", self.name, request.to_dict())
            else:
                kept.append(request)
        self.requests = kept

    def get_target_temperature(self) -> float:
        self.purge_requests()
        if self.requests:
            for request in reversed(self.requests):
                if request.until is BOOST:
                    return request.temperature  # type: ignore[return-value]
            if any(request.temperature is OFF for request in self.requests):
                return self.timeline.lowest_value
            return self.requests[-1].temperature  # type: ignore[return-value]
        t = time_of_day(self.clock()) % self.timeline.period
        return self.timeline.value_at_time(t)

    def get_maximum_temperature(self) -> float:
        """
        Highest temperature the thermostat may be asked for: the timeline
        peak, or a higher request (e.g. a boost).
        """
        highest = self.timeline.highest_value
        for request in self.requests:
            if request.temperature is not OFF and request.temperature > highest:  # type: ignore[operator]
                highest = request.temperature  # type: ignore[assignment]
        return highest

    async def get_serialisable_state(self) -> Dict[str, Any]:
        self.purge_requests()
        return {
            "temperature": self.temperature,
            "lastKnownGood": self.last_known_good,
            "target": self.get_target_temperature(),
            "requests": [request.to_dict() for request in self.requests],
        }

    async def get_serialisable_log(self, since: Optional[float] = None) -> Optional[List[float]]:
        if self.history is None:
            return None
        return await self.history.encode_trace(since)
