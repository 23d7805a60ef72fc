"""
Weather agents: outside conditions that rules may consult.

An agent knows nothing until `set_location` is called. It then fetches a
forecast and refreshes it each time the current forecast runs out.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type
import logging
import math

import httpx

from .. import timers
from ..errors import ConfigurationError, WeatherError
from ..time_utils import now_ms
from .historian import Historian

logger = logging.getLogger(__name__)

EARTH_RADIUS = 6371000  # metres

# Delay before trying again after a failed fetch
RETRY_MS = 10 * 60 * 1000


@dataclass
class Location:
    latitude: float = 0.0
    longitude: float = 0.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Location":
        return cls(float(data["latitude"]), float(data["longitude"]))

    def haversine(self, other: "Location") -> float:
        """Great-circle distance to `other`, in metres."""
        lat1 = math.radians(self.latitude)
        lat2 = math.radians(other.latitude)
        d_lat = math.radians(other.latitude - self.latitude)
        d_long = math.radians(other.longitude - self.longitude)
        a = (
            math.sin(d_lat / 2) ** 2
            + math.cos(lat1) * math.cos(lat2) * math.sin(d_long / 2) ** 2
        )
        return EARTH_RADIUS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    def __str__(self) -> str:
        return f"({self.latitude},{self.longitude})"


class Weather(ABC):
    """
    Base class of weather agents. Handles the update timer; subclasses
    fetch and interpolate the forecast.
    """

    def __init__(self, name: str, history: Optional[Historian] = None) -> None:
        self.name = name
        self.history = history
        self.location: Optional[Location] = None
        # Epoch ms of the last successful fetch
        self.last_update = 0.0
        self._update_timer: Optional[str] = None
        self._stopped = False

    async def initialise(self) -> "Weather":
        return self

    async def set_location(self, location: Location) -> None:
        """
        Set where the forecast is for, and start the updater.
        """
        self.stop()
        self._stopped = False
        self.location = location
        logger.info("weather.location name=%s location=%s", self.name, location)
        await self.update()

    @abstractmethod
    async def get_weather(self) -> float:
        """
        Refresh the forecast. Returns the ms until a refresh is next
        worthwhile, or 0 to stop updating.
        """

    @abstractmethod
    def get(self, what: str) -> Any:
        """Current estimate of the forecast field `what`."""

    async def update(self) -> None:
        self._update_timer = None
        try:
            wait = await self.get_weather()
        except WeatherError as exc:
            logger.error("weather.update_failed name=%s error=%s", self.name, exc)
            wait = RETRY_MS
        else:
            self.last_update = now_ms()
        if wait > 0 and not self._stopped:
            self._update_timer = timers.start_timer(f"weather{self.name}", self.update, wait)

    def stop(self) -> None:
        self._stopped = True
        if self._update_timer is not None:
            timers.cancel_timer(self._update_timer)
            self._update_timer = None
            logger.debug("weather.stopped name=%s", self.name)

    async def get_serialisable_state(self) -> Dict[str, Any]:
        return {"temperature": self.get("Temperature")}

    async def get_serialisable_log(self, since: Optional[float] = None) -> Optional[List[float]]:
        """
        Recorded forecast temperatures up to now. The history holds future
        forecasts too; the trace stops at an estimate for the current time.
        """
        if self.history is None:
            return None
        trace = await self.history.encode_trace(since)
        basetime = trace[0]
        now = now_ms()
        before = after = None
        for index in range(1, len(trace), 2):
            if basetime + trace[index] <= now:
                before = index
            else:
                after = index
                break
        if after is None:
            return trace

        estimate = None
        if before is not None:
            frac = (now - basetime - trace[before]) / (trace[after] - trace[before])
            estimate = trace[before + 1] + (trace[after + 1] - trace[before + 1]) * frac
        del trace[after:]
        if estimate is not None:
            trace.extend([now - basetime, estimate])
        return trace


DATAPOINT_URL = "http://datapoint.metoffice.gov.uk"
DATAPOINT_PATH = "/public/data/val/wxfcs/all/json/"

# Forecast fields reported as numbers
IS_NUMBER = (
    "Feels Like Temperature",
    "Screen Relative Humidity",
    "Wind Speed",
    "Temperature",
)


def _listify(value: Any) -> List[Any]:
    # DataPoint sends a bare object where a list has one member
    return value if isinstance(value, list) else [value]


def _parse_day(value: str) -> float:
    day = datetime.strptime(value[:10], "%Y-%m-%d").replace(tzinfo=timezone.utc)
    return day.timestamp() * 1000


class MetOffice(Weather):
    """
    Three-hourly forecasts from the UK Met Office DataPoint service for
    the nearest forecast site, interpolated to the current time.
    """

    def __init__(
        self,
        name: str,
        api_key: str,
        url: str = DATAPOINT_URL,
        timeout: float = 10.0,
        history: Optional[Historian] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(name, history)
        self.api_key = api_key
        self.url = url
        self.timeout = timeout
        self.transport = transport
        self.location_id: Optional[str] = None
        # Forecast reports, each keyed by field name; "$" is epoch ms
        self.log: List[Dict[str, Any]] = []

    async def _get_json(self, path: str, **params: Any) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self.url, timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.get(path, params={"key": self.api_key, **params})
                response.raise_for_status()
                return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise WeatherError(f"{self.name}: GET {path} failed: {exc}") from exc

    async def set_location(self, location: Location) -> None:
        data = await self._get_json(DATAPOINT_PATH + "sitelist")
        self._find_closest(data, location)
        await super().set_location(location)

    def _find_closest(self, data: Any, location: Location) -> None:
        try:
            sites = _listify(data["Locations"]["Location"])
        except (KeyError, TypeError) as exc:
            raise WeatherError(f"{self.name}: unexpected site list") from exc
        best = min(sites, key=lambda site: Location.from_dict(site).haversine(location))
        logger.info("weather.nearest name=%s site=%s id=%s", self.name, best.get("name"), best["id"])
        self.location_id = best["id"]

    def _build_log(self, data: Any) -> List[Dict[str, Any]]:
        """
        Merge a forecast into `log`. Reports from the start of the new
        forecast onwards replace those already held. Returns the new
        reports.
        """
        try:
            params = data["SiteRep"]["Wx"]["Param"]
            periods = data["SiteRep"]["DV"]["Location"]["Period"]
        except (KeyError, TypeError):
            logger.warning("weather.no_forecast name=%s", self.name)
            return []

        fields = {"$": "$"}
        for param in _listify(params):
            fields[param["name"]] = param["$"]

        added: List[Dict[str, Any]] = []
        for period in _listify(periods):
            baseline = _parse_day(period["value"])
            for rep in _listify(period.get("Rep", [])):
                report: Dict[str, Any] = {}
                for key, value in rep.items():
                    field = fields.get(key, key)
                    report[field] = float(value) if field in IS_NUMBER else value
                # "$" is minutes after the period's midnight
                report["$"] = baseline + float(report["$"]) * 60 * 1000
                if not added:
                    self.log = [old for old in self.log if old["$"] < report["$"]]
                self.log.append(report)
                added.append(report)
        logger.debug("weather.reports name=%s new=%s", self.name, len(added))
        return added

    def _bracket(self, now: float) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
        before = after = None
        for report in self.log:
            if report["$"] <= now:
                if before is None or before["$"] < report["$"]:
                    before = report
            elif after is None or after["$"] > report["$"]:
                after = report
        return before, after

    async def get_weather(self) -> float:
        if self.location_id is None:
            raise WeatherError(f"{self.name}: no location set")
        now = now_ms()
        _, after = self._bracket(now)
        if after is not None and self.last_update > 0 and now < after["$"]:
            # The forecast held still covers now
            return after["$"] - now

        data = await self._get_json(DATAPOINT_PATH + str(self.location_id), res="3hourly")
        for report in self._build_log(data):
            if self.history is not None and "Temperature" in report:
                await self.history.record(report["Temperature"], report["$"])

        _, after = self._bracket(now_ms())
        if after is None:
            return RETRY_MS
        return after["$"] - now_ms()

    def get(self, what: str) -> Any:
        """
        Estimate `what` now. Numeric fields are interpolated between the
        reports either side of now; None until the forecast covers now.
        """
        now = now_ms()
        before, after = self._bracket(now)
        if before is None or after is None:
            return None
        estimate = before.get(what)
        if what in IS_NUMBER and after.get(what) != estimate and estimate is not None:
            frac = (now - before["$"]) / (after["$"] - before["$"])
            estimate += (after[what] - estimate) * frac
        return estimate


# Capabilities every weather type must provide
WEATHER_CAPABILITIES = ("initialise", "set_location", "get_weather", "get_serialisable_state")

WEATHER_TYPES: Dict[str, Type[Weather]] = {}


def register_weather_type(key: str, cls: Type[Weather]) -> None:
    missing = [name for name in WEATHER_CAPABILITIES if not callable(getattr(cls, name, None))]
    if missing:
        raise TypeError(f"Weather type '{key}' lacks {', '.join(missing)}")
    WEATHER_TYPES[key] = cls


def create_weather(
    name: str,
    config: Mapping[str, Any],
    history: Optional[Historian] = None,
) -> Weather:
    options = dict(config)
    key = options.pop("type", None)
    cls = WEATHER_TYPES.get(key)  # type: ignore[arg-type]
    if cls is None:
        raise ConfigurationError(f"Unknown weather type '{key}' for '{name}'")
    try:
        return cls(name, history=history, **options)
    except TypeError as exc:
        raise ConfigurationError(f"Bad options for weather '{name}': {exc}") from exc


register_weather_type("metoffice", MetOffice)
