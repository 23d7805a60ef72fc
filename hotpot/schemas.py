"""
Pydantic models for the controller configuration and request/response
payloads.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

from .time_utils import ONE_DAY_MS


class TimePointModel(BaseModel):
    """
    One timeline knot. `time` is a ms offset into the period or an
    "HH:MM[:SS]" string.
    """

    time: Union[float, str]
    value: float = 0.0


class TimelineModel(BaseModel):
    min: float = 0.0
    max: float = 30.0
    period: float = Field(ONE_DAY_MS, gt=0)
    points: List[TimePointModel] = Field(default_factory=list)


class HistoryModel(BaseModel):
    """
    Where and how often to record a history. Pin histories are written on
    change and need no interval.
    """

    file: str
    interval: Optional[float] = Field(None, gt=0)
    unordered: bool = False


class ThermostatConfig(BaseModel):
    id: str
    poll_every: Optional[float] = Field(None, gt=0)
    # Inline timeline, or the path of a JSON file holding one
    timeline: Union[TimelineModel, str] = Field(default_factory=TimelineModel)
    history: Optional[HistoryModel] = None


class PinConfig(BaseModel):
    gpio: int = Field(..., ge=0)
    history: Optional[HistoryModel] = None


class RuleConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str


class CalendarConfig(BaseModel):
    """
    A calendar; fields other than `type` are passed to the calendar class.
    """

    model_config = ConfigDict(extra="allow")

    type: str


class WeatherConfig(BaseModel):
    """
    A weather agent; fields other than `type` and `history` are passed to
    the agent class, e.g. `api_key` for "metoffice".
    """

    model_config = ConfigDict(extra="allow")

    type: str
    history: Optional[HistoryModel] = None


class LocationModel(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class ControllerConfig(BaseModel):
    thermostat: Dict[str, ThermostatConfig] = Field(default_factory=dict)
    pin: Dict[str, PinConfig] = Field(default_factory=dict)
    valve_return: float = Field(8000, ge=0)
    rule_interval: float = Field(5000, gt=0)
    rule: Dict[str, RuleConfig] = Field(default_factory=dict)
    calendar: Dict[str, CalendarConfig] = Field(default_factory=dict)
    weather: Dict[str, WeatherConfig] = Field(default_factory=dict)
    # Where the server is, for the weather agents
    location: Optional[LocationModel] = None


class RequestPayload(BaseModel):
    """
    Body of POST /request. `until` is epoch ms, an ISO date, "boost" or
    "clear"; `temperature` is degrees C or "off".
    """

    source: str = Field(..., min_length=1)
    service: str = Field(..., min_length=1)
    until: Union[float, str]
    temperature: Optional[Union[float, str]] = None


class CalendarEntryPayload(BaseModel):
    """
    An entry from the calendar editor. The service settings are parsed out
    of `title` and `description`, e.g. "CH 20" or "HW boost 50".
    """

    title: str = ""
    description: str = ""
    start: Union[float, str]
    end: Union[float, str]


class AlertModel(BaseModel):
    subject: str
    message: str
    time: float


class HealthModel(BaseModel):
    status: str
    hardware_mode: str
    alerts: List[AlertModel] = Field(default_factory=list)
