"""
Heating control core: timelines, requests, thermostats, valves, rules,
calendars and weather agents.
"""

from .calendar import Calendar, FileCalendar, ScheduledEvent, create_calendar, register_calendar_type
from .controller import Controller
from .historian import Historian
from .pin import Pin
from .request import BOOST, CLEAR, OFF, Request, Special
from .rules import CentralHeatingRule, HotWaterRule, Rule, create_rule
from .thermostat import Thermostat
from .timeline import Timeline, TimeValue
from .weather import Location, MetOffice, Weather, create_weather, register_weather_type

__all__ = [
    "BOOST",
    "CLEAR",
    "Calendar",
    "CentralHeatingRule",
    "Controller",
    "FileCalendar",
    "Historian",
    "HotWaterRule",
    "Location",
    "MetOffice",
    "OFF",
    "Pin",
    "Request",
    "Rule",
    "ScheduledEvent",
    "Special",
    "Thermostat",
    "TimeValue",
    "Timeline",
    "Weather",
    "create_calendar",
    "create_rule",
    "create_weather",
    "register_calendar_type",
    "register_weather_type",
]
