"""
Exception hierarchy shared by the controller, hardware and HTTP layers.
"""

from __future__ import annotations


class HotpotError(Exception):
    """
    Base class for every error raised deliberately by this package.
    """


class ConfigurationError(HotpotError, ValueError):
    """
    Malformed configuration or model data. Never retried.
    """


class TimelineRangeError(HotpotError, ValueError):
    """
    A time lookup fell outside the timeline period, or an edit would break
    the timeline's invariants.
    """


class RequestError(HotpotError, ValueError):
    """
    A request could not be built from the data supplied.
    """


class UnknownServiceError(HotpotError, KeyError):
    """
    A request or event named a thermostat that does not exist.
    """

    def __str__(self) -> str:
        # KeyError quotes its message, which reads badly in HTTP responses.
        return str(self.args[0]) if self.args else ""


class CalendarError(HotpotError, ValueError):
    """
    Calendar text could not be parsed, or named an unknown service.
    """


class SensorError(HotpotError):
    """
    A temperature sensor could not be read.
    """


class GpioError(HotpotError):
    """
    A GPIO line could not be initialised, read or written.
    """


class WeatherError(HotpotError):
    """
    A weather service could not be reached, or sent something unexpected.
    """
