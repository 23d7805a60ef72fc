"""
Time-limited overrides of a thermostat's timeline.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Union
import re

from ..errors import RequestError


class Special(Enum):
    """
    Sentinel values that are never confused with a time or a temperature.
    """

    BOOST = "boost"
    CLEAR = "clear"
    OFF = "off"

    def __repr__(self) -> str:
        return self.name


# `until`: keep heating until the target is reached, then expire.
BOOST = Special.BOOST
# `until`: remove every request from the source; never stored.
CLEAR = Special.CLEAR
# `temperature`: keep the service off while the request lives.
OFF = Special.OFF

Until = Union[float, Special]
Temperature = Union[float, Special]

_INTEGER = re.compile(r"^-?\d+$")
_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")


def parse_until(value: Any) -> Until:
    """
    Accept epoch ms (number or digit string), a `datetime`, an ISO date
    string, or "boost"/"clear" in any case.
    """
    if isinstance(value, Special):
        if value is OFF:
            raise RequestError("'off' is not a valid 'until'")
        return value
    if isinstance(value, bool):
        raise RequestError(f"Bad time {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, datetime):
        return value.timestamp() * 1000.0
    if isinstance(value, str):
        text = value.strip()
        lowered = text.lower()
        if lowered == "boost":
            return BOOST
        if lowered == "clear":
            return CLEAR
        if _INTEGER.match(text):
            return float(int(text))
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as exc:
            raise RequestError(f"Bad time {value!r}") from exc
        return parsed.timestamp() * 1000.0
    raise RequestError(f"Bad time {value!r}")


def parse_temperature(value: Any) -> Temperature:
    """Accept a number, a number string, or "off" in any case."""
    if value is OFF:
        return OFF
    if isinstance(value, bool):
        raise RequestError(f'Bad "temperature" {value!r}')
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if text.lower() == "off":
            return OFF
        if _NUMBER.match(text):
            return float(text)
    raise RequestError(f'Bad "temperature" {value!r}')


def encode_special(value: Union[float, Special]) -> Union[float, str]:
    return value.value if isinstance(value, Special) else value


@dataclass
class Request:
    """
    A requirement for a target temperature from a named source, valid
    until an epoch-ms time, or until the target is reached (`BOOST`).
    A request with `until=CLEAR` asks for the source's requests to be
    removed.
    """

    source: str
    until: Until
    temperature: Temperature

    def __post_init__(self) -> None:
        if not isinstance(self.source, str) or not self.source:
            raise RequestError(f'Bad "source" {self.source!r}')
        self.until = parse_until(self.until)
        self.temperature = parse_temperature(self.temperature)
        if self.until is BOOST and self.temperature is OFF:
            raise RequestError("Cannot boost to 'off'")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Request":
        if data.get("until") is None:
            raise RequestError('Missing "until"')
        until = parse_until(data["until"])
        # A clear needs no temperature.
        if until is not CLEAR and data.get("temperature") is None:
            raise RequestError('Missing "temperature"')
        return cls(
            source=data.get("source"),  # type: ignore[arg-type]
            until=until,
            temperature=OFF if until is CLEAR else data["temperature"],
        )

    @property
    def is_boost(self) -> bool:
        return self.until is BOOST

    @property
    def is_off(self) -> bool:
        return self.temperature is OFF

    @property
    def is_clear(self) -> bool:
        return self.until is CLEAR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "until": encode_special(self.until),
            "temperature": encode_special(self.temperature),
        }
