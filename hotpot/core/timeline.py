"""
Piecewise-linear daily curves used as the default target temperature.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from ..errors import ConfigurationError, TimelineRangeError
from ..time_utils import ONE_DAY_MS, format_hms, parse_hms


class TimeValue:
    """
    One knot of a timeline: a time offset (ms from the start of the period)
    and the value at that time.
    """

    __slots__ = ("time", "value")

    def __init__(self, time: Union[int, float, str], value: float = 0.0) -> None:
        if isinstance(time, str):
            time = parse_hms(time)
        self.time = time
        self.value = float(value)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TimeValue":
        return cls(data["time"], data.get("value", 0.0))

    def to_dict(self) -> Dict[str, float]:
        return {"time": self.time, "value": self.value}

    def __repr__(self) -> str:
        return f"TimeValue({format_hms(self.time)}, {self.value})"


class Timeline:
    """
    A continuous curve over `period` ms, defined by knots sorted by time.
    There is always a knot at time 0; values between knots are linearly
    interpolated, and after the last knot the curve runs back to the value
    of the first knot at `period`. Knot values are clamped into
    `[min, max]`.
    """

    def __init__(
        self,
        min: float = 0.0,
        max: float = 30.0,
        period: float = ONE_DAY_MS,
        points: Optional[Iterable[Union[TimeValue, Mapping[str, Any]]]] = None,
    ) -> None:
        self.min = float(min)
        self.max = float(max)
        self.period = period
        if self.max < self.min or self.period <= 0:
            raise ConfigurationError(
                f"Bad timeline bounds min={self.min} max={self.max} period={self.period}"
            )

        self.points: List[TimeValue] = []
        for raw in points or []:
            point = raw if isinstance(raw, TimeValue) else TimeValue.from_dict(raw)
            if point.time < 0 or point.time >= self.period:
                raise ConfigurationError(
                    f"Point {point!r} is outside timeline 0..{self.period - 1}"
                )
            point.value = self._clamp(point.value)
            self._place(point)

        # There is always a point at 00:00
        if not self.points or self.points[0].time != 0:
            self.points.insert(0, TimeValue(0, self.min))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Timeline":
        return cls(
            min=data.get("min", 0.0),
            max=data.get("max", 30.0),
            period=data.get("period", ONE_DAY_MS),
            points=data.get("points") or [],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min": self.min,
            "max": self.max,
            "period": self.period,
            "points": [point.to_dict() for point in self.points],
        }

    def _clamp(self, value: float) -> float:
        return min(max(self.min, float(value)), self.max)

    def _check_range(self, t: float) -> None:
        if t < 0 or t >= self.period:
            raise TimelineRangeError(
                f"{format_hms(t)} is outside timeline "
                f"{format_hms(0)}..{format_hms(self.period - 1)}"
            )

    def _place(self, point: TimeValue) -> None:
        # Replace a point at the same time, else keep sorted order.
        for index, existing in enumerate(self.points):
            if existing.time == point.time:
                self.points[index] = point
                return
            if existing.time > point.time:
                self.points.insert(index, point)
                return
        self.points.append(point)

    @property
    def n_points(self) -> int:
        return len(self.points)

    def get_point(self, index: int) -> TimeValue:
        if index < 0 or index >= len(self.points):
            raise IndexError(f"Point {index} not in 0..{len(self.points) - 1}")
        return self.points[index]

    def get_index_of(self, point: TimeValue) -> int:
        for index, existing in enumerate(self.points):
            if existing is point:
                return index
        return -1

    @property
    def highest_value(self) -> float:
        return max(point.value for point in self.points)

    @property
    def lowest_value(self) -> float:
        return min(point.value for point in self.points)

    def get_point_before(self, t: float) -> TimeValue:
        """
        The last point with `time <= t`.
        """
        self._check_range(t)
        previous = self.points[0]
        for point in self.points:
            if point.time > t:
                break
            previous = point
        return previous

    def get_point_after(self, t: float) -> Optional[TimeValue]:
        """
        The first point with `time >= t`, or None if `t` lies after the last
        point (the curve then runs to the wrap-around point at `period`).
        """
        self._check_range(t)
        for point in self.points:
            if point.time >= t:
                return point
        return None

    def value_at_time(self, t: float) -> float:
        p0 = self.get_point_before(t)
        p1 = self.get_point_after(t)
        if p1 is None:
            p1 = TimeValue(self.period, self.points[0].value)
        if p1 is p0:
            return p0.value
        return p0.value + (t - p0.time) * (p1.value - p0.value) / (p1.time - p0.time)

    def insert(self, point: TimeValue) -> None:
        """
        Add a point, replacing any existing point at the same time.
        """
        if point.time < 0 or point.time >= self.period:
            raise TimelineRangeError(
                f"Cannot insert {point!r} outside timeline 0..{self.period - 1}"
            )
        point.value = self._clamp(point.value)
        self._place(point)

    def remove(self, point: TimeValue) -> "Timeline":
        index = self.get_index_of(point)
        if index <= 0:
            raise TimelineRangeError(
                f"Point at {format_hms(point.time)} cannot be removed"
            )
        del self.points[index]
        return self

    def set_time(self, point: TimeValue, t: float) -> None:
        """
        Move a point to `t`, clamped into `[0, period]`. The end of the
        period is the same instant as its start, so a point moved there
        replaces the point at 00:00.
        """
        self.remove(point)
        point.time = min(max(0, t), self.period)
        if point.time == self.period:
            point.time = 0
        self.insert(point)

    def set_value(self, point: TimeValue, value: float) -> float:
        """
        Set the value of a point, clamped into range. Returns the value
        actually set so callers can report clipping.
        """
        point.value = self._clamp(value)
        return point.value
