"""
Sample logging to flat files of `time,value` lines.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Optional
import asyncio
import logging
import os

from .. import timers
from ..time_utils import now_ms
from .timeline import TimeValue

logger = logging.getLogger(__name__)

# Delay before the first sample after start()
FIRST_SAMPLE_DELAY_MS = 100


def _num(value: float) -> str:
    value = float(value)
    return str(int(value)) if value.is_integer() else repr(value)


def encode_trace(report: List[TimeValue], since: Optional[float] = None) -> List[float]:
    """
    Flatten samples to `[basetime, dt0, v0, dt1, v1, ...]`, where the
    deltas are relative to the first sample's time (or now when there are
    no samples). Samples before `since` are skipped.
    """
    basetime = report[0].time if report else now_ms()
    encoded: List[float] = [basetime]
    for sample in report:
        if since is None or sample.time >= since:
            encoded.append(sample.time - basetime)
            encoded.append(sample.value)
    return encoded


class Historian:
    """
    Records samples for one named series, either on demand (`record`) or by
    polling a sampler function every `interval` ms (`start`).
    """

    def __init__(
        self,
        name: str,
        file: str,
        unordered: bool = False,
        interval: Optional[float] = None,
    ) -> None:
        self.name = name
        self.file = file
        self.unordered = unordered
        self.interval = interval
        self.last_time: Optional[float] = None
        self.last_sample: Optional[float] = None
        self._sampler: Optional[Callable[[], Optional[float]]] = None
        self._timer: Optional[str] = None
        self._running = False

    def path(self) -> Path:
        return Path(os.path.expandvars(os.path.expanduser(self.file)))

    def _read_lines(self) -> List[str]:
        with self.path().open("r", encoding="utf-8") as fh:
            return fh.read().split("\n")

    def _append(self, text: str) -> None:
        path = self.path()
        if not path.parent.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as fh:
            fh.write(text)

    def _rewrite(self, report: List[TimeValue]) -> None:
        with self.path().open("w", encoding="utf-8") as fh:
            fh.write("".join(f"{_num(s.time)},{_num(s.value)}\n" for s in report))
        logger.debug("history.rewrite name=%s samples=%s", self.name, len(report))

    async def load(self) -> List[TimeValue]:
        """
        Read all samples. A missing or unreadable file is an empty history.
        """
        try:
            lines = await asyncio.to_thread(self._read_lines)
        except OSError as exc:
            logger.debug("history.load_failed name=%s error=%s", self.name, exc)
            return []

        report: List[TimeValue] = []
        for line in lines:
            fields = line.split(",", 1)
            if len(fields) != 2:
                continue
            try:
                report.append(TimeValue(float(fields[0]), float(fields[1])))
            except ValueError:
                continue

        if self.unordered and len(report) > 1:
            # Sort by time; where two samples share a time, the one written
            # last wins.
            latest = {}
            for sample in report:
                latest[sample.time] = sample
            deduped = sorted(latest.values(), key=lambda s: s.time)
            if len(deduped) != len(report):
                await asyncio.to_thread(self._rewrite, deduped)
            report = deduped
        return report

    async def encode_trace(self, since: Optional[float] = None) -> List[float]:
        return encode_trace(await self.load(), since)

    async def record(self, sample: float, time: Optional[float] = None) -> None:
        """
        Append a sample. If more than 5/4 of an interval has passed since
        the previous record, a checkpoint repeating the previous value is
        written one interval before this sample.
        """
        if time is None:
            time = now_ms()

        text = ""
        if (
            self.interval is not None
            and self.last_time is not None
            and time > self.last_time + 5 * self.interval / 4
        ):
            text = f"{_num(time - self.interval)},{_num(self.last_sample)}\n"
        text += f"{_num(time)},{_num(sample)}\n"
        self.last_time = time
        self.last_sample = sample

        try:
            await asyncio.to_thread(self._append, text)
        except OSError as exc:
            logger.warning(
                "history.append_failed name=%s path=%s error=%s",
                self.name,
                self.path(),
                exc,
            )

    def start(self, sampler: Callable[[], Optional[float]]) -> None:
        if not callable(sampler):
            raise TypeError("Cannot start; sampler is not callable")
        if self.interval is None:
            raise ValueError(f"Cannot start history '{self.name}'; interval not defined")
        self._sampler = sampler
        self._running = True
        self._timer = timers.start_timer(
            f"hist{self.name}", self._poll, FIRST_SAMPLE_DELAY_MS
        )

    async def _poll(self) -> None:
        self._timer = None
        datum = self._sampler() if self._sampler else None
        # Don't record a repeat of the same sample
        if isinstance(datum, (int, float)) and datum != self.last_sample:
            await self.record(datum)
        if self._running:
            self._timer = timers.start_timer(
                f"hist{self.name}", self._poll, self.interval or 0
            )

    def stop(self) -> None:
        self._running = False
        if self._timer is not None:
            timers.cancel_timer(self._timer)
            self._timer = None
            logger.debug("history.stopped name=%s", self.name)
