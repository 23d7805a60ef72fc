"""
Device interfaces and the Raspberry Pi implementations (one-wire DS18x20
sensors and sysfs GPIO).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List
import asyncio
import logging
import re

from ..errors import GpioError, SensorError

logger = logging.getLogger(__name__)

# Base path of all one-wire device paths.
ONE_WIRE_PATH = Path("/sys/bus/w1/devices")

# Base path of all GPIO paths.
GPIO_PATH = Path("/sys/class/gpio")

# DS18x20 reports 85000 when a conversion has not completed.
DS18X20_ERROR_CODE = 85000

_SENSOR_ID = re.compile(r"^[\da-f]{2}-[\da-f]{12}$", re.IGNORECASE)


class BaseSensor(ABC):
    """
    Temperature source polled by a thermostat.
    """

    @abstractmethod
    async def initialise_sensor(self) -> "BaseSensor":
        """
        Check the sensor can be read. Returns the sensor.
        """

    @abstractmethod
    async def get_temperature(self) -> float:
        """
        Read the temperature in degrees C. Raises SensorError on failure.
        """


class BaseGpio(ABC):
    """
    One binary output line.
    """

    @abstractmethod
    async def initialise_gpio(self, direction: str, active: str) -> None:
        """
        Prepare the line. `direction` is "in" or "out", `active` is "high"
        or "low".
        """

    @abstractmethod
    async def get_value(self) -> int:
        """Current level, 0 or 1."""

    @abstractmethod
    async def set_value(self, state: int) -> None:
        """Drive the line to 0 or 1."""


class DS18x20Sensor(BaseSensor):
    """
    DS18x20 on the one-wire bus, read through the w1_slave file.
    """

    def __init__(self, sensor_id: str, base_path: Path = ONE_WIRE_PATH) -> None:
        self.id = sensor_id
        self.base_path = base_path

    async def initialise_sensor(self) -> "DS18x20Sensor":
        await self.get_temperature()
        return self

    def _read(self) -> str:
        path = self.base_path / self.id / "w1_slave"
        with path.open("r", encoding="latin-1") as fh:
            return fh.read()

    async def get_temperature(self) -> float:
        logger.debug("ds18x20.poll id=%s", self.id)
        try:
            content = await asyncio.to_thread(self._read)
        except OSError as exc:
            raise SensorError(f"DS18x20 {self.id} unreadable: {exc}") from exc

        lines = content.split("\n")
        if not lines[0].endswith("YES"):
            raise SensorError(f"DS18x20 {self.id} CRC check failed '{content}'")
        parts = lines[1].split("t=") if len(lines) > 1 else []
        if len(parts) != 2:
            raise SensorError(f"DS18x20 {self.id} format error")
        try:
            value = float(parts[1])
        except ValueError as exc:
            raise SensorError(f"DS18x20 {self.id} format error") from exc
        if value == DS18X20_ERROR_CODE:
            raise SensorError(f"DS18x20 {self.id} error 85")
        return value / 1000.0

    @staticmethod
    def list_sensors(base_path: Path = ONE_WIRE_PATH) -> List[str]:
        """Ids of the DS18x20 devices present on the bus."""
        return sorted(
            entry.name for entry in base_path.iterdir() if _SENSOR_ID.match(entry.name)
        )


class SysfsGpio(BaseGpio):
    """
    GPIO through the (deprecated but dependency-free) sysfs integer
    interface.
    """

    # The kernel takes a while to create the pin files after export.
    EXPORT_SETTLE_SECONDS = 1.0

    def __init__(self, gpio: int, base_path: Path = GPIO_PATH) -> None:
        self.gpio = gpio
        self.base_path = base_path

    @property
    def pin_path(self) -> Path:
        return self.base_path / f"gpio{self.gpio}"

    def _write(self, path: Path, text: str) -> None:
        with path.open("w", encoding="utf-8") as fh:
            fh.write(text)

    async def initialise_gpio(self, direction: str, active: str) -> None:
        try:
            if not self.pin_path.exists():
                await asyncio.to_thread(
                    self._write, self.base_path / "export", str(self.gpio)
                )
                await asyncio.sleep(self.EXPORT_SETTLE_SECONDS)
            await asyncio.to_thread(self._write, self.pin_path / "direction", direction)
            await asyncio.to_thread(
                self._write,
                self.pin_path / "active_low",
                "1" if active == "low" else "0",
            )
        except OSError as exc:
            raise GpioError(f"Failed to initialise GPIO {self.gpio}: {exc}") from exc

    async def get_value(self) -> int:
        try:
            text = await asyncio.to_thread((self.pin_path / "value").read_text, "utf-8")
            return int(text.strip())
        except (OSError, ValueError) as exc:
            raise GpioError(f"Failed to read GPIO {self.gpio}: {exc}") from exc

    async def set_value(self, state: int) -> None:
        try:
            await asyncio.to_thread(self._write, self.pin_path / "value", str(state))
        except OSError as exc:
            raise GpioError(f"Failed to write GPIO {self.gpio}: {exc}") from exc
