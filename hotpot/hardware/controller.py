"""
Hardware backends: the capability object that builds sensors and outputs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..errors import ConfigurationError
from .devices import BaseGpio, BaseSensor, DS18x20Sensor, SysfsGpio
from .simulator import Simulator


class HardwareBackend(ABC):
    """
    Base interface implemented by concrete hardware backends. One backend is
    chosen at start-up and handed to every thermostat and pin.
    """

    name = "abstract"

    @abstractmethod
    def create_sensor(self, sensor_id: str, service: str) -> BaseSensor:
        """
        Build the sensor for the thermostat `service`.
        """

    @abstractmethod
    def create_gpio(self, gpio: int, service: str) -> BaseGpio:
        """
        Build the output line for the pin `service`.
        """


class DeviceBackend(HardwareBackend):
    """
    Real hardware on a Raspberry Pi.
    """

    name = "hardware"

    def create_sensor(self, sensor_id: str, service: str) -> BaseSensor:
        return DS18x20Sensor(sensor_id)

    def create_gpio(self, gpio: int, service: str) -> BaseGpio:
        return SysfsGpio(gpio)


class SimulatedBackend(HardwareBackend):
    """
    Simulation used for development and automated tests. The sensor and the
    output for a service share one simulated service, so switching a
    service on warms its thermostat.
    """

    name = "simulated"

    def __init__(self, simulator: Simulator | None = None) -> None:
        self.simulator = simulator or Simulator()

    def create_sensor(self, sensor_id: str, service: str) -> BaseSensor:
        return self.simulator.get_service(service)

    def create_gpio(self, gpio: int, service: str) -> BaseGpio:
        return self.simulator.get_service(service)


def create_backend(mode: str) -> HardwareBackend:
    """
    Select the backend named by configuration ("hardware" or "simulated").
    """
    normalized = (mode or "").strip().lower()
    if normalized in ("hardware", "gpio"):
        return DeviceBackend()
    if normalized in ("simulated", "mock", "debug"):
        return SimulatedBackend()
    raise ConfigurationError(f"Unknown hardware mode '{mode}'")
