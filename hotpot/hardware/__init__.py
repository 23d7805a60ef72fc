"""
Hardware abstraction layer.
"""

from .controller import DeviceBackend, HardwareBackend, SimulatedBackend, create_backend
from .devices import BaseGpio, BaseSensor, DS18x20Sensor, SysfsGpio
from .simulator import SimulatedService, Simulator

__all__ = [
    "BaseGpio",
    "BaseSensor",
    "DS18x20Sensor",
    "DeviceBackend",
    "HardwareBackend",
    "SimulatedBackend",
    "SimulatedService",
    "Simulator",
    "SysfsGpio",
    "create_backend",
]
