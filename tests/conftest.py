import asyncio
import os
import sys

import pytest

# Ensure project root is on sys.path for `import hotpot`
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(PROJECT_ROOT)
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from hotpot.errors import GpioError, SensorError  # noqa: E402
from hotpot.hardware import BaseGpio, BaseSensor  # noqa: E402


class FakeSensor(BaseSensor):
    """
    Returns queued readings in order; an exception in the queue is raised
    instead. When the queue runs dry the last reading repeats.
    """

    def __init__(self, *readings):
        self.readings = list(readings)
        self.last = 20.0
        self.reads = 0

    async def initialise_sensor(self):
        return self

    async def get_temperature(self):
        self.reads += 1
        if self.readings:
            reading = self.readings.pop(0)
            if isinstance(reading, Exception):
                raise reading
            self.last = reading
        return self.last


class FakeGpio(BaseGpio):
    """
    Output line that records every write as `(name, state)` in a shared
    list, so the order of writes across pins can be checked.
    """

    def __init__(self, name, writes, state=0):
        self.name = name
        self.writes = writes
        self.state = state
        self.fail_on_write = None

    async def initialise_gpio(self, direction, active):
        self.direction = direction
        self.active = active

    async def get_value(self):
        return self.state

    async def set_value(self, state):
        if self.fail_on_write is not None and state == self.fail_on_write:
            raise GpioError(f"{self.name} write failed")
        self.writes.append((self.name, state))
        self.state = state


class YieldingGpio(FakeGpio):
    """
    FakeGpio that gives up the event loop on every read and write, as a
    real sysfs line run in a thread would.
    """

    async def get_value(self):
        await asyncio.sleep(0)
        return await super().get_value()

    async def set_value(self, state):
        await asyncio.sleep(0)
        await super().set_value(state)


class FakeBackend:
    """HardwareBackend stand-in handing out fakes by service name."""

    name = "fake"

    def __init__(self):
        self.writes = []
        self.sensors = {}
        self.gpios = {}

    def create_sensor(self, sensor_id, service):
        return self.sensors.setdefault(service, FakeSensor())

    def create_gpio(self, gpio, service):
        return self.gpios.setdefault(service, FakeGpio(service, self.writes))


@pytest.fixture
def writes():
    return []


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def sensor_error():
    return SensorError("no reading")
