"""
In-memory simulation of sensors and valve outputs, used for development
and automated tests.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence
import logging
import random
import time

from .devices import BaseGpio, BaseSensor

logger = logging.getLogger(__name__)

# Cooling and heating rates, in degrees per second, indexed by pin state.
RATES: Dict[str, Sequence[float]] = {
    "HW": (-0.001, 0.015),
    "CH": (-0.003, 0.01),
}
DEFAULT_RATES: Sequence[float] = (-0.1, 0.1)


class SimulatedService(BaseSensor, BaseGpio):
    """
    Simulates both the thermostat and the output for one service. In the
    default mode the temperature drifts according to the output state; if
    samples are supplied, each read steps through them instead.
    """

    def __init__(
        self,
        name: str,
        temperature: float = 12.0,
        jitter: float = 0.02,
    ) -> None:
        self.name = name
        self.pin_state = 0
        self.temperature = temperature
        self.jitter = jitter
        self.rates = RATES.get(name, DEFAULT_RATES)
        self._samples: Optional[List[float]] = None
        self._sample_index = -1
        self._last_update = time.monotonic()

    def set_samples(self, samples: Sequence[float]) -> None:
        self._samples = list(samples)
        self._sample_index = -1

    def _advance(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_update
        self._last_update = now
        self.temperature = max(
            0.0, self.temperature + self.rates[self.pin_state] * elapsed
        )

    async def initialise_sensor(self) -> "SimulatedService":
        logger.info("simulator.sensor_ready name=%s", self.name)
        return self

    async def get_temperature(self) -> float:
        if self._samples:
            self._sample_index = (self._sample_index + 1) % len(self._samples)
            return self._samples[self._sample_index]
        self._advance()
        variation = random.uniform(-self.jitter, self.jitter) if self.jitter else 0.0
        return round(self.temperature + variation, 3)

    async def initialise_gpio(self, direction: str, active: str) -> None:
        logger.info(
            "simulator.gpio_ready name=%s direction=%s active=%s",
            self.name,
            direction,
            active,
        )

    async def get_value(self) -> int:
        return self.pin_state

    async def set_value(self, state: int) -> None:
        # Settle the temperature under the old state before switching.
        self._advance()
        self.pin_state = state


class Simulator:
    """
    Registry of simulated services, one per service name, shared between the
    thermostat and the pin of that name.
    """

    def __init__(self) -> None:
        self.services: Dict[str, SimulatedService] = {}

    def get_service(self, name: str) -> SimulatedService:
        service = self.services.get(name)
        if service is None:
            service = SimulatedService(name)
            self.services[name] = service
        return service
