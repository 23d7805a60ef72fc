"""
Named valve output (CH or HW) on a GPIO line.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
import logging

from ..hardware import BaseGpio
from .historian import Historian

logger = logging.getLogger(__name__)


class Pin:
    """
    One output channel. Rules must not call `set_state` directly on a Y-plan
    system; `Controller.set_channel_state` knows how the two channels
    interact.
    """

    def __init__(
        self,
        name: str,
        gpio_number: int,
        gpio: BaseGpio,
        history: Optional[Historian] = None,
    ) -> None:
        self.name = name
        self.gpio_number = gpio_number
        self.gpio = gpio
        self.history = history
        # Why the pin is in its current state, shown in the UI
        self.reason = ""

    async def initialise(self) -> "Pin":
        """
        Configure the line as an output. A failure here is fatal: without
        the valves there is nothing to control.
        """
        logger.info("pin.initialise name=%s gpio=%s", self.name, self.gpio_number)
        try:
            await self.gpio.initialise_gpio("out", "low")
        except Exception:
            logger.error("pin.init_failed name=%s gpio=%s", self.name, self.gpio_number)
            raise
        return self

    async def get_state(self) -> int:
        return await self.gpio.get_value()

    async def set_state(self, state: int, reason: Optional[str] = None) -> None:
        logger.debug(
            "pin.set name=%s gpio=%s state=%s",
            self.name,
            self.gpio_number,
            "ON" if state == 1 else "OFF",
        )
        await self.gpio.set_value(state)
        if reason is not None:
            self.reason = reason
        if self.history is not None:
            await self.history.record(state)

    async def get_serialisable_state(self) -> Dict[str, Any]:
        return {"reason": self.reason, "state": await self.get_state()}

    async def get_serialisable_log(self, since: Optional[float] = None) -> Optional[List[float]]:
        if self.history is None:
            return None
        return await self.history.encode_trace(since)
