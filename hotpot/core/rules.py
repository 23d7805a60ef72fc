"""
Rules that turn thermostat readings into valve decisions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Mapping, Type
import logging

from ..errors import ConfigurationError

if TYPE_CHECKING:  # pragma: no cover
    from .controller import Controller

logger = logging.getLogger(__name__)


class Rule(ABC):
    """
    Decides whether a service should be on or off, based on the state of one
    or more thermostats.
    """

    def __init__(self, name: str, **options: Any) -> None:
        self.name = name
        self.options = options

    @abstractmethod
    async def test(self, controller: "Controller") -> None:
        """
        Evaluate the rule and drive the valves through
        `controller.set_channel_state`.
        """


class ThresholdRule(Rule):
    """
    Keep one service between `target - precision` and `target`, never
    exceeding the thermostat's maximum. Switching is done through the
    controller so the Y-plan valve interaction is respected.
    """

    channel = ""
    precision = 0.0
    warm_reason = "Warm enough"

    async def test(self, controller: "Controller") -> None:
        thermostat = controller.thermostats[self.channel]
        pin = controller.pins[self.channel]
        state = await pin.get_state()
        temperature = thermostat.temperature

        maximum = thermostat.get_maximum_temperature()
        if temperature > maximum:
            logger.debug(
                "rule.overheat channel=%s temperature=%s max=%s action=%s",
                self.channel,
                temperature,
                maximum,
                "turning off" if state == 1 else "keeping off",
            )
            pin.reason = "Overheat"
            await controller.set_channel_state(self.channel, 0)
            return

        # Otherwise respect the timeline and requests
        target = thermostat.get_target_temperature()
        if temperature > target:
            logger.debug(
                "rule.warm channel=%s temperature=%s target=%s action=%s",
                self.channel,
                temperature,
                target,
                "turning off" if state == 1 else "keeping off",
            )
            pin.reason = self.warm_reason
            await controller.set_channel_state(self.channel, 0)
        elif temperature < target - self.precision:
            logger.debug(
                "rule.cold channel=%s temperature=%s target=%s action=%s",
                self.channel,
                temperature,
                target,
                "turning on" if state == 0 else "keeping on",
            )
            pin.reason = "Too cold"
            await controller.set_channel_state(self.channel, 1)


class CentralHeatingRule(ThresholdRule):
    channel = "CH"
    # Heating comes on when this far below target; 0 risks oscillation.
    precision = 0.5
    warm_reason = "Warm enough"


class HotWaterRule(ThresholdRule):
    channel = "HW"
    precision = 2.0
    warm_reason = "Hot enough"


RULE_TYPES: Dict[str, Type[Rule]] = {
    "central_heating": CentralHeatingRule,
    "hot_water": HotWaterRule,
}


def create_rule(name: str, config: Mapping[str, Any]) -> Rule:
    options = dict(config)
    key = options.pop("type", None)
    cls = RULE_TYPES.get(key)  # type: ignore[arg-type]
    if cls is None:
        raise ConfigurationError(f"Unknown rule type '{key}' for '{name}'")
    return cls(name, **options)
