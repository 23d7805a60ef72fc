"""
Runtime configuration for the Hotpot controller.

Two layers: `Settings`, populated from environment variables, says where
things are and how to run; the controller config (a JSON file validated by
`schemas.ControllerConfig`) describes the thermostats, pins, rules,
calendars and weather agents.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union
import json
import logging
import os

from pydantic import ValidationError

from .core import (
    Controller,
    Historian,
    Pin,
    Thermostat,
    Timeline,
    create_calendar,
    create_rule,
    create_weather,
)
from .errors import ConfigurationError
from .hardware import HardwareBackend
from .schemas import ControllerConfig, HistoryModel, TimelineModel
from .time_utils import ONE_DAY_MS

logger = logging.getLogger(__name__)

# Thermostat history sampling interval when the config gives none
DEFAULT_HISTORY_INTERVAL = 5 * 60 * 1000  # ms

REPO_ROOT = Path(__file__).parent.parent


@dataclass
class Settings:
    """
    Simple settings object populated from environment variables.
    """

    config_path: Path = Path(os.getenv("HOTPOT_CONFIG", "config/hotpot.json"))
    # "simulated" or "hardware"; fixed for the life of the process
    hardware_mode: str = os.getenv("HOTPOT_HARDWARE_MODE", "simulated")
    host: str = os.getenv("HOTPOT_HOST", "0.0.0.0")
    port: int = int(os.getenv("HOTPOT_PORT", "13196"))
    alert_webhook: str = os.getenv("HOTPOT_ALERT_WEBHOOK", "")
    log_level: str = os.getenv("HOTPOT_LOG_LEVEL", "INFO")

    def __post_init__(self) -> None:
        self.config_path = Path(self.config_path)
        # Resolve paths relative to repo root (parent of the package)
        if not self.config_path.is_absolute():
            self.config_path = REPO_ROOT / self.config_path
        self.hardware_mode = self.hardware_mode.strip().lower()
        self.log_level = self.log_level.strip().upper()


def default_controller_config() -> Dict[str, Any]:
    """
    Configuration written out when none exists: one thermostat and one valve
    each for central heating and hot water.
    """
    return {
        "thermostat": {
            "CH": {
                "id": "28-0316027f81ff",
                "poll_every": 13,
                "timeline": {
                    "min": 5,
                    "max": 25,
                    "period": ONE_DAY_MS,
                    "points": [
                        {"time": "00:00", "value": 10},
                        {"time": "06:30", "value": 20},
                        {"time": "08:30", "value": 14},
                        {"time": "17:30", "value": 20},
                        {"time": "22:30", "value": 10},
                    ],
                },
                "history": {"file": "history/CH_temp.log", "interval": DEFAULT_HISTORY_INTERVAL},
            },
            "HW": {
                "id": "28-0316027c72ff",
                "poll_every": 7,
                "timeline": {
                    "min": 10,
                    "max": 60,
                    "period": ONE_DAY_MS,
                    "points": [
                        {"time": "00:00", "value": 20},
                        {"time": "06:00", "value": 45},
                        {"time": "09:00", "value": 30},
                        {"time": "18:00", "value": 45},
                        {"time": "22:00", "value": 20},
                    ],
                },
                "history": {"file": "history/HW_temp.log", "interval": DEFAULT_HISTORY_INTERVAL},
            },
        },
        "pin": {
            "CH": {"gpio": 23, "history": {"file": "history/CH_state.log"}},
            "HW": {"gpio": 25, "history": {"file": "history/HW_state.log"}},
        },
        "valve_return": 8000,
        "rule_interval": 5000,
        "rule": {
            "CH": {"type": "central_heating"},
            "HW": {"type": "hot_water"},
        },
        "calendar": {
            "local": {"type": "file", "file": "calendar.json"},
        },
    }


def expand_path(value: Union[str, Path], base: Path) -> str:
    """
    Expand `$VAR` and `~` in a path; a relative result is taken relative to
    `base` (the directory holding the config file).
    """
    expanded = Path(os.path.expandvars(os.path.expanduser(str(value))))
    if not expanded.is_absolute():
        expanded = base / expanded
    return str(expanded)


def _parse(raw: Any, source: Path) -> ControllerConfig:
    try:
        return ControllerConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration in {source}: {exc}") from exc


def load_controller_config(path: Path) -> ControllerConfig:
    """
    Read and validate the controller config. If the file is missing,
    synthesise the default configuration and write it.
    """
    if not path.exists():
        logger.warning("config.missing path=%s writing defaults", path)
        config = _parse(default_controller_config(), path)
        try:
            save_controller_config(path, config)
        except OSError as exc:
            logger.error("config.write_failed path=%s error=%s", path, exc)
        return config

    try:
        with path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Config file {path} is not valid JSON: {exc}") from exc
    return _parse(raw, path)


def save_controller_config(path: Path, config: ControllerConfig) -> None:
    if not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(config.model_dump(exclude_none=True), fh, indent=2)


def load_timeline(model: Union[TimelineModel, str], base: Path) -> Timeline:
    """
    Build a timeline from an inline model or from a JSON file named by
    `model`.
    """
    if isinstance(model, str):
        file = Path(expand_path(model, base))
        try:
            with file.open("r", encoding="utf-8") as fh:
                model = TimelineModel.model_validate(json.load(fh))
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            raise ConfigurationError(f"Cannot load timeline from {file}: {exc}") from exc
    return Timeline.from_dict(model.model_dump())


def _historian(
    name: str,
    history: Optional[HistoryModel],
    base: Path,
    default_interval: Optional[float] = None,
) -> Optional[Historian]:
    if history is None:
        return None
    return Historian(
        name,
        expand_path(history.file, base),
        unordered=history.unordered,
        interval=history.interval or default_interval,
    )


def build_controller(
    config: ControllerConfig,
    backend: HardwareBackend,
    base: Path,
) -> Controller:
    """
    Instantiate the controller described by `config`. Devices come from
    `backend`; nothing here touches the hardware until
    `Controller.initialise()`.
    """
    thermostats = {}
    for name, cfg in config.thermostat.items():
        thermostats[name] = Thermostat(
            name,
            cfg.id,
            load_timeline(cfg.timeline, base),
            backend.create_sensor(cfg.id, name),
            poll_every=cfg.poll_every,
            history=_historian(name, cfg.history, base, DEFAULT_HISTORY_INTERVAL),
        )

    pins = {}
    for name, cfg in config.pin.items():
        pins[name] = Pin(
            name,
            cfg.gpio,
            backend.create_gpio(cfg.gpio, name),
            history=_historian(name, cfg.history, base),
        )

    rules = [create_rule(name, cfg.model_dump()) for name, cfg in config.rule.items()]

    weather = {}
    for name, cfg in config.weather.items():
        weather[name] = create_weather(
            name,
            cfg.model_dump(exclude={"history"}),
            history=_historian(name, cfg.history, base),
        )

    calendars = {}
    for name, cfg in config.calendar.items():
        options = cfg.model_dump()
        if "file" in options:
            options["file"] = expand_path(options["file"], base)
        calendars[name] = create_calendar(name, options)

    return Controller(
        thermostats,
        pins,
        rules=rules,
        calendars=calendars,
        weather=weather,
        valve_return=config.valve_return,
        rule_interval=config.rule_interval,
    )


# Single global settings object imported by other modules.
settings = Settings()
