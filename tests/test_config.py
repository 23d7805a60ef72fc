import json

import pytest

from hotpot.config import (
    Settings,
    build_controller,
    default_controller_config,
    expand_path,
    load_controller_config,
    load_timeline,
)
from hotpot.core import CentralHeatingRule, FileCalendar, HotWaterRule, MetOffice
from hotpot.errors import ConfigurationError
from hotpot.schemas import WeatherConfig


def test_missing_config_is_synthesised(tmp_path):
    path = tmp_path / "conf" / "hotpot.json"
    config = load_controller_config(path)
    assert set(config.thermostat) == {"CH", "HW"}
    assert config.valve_return == 8000
    assert path.exists()
    assert json.loads(path.read_text())["pin"]["CH"]["gpio"] == 23


def test_invalid_config_rejected(tmp_path):
    path = tmp_path / "hotpot.json"
    path.write_text(json.dumps({"pin": {"CH": {"gpio": "twenty"}}}))
    with pytest.raises(ConfigurationError):
        load_controller_config(path)
    path.write_text("{")
    with pytest.raises(ConfigurationError):
        load_controller_config(path)


def test_expand_path(tmp_path, monkeypatch):
    monkeypatch.setenv("HOTPOT_TEST_DIR", "/var/hotpot")
    assert expand_path("$HOTPOT_TEST_DIR/ch.log", tmp_path) == "/var/hotpot/ch.log"
    assert expand_path("ch.log", tmp_path) == str(tmp_path / "ch.log")


def test_timeline_from_file(tmp_path):
    (tmp_path / "ch_timeline.json").write_text(
        json.dumps({"min": 5, "max": 25, "points": [{"time": "07:00", "value": 19}]})
    )
    timeline = load_timeline("ch_timeline.json", tmp_path)
    assert timeline.n_points == 2
    assert timeline.highest_value == 19
    with pytest.raises(ConfigurationError):
        load_timeline("missing.json", tmp_path)


def test_build_controller(tmp_path, fake_backend):
    config = load_controller_config(tmp_path / "hotpot.json")
    controller = build_controller(config, fake_backend, tmp_path)

    assert set(controller.thermostats) == {"CH", "HW"}
    assert controller.thermostats["HW"].poll_every == 7
    assert controller.thermostats["CH"].history.file == str(tmp_path / "history" / "CH_temp.log")
    assert controller.thermostats["CH"].history.interval == 300000
    assert controller.pins["HW"].gpio is fake_backend.gpios["HW"]
    assert [type(rule) for rule in controller.rules] == [CentralHeatingRule, HotWaterRule]
    calendar = controller.calendars["local"]
    assert isinstance(calendar, FileCalendar)
    assert calendar.file == str(tmp_path / "calendar.json")


def test_settings_resolve_relative_paths():
    settings = Settings(config_path="conf/x.json", hardware_mode=" Simulated ", log_level="debug")
    assert settings.config_path.is_absolute()
    assert settings.config_path.parts[-2:] == ("conf", "x.json")
    assert settings.hardware_mode == "simulated"
    assert settings.log_level == "DEBUG"


def test_build_weather_agents(tmp_path, fake_backend):
    path = tmp_path / "hotpot.json"
    config = default_controller_config()
    config["weather"] = {
        "met": {
            "type": "metoffice",
            "api_key": "k",
            "history": {"file": "history/weather.log", "unordered": True},
        }
    }
    config["location"] = {"latitude": 51.5, "longitude": -0.1}
    path.write_text(json.dumps(config))

    loaded = load_controller_config(path)
    assert loaded.location.latitude == 51.5
    controller = build_controller(loaded, fake_backend, tmp_path)
    agent = controller.weather["met"]
    assert isinstance(agent, MetOffice)
    assert agent.api_key == "k"
    assert agent.history.file == str(tmp_path / "history" / "weather.log")
    assert agent.history.unordered


def test_unknown_weather_type_rejected(tmp_path, fake_backend):
    config = load_controller_config(tmp_path / "hotpot.json")
    config.weather = {"x": WeatherConfig(type="crystal_ball")}
    with pytest.raises(ConfigurationError):
        build_controller(config, fake_backend, tmp_path)
