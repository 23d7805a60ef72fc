import httpx
import pytest

from conftest import FakeGpio, FakeSensor
from hotpot.core import weather as weather_module
from hotpot.core.controller import Controller
from hotpot.core.historian import Historian
from hotpot.core.pin import Pin
from hotpot.core.thermostat import Thermostat
from hotpot.core.timeline import Timeline
from hotpot.core.weather import Location, MetOffice, Weather, create_weather
from hotpot.errors import ConfigurationError, WeatherError

# 2024-01-01T04:30Z
NOW = 1704083400000
MIDNIGHT = 1704067200000
HOUR = 3600000

SITES = {
    "Locations": {
        "Location": [
            {"id": "3066", "latitude": "57.6494", "longitude": "-3.5606", "name": "Kinloss"},
            {"id": "3772", "latitude": "51.479", "longitude": "-0.449", "name": "Heathrow"},
        ]
    }
}


def forecast(*reps):
    return {
        "SiteRep": {
            "Wx": {
                "Param": [
                    {"name": "T", "units": "C", "$": "Temperature"},
                    {"name": "W", "units": "", "$": "Weather Type"},
                ]
            },
            "DV": {
                "Location": {
                    "Period": {
                        "value": "2024-01-01Z",
                        "Rep": [{"$": str(minutes), "T": str(t), "W": "7"} for minutes, t in reps],
                    }
                }
            },
        }
    }


class DataPoint:
    """Stand-in for the DataPoint service."""

    def __init__(self, data=None, status=200):
        self.data = data or forecast((180, 4), (360, 10))
        self.status = status
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        if request.url.path.endswith("sitelist"):
            return httpx.Response(200, json=SITES)
        return httpx.Response(self.status, json=self.data)


@pytest.fixture
def clock(monkeypatch):
    monkeypatch.setattr(weather_module, "now_ms", lambda: NOW)
    return NOW


def make_agent(service, history=None):
    return MetOffice("met", api_key="secret", history=history, transport=httpx.MockTransport(service))


def test_haversine():
    london = Location(51.5074, -0.1278)
    paris = Location(48.8566, 2.3522)
    assert london.haversine(paris) == pytest.approx(343500, rel=0.01)
    assert london.haversine(london) == 0


@pytest.mark.asyncio
async def test_metoffice_finds_nearest_site_and_interpolates(clock):
    service = DataPoint()
    agent = make_agent(service)
    await agent.set_location(Location(51.5, -0.1))
    try:
        assert agent.location_id == "3772"
        paths = [request.url.path for request in service.requests]
        assert paths == [
            "/public/data/val/wxfcs/all/json/sitelist",
            "/public/data/val/wxfcs/all/json/3772",
        ]
        assert service.requests[1].url.params["key"] == "secret"
        assert service.requests[1].url.params["res"] == "3hourly"

        assert agent.get("Temperature") == pytest.approx(7.0)
        # Not a number, so not interpolated
        assert agent.get("Weather Type") == "7"
        assert await agent.get_serialisable_state() == {"temperature": pytest.approx(7.0)}
        assert agent.last_update == NOW
        assert agent._update_timer is not None
    finally:
        agent.stop()
    assert agent._update_timer is None


@pytest.mark.asyncio
async def test_new_forecast_replaces_later_reports(clock):
    agent = make_agent(DataPoint())
    agent._build_log(forecast((0, 1), (180, 4), (360, 10)))
    agent._build_log(forecast((180, 5), (360, 11)))
    assert [(r["$"], r["Temperature"]) for r in agent.log] == [
        (MIDNIGHT, 1.0),
        (MIDNIGHT + 3 * HOUR, 5.0),
        (MIDNIGHT + 6 * HOUR, 11.0),
    ]
    assert agent._build_log({"SiteRep": {}}) == []


@pytest.mark.asyncio
async def test_failed_fetch_is_retried(clock):
    agent = make_agent(DataPoint(status=503))
    await agent.set_location(Location(51.5, -0.1))
    try:
        assert agent.last_update == 0
        assert agent.get("Temperature") is None
        assert agent._update_timer is not None
    finally:
        agent.stop()


@pytest.mark.asyncio
async def test_site_list_failure_raises():
    agent = MetOffice(
        "met",
        api_key="secret",
        transport=httpx.MockTransport(lambda request: httpx.Response(403)),
    )
    with pytest.raises(WeatherError):
        await agent.set_location(Location(51.5, -0.1))


@pytest.mark.asyncio
async def test_log_stops_at_current_estimate(clock, tmp_path):
    history = Historian("met", str(tmp_path / "weather.log"), unordered=True)
    agent = make_agent(DataPoint(), history=history)
    await agent.set_location(Location(51.5, -0.1))
    agent.stop()

    trace = await agent.get_serialisable_log()
    base = MIDNIGHT + 3 * HOUR
    assert trace[0] == base
    assert trace[1:3] == [0, 4]
    assert trace[3:] == [NOW - base, pytest.approx(7.0)]


def test_weather_registry():
    agent = create_weather("met", {"type": "metoffice", "api_key": "k"})
    assert isinstance(agent, MetOffice)
    with pytest.raises(ConfigurationError):
        create_weather("x", {"type": "crystal_ball"})
    with pytest.raises(ConfigurationError):
        create_weather("met", {"type": "metoffice"})


class StubWeather(Weather):
    def __init__(self, name, fail=False):
        super().__init__(name)
        self.fail = fail

    async def set_location(self, location):
        if self.fail:
            raise WeatherError("no sites")
        await super().set_location(location)

    async def get_weather(self):
        return 0

    def get(self, what):
        return 12.5


@pytest.mark.asyncio
async def test_controller_sets_location_and_reports_weather(writes):
    agents = {"good": StubWeather("good"), "bad": StubWeather("bad", fail=True)}
    controller = Controller(
        {"CH": Thermostat("CH", "28-1", Timeline(min=5, max=25), FakeSensor(18.0))},
        {"CH": Pin("CH", 23, FakeGpio("CH", writes))},
        weather=agents,
        valve_return=0,
    )
    location = Location(51.5, -0.1)
    await controller.set_location(location)

    assert controller.location == location
    assert agents["good"].location == location
    assert agents["bad"].location is None
    state = await controller.get_serialisable_state()
    assert state["weather"] == {
        "good": {"temperature": 12.5},
        "bad": {"temperature": 12.5},
    }
    assert await controller.get_log("weather", "good") is None
    controller.stop()
