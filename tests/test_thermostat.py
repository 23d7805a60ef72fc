import asyncio

import pytest

from conftest import FakeSensor
from hotpot import timers
from hotpot.core.request import BOOST, Request
from hotpot.core.thermostat import FAILSAFE_TEMPERATURE, NO_RESPONSE_ALARM, Thermostat
from hotpot.core.timeline import Timeline
from hotpot.errors import SensorError
from hotpot.hardware import BaseSensor
from hotpot.time_utils import ONE_DAY_MS, midnight


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def make_thermostat(clock=None, sensor=None):
    timeline = Timeline(
        min=0,
        max=50,
        period=ONE_DAY_MS,
        points=[{"time": 0, "value": 10}, {"time": 64800000, "value": 40}],
    )
    # 09:00 today
    clock = clock or Clock(midnight() + 32400000)
    return Thermostat("CH", "28-000000000000", timeline, sensor or FakeSensor(), clock=clock)


def test_target_follows_timeline_without_requests():
    thermostat = make_thermostat()
    assert thermostat.get_target_temperature() == pytest.approx(25)


def test_add_request_replaces_same_source():
    thermostat = make_thermostat()
    now = thermostat.clock()
    thermostat.add_request(Request(source="ui", until=now + 1000, temperature=18))
    thermostat.add_request(Request(source="ui", until=now + 1000, temperature=22))
    assert len(thermostat.requests) == 1
    assert thermostat.requests[0].temperature == 22
    assert thermostat.get_target_temperature() == 22


def test_last_added_request_wins():
    thermostat = make_thermostat()
    now = thermostat.clock()
    thermostat.add_request(Request(source="a", until=now + 1000, temperature=18))
    thermostat.add_request(Request(source="b", until=now + 1000, temperature=12))
    assert thermostat.get_target_temperature() == 12


def test_boost_takes_precedence_until_reached():
    thermostat = make_thermostat()
    now = thermostat.clock()
    thermostat.temperature = 15
    thermostat.add_request(Request(source="A", until=now + 1000, temperature=30))
    thermostat.add_request(Request(source="B", until=BOOST, temperature=20))
    assert thermostat.get_target_temperature() == 20

    # A later numeric request does not displace the boost
    thermostat.add_request(Request(source="C", until=now + 1000, temperature=16))
    assert thermostat.get_target_temperature() == 20

    thermostat.temperature = 20
    thermostat.purge_requests()
    assert [request.source for request in thermostat.requests] == ["A", "C"]
    assert thermostat.get_target_temperature() == 16


def test_off_request_gives_lowest_value():
    thermostat = make_thermostat()
    now = thermostat.clock()
    thermostat.add_request(Request(source="away", until=now + 1000, temperature="off"))
    thermostat.add_request(Request(source="ui", until=now + 1000, temperature=21))
    assert thermostat.get_target_temperature() == 10


def test_expired_request_is_purged():
    thermostat = make_thermostat()
    now = thermostat.clock()
    thermostat.add_request(Request(source="ui", until=now - 1, temperature=45))
    thermostat.purge_requests()
    assert thermostat.requests == []
    assert thermostat.get_target_temperature() == pytest.approx(25)


def test_clear_request_removes_source_only():
    thermostat = make_thermostat()
    now = thermostat.clock()
    thermostat.add_request(Request(source="ui", until=now + 1000, temperature=21))
    thermostat.add_request(Request(source="cal", until=now + 1000, temperature=19))
    thermostat.add_request(Request(source="ui", until="clear", temperature="off"))
    assert [request.source for request in thermostat.requests] == ["cal"]


def test_forced_purge_matches_fields():
    thermostat = make_thermostat()
    now = thermostat.clock()
    thermostat.add_request(Request(source="ui", until=now + 1000, temperature=21))
    thermostat.add_request(Request(source="cal", until=BOOST, temperature=30))
    thermostat.purge_requests({"source": "cal", "temperature": 29}, force=True)
    assert len(thermostat.requests) == 2
    thermostat.purge_requests({"source": "cal", "temperature": 30}, force=True)
    assert [request.source for request in thermostat.requests] == ["ui"]


def test_maximum_includes_requests_but_not_off():
    thermostat = make_thermostat()
    now = thermostat.clock()
    assert thermostat.get_maximum_temperature() == 40
    thermostat.add_request(Request(source="ui", until=BOOST, temperature=45))
    thermostat.add_request(Request(source="away", until=now + 1000, temperature="off"))
    assert thermostat.get_maximum_temperature() == 45


@pytest.mark.asyncio
async def test_poll_updates_temperature_and_reschedules():
    thermostat = make_thermostat(sensor=FakeSensor(17.5))
    await thermostat.poll()
    try:
        assert thermostat.temperature == 17.5
        assert thermostat.last_known_good == thermostat.clock()
        assert thermostat.polling
        assert timers.is_pending(thermostat._poll_timer)
    finally:
        thermostat.stop()
    assert not thermostat.polling


@pytest.mark.asyncio
async def test_alert_raised_once_per_silence():
    clock = Clock(1000000)
    sensor = FakeSensor(SensorError("a"), SensorError("b"), SensorError("c"), 19.0, SensorError("d"))
    thermostat = make_thermostat(clock=clock, sensor=sensor)
    thermostat.last_known_good = clock.now
    alerts = []
    thermostat.set_alert_handler(alerts.append)

    try:
        clock.now += NO_RESPONSE_ALARM - 1
        await thermostat.poll()
        assert alerts == []

        clock.now += 1
        await thermostat.poll()
        clock.now += 1000
        await thermostat.poll()
        assert len(alerts) == 1

        # A good reading ends the episode
        await thermostat.poll()
        assert thermostat.temperature == 19.0
        assert not thermostat.alerted

        clock.now += NO_RESPONSE_ALARM
        await thermostat.poll()
        assert len(alerts) == 2
    finally:
        thermostat.stop()


class BlockingSensor(BaseSensor):
    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def initialise_sensor(self):
        return self

    async def get_temperature(self):
        self.started.set()
        await self.release.wait()
        return 21.0


@pytest.mark.asyncio
async def test_stop_during_sample_prevents_reschedule():
    sensor = BlockingSensor()
    thermostat = make_thermostat(sensor=sensor)
    task = asyncio.ensure_future(thermostat.poll())
    await sensor.started.wait()

    thermostat.stop()
    sensor.release.set()
    await task

    assert thermostat.temperature == 21.0
    assert thermostat._poll_timer is None
    assert not thermostat.polling
    # A second stop is harmless
    thermostat.stop()


@pytest.mark.asyncio
async def test_initialise_survives_sensor_failure(sensor_error):
    thermostat = make_thermostat(sensor=FakeSensor(sensor_error))
    await thermostat.initialise()
    # Reads as too hot for any target, so the service stays off
    assert thermostat.temperature == FAILSAFE_TEMPERATURE
    assert thermostat.temperature > thermostat.get_maximum_temperature()


@pytest.mark.asyncio
async def test_serialisable_state():
    thermostat = make_thermostat(sensor=FakeSensor(18.0))
    await thermostat.initialise()
    thermostat.add_request(Request(source="ui", until=BOOST, temperature=30))
    state = await thermostat.get_serialisable_state()
    assert state["temperature"] == 18.0
    assert state["target"] == 30
    assert state["requests"] == [{"source": "ui", "until": "boost", "temperature": 30.0}]
    assert await thermostat.get_serialisable_log() is None


@pytest.mark.asyncio
async def test_stop_after_timer_fired_prevents_reschedule():
    sensor = FakeSensor(19.0)
    thermostat = make_thermostat(sensor=sensor)
    # The poll timer and stop() run in the same loop iteration, so the poll
    # task only starts once stop() has returned
    thermostat._poll_timer = timers.start_timer("pollCH", thermostat.poll, 0)
    asyncio.get_running_loop().call_later(0, thermostat.stop)
    await asyncio.sleep(0.05)

    assert thermostat._poll_timer is None
    assert not thermostat.polling
    assert sensor.reads == 0
    assert not any(timer_id.startswith("pollCH") for timer_id in timers._TIMERS)


@pytest.mark.asyncio
async def test_initialise_restarts_a_stopped_thermostat():
    thermostat = make_thermostat(sensor=FakeSensor(18.0, 18.5))
    thermostat.stop()
    await thermostat.poll()
    assert thermostat.temperature == 0.0

    await thermostat.initialise()
    await thermostat.poll()
    try:
        assert thermostat.temperature == 18.5
        assert thermostat.polling
    finally:
        thermostat.stop()
