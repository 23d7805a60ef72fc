import pytest

from hotpot.core.timeline import Timeline, TimeValue
from hotpot.errors import ConfigurationError, TimelineRangeError
from hotpot.time_utils import ONE_DAY_MS


def make_timeline():
    return Timeline(
        min=0,
        max=50,
        period=ONE_DAY_MS,
        points=[{"time": 0, "value": 10}, {"time": 64800000, "value": 40}],
    )


def test_value_at_knot_is_exact():
    timeline = make_timeline()
    assert timeline.value_at_time(0) == 10
    assert timeline.value_at_time(64800000) == 40


def test_value_between_knots_is_interpolated():
    timeline = make_timeline()
    # 09:00 lies half way between 00:00 and 18:00
    assert timeline.value_at_time(32400000) == pytest.approx(25)
    t = 1000000
    assert timeline.value_at_time(t) == pytest.approx(10 + t * 30 / 64800000)


def test_value_after_last_knot_wraps_to_first():
    timeline = make_timeline()
    # 21:00 is half way from (18:00, 40) to (24:00, 10)
    assert timeline.value_at_time(75600000) == pytest.approx(25)


def test_point_at_zero_is_synthesised():
    timeline = Timeline(min=5, max=25, points=[{"time": "06:00", "value": 20}])
    assert timeline.get_point(0).time == 0
    assert timeline.get_point(0).value == 5
    assert timeline.get_point(1).time == 6 * 60 * 60 * 1000


def test_values_are_clamped():
    timeline = Timeline(min=5, max=25, points=[{"time": 0, "value": 100}])
    assert timeline.get_point(0).value == 25
    assert timeline.set_value(timeline.get_point(0), -3) == 5
    assert timeline.highest_value == 5


def test_bad_bounds_rejected():
    with pytest.raises(ConfigurationError):
        Timeline(min=30, max=10)
    with pytest.raises(ConfigurationError):
        Timeline(points=[{"time": ONE_DAY_MS * 2, "value": 1}])


def test_lookups_outside_period_raise():
    timeline = make_timeline()
    with pytest.raises(TimelineRangeError):
        timeline.value_at_time(-1)
    with pytest.raises(TimelineRangeError):
        timeline.get_point_after(ONE_DAY_MS)


def test_point_before_and_after():
    timeline = make_timeline()
    assert timeline.get_point_before(1000).time == 0
    assert timeline.get_point_after(1000).time == 64800000
    assert timeline.get_point_after(70000000) is None


def test_edits_keep_points_sorted_with_zero_first():
    timeline = make_timeline()
    late = TimeValue(80000000, 20)
    early = TimeValue(3600000, 15)
    timeline.insert(late)
    timeline.insert(early)
    timeline.set_time(late, 1800000)
    timeline.remove(early)

    times = [timeline.get_point(i).time for i in range(timeline.n_points)]
    assert times[0] == 0
    assert times == sorted(times)
    assert timeline.get_index_of(late) == 1


def test_insert_replaces_point_at_same_time():
    timeline = make_timeline()
    timeline.insert(TimeValue(64800000, 30))
    assert timeline.n_points == 2
    assert timeline.value_at_time(64800000) == 30


def test_first_point_cannot_be_removed():
    timeline = make_timeline()
    with pytest.raises(TimelineRangeError):
        timeline.remove(timeline.get_point(0))
    with pytest.raises(TimelineRangeError):
        timeline.remove(TimeValue(5, 5))


def test_insert_outside_period_rejected():
    timeline = make_timeline()
    with pytest.raises(TimelineRangeError):
        timeline.insert(TimeValue(ONE_DAY_MS + 1, 5))
    with pytest.raises(TimelineRangeError):
        timeline.insert(TimeValue(ONE_DAY_MS, 5))
    with pytest.raises(ConfigurationError):
        Timeline(points=[{"time": 0, "value": 1}, {"time": ONE_DAY_MS, "value": 2}])


def test_set_time_to_end_of_period_replaces_midnight_point():
    timeline = make_timeline()
    point = TimeValue(80000000, 20)
    timeline.insert(point)
    timeline.set_time(point, ONE_DAY_MS + 5000)

    assert [(p.time, p.value) for p in timeline.points] == [(0, 20.0), (64800000, 40.0)]
    # The curve still runs back to the value at 00:00
    assert timeline.value_at_time(ONE_DAY_MS - 1) == pytest.approx(20, abs=0.01)


def test_dict_round_trip_keeps_points():
    timeline = make_timeline()
    copy = Timeline.from_dict(timeline.to_dict())
    assert copy.n_points == 2
    assert copy.lowest_value == 10
    assert copy.highest_value == 40
