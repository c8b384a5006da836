import math

import numpy as np
import pytest

from deckmix.graph.clock import AudioClock
from deckmix.graph.params import AudioParam


def make_param(default=1.0, **kwargs):
    clock = AudioClock(1000)
    clock.start()
    return AudioParam("test", default, clock, **kwargs), clock


def test_default_value_without_events():
    param, _ = make_param(0.7)
    assert param.value == pytest.approx(0.7)
    assert param.value_at(123.0) == pytest.approx(0.7)


def test_set_value_takes_effect_at_its_time():
    param, _ = make_param(1.0)
    param.set_value_at_time(0.25, 2.0)
    assert param.value_at(1.999) == pytest.approx(1.0)
    assert param.value_at(2.0) == pytest.approx(0.25)


def test_linear_ramp_interpolates_from_previous_event():
    param, _ = make_param()
    param.set_value_at_time(0.0, 1.0)
    param.linear_ramp_to_value_at_time(1.0, 3.0)
    assert param.value_at(1.0) == pytest.approx(0.0)
    assert param.value_at(2.0) == pytest.approx(0.5)
    assert param.value_at(3.0) == pytest.approx(1.0)
    assert param.value_at(10.0) == pytest.approx(1.0)


def test_exponential_ramp_is_geometric():
    param, _ = make_param()
    param.set_value_at_time(100.0, 0.0)
    param.exponential_ramp_to_value_at_time(3000.0, 2.0)
    assert param.value_at(1.0) == pytest.approx(math.sqrt(100.0 * 3000.0), rel=1e-6)
    assert param.value_at(2.0) == pytest.approx(3000.0)


def test_exponential_ramp_to_zero_is_rejected():
    param, _ = make_param()
    with pytest.raises(ValueError):
        param.exponential_ramp_to_value_at_time(0.0, 1.0)


def test_negative_times_are_rejected():
    param, _ = make_param()
    with pytest.raises(ValueError):
        param.set_value_at_time(1.0, -0.1)
    with pytest.raises(ValueError):
        param.set_target_at_time(1.0, 0.0, -1.0)


def test_first_ramp_starts_from_current_time_and_value():
    param, clock = make_param(1.0)
    clock.advance_seconds(2.0)
    param.linear_ramp_to_value_at_time(0.0, 4.0)
    assert param.value_at(2.0) == pytest.approx(1.0)
    assert param.value_at(3.0) == pytest.approx(0.5)
    assert param.value_at(4.0) == pytest.approx(0.0)


def test_set_target_approaches_exponentially():
    param, _ = make_param(0.0)
    param.set_target_at_time(1.0, 0.0, 0.1)
    assert param.value_at(0.0) == pytest.approx(0.0)
    assert param.value_at(0.1) == pytest.approx(1.0 - math.exp(-1.0))
    assert param.value_at(0.5) == pytest.approx(1.0 - math.exp(-5.0))


def test_set_target_starts_from_value_in_effect():
    param, _ = make_param(0.0)
    param.set_value_at_time(0.0, 0.0)
    param.linear_ramp_to_value_at_time(1.0, 1.0)
    param.set_target_at_time(0.0, 2.0, 0.5)
    assert param.value_at(2.0) == pytest.approx(1.0)
    assert param.value_at(2.5) == pytest.approx(math.exp(-1.0))


def test_cancel_scheduled_values_drops_events_at_or_after_time():
    param, _ = make_param()
    param.set_value_at_time(0.5, 1.0)
    param.linear_ramp_to_value_at_time(0.0, 3.0)
    param.set_value_at_time(0.9, 4.0)
    param.cancel_scheduled_values(3.0)
    assert [e.time for e in param.scheduled_events] == [1.0]
    assert param.value_at(5.0) == pytest.approx(0.5)


def test_value_setter_schedules_at_clock_time():
    param, clock = make_param(1.0)
    clock.advance_seconds(1.5)
    param.value = 0.2
    assert param.scheduled_events[0].time == pytest.approx(1.5)
    assert param.value == pytest.approx(0.2)


def test_values_for_block_follows_the_curve():
    param, _ = make_param()
    param.set_value_at_time(0.0, 0.0)
    param.linear_ramp_to_value_at_time(1.0, 1.0)
    values = param.values_for_block(0.0, 1000, 1000)
    assert values.dtype == np.float32
    assert values.shape == (1000,)
    assert values[500] == pytest.approx(0.5, abs=1e-6)
    assert np.all(np.diff(values) >= 0)


def test_values_are_clamped_to_range():
    param, _ = make_param(0.0, min_value=0.0, max_value=10.0)
    param.set_value_at_time(50.0, 0.0)
    assert param.value_at(1.0) == pytest.approx(10.0)


def test_compact_keeps_the_curve():
    param, _ = make_param()
    param.set_value_at_time(0.2, 0.0)
    param.set_value_at_time(0.4, 1.0)
    param.set_value_at_time(0.6, 2.0)
    param.linear_ramp_to_value_at_time(1.0, 4.0)
    before = [param.value_at(t) for t in (2.0, 3.0, 4.0)]
    param.compact(2.5)
    assert len(param.scheduled_events) == 2
    assert [param.value_at(t) for t in (2.0, 3.0, 4.0)] == pytest.approx(before)
