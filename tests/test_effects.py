import math

import numpy as np
import pytest

from deckmix.effects import EffectRegistry, FilterSweep, create_echo, create_reverb
from deckmix.graph.buffer import AudioBuffer
from deckmix.graph.nodes import ConvolverNode, DelayNode, GainNode

from .conftest import SAMPLE_RATE


def test_echo_wires_delay_into_feedback_loop(engine):
    unit = create_echo(engine)
    assert isinstance(unit.node, DelayNode)
    assert unit.input is unit.node
    assert unit.output is unit.node
    assert unit.node.delay_time.value == pytest.approx(0.5)

    feedback = unit.node.inputs[0]
    assert isinstance(feedback, GainNode)
    assert feedback.gain.value == pytest.approx(0.4)
    assert unit.node in feedback.inputs


def test_echo_repeats_decay_by_feedback(engine):
    engine.resume()
    unit = create_echo(engine)
    unit.output.connect(engine.destination)

    impulse = np.zeros(100, dtype=np.float32)
    impulse[0] = 1.0
    source = engine.create_buffer_source(AudioBuffer(impulse, SAMPLE_RATE))
    source.connect(unit.input)
    source.start(0)

    out = engine.render(int(1.6 * SAMPLE_RATE))
    half = SAMPLE_RATE // 2
    assert out[0, half] == pytest.approx(1.0)
    assert out[0, 2 * half] == pytest.approx(0.4)
    assert out[0, 3 * half] == pytest.approx(0.16)
    assert out[0, :half].max() == 0.0


def test_echo_rejects_unstable_feedback(engine):
    with pytest.raises(ValueError):
        create_echo(engine, feedback_gain=1.0)


def test_reverb_impulse_shape_and_envelope(engine):
    unit = create_reverb(engine, rng=np.random.default_rng(7))
    assert isinstance(unit.node, ConvolverNode)
    assert unit.input is unit.output is unit.node

    impulse = unit.node.buffer
    length = 2 * SAMPLE_RATE
    assert impulse.number_of_channels == 2
    assert impulse.length == length

    envelope = (1.0 - np.arange(length) / length) ** 2
    assert np.all(np.abs(impulse.samples) <= envelope + 1e-6)
    # Channels are drawn independently
    assert not np.allclose(impulse.samples[0], impulse.samples[1])


class RecordingBehaviour:
    def __init__(self):
        self.calls = []

    def engage(self, deck, now):
        self.calls.append(("engage", deck.deck_id, now))

    def release(self, deck, now):
        self.calls.append(("release", deck.deck_id, now))


def test_registry_falls_back_to_filter_sweep():
    registry = EffectRegistry()
    assert isinstance(registry.resolve("filter"), FilterSweep)
    assert registry.resolve("reverb") is registry.default
    assert registry.resolve("anything") is registry.default


def test_registry_uses_registered_behaviour(console):
    behaviour = RecordingBehaviour()
    console.session.effects.register("echo", behaviour)
    deck = console.deck("A")
    deck.toggle_effect("echo")
    deck.toggle_effect("echo")
    assert [call[0] for call in behaviour.calls] == ["engage", "release"]
    assert "echo" in console.session.effects.kinds()


def test_filter_sweep_engage_and_release(console):
    deck = console.deck("A")
    assert deck.toggle_effect("reverb") is True
    assert deck.filter.type == "highpass"
    frequency = deck.filter.frequency
    assert frequency.value_at(0.0) == pytest.approx(100.0)
    assert frequency.value_at(1.0) == pytest.approx(math.sqrt(100.0 * 3000.0), rel=1e-6)
    assert frequency.value_at(2.0) == pytest.approx(3000.0)

    assert deck.toggle_effect("reverb") is False
    assert deck.filter.type == "allpass"
    assert frequency.value_at(5.0) == pytest.approx(0.0)
    assert all(event.time <= 0.0 for event in frequency.scheduled_events)
