# deckmix/effects.py
# Effect subgraph constructors and the effect-kind registry used by decks

from dataclasses import dataclass
from typing import Dict, Optional, Protocol
import logging

import numpy as np

from . import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EffectUnit:
    """An effect subgraph: where to connect in, where to take out, and the node to tweak"""
    input: object
    output: object
    node: object


def create_echo(engine, delay_seconds: float = config.ECHO_DELAY_SECONDS,
                feedback_gain: float = config.ECHO_FEEDBACK) -> EffectUnit:
    """Delay line with a feedback loop; decays because feedback_gain < 1"""
    if not 0.0 <= feedback_gain < 1.0:
        raise ValueError(f"Echo feedback must be in [0, 1), got {feedback_gain}")
    delay = engine.create_delay(max_delay_time=max(1.0, delay_seconds))
    delay.delay_time.value = delay_seconds
    feedback = engine.create_gain()
    feedback.gain.value = feedback_gain
    delay.connect(feedback)
    feedback.connect(delay)
    logger.debug(f"Effects: echo built ({delay_seconds:.2f}s, feedback {feedback_gain:.2f})")
    return EffectUnit(input=delay, output=delay, node=delay)


def create_reverb(engine, seconds: float = config.REVERB_SECONDS, rng=None) -> EffectUnit:
    """
    Convolution reverb against synthetic decaying noise.

    Each channel is drawn independently, so the stereo image is uncorrelated.
    It is a cheap approximation, not a physically modelled room.
    """
    rng = rng if rng is not None else np.random.default_rng()
    length = int(engine.sample_rate * seconds)
    envelope = (1.0 - np.arange(length) / length) ** 2
    impulse = rng.uniform(-1.0, 1.0, size=(config.REVERB_CHANNELS, length)) * envelope
    convolver = engine.create_convolver()
    convolver.buffer = engine.create_buffer(impulse)
    logger.debug(f"Effects: reverb built ({seconds:.1f}s impulse, {length} frames)")
    return EffectUnit(input=convolver, output=convolver, node=convolver)


class EffectBehaviour(Protocol):
    """What a deck does to its filter when an effect is engaged or released"""

    def engage(self, deck, now: float) -> None:
        ...

    def release(self, deck, now: float) -> None:
        ...


class FilterSweep:
    """High-pass sweep up on engage, neutral all-pass on release"""

    def __init__(self, start_hz: float = config.SWEEP_START_HZ, end_hz: float = config.SWEEP_END_HZ,
                 seconds: float = config.SWEEP_SECONDS):
        self.start_hz = start_hz
        self.end_hz = end_hz
        self.seconds = seconds

    def engage(self, deck, now: float) -> None:
        deck.filter.type = "highpass"
        deck.filter.frequency.set_value_at_time(self.start_hz, now)
        deck.filter.frequency.exponential_ramp_to_value_at_time(self.end_hz, now + self.seconds)

    def release(self, deck, now: float) -> None:
        deck.filter.frequency.cancel_scheduled_values(now)
        deck.filter.frequency.set_value_at_time(0.0, now)
        deck.filter.type = "allpass"


class EffectRegistry:
    """
    Maps effect kinds ("filter", "echo", "reverb"...) to a behaviour.
    Unknown kinds resolve to the default behaviour, which today is the
    filter sweep for every kind.
    """

    def __init__(self, default: Optional[EffectBehaviour] = None):
        self.default = default if default is not None else FilterSweep()
        self._behaviours: Dict[str, EffectBehaviour] = {"filter": self.default}

    def register(self, kind: str, behaviour: EffectBehaviour) -> None:
        self._behaviours[kind] = behaviour
        logger.debug(f"EffectRegistry: registered '{kind}' -> {type(behaviour).__name__}")

    def resolve(self, kind: str) -> EffectBehaviour:
        behaviour = self._behaviours.get(kind)
        if behaviour is None:
            logger.debug(f"EffectRegistry: no behaviour for '{kind}', using {type(self.default).__name__}")
            return self.default
        return behaviour

    def kinds(self):
        return tuple(self._behaviours)
