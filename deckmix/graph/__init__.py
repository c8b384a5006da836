"""Block-based audio graph: nodes, parameter automation, clock and output stream."""

from .buffer import AudioBuffer
from .clock import AudioClock
from .engine import AudioGraphEngine, EngineState
from .nodes import (
    AnalyserNode,
    AudioBufferSourceNode,
    AudioDestinationNode,
    AudioNode,
    BiquadFilterNode,
    ConvolverNode,
    DelayNode,
    GainNode,
)
from .params import AudioParam, AutomationType

__all__ = [
    "AnalyserNode",
    "AudioBuffer",
    "AudioBufferSourceNode",
    "AudioClock",
    "AudioDestinationNode",
    "AudioGraphEngine",
    "AudioNode",
    "AudioParam",
    "AutomationType",
    "BiquadFilterNode",
    "ConvolverNode",
    "DelayNode",
    "EngineState",
    "GainNode",
]
