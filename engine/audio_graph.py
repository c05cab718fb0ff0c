"""Block-based audio node graph.

A small sample-synchronous node graph with time-stamped parameter
automation: oscillators, gains, a delay line usable inside feedback loops,
biquad filters and a partitioned convolver. Rendering pulls signal from the
destination one block (128 frames) at a time. Delay nodes break cycles: their
output for a block is read from history before their inputs are pulled, so a
delay inside a feedback loop is never shorter than one block.

Signals are float64 arrays of shape (channels, frames); ``None`` stands for
a silent block.

Both the realtime (sound device) and offline (buffer) backends subclass
AudioGraph, so engine wiring is written once against this module.
"""

import bisect
import logging
import math
import threading
import weakref
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Literal, Optional, Union

import numpy as np
from scipy.signal import fftconvolve, lfilter

from engine.exceptions import InvalidNodeStateError, NodeConnectionError

logger = logging.getLogger(__name__)

BLOCK_SIZE = 128

OscillatorType = Literal["sine", "square", "sawtooth", "triangle"]
FilterType = Literal["lowpass", "bandpass", "highpass"]

_PENDING = object()


def mix_signals(signals) -> Optional[np.ndarray]:
    """Sum signals, up-mixing mono to the widest channel count."""
    acc = None
    for signal in signals:
        if signal is None:
            continue
        acc = signal if acc is None else acc + signal
    return acc


# ---------------------------------------------------------------------------
# Parameter automation
# ---------------------------------------------------------------------------


@dataclass
class _AutomationEvent:
    time: float
    kind: str  # "set", "linear" or "target"
    value: float
    time_constant: float = 0.0


class ParamTimeline:
    """Automation events for one parameter.

    Events follow the usual audio-param semantics: ``set`` jumps at its time,
    ``linear`` ramps from the previous event's value to its own value ending
    at its time, ``target`` approaches its value exponentially from its time
    on. Events with equal times keep insertion order.
    """

    SET = "set"
    LINEAR = "linear"
    TARGET = "target"

    def __init__(self, default_value: float):
        self.default_value = float(default_value)
        self._events: List[_AutomationEvent] = []
        self._times: List[float] = []

    def __len__(self) -> int:
        return len(self._events)

    def _insert(self, event: _AutomationEvent) -> None:
        if not math.isfinite(event.time) or event.time < 0:
            raise ValueError(f"Invalid automation time: {event.time}")
        index = bisect.bisect_right(self._times, event.time)
        self._times.insert(index, event.time)
        self._events.insert(index, event)

    def set_value_at_time(self, value: float, time: float) -> None:
        self._insert(_AutomationEvent(float(time), self.SET, float(value)))

    def linear_ramp_to_value_at_time(self, value: float, time: float) -> None:
        self._insert(_AutomationEvent(float(time), self.LINEAR, float(value)))

    def set_target_at_time(self, target: float, time: float, time_constant: float) -> None:
        if time_constant < 0:
            raise ValueError(f"Invalid time constant: {time_constant}")
        self._insert(
            _AutomationEvent(float(time), self.TARGET, float(target), float(time_constant))
        )

    def cancel_scheduled_values(self, start_time: float) -> None:
        """Remove all events at or after start_time."""
        index = bisect.bisect_left(self._times, start_time)
        del self._times[index:]
        del self._events[index:]

    def _anchors(self) -> List[float]:
        """Value in effect at each event's time."""
        anchors: List[float] = []
        for k, event in enumerate(self._events):
            if event.kind != self.TARGET:
                anchors.append(event.value)
            elif k == 0:
                anchors.append(self.default_value)
            else:
                anchors.append(self._hold_value(k - 1, anchors[k - 1], event.time))
        return anchors

    def _hold_value(self, k: int, anchor: float, time):
        """Value after event k when the next event is not a ramp."""
        event = self._events[k]
        if event.kind != self.TARGET:
            return event.value
        if event.time_constant <= 0:
            return event.value
        return event.value + (anchor - event.value) * np.exp(
            -(time - event.time) / event.time_constant
        )

    def _segment(self, k: int, anchors: List[float], times):
        """Evaluate the segment following event k (k = -1: before all events)."""
        nxt = k + 1
        if nxt < len(self._events) and self._events[nxt].kind == self.LINEAR:
            t0 = self._events[k].time if k >= 0 else 0.0
            v0 = anchors[k] if k >= 0 else self.default_value
            t1 = self._events[nxt].time
            v1 = self._events[nxt].value
            if t1 <= t0:
                return v1 + 0.0 * np.asarray(times)
            return v0 + (v1 - v0) * (np.asarray(times) - t0) / (t1 - t0)

        if k < 0:
            return self.default_value + 0.0 * np.asarray(times)
        return self._hold_value(k, anchors[k], np.asarray(times)) + 0.0 * np.asarray(times)

    def value_at(self, time: float) -> float:
        if not self._events:
            return self.default_value
        anchors = self._anchors()
        k = bisect.bisect_right(self._times, time) - 1
        return float(self._segment(k, anchors, time))

    def values(self, start_time: float, frames: int, sample_rate: int) -> np.ndarray:
        """Per-sample values for a block starting at start_time."""
        if not self._events:
            return np.full(frames, self.default_value)

        times = start_time + np.arange(frames) / sample_rate
        end_time = times[-1]
        first_k = bisect.bisect_right(self._times, start_time) - 1
        last_k = bisect.bisect_right(self._times, end_time) - 1

        anchors = self._anchors()
        if first_k == last_k:
            return np.asarray(self._segment(first_k, anchors, times), dtype=np.float64)

        out = np.empty(frames)
        indices = np.searchsorted(np.asarray(self._times), times, side="right") - 1
        for k in range(first_k, last_k + 1):
            mask = indices == k
            if mask.any():
                out[mask] = self._segment(k, anchors, times[mask])
        return out

    def prune(self, before_time: float) -> None:
        """Drop events that no longer influence values at or after before_time."""
        m = bisect.bisect_right(self._times, before_time) - 1
        if m < 1:
            return
        anchors = self._anchors()
        self.default_value = float(anchors[m])
        del self._times[:m]
        del self._events[:m]


class AudioParam:
    """Automatable node parameter, optionally driven by connected nodes."""

    def __init__(
        self,
        node: "AudioNode",
        name: str,
        default_value: float,
        min_value: float = -math.inf,
        max_value: float = math.inf,
        a_rate: bool = True,
    ):
        self.node = node
        self.graph = node.graph
        self.name = name
        self.min_value = min_value
        self.max_value = max_value
        self.a_rate = a_rate
        self.timeline = ParamTimeline(default_value)
        self._inputs: List["AudioNode"] = []

    @property
    def value(self) -> float:
        """Current intrinsic value at the graph clock."""
        with self.graph.lock:
            return self.timeline.value_at(self.graph.current_time)

    @value.setter
    def value(self, v: float) -> None:
        with self.graph.lock:
            if len(self.timeline) == 0:
                self.timeline.default_value = float(v)
            else:
                self.timeline.set_value_at_time(v, self.graph.current_time)

    def set_value_at_time(self, value: float, time: float) -> "AudioParam":
        with self.graph.lock:
            self.timeline.set_value_at_time(value, time)
        return self

    def linear_ramp_to_value_at_time(self, value: float, time: float) -> "AudioParam":
        with self.graph.lock:
            self.timeline.linear_ramp_to_value_at_time(value, time)
        return self

    def set_target_at_time(self, target: float, time: float, time_constant: float) -> "AudioParam":
        with self.graph.lock:
            self.timeline.set_target_at_time(target, time, time_constant)
        return self

    def cancel_scheduled_values(self, start_time: float) -> "AudioParam":
        with self.graph.lock:
            self.timeline.cancel_scheduled_values(start_time)
        return self

    def _block_values(self, start_frame: int, frames: int) -> np.ndarray:
        start_time = start_frame / self.graph.sample_rate
        if len(self.timeline) > 8:
            self.timeline.prune(start_time)

        values = self.timeline.values(start_time, frames, self.graph.sample_rate)
        for source in self._inputs:
            signal = self.graph._pull(source)
            if signal is not None:
                # Modulation inputs are mixed down to mono
                values = values + signal.mean(axis=0)
        return np.clip(values, self.min_value, self.max_value)

    def _block_value(self, start_frame: int) -> float:
        """Control-rate value for a whole block."""
        start_time = start_frame / self.graph.sample_rate
        if len(self.timeline) > 8:
            self.timeline.prune(start_time)
        value = self.timeline.value_at(start_time)
        return float(min(max(value, self.min_value), self.max_value))


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


class AudioNode(ABC):
    """Base class for graph nodes."""

    def __init__(self, graph: "AudioGraph"):
        self.graph = graph
        self._inputs: List["AudioNode"] = []
        self._outputs: List[Union["AudioNode", AudioParam]] = []

    def connect(self, destination: Union["AudioNode", AudioParam]):
        """Route this node's output into a node or a parameter.

        Returns:
            The destination, for chaining
        """
        if destination.graph is not self.graph:
            raise NodeConnectionError("Cannot connect nodes from different graphs")

        with self.graph.lock:
            if destination not in self._outputs:
                self._outputs.append(destination)
                destination._inputs.append(self)
        return destination

    def disconnect(self, destination: Optional[Union["AudioNode", AudioParam]] = None) -> None:
        """Remove outgoing connections (all of them when no destination given).

        Raises:
            NodeConnectionError: If destination is not connected to this node
        """
        with self.graph.lock:
            if destination is None:
                targets = list(self._outputs)
            elif destination in self._outputs:
                targets = [destination]
            else:
                raise NodeConnectionError(f"{type(self).__name__} is not connected to destination")

            for target in targets:
                self._outputs.remove(target)
                target._inputs.remove(self)

    @property
    def is_connected(self) -> bool:
        return bool(self._inputs or self._outputs)

    @property
    def outputs(self) -> list:
        return list(self._outputs)

    @property
    def inputs(self) -> list:
        return list(self._inputs)

    def _mix_inputs(self) -> Optional[np.ndarray]:
        return mix_signals(self.graph._pull(source) for source in list(self._inputs))

    @abstractmethod
    def _process(self, start_frame: int, frames: int) -> Optional[np.ndarray]:
        """Produce this node's output for one block."""
        raise NotImplementedError


class GainNode(AudioNode):
    """Multiplies its input by an automatable gain."""

    def __init__(self, graph: "AudioGraph", gain: float = 1.0):
        super().__init__(graph)
        self.gain = AudioParam(self, "gain", gain)

    def _process(self, start_frame: int, frames: int) -> Optional[np.ndarray]:
        signal = self._mix_inputs()
        if signal is None:
            return None

        if len(self.gain.timeline) == 0 and not self.gain._inputs:
            return signal * self.gain.timeline.default_value
        return signal * self.gain._block_values(start_frame, frames)[np.newaxis, :]


class OscillatorNode(AudioNode):
    """Periodic source with an automatable (and modulatable) frequency."""

    def __init__(self, graph: "AudioGraph", type: OscillatorType = "sine", frequency: float = 440.0):
        super().__init__(graph)
        self.type = type
        nyquist = graph.sample_rate / 2
        self.frequency = AudioParam(self, "frequency", frequency, -nyquist, nyquist)
        self._start_time: Optional[float] = None
        self._stop_time = math.inf
        self._phase = 0.0
        self.finished = False

    def start(self, when: float = 0.0) -> None:
        if self._start_time is not None:
            raise InvalidNodeStateError("Oscillator already started")
        self._start_time = max(0.0, float(when))

    def stop(self, when: Optional[float] = None) -> None:
        if self._start_time is None:
            raise InvalidNodeStateError("Oscillator stopped before start")
        self._stop_time = self.graph.current_time if when is None else max(0.0, float(when))

    def _waveform(self, phase: np.ndarray) -> np.ndarray:
        if self.type == "sine":
            return np.sin(phase)
        cycle = (phase / (2 * np.pi)) % 1.0
        if self.type == "square":
            return np.where(cycle < 0.5, 1.0, -1.0)
        if self.type == "sawtooth":
            return 2.0 * cycle - 1.0
        return 1.0 - 4.0 * np.abs(cycle - 0.5)

    def _process(self, start_frame: int, frames: int) -> Optional[np.ndarray]:
        if self._start_time is None or self.finished:
            return None

        sample_rate = self.graph.sample_rate
        start_sample = int(math.ceil(self._start_time * sample_rate))
        stop_sample = (
            int(math.ceil(self._stop_time * sample_rate))
            if math.isfinite(self._stop_time)
            else None
        )

        if stop_sample is not None and start_frame >= stop_sample:
            self.finished = True
            return None
        if start_frame + frames <= start_sample:
            return None

        frame_index = start_frame + np.arange(frames)
        active = frame_index >= start_sample
        if stop_sample is not None:
            active &= frame_index < stop_sample

        increments = 2 * np.pi * self.frequency._block_values(start_frame, frames) / sample_rate
        increments = np.where(active, increments, 0.0)
        phase = self._phase + np.cumsum(increments) - increments
        self._phase = float((phase[-1] + increments[-1]) % (2 * np.pi))

        return (self._waveform(phase) * active)[np.newaxis, :]


class DelayNode(AudioNode):
    """Variable delay line, safe to use inside a feedback loop."""

    def __init__(self, graph: "AudioGraph", max_delay_time: float = 1.0, delay_time: float = 0.0):
        super().__init__(graph)
        self.max_delay_time = float(max_delay_time)
        self.delay_time = AudioParam(self, "delayTime", delay_time, 0.0, self.max_delay_time, a_rate=False)
        self._size = int(math.ceil(self.max_delay_time * graph.sample_rate)) + 2 * graph.block_size + 2
        self._buffer = np.zeros((1, self._size))
        self._last_signal_frame: Optional[int] = None
        graph._register_delay(self)

    def _delay_samples(self, start_frame: int) -> float:
        seconds = self.delay_time._block_value(start_frame)
        # One block plus one sample is the shortest delay a feedback cycle allows
        minimum = self.graph.block_size + 1
        return min(max(seconds * self.graph.sample_rate, minimum), self._size - self.graph.block_size - 2)

    def _process(self, start_frame: int, frames: int) -> Optional[np.ndarray]:
        delay = self._delay_samples(start_frame)
        if self._last_signal_frame is None or start_frame - self._last_signal_frame > delay + frames:
            return None

        position = start_frame + np.arange(frames) - delay
        index0 = np.floor(position).astype(np.int64)
        fraction = position - index0
        i0 = index0 % self._size
        i1 = (index0 + 1) % self._size
        out = self._buffer[:, i0] * (1.0 - fraction) + self._buffer[:, i1] * fraction
        # Frames before the first write read as silence
        out[:, index0 < 0] = 0.0
        return out

    def _write_block(self, start_frame: int, frames: int) -> None:
        signal = self._mix_inputs()
        positions = (start_frame + np.arange(frames)) % self._size

        if signal is None:
            self._buffer[:, positions] = 0.0
            return

        if signal.shape[0] > self._buffer.shape[0]:
            self._buffer = np.repeat(self._buffer, signal.shape[0], axis=0)
        self._buffer[:, positions] = signal
        if np.any(signal):
            self._last_signal_frame = start_frame + frames


class BiquadFilterNode(AudioNode):
    """Second-order IIR filter (lowpass, bandpass or highpass)."""

    TYPES = ("lowpass", "bandpass", "highpass")

    def __init__(
        self,
        graph: "AudioGraph",
        type: FilterType = "lowpass",
        frequency: float = 350.0,
        q: float = 1.0,
    ):
        super().__init__(graph)
        self.type = type
        nyquist = graph.sample_rate / 2
        self.frequency = AudioParam(self, "frequency", frequency, 0.0, nyquist, a_rate=False)
        self.Q = AudioParam(self, "Q", q, 1e-4, 1000.0, a_rate=False)
        self._state: Optional[np.ndarray] = None
        self._idle = True

    @property
    def type(self) -> str:
        return self._type

    @type.setter
    def type(self, value: str) -> None:
        if value not in self.TYPES:
            raise ValueError(f"Invalid filter type: {value} (must be one of {self.TYPES})")
        self._type = value

    def coefficients(self, frequency: float, q: float):
        """Normalized (b, a) coefficients for the current type."""
        nyquist = self.graph.sample_rate / 2
        frequency = min(max(frequency, 1.0), nyquist * 0.999)
        w0 = 2 * math.pi * frequency / self.graph.sample_rate
        cos_w0 = math.cos(w0)
        alpha = math.sin(w0) / (2 * max(q, 1e-4))

        if self._type == "lowpass":
            b = [(1 - cos_w0) / 2, 1 - cos_w0, (1 - cos_w0) / 2]
        elif self._type == "highpass":
            b = [(1 + cos_w0) / 2, -(1 + cos_w0), (1 + cos_w0) / 2]
        else:
            b = [alpha, 0.0, -alpha]
        a = [1 + alpha, -2 * cos_w0, 1 - alpha]

        return np.array(b) / a[0], np.array(a) / a[0]

    def _process(self, start_frame: int, frames: int) -> Optional[np.ndarray]:
        signal = self._mix_inputs()
        if signal is None:
            if self._idle:
                return None
            signal = np.zeros((self._state.shape[0], frames))

        channels = signal.shape[0]
        if self._state is None:
            self._state = np.zeros((channels, 2))
        elif self._state.shape[0] < channels:
            self._state = np.repeat(self._state[:1], channels, axis=0)
        elif self._state.shape[0] > channels:
            signal = np.repeat(signal[:1], self._state.shape[0], axis=0)

        b, a = self.coefficients(
            self.frequency._block_value(start_frame), self.Q._block_value(start_frame)
        )
        out, self._state = lfilter(b, a, signal, axis=-1, zi=self._state)

        self._idle = not np.any(signal) and np.max(np.abs(self._state)) < 1e-10
        if self._idle:
            self._state[:] = 0.0
        return out


class _ConvolutionStage:
    """Overlap-add convolution of one impulse segment with a carried tail.

    Input is gathered into chunks of ``partition`` frames; each full chunk is
    convolved with the segment and added into the output carry at the
    segment's ``offset``. With ``offset >= partition - block`` the result
    lands no earlier than the next emitted block, so the stage adds no
    latency. ``phase`` pre-fills the first chunk with silence so that stages
    of different sizes do not all run their FFTs in the same block.
    """

    def __init__(self, kernel: np.ndarray, partition: int, offset: int, phase: int = 0):
        self.kernel = kernel
        self.partition = partition
        self.offset = offset
        self.phase = phase
        self._chunk = np.zeros((kernel.shape[0], partition))
        self._filled = phase
        self._carry = np.zeros((kernel.shape[0], 0))
        self._read = 0

    def reset(self) -> None:
        self._chunk[:] = 0.0
        self._filled = self.phase
        self._carry = np.zeros((self.kernel.shape[0], 0))
        self._read = 0

    def process(self, block: np.ndarray) -> np.ndarray:
        frames = block.shape[1]
        self._chunk[:, self._filled : self._filled + frames] = block
        self._filled += frames

        if self._filled == self.partition:
            self._filled = 0
            if np.any(self._chunk):
                tail = fftconvolve(self._chunk, self.kernel, axes=-1)
                self._accumulate(tail, frames - self.partition + self.offset)

        out = self._carry[:, self._read : self._read + frames]
        self._read += frames
        if out.shape[1] < frames:
            out = np.pad(out, ((0, 0), (0, frames - out.shape[1])))
        return out

    def _accumulate(self, tail: np.ndarray, at: int) -> None:
        carry = self._carry[:, self._read :]
        needed = at + tail.shape[1]
        if carry.shape[1] < needed:
            carry = np.pad(carry, ((0, 0), (0, needed - carry.shape[1])))
        carry[:, at:needed] += tail
        self._carry = carry
        self._read = 0


class ConvolverNode(AudioNode):
    """Zero-latency convolution with a multichannel impulse.

    The impulse is split into segments that grow by ``GROWTH`` (one block,
    then 8, 64, ... blocks). Each segment is convolved by its own
    ``_ConvolutionStage`` whose chunk size equals its offset, so the short
    head answers within the current block while the long tail is convolved
    rarely in large FFTs.
    """

    GAIN_CALIBRATION = 0.00125
    GAIN_CALIBRATION_SAMPLE_RATE = 44100
    MIN_POWER = 0.000125
    GROWTH = 8

    def __init__(self, graph: "AudioGraph", buffer: Optional[np.ndarray] = None, normalize: bool = True):
        super().__init__(graph)
        self.normalize = normalize
        self._buffer: Optional[np.ndarray] = None
        self._stages: List[_ConvolutionStage] = []
        if buffer is not None:
            self.buffer = buffer

    @property
    def buffer(self) -> Optional[np.ndarray]:
        return self._buffer

    @buffer.setter
    def buffer(self, impulse: np.ndarray) -> None:
        impulse = np.atleast_2d(np.asarray(impulse, dtype=np.float64))
        if impulse.shape[1] == 0:
            raise ValueError("Impulse response is empty")

        scale = self._normalization_scale(impulse) if self.normalize else 1.0
        stages = self._partition(impulse * scale, self.graph.block_size)

        with self.graph.lock:
            self._buffer = impulse
            self._stages = stages
            # Frames of silent input after which every stage has flushed
            self._silence_limit = 2 * (impulse.shape[1] + stages[-1].partition)
            self._silent_frames = self._silence_limit

    @classmethod
    def _partition(cls, impulse: np.ndarray, block: int) -> List[_ConvolutionStage]:
        length = impulse.shape[1]
        head_end = min(length, block * cls.GROWTH)
        stages = [_ConvolutionStage(impulse[:, :head_end], block, 0)]

        start = head_end
        while start < length:
            end = min(length, start * cls.GROWTH)
            stages.append(_ConvolutionStage(impulse[:, start:end], start, start, phase=start // 2))
            start = end
        return stages

    def _normalization_scale(self, impulse: np.ndarray) -> float:
        power = math.sqrt(float(np.sum(impulse**2)) / impulse.size)
        power = max(power, self.MIN_POWER)
        scale = self.GAIN_CALIBRATION / power
        scale *= self.GAIN_CALIBRATION_SAMPLE_RATE / self.graph.sample_rate
        return scale

    def _process(self, start_frame: int, frames: int) -> Optional[np.ndarray]:
        if self._buffer is None:
            return None

        signal = self._mix_inputs()
        if signal is None:
            if self._silent_frames >= self._silence_limit:
                return None
            self._silent_frames += frames
            if self._silent_frames >= self._silence_limit:
                for stage in self._stages:
                    stage.reset()
            signal = np.zeros((1, frames))
        else:
            self._silent_frames = 0

        channels = self._buffer.shape[0]
        if signal.shape[0] != channels:
            signal = np.broadcast_to(signal.mean(axis=0, keepdims=True), (channels, frames))

        out = self._stages[0].process(signal)
        for stage in self._stages[1:]:
            out = out + stage.process(signal)
        return out


class DestinationNode(AudioNode):
    """Final output; up-mixes to the graph's channel count."""

    def _process(self, start_frame: int, frames: int) -> Optional[np.ndarray]:
        signal = self._mix_inputs()
        if signal is None:
            return None
        return np.broadcast_to(signal, (self.graph.channels, frames)).copy()


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


class AudioGraph(ABC):
    """Audio node graph rendered block by block against a sample clock."""

    def __init__(self, sample_rate: int = 44100, channels: int = 2, block_size: int = BLOCK_SIZE):
        """Initialize graph.

        Args:
            sample_rate: Sample rate in Hz
            channels: Output channel count
            block_size: Frames rendered per processing block
        """
        self.sample_rate = int(sample_rate)
        self.channels = channels
        self.block_size = block_size
        self.lock = threading.RLock()
        self.state = "suspended"

        self._frame = 0
        self._cache: dict = {}
        self._delays: "weakref.WeakSet[DelayNode]" = weakref.WeakSet()
        self._pending = np.zeros((channels, 0))

        self.destination = DestinationNode(self)

    @property
    def current_time(self) -> float:
        """Playback clock in seconds (time of the next block to render)."""
        return self._frame / self.sample_rate

    # Node factories

    def create_oscillator(self, type: OscillatorType = "sine", frequency: float = 440.0) -> OscillatorNode:
        return OscillatorNode(self, type=type, frequency=frequency)

    def create_gain(self, gain: float = 1.0) -> GainNode:
        return GainNode(self, gain=gain)

    def create_delay(self, max_delay_time: float = 1.0) -> DelayNode:
        return DelayNode(self, max_delay_time=max_delay_time)

    def create_biquad_filter(
        self, type: FilterType = "lowpass", frequency: float = 350.0, q: float = 1.0
    ) -> BiquadFilterNode:
        return BiquadFilterNode(self, type=type, frequency=frequency, q=q)

    def create_convolver(self, buffer: Optional[np.ndarray] = None, normalize: bool = True) -> ConvolverNode:
        return ConvolverNode(self, buffer=buffer, normalize=normalize)

    def _register_delay(self, node: DelayNode) -> None:
        self._delays.add(node)

    # Rendering

    def _pull(self, node: AudioNode) -> Optional[np.ndarray]:
        key = id(node)
        cached = self._cache.get(key, None)
        if key in self._cache:
            # A pending entry means a cycle without a delay node: silence
            return None if cached is _PENDING else cached

        self._cache[key] = _PENDING
        out = node._process(self._frame, self.block_size)
        self._cache[key] = out
        return out

    def render_block(self) -> np.ndarray:
        """Render one block from the destination and advance the clock."""
        with self.lock:
            self._cache = {}
            out = self._pull(self.destination)
            for delay in list(self._delays):
                if delay._inputs or delay._last_signal_frame is not None:
                    delay._write_block(self._frame, self.block_size)
            self._cache = {}
            self._frame += self.block_size

        if out is None:
            return np.zeros((self.channels, self.block_size))
        return out

    def render_frames(self, frames: int) -> np.ndarray:
        """Render an arbitrary number of frames (shape (channels, frames))."""
        chunks = [self._pending]
        available = self._pending.shape[1]
        while available < frames:
            block = self.render_block()
            chunks.append(block)
            available += block.shape[1]

        audio = np.concatenate(chunks, axis=1)
        self._pending = audio[:, frames:]
        return audio[:, :frames]

    # Backend lifecycle

    @abstractmethod
    async def resume(self) -> None:
        """Acquire or resume the playback clock.

        Raises:
            BackendUnavailableError: If the backend cannot be started
        """
        pass

    @abstractmethod
    async def suspend(self) -> None:
        """Pause the playback clock, keeping resources."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        pass
