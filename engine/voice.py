"""Synthesized voices and the bounded voice pool.

A voice is one sounding note: sine carrier with vibrato, an envelope gain and
a tremolo gain, all connected into the effects chain input.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

from engine.audio_graph import AudioGraph, AudioNode, OscillatorNode
from engine.envelope import EnvelopeModel
from engine.exceptions import AudioGraphError
from engine.synth_params import SynthParams

logger = logging.getLogger(__name__)

STOP_PADDING = 0.1  # Oscillators run this long past the envelope end
REAP_GRACE = 0.5


@dataclass
class Voice:
    """One scheduled note and the nodes that play it."""

    pitch_class: int
    midi_note: int
    start_time: float
    end_time: float  # Envelope reaches zero
    oscillators: List[OscillatorNode] = field(default_factory=list)
    nodes: List[AudioNode] = field(default_factory=list)
    released: bool = False

    def release(self, now: Optional[float] = None) -> None:
        """Stop oscillators and disconnect every node.

        Per-node failures are logged and skipped so teardown always finishes.

        Args:
            now: Stop time for oscillators still sounding (None = keep the
                scheduled stop)
        """
        if self.released:
            return
        self.released = True

        for osc in self.oscillators:
            if now is None:
                continue
            try:
                osc.stop(now)
            except AudioGraphError as e:
                logger.debug(f"Oscillator stop failed during release: {e}")

        for node in self.nodes:
            try:
                node.disconnect()
            except AudioGraphError as e:
                logger.debug(f"Node disconnect failed during release: {e}")


def build_voice(
    graph: AudioGraph,
    destination: AudioNode,
    frequency: float,
    start_time: float,
    duration: float,
    params: SynthParams,
    pitch_class: int = 0,
    midi_note: int = 0,
) -> Voice:
    """Create and schedule the node set for one note.

    Args:
        graph: Audio graph to create nodes in
        destination: Node the voice output feeds (effects chain input)
        frequency: Carrier frequency in Hz
        start_time: Onset in graph seconds
        duration: Nominal length in seconds (before release)
        params: Parameter snapshot used for this note
        pitch_class: Pitch class for bookkeeping
        midi_note: MIDI note number for bookkeeping

    Returns:
        Scheduled Voice
    """
    envelope = EnvelopeModel(params.envelope)
    end_time = envelope.end_time(start_time, duration)
    stop_time = end_time + STOP_PADDING

    with graph.lock:
        carrier = graph.create_oscillator("sine", frequency)

        vibrato_lfo = graph.create_oscillator("sine", params.vibrato.rate)
        vibrato_gain = graph.create_gain(frequency * params.vibrato.depth)
        vibrato_lfo.connect(vibrato_gain)
        vibrato_gain.connect(carrier.frequency)

        envelope_gain = graph.create_gain(0.0)
        envelope.apply(envelope_gain.gain, start_time, duration)

        # Intrinsic 1 - depth/2 plus an LFO scaled by depth/2: swings over [1 - depth, 1]
        depth = params.tremolo.depth
        tremolo_gain = graph.create_gain(1.0 - depth / 2)
        tremolo_lfo = graph.create_oscillator("sine", params.tremolo.rate)
        tremolo_depth = graph.create_gain(depth / 2)
        tremolo_lfo.connect(tremolo_depth)
        tremolo_depth.connect(tremolo_gain.gain)

        carrier.connect(envelope_gain)
        envelope_gain.connect(tremolo_gain)
        tremolo_gain.connect(destination)

        oscillators = [carrier, vibrato_lfo, tremolo_lfo]
        for osc in oscillators:
            osc.start(start_time)
            osc.stop(stop_time)

    return Voice(
        pitch_class=pitch_class,
        midi_note=midi_note,
        start_time=start_time,
        end_time=end_time,
        oscillators=oscillators,
        nodes=[carrier, vibrato_lfo, vibrato_gain, envelope_gain, tremolo_gain, tremolo_lfo, tremolo_depth],
    )


class VoicePool:
    """Bounded set of active voices, oldest first."""

    def __init__(self, capacity: int = 32):
        """Initialize voice pool.

        Args:
            capacity: Maximum simultaneous voices
        """
        if capacity < 1:
            raise ValueError(f"Capacity must be >= 1, got {capacity}")

        self.capacity = capacity
        self._voices: deque[Voice] = deque()

    def reap(self, now: float, grace: float = REAP_GRACE) -> int:
        """Release voices that finished more than grace seconds ago.

        Returns:
            Number of voices released
        """
        finished = [v for v in self._voices if v.end_time < now - grace]
        for voice in finished:
            self._voices.remove(voice)
            voice.release()
        return len(finished)

    def add(self, voice: Voice, now: Optional[float] = None) -> Optional[Voice]:
        """Add a voice, evicting the oldest when full.

        Args:
            voice: Newly scheduled voice
            now: Graph time used to silence an evicted voice

        Returns:
            The evicted (already released) voice, or None
        """
        evicted = None
        if len(self._voices) >= self.capacity:
            evicted = self._voices.popleft()
            evicted.release(now)
            logger.debug(f"Voice pool full ({self.capacity}), evicted MIDI {evicted.midi_note}")

        self._voices.append(voice)
        return evicted

    def drain(self, now: Optional[float] = None) -> int:
        """Release every voice.

        Returns:
            Number of voices released
        """
        count = len(self._voices)
        while self._voices:
            self._voices.popleft().release(now)
        return count

    def __len__(self) -> int:
        return len(self._voices)

    def __iter__(self) -> Iterator[Voice]:
        return iter(list(self._voices))
