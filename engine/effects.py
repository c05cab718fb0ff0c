"""Master effects chain: filtered feedback delay followed by a convolution reverb.

Signal flow::

    master -> delay_dry ----------------------------------+
    master -> delay_input -> delay -> filters -+-> wet ----+-> mix
                   ^                           |                 |
                   +-------- feedback <--------+                 |
    mix -> reverb_dry (0.7) ------------------------> destination
    mix -> convolver -> reverb_wet (0.3) ------------> destination
"""

import logging
import math
from typing import List, Optional

import numpy as np

from composition.musical_time import musical_duration_to_seconds
from engine.audio_graph import AudioGraph, AudioNode, BiquadFilterNode, ConvolverNode
from engine.exceptions import AudioGraphError, ReverbError
from engine.synth_params import DelayParams

logger = logging.getLogger(__name__)

MASTER_GAIN = 0.5
MAX_DELAY_SECONDS = 5.0
MAX_FEEDBACK = 0.95
SMOOTHING_TIME_CONSTANT = 0.05

REVERB_SECONDS = 3.0
REVERB_DECAY = 2.5
REVERB_NOISE_LEVEL = 0.3
REVERB_DRY = 0.7
REVERB_WET = 0.3
EARLY_REFLECTIONS = (0.01, 0.023, 0.037, 0.052, 0.068, 0.083)
EARLY_REFLECTION_WIDTH = 0.001
EARLY_REFLECTION_LEVEL = 0.5


def delay_gains(params: DelayParams) -> tuple[float, float, float]:
    """Feedback, dry and wet gains for a delay setting."""
    if not params.enabled:
        return 0.0, 1.0, 0.0
    return min(params.feedback, MAX_FEEDBACK), 1.0 - params.mix, params.mix


def delay_tail_seconds(params: DelayParams, bpm: float) -> float:
    """Time for the delay repeats to decay by 60 dB.

    Returns:
        Tail length in seconds (0 when disabled or feedback <= 0.01)
    """
    if not params.enabled or params.feedback <= 0.01:
        return 0.0

    repeats = math.ceil(-60 / (20 * math.log10(params.feedback)))
    return repeats * musical_duration_to_seconds(params.duration, bpm)


def build_reverb_impulse(
    sample_rate: int,
    rng: Optional[np.random.Generator] = None,
    seconds: float = REVERB_SECONDS,
    channels: int = 2,
) -> np.ndarray:
    """Synthesize a stereo room impulse: decaying noise plus early reflections.

    Args:
        sample_rate: Sample rate in Hz
        rng: NumPy random generator (seed it for reproducible renders)
        seconds: Impulse length
        channels: Channel count (independent noise per channel)

    Returns:
        Array of shape (channels, sample_rate * seconds)

    Raises:
        ReverbError: If the impulse cannot be built
    """
    rng = rng if rng is not None else np.random.default_rng()
    length = int(sample_rate * seconds)
    if sample_rate <= 0 or length <= 0:
        raise ReverbError(f"Invalid impulse length: {seconds}s @ {sample_rate}Hz")

    t = np.arange(length) / sample_rate
    envelope = np.exp(-t / REVERB_DECAY)

    early_mask = np.zeros(length, dtype=bool)
    for offset in EARLY_REFLECTIONS:
        early_mask |= np.abs(t - offset) < EARLY_REFLECTION_WIDTH

    impulse = np.empty((channels, length))
    for channel in range(channels):
        early = np.where(early_mask, (rng.random(length) * 2 - 1) * EARLY_REFLECTION_LEVEL, 0.0)
        noise = (rng.random(length) * 2 - 1) * envelope * REVERB_NOISE_LEVEL
        impulse[channel] = early + noise

    return impulse


class EffectsChain:
    """Master gain, delay line with filter cascade, and reverb bus."""

    def __init__(
        self,
        graph: AudioGraph,
        params: DelayParams,
        bpm: float,
        destination: Optional[AudioNode] = None,
        reverb_rng: Optional[np.random.Generator] = None,
    ):
        """Build and connect the chain.

        Args:
            graph: Audio graph to build in
            params: Initial delay settings
            bpm: Tempo used to resolve the delay duration
            destination: Output node (default: graph destination)
            reverb_rng: Random generator for the reverb impulse
        """
        self.graph = graph
        self.params = params
        self.bpm = bpm
        destination = destination if destination is not None else graph.destination
        feedback, dry, wet = delay_gains(params)

        with graph.lock:
            self.master = graph.create_gain(MASTER_GAIN)
            self.delay_input = graph.create_gain(1.0)
            self.delay = graph.create_delay(MAX_DELAY_SECONDS)
            self.delay.delay_time.value = self._delay_seconds(params, bpm)
            self.feedback = graph.create_gain(feedback)
            self.dry = graph.create_gain(dry)
            self.wet = graph.create_gain(wet)
            self.mix = graph.create_gain(1.0)
            self.filters: List[BiquadFilterNode] = []

            self.master.connect(self.dry)
            self.master.connect(self.delay_input)
            self.delay_input.connect(self.delay)
            self._build_filters(params)
            self.feedback.connect(self.delay_input)
            self.dry.connect(self.mix)
            self.wet.connect(self.mix)

            self.reverb_dry: Optional[AudioNode] = None
            self.reverb_wet: Optional[AudioNode] = None
            self.convolver: Optional[ConvolverNode] = None
            try:
                impulse = build_reverb_impulse(graph.sample_rate, reverb_rng)
                self.convolver = graph.create_convolver(impulse)
                self.reverb_dry = graph.create_gain(REVERB_DRY)
                self.reverb_wet = graph.create_gain(REVERB_WET)
                self.mix.connect(self.reverb_dry)
                self.mix.connect(self.convolver)
                self.convolver.connect(self.reverb_wet)
                self.reverb_dry.connect(destination)
                self.reverb_wet.connect(destination)
            except (ReverbError, ValueError, MemoryError) as e:
                logger.warning(f"Reverb unavailable, continuing dry: {e}")
                self.convolver = None
                self.reverb_dry = None
                self.reverb_wet = None
                self.mix.disconnect()
                self.mix.connect(destination)

        logger.debug(
            f"Effects chain built: delay={params.duration} ({self._delay_seconds(params, bpm):.3f}s), "
            f"{len(self.filters)} filter stage(s), reverb={'on' if self.convolver else 'off'}"
        )

    @property
    def input(self) -> AudioNode:
        """Node voices connect to."""
        return self.master

    @property
    def has_reverb(self) -> bool:
        return self.convolver is not None

    @staticmethod
    def _delay_seconds(params: DelayParams, bpm: float) -> float:
        return min(musical_duration_to_seconds(params.duration, bpm), MAX_DELAY_SECONDS)

    def _build_filters(self, params: DelayParams) -> None:
        """Create the cascade and wire delay -> filters -> feedback/wet."""
        self.filters = [
            self.graph.create_biquad_filter(
                params.filter_type, params.filter_frequency, params.filter_resonance
            )
            for _ in range(params.filter_stages)
        ]

        source: AudioNode = self.delay
        for stage in self.filters:
            source.connect(stage)
            source = stage
        source.connect(self.feedback)
        source.connect(self.wet)

    def _teardown_filters(self) -> None:
        try:
            self.delay.disconnect()
        except AudioGraphError as e:
            logger.debug(f"Delay disconnect failed: {e}")
        for stage in self.filters:
            try:
                stage.disconnect()
            except AudioGraphError as e:
                logger.debug(f"Filter disconnect failed: {e}")
        self.filters = []

    def update(self, params: DelayParams, bpm: float) -> None:
        """Move the live chain to new delay settings.

        Gains, delay time and filter frequency/Q glide with a 50 ms time
        constant; a filter type change applies immediately; a changed stage
        count rebuilds the cascade.
        """
        now = self.graph.current_time
        feedback, dry, wet = delay_gains(params)

        with self.graph.lock:
            self.delay.delay_time.set_target_at_time(
                self._delay_seconds(params, bpm), now, SMOOTHING_TIME_CONSTANT
            )
            self.feedback.gain.set_target_at_time(feedback, now, SMOOTHING_TIME_CONSTANT)
            self.dry.gain.set_target_at_time(dry, now, SMOOTHING_TIME_CONSTANT)
            self.wet.gain.set_target_at_time(wet, now, SMOOTHING_TIME_CONSTANT)

            if len(self.filters) != params.filter_stages:
                logger.debug(f"Rebuilding delay filters: {len(self.filters)} -> {params.filter_stages} stage(s)")
                self._teardown_filters()
                self._build_filters(params)
            else:
                for stage in self.filters:
                    stage.type = params.filter_type
                    stage.frequency.set_target_at_time(params.filter_frequency, now, SMOOTHING_TIME_CONSTANT)
                    stage.Q.set_target_at_time(params.filter_resonance, now, SMOOTHING_TIME_CONSTANT)

        self.params = params
        self.bpm = bpm

    def nodes(self) -> List[AudioNode]:
        """Every node owned by the chain."""
        nodes = [self.master, self.delay_input, self.delay, *self.filters, self.feedback, self.dry, self.wet, self.mix]
        nodes.extend(n for n in (self.convolver, self.reverb_dry, self.reverb_wet) if n is not None)
        return nodes

    def release(self) -> None:
        """Disconnect every node; individual failures are logged and skipped."""
        with self.graph.lock:
            for node in self.nodes():
                try:
                    node.disconnect()
                except AudioGraphError as e:
                    logger.debug(f"Effects node disconnect failed: {e}")
        logger.debug("Effects chain released")
