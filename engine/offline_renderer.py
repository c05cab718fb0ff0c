"""Offline rendering of generated notes through the live signal chain."""

import logging
import time
from typing import Callable, Optional, Sequence

import numpy as np

from composition.melody_generator import NoteEvent, midi_to_frequency
from engine.audio_graph import BLOCK_SIZE
from engine.effects import REVERB_SECONDS, EffectsChain, delay_tail_seconds
from engine.offline_graph import OfflineAudioGraph
from engine.synth_params import SynthParams
from engine.voice import VoicePool, build_voice

logger = logging.getLogger(__name__)

TAIL_MARGIN = 1.0
SILENCE_THRESHOLD = 0.001
MIN_TRAILING_SILENCE = 0.5


def trim_silence(
    buffer: np.ndarray,
    sample_rate: int,
    threshold: float = SILENCE_THRESHOLD,
    min_silence: float = MIN_TRAILING_SILENCE,
) -> np.ndarray:
    """Cut trailing silence, keeping min_silence seconds after the last sound.

    Args:
        buffer: Audio of shape (channels, frames)
        sample_rate: Sample rate in Hz
        threshold: Absolute amplitude treated as silence
        min_silence: Seconds kept after the last sample above threshold

    Returns:
        Trimmed view, or the input unchanged when less than one second
        would be removed
    """
    length = buffer.shape[1]
    loud = np.nonzero(np.any(np.abs(buffer) > threshold, axis=0))[0]
    last_sound = int(loud[-1]) if loud.size else 0

    end = min(last_sound + int(min_silence * sample_rate), length)
    if end >= length - sample_rate:
        return buffer
    return buffer[:, :end]


class OfflineRenderer:
    """Renders a note list to a stereo buffer with voices, delay and reverb."""

    def __init__(
        self,
        sample_rate: int = 44100,
        block_size: int = BLOCK_SIZE,
        seed: Optional[int] = None,
    ):
        """Initialize renderer.

        Args:
            sample_rate: Output sample rate in Hz
            block_size: Frames per processing block
            seed: Seed for the reverb impulse noise
        """
        self.sample_rate = sample_rate
        self.block_size = block_size
        self.seed = seed

    def render_length(
        self,
        notes: Sequence[NoteEvent],
        params: SynthParams,
        bpm: float,
        total_duration: float,
    ) -> float:
        """Seconds to render: last note end plus the longer of delay and reverb tails."""
        last_end = total_duration
        for note in notes:
            last_end = max(last_end, note.end_time + params.envelope.release)

        tail = max(delay_tail_seconds(params.delay, bpm), REVERB_SECONDS) + TAIL_MARGIN
        return last_end + tail

    def render(
        self,
        notes: Sequence[NoteEvent],
        params: SynthParams,
        bpm: float,
        total_duration: float,
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> np.ndarray:
        """Render notes to audio.

        Voices are created progressively just ahead of the render position
        and released once finished, so memory stays bounded for long exports.

        Args:
            notes: Notes to play
            params: Synthesis parameter snapshot
            bpm: Tempo for the delay duration
            total_duration: Nominal length of the generated material
            on_progress: Called with the rendered fraction in [0, 1]

        Returns:
            Float array of shape (2, frames)
        """
        started = time.perf_counter()
        length = int(np.ceil(self.render_length(notes, params, bpm, total_duration) * self.sample_rate))

        graph = OfflineAudioGraph(length, sample_rate=self.sample_rate, block_size=self.block_size)
        effects = EffectsChain(
            graph, params.delay, bpm, reverb_rng=np.random.default_rng(self.seed)
        )

        pending = sorted(notes, key=lambda n: n.start_time)
        pool = VoicePool(capacity=max(1, len(pending)))
        cursor = 0

        def schedule(now: float, horizon: float) -> None:
            nonlocal cursor
            pool.reap(now)
            while cursor < len(pending) and pending[cursor].start_time < horizon:
                note = pending[cursor]
                voice = build_voice(
                    graph,
                    effects.input,
                    midi_to_frequency(note.midi_note),
                    note.start_time,
                    note.duration,
                    params,
                    pitch_class=note.pitch_class,
                    midi_note=note.midi_note,
                )
                pool.add(voice)
                cursor += 1
            if on_progress is not None and length:
                on_progress(min(1.0, now * self.sample_rate / length))

        audio = graph.render(on_block=schedule)
        pool.drain()
        effects.release()

        if on_progress is not None:
            on_progress(1.0)

        logger.info(
            f"Rendered {len(pending)} notes to {length / self.sample_rate:.1f}s of audio "
            f"in {time.perf_counter() - started:.1f}s"
        )
        return audio
