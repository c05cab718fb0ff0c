"""Music engine orchestrating the generative process and synthesis.

Live mode wanders the relation graph, draws Poisson note onsets on the
sixteenth grid and schedules voices a short lookahead ahead of the playback
clock. Offline mode runs the same process to completion and renders or
encodes the result.
"""

import asyncio
import logging
import random
import time
from enum import Enum
from typing import Callable, Optional

from composition.melody_generator import (
    MelodyGenerator,
    NoteEvent,
    generate_music_data,
    midi_to_frequency,
)
from composition.musical_context import BARS_PER_HYPERBAR, MusicalContext, clamp_bpm
from composition.musical_time import musical_duration_to_seconds
from composition.note_scheduler import NoteScheduler
from composition.relation_graph import GraphDataset, RelationGraph
from engine.audio_graph import BLOCK_SIZE, AudioGraph
from engine.effects import EffectsChain
from engine.encoders import encode_midi, encode_wav
from engine.exceptions import ExportError
from engine.interfaces.engine import IMusicEngine
from engine.interfaces.metrics import IMetricsCollector
from engine.notifications import EngineEvents
from engine.offline_renderer import OfflineRenderer, trim_silence
from engine.synth_params import SynthParams, SynthParamsUpdate
from engine.voice import VoicePool, build_voice

logger = logging.getLogger(__name__)

LOOKAHEAD = 0.2  # Seconds of notes scheduled ahead of the clock
MIN_LEAD = 0.02  # Earliest a note may start relative to now
MAX_NOTES_PER_TICK = 3
TICK_INTERVAL = 0.05


class EngineState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


class MusicEngine(IMusicEngine):
    """Live generative playback and offline export."""

    def __init__(
        self,
        dataset: GraphDataset,
        graph_factory: Callable[[], AudioGraph],
        events: Optional[EngineEvents] = None,
        metrics: Optional[IMetricsCollector] = None,
        context: Optional[MusicalContext] = None,
        params: Optional[SynthParams] = None,
        max_voices: int = 32,
        sample_rate: int = 44100,
        block_size: int = BLOCK_SIZE,
        export_seed: Optional[int] = None,
        rng=None,
        tick_interval: Optional[float] = TICK_INTERVAL,
    ):
        """Initialize music engine.

        Args:
            dataset: Relation graph dataset
            graph_factory: Creates the playback graph on first start
            events: Notification listeners
            metrics: Metrics collector
            context: Initial tempo and density
            params: Initial synthesis parameters
            max_voices: Voice pool capacity
            sample_rate: Sample rate for offline rendering
            block_size: Frames per processing block for offline rendering
            export_seed: Seed used by exports when none is given
            rng: Random source for live playback
            tick_interval: Host loop period in seconds (None: ticks are
                driven externally)
        """
        self.dataset = dataset
        self._graph_factory = graph_factory
        self.events = events if events is not None else EngineEvents()
        self.metrics = metrics
        self.context = context if context is not None else MusicalContext.default()
        self.params = params if params is not None else SynthParams()
        self.sample_rate = sample_rate
        self.block_size = block_size
        self.export_seed = export_seed
        self.tick_interval = tick_interval

        self.rng = rng if rng is not None else random.Random()
        self.relation_graph = RelationGraph(dataset, rng=self.rng)
        self.scheduler = NoteScheduler(self.context, rng=self.rng)
        self.melody = MelodyGenerator(rng=self.rng)
        self.voices = VoicePool(capacity=max_voices)

        self.graph: Optional[AudioGraph] = None
        self.effects: Optional[EffectsChain] = None
        self.active_pitch_classes: tuple[int, ...] = ()
        self.state = EngineState.STOPPED

        self._task: Optional[asyncio.Task] = None

        logger.info(
            f"Music engine initialized ({len(self.relation_graph)} graph nodes, "
            f"{self.context.bpm:g} BPM, {self.context.mean_notes_per_bar:g} notes/bar)"
        )

    @property
    def bpm(self) -> float:
        return self.context.bpm

    def is_running(self) -> bool:
        return self.state is EngineState.RUNNING

    def _refresh_pitch_classes(self) -> None:
        current = self.relation_graph.current()
        self.active_pitch_classes = current.as_sequence()
        logger.debug("Chord changed", extra={"chord": current.name})
        self.events.chord_changed(current.name)

    # Live mode

    async def start(self) -> None:
        """Acquire the backend, build the effects chain and begin scheduling.

        Raises:
            BackendUnavailableError: If the audio backend cannot be started
        """
        if self.state is not EngineState.STOPPED:
            logger.warning(f"Start requested while {self.state.value}")
            return

        self.state = EngineState.STARTING
        logger.info("Starting music engine")

        try:
            if self.graph is None:
                self.graph = self._graph_factory()
            await self.graph.resume()

            if self.state is not EngineState.STARTING:
                # Stopped while the backend was starting
                await self.graph.suspend()
                return

            self.effects = EffectsChain(self.graph, self.params.delay, self.bpm)
            self._refresh_pitch_classes()
            self.scheduler.context = self.context
            self.scheduler.reset(self.graph.current_time)

            self.state = EngineState.RUNNING
            self.events.play_state_changed(True)

            if self.tick_interval is not None:
                self._task = asyncio.create_task(self._scheduler_loop())

        except Exception as e:
            logger.error(f"Failed to start music engine: {e}")
            await self.stop()
            raise

        logger.info(f"Music engine running (chord {self.relation_graph.current().name})")

    async def stop(self) -> None:
        """Stop scheduling and release every node; safe to call at any time."""
        previous = self.state
        self.state = EngineState.STOPPED

        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        now = self.graph.current_time if self.graph is not None else None
        released = self.voices.drain(now)

        if self.effects is not None:
            self.effects.release()
            self.effects = None

        if self.graph is not None and self.graph.state == "running":
            try:
                await self.graph.suspend()
            except Exception as e:
                logger.warning(f"Failed to suspend audio backend: {e}")

        if previous is not EngineState.STOPPED:
            logger.info(f"Music engine stopped ({released} voice(s) released)")

        # Listeners only heard about playback once RUNNING was reached
        if previous is EngineState.RUNNING:
            self.events.play_state_changed(False)

    async def toggle(self) -> None:
        if self.state is EngineState.STOPPED:
            await self.start()
        else:
            await self.stop()

    async def close(self) -> None:
        """Stop and release the playback backend."""
        await self.stop()
        if self.graph is not None:
            await self.graph.close()
            self.graph = None

    async def _scheduler_loop(self) -> None:
        """Tick against the playback clock until stopped."""
        logger.debug(f"Scheduler loop started (every {self.tick_interval * 1000:.0f}ms)")

        try:
            while self.state is EngineState.RUNNING:
                self.tick(self.graph.current_time)
                await asyncio.sleep(self.tick_interval)

        except asyncio.CancelledError:
            logger.debug("Scheduler loop cancelled")
        except Exception as e:
            logger.error(f"Error in scheduler loop: {e}", exc_info=True)
            await self.stop()

    def tick(self, now: float) -> int:
        """Run one scheduling step.

        Hops the relation graph when the next hop falls inside the lookahead
        window, then triggers up to three notes whose onsets fall inside it.

        Args:
            now: Playback clock in seconds

        Returns:
            Number of notes triggered
        """
        if self.state is not EngineState.RUNNING or self.graph is None:
            return 0

        started = time.perf_counter()

        if self.scheduler.hop_due(now, LOOKAHEAD):
            self.relation_graph.advance()
            self._refresh_pitch_classes()
            self.scheduler.advance_hop()
            if self.metrics is not None:
                self.metrics.increment_hops()

        params = self.params
        triggered = 0
        attempts = 0
        while self.scheduler.next_note_time <= now + LOOKAHEAD and attempts < MAX_NOTES_PER_TICK:
            when = max(self.scheduler.next_note_time, now + MIN_LEAD)
            if self._trigger_random_note(when, now, params):
                triggered += 1
            self.scheduler.schedule_next(self.scheduler.next_note_time)
            attempts += 1

        if self.metrics is not None:
            if triggered:
                self.metrics.increment_notes(triggered)
            self.metrics.record_tick_latency((time.perf_counter() - started) * 1000)

        return triggered

    def _trigger_random_note(self, when: float, now: float, params: SynthParams) -> bool:
        max_duration = musical_duration_to_seconds(params.max_note_duration, self.bpm)
        note = self.melody.choose_note(self.active_pitch_classes, when, max_duration)
        if note is None:
            return False

        self.voices.reap(now)
        voice = build_voice(
            self.graph,
            self.effects.input,
            midi_to_frequency(note.midi_note),
            note.start_time,
            note.duration,
            params,
            pitch_class=note.pitch_class,
            midi_note=note.midi_note,
        )
        evicted = self.voices.add(voice, now)
        if evicted is not None and self.metrics is not None:
            self.metrics.increment_evictions()

        logger.debug(
            f"Note {note.midi_note} (pc {note.pitch_class}) at {when:.3f}s for {note.duration:.3f}s",
            extra={"voice_count": len(self.voices)},
        )
        self.events.note_triggered(note.pitch_class)
        return True

    # Parameters

    def set_synth_params(self, update: SynthParamsUpdate) -> SynthParams:
        """Swap in a new parameter snapshot; delay changes reach the live chain."""
        params = self.params.merged(update)
        self.params = params

        if update.touches_delay() and self.effects is not None:
            self.effects.update(params.delay, self.bpm)

        logger.info("Synth parameters updated")
        return params

    def set_bpm(self, bpm: float) -> float:
        """Set tempo (clamped to 20-300 BPM).

        Returns:
            The tempo in effect
        """
        self.context = self.context.with_bpm(clamp_bpm(bpm))
        self.scheduler.context = self.context

        # Delay durations are tempo-relative
        if self.effects is not None:
            self.effects.update(self.params.delay, self.bpm)

        logger.info(f"Tempo set to {self.bpm:g} BPM")
        return self.bpm

    def set_mean_notes_per_bar(self, mean_notes_per_bar: float) -> float:
        """Set note density.

        Raises:
            ValueError: If mean_notes_per_bar is not positive
        """
        self.context = self.context.with_density(mean_notes_per_bar)
        self.scheduler.context = self.context
        logger.info(f"Density set to {mean_notes_per_bar:g} notes/bar")
        return mean_notes_per_bar

    def get_status(self) -> dict:
        return {
            "state": self.state.value,
            "bpm": self.bpm,
            "mean_notes_per_bar": self.context.mean_notes_per_bar,
            "chord": self.relation_graph.current().name,
            "active_voices": len(self.voices),
            "current_time": self.graph.current_time if self.graph is not None else 0.0,
        }

    # Offline generation and export

    def generate_music_data(self, hyperbars: int, seed: Optional[int] = None) -> list[NoteEvent]:
        """Generate a finite note list independent of live playback.

        Raises:
            ValueError: If hyperbars is negative
        """
        if hyperbars < 0:
            raise ValueError(f"Invalid hyperbar count: {hyperbars}")

        return generate_music_data(
            self.dataset, self.context, self.params.max_note_duration, hyperbars, seed=seed
        )

    def _resolve_seed(self, seed: Optional[int]) -> Optional[int]:
        return seed if seed is not None else self.export_seed

    async def export_to_wav(
        self,
        hyperbars: int,
        seed: Optional[int] = None,
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> bytes:
        """Generate, render and encode a PCM16 stereo WAV file.

        Args:
            hyperbars: Number of 8-bar blocks
            seed: Seed for note generation and reverb noise
            on_progress: Called with overall progress in [0, 1]

        Returns:
            WAV file bytes

        Raises:
            ExportError: If rendering or encoding fails
        """
        seed = self._resolve_seed(seed)
        params = self.params
        context = self.context

        def report(fraction: float) -> None:
            if on_progress is not None:
                on_progress(fraction)

        try:
            if hyperbars < 0:
                raise ValueError(f"Invalid hyperbar count: {hyperbars}")
            notes = generate_music_data(
                self.dataset, context, params.max_note_duration, hyperbars, seed=seed
            )
            total_duration = hyperbars * BARS_PER_HYPERBAR * context.bar_seconds
            renderer = OfflineRenderer(self.sample_rate, self.block_size, seed=seed)

            audio = await asyncio.to_thread(
                renderer.render,
                notes,
                params,
                context.bpm,
                total_duration,
                lambda fraction: report(0.8 * fraction),
            )

            audio = trim_silence(audio, self.sample_rate)
            report(0.9)

            data = encode_wav(audio, self.sample_rate)
            report(1.0)

        except Exception as e:
            raise ExportError(f"WAV export failed: {e}") from e

        logger.info(
            f"Exported WAV: {hyperbars} hyperbar(s), {len(notes)} notes, "
            f"{audio.shape[1] / self.sample_rate:.1f}s, {len(data)} bytes"
        )
        return data

    def export_to_midi(self, hyperbars: int, seed: Optional[int] = None) -> bytes:
        """Generate and encode a format-0 Standard MIDI File.

        Raises:
            ExportError: If generation or encoding fails
        """
        try:
            notes = self.generate_music_data(hyperbars, seed=self._resolve_seed(seed))
            data = encode_midi(notes, self.bpm)
        except Exception as e:
            raise ExportError(f"MIDI export failed: {e}") from e

        logger.info(f"Exported MIDI: {hyperbars} hyperbar(s), {len(notes)} notes, {len(data)} bytes")
        return data
