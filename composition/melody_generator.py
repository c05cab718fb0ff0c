"""Random note choice over the active pitch-class set.

Picks a pitch class from the current set, an octave from the playable range
and a randomized duration, and drives the offline generation loop that turns
the stochastic process into a finite note list.
"""

import logging
import random
from dataclasses import dataclass
from typing import List, Optional, Sequence

from composition.musical_context import BARS_PER_HYPERBAR, MusicalContext
from composition.musical_time import musical_duration_to_seconds
from composition.note_scheduler import NoteScheduler
from composition.relation_graph import GraphDataset, RelationGraph

logger = logging.getLogger(__name__)

OCTAVE_MIN = 4
OCTAVE_MAX = 7


def midi_to_frequency(midi_note: float) -> float:
    """Equal-tempered frequency in Hz (A4 = MIDI 69 = 440 Hz)."""
    return 440.0 * 2 ** ((midi_note - 69) / 12)


@dataclass(frozen=True)
class NoteEvent:
    """Single generated note."""

    midi_note: int
    pitch_class: int
    start_time: float  # Seconds from generation start
    duration: float  # Nominal length in seconds (before release)

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


class MelodyGenerator:
    """Chooses pitch, octave and duration for each triggered note."""

    def __init__(self, rng=None):
        """Initialize melody generator.

        Args:
            rng: Random source with a ``random()`` method
        """
        self.rng = rng if rng is not None else random.Random()

    def _pick(self, n: int) -> int:
        return min(int(self.rng.random() * n), n - 1)

    def choose_note(
        self,
        pitch_classes: Sequence[int],
        start_time: float,
        max_duration_seconds: float,
    ) -> Optional[NoteEvent]:
        """Choose a note from the active pitch classes.

        Args:
            pitch_classes: Active pitch-class set members
            start_time: Onset in seconds
            max_duration_seconds: Upper bound of the note duration

        Returns:
            NoteEvent, or None when no pitch class is active
        """
        if not pitch_classes:
            return None

        pitch_class = pitch_classes[self._pick(len(pitch_classes))]
        octave = OCTAVE_MIN + self._pick(OCTAVE_MAX - OCTAVE_MIN + 1)
        duration = max_duration_seconds * (0.5 + self.rng.random() * 0.5)

        return NoteEvent(
            midi_note=octave * 12 + pitch_class,
            pitch_class=pitch_class,
            start_time=start_time,
            duration=duration,
        )


def generate_music_data(
    dataset: GraphDataset,
    context: MusicalContext,
    max_note_duration: str,
    hyperbars: int,
    seed: Optional[int] = None,
) -> List[NoteEvent]:
    """Run the generative process to completion over hyperbars x 8 bars.

    Uses its own RelationGraph and random source so results depend only on
    the arguments (and are reproducible for a fixed seed).

    Args:
        dataset: Relation graph dataset
        context: Tempo and note density
        max_note_duration: Symbolic maximum note duration
        hyperbars: Number of 8-bar blocks to generate
        seed: Random seed (None for a fresh random sequence)

    Returns:
        NoteEvents ordered by start time
    """
    rng = random.Random(seed)
    graph = RelationGraph(dataset, rng=rng)
    scheduler = NoteScheduler(context, rng=rng)
    melody = MelodyGenerator(rng=rng)

    total_duration = hyperbars * BARS_PER_HYPERBAR * context.bar_seconds
    max_duration_seconds = musical_duration_to_seconds(max_note_duration, context.bpm)
    pitch_classes = graph.current().as_sequence()

    notes: List[NoteEvent] = []
    next_hop_time = context.hop_seconds
    next_note_time = scheduler.schedule_next(0.0)

    while next_note_time < total_duration:
        # Catch up on graph hops before this onset
        while next_note_time >= next_hop_time and next_hop_time < total_duration:
            graph.advance()
            pitch_classes = graph.current().as_sequence()
            next_hop_time += context.hop_seconds

        note = melody.choose_note(pitch_classes, next_note_time, max_duration_seconds)
        if note is not None:
            notes.append(note)

        next_note_time = scheduler.schedule_next(next_note_time)

    logger.info(
        f"Generated {len(notes)} notes over {hyperbars} hyperbar(s) "
        f"({total_duration:.1f}s @ {context.bpm:g} BPM)"
    )

    return notes

