"""Poisson note-onset scheduler quantized to a sixteenth-note grid.

Inter-arrival times are drawn from an exponential distribution with rate
``mean_notes_per_bar / bar_seconds`` and each onset is then rounded up to
the next sixteenth note, so timing stays irregular while every note lands on
the rhythmic grid.
"""

import logging
import math
import random

from composition.musical_context import MusicalContext
from composition.musical_time import quantize_up

logger = logging.getLogger(__name__)

MIN_INTER_ARRIVAL = 0.01  # Seconds; avoids zero-length gaps
START_OFFSET = 0.1  # First onset after reset


class NoteScheduler:
    """Decides when the next note starts and when the graph hops."""

    def __init__(self, context: MusicalContext, rng=None):
        """Initialize scheduler.

        Args:
            context: Tempo and note density
            rng: Random source with a ``random()`` method
        """
        self.context = context
        self.rng = rng if rng is not None else random.Random()
        self.next_note_time = 0.0
        self.next_hop_time = context.hop_seconds

    def draw_inter_arrival(self) -> float:
        """Draw an exponential inter-arrival time, floored at 10ms."""
        u = self.rng.random()
        return max(MIN_INTER_ARRIVAL, -math.log(1.0 - u) / self.context.rate)

    def quantize_to_sixteenth(self, time: float) -> float:
        """Round time up to the next sixteenth note of the current tempo."""
        return quantize_up(time, self.context.sixteenth_seconds)

    def schedule_next(self, from_time: float) -> float:
        """Draw the onset following from_time.

        Args:
            from_time: Onset the draw is measured from

        Returns:
            New next_note_time (on the grid, never before from_time)
        """
        target = from_time + self.draw_inter_arrival()
        self.next_note_time = self.quantize_to_sixteenth(target)
        return self.next_note_time

    def reset(self, start_time: float) -> None:
        """Seed timing state at the start of playback.

        Args:
            start_time: Playback clock time in seconds
        """
        self.next_note_time = self.quantize_to_sixteenth(start_time + START_OFFSET)
        self.next_hop_time = start_time + self.context.hop_seconds

        logger.debug(
            f"Scheduler reset at {start_time:.3f}s "
            f"(first note {self.next_note_time:.3f}s, first hop {self.next_hop_time:.3f}s)"
        )

    def hop_due(self, now: float, lookahead: float = 0.0) -> bool:
        """Check whether the graph hop falls inside the lookahead window."""
        return now >= self.next_hop_time - lookahead

    def advance_hop(self) -> float:
        """Move the hop deadline forward by one hop period."""
        self.next_hop_time += self.context.hop_seconds
        return self.next_hop_time
