"""Musical context and tempo-derived timing values."""

from dataclasses import dataclass

BEATS_PER_BAR = 4
BARS_PER_CHANGE = 4  # Graph hop every 4 bars
BARS_PER_HYPERBAR = 8

MIN_BPM = 20.0
MAX_BPM = 300.0


def clamp_bpm(bpm: float) -> float:
    """Clamp tempo to the supported range (20-300 BPM)."""
    return max(MIN_BPM, min(MAX_BPM, float(bpm)))


@dataclass(frozen=True)
class MusicalContext:
    """Encapsulates current generative timing parameters.

    Attributes:
        bpm: Tempo in beats per minute (20-300)
        mean_notes_per_bar: Average note onsets per 4-beat bar (> 0)
    """

    bpm: float = 45.0
    mean_notes_per_bar: float = 6.0

    def __post_init__(self) -> None:
        """Validate parameters after initialization."""
        if not (MIN_BPM <= self.bpm <= MAX_BPM):
            raise ValueError(f"Invalid BPM: {self.bpm} (must be {MIN_BPM:g}-{MAX_BPM:g})")

        if not self.mean_notes_per_bar > 0:
            raise ValueError(
                f"Invalid mean notes per bar: {self.mean_notes_per_bar} (must be > 0)"
            )

    @property
    def beat_seconds(self) -> float:
        return 60.0 / self.bpm

    @property
    def bar_seconds(self) -> float:
        return BEATS_PER_BAR * self.beat_seconds

    @property
    def sixteenth_seconds(self) -> float:
        return self.beat_seconds / 4

    @property
    def rate(self) -> float:
        """Poisson onset rate (lambda) in notes per second."""
        return self.mean_notes_per_bar / self.bar_seconds

    @property
    def hop_seconds(self) -> float:
        """Time between relation graph hops."""
        return self.bar_seconds * BARS_PER_CHANGE

    def with_bpm(self, bpm: float) -> "MusicalContext":
        """Copy with a new (clamped) tempo."""
        return MusicalContext(bpm=clamp_bpm(bpm), mean_notes_per_bar=self.mean_notes_per_bar)

    def with_density(self, mean_notes_per_bar: float) -> "MusicalContext":
        """Copy with a new note density."""
        return MusicalContext(bpm=self.bpm, mean_notes_per_bar=mean_notes_per_bar)

    @classmethod
    def default(cls) -> "MusicalContext":
        """Create default musical context.

        Returns:
            Default context: 45 BPM, 6 notes per bar
        """
        return cls(bpm=45.0, mean_notes_per_bar=6.0)
