"""Pitch-class set value type.

A pitch-class set is a subset of the 12 equal-tempered chromatic tones,
stored as a 12-bit membership mask.
"""

from dataclasses import dataclass
from typing import FrozenSet, Iterator, Tuple

NOTE_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]


@dataclass(frozen=True)
class PitchClassSet:
    """Immutable subset of the 12 pitch classes.

    Attributes:
        mask: 12-bit membership vector (bit i set = pitch class i present)
    """

    mask: int

    def __post_init__(self) -> None:
        """Validate mask range."""
        if not (0 <= self.mask < (1 << 12)):
            raise ValueError(f"Invalid pitch-class mask: {self.mask} (must be 0-4095)")

    @classmethod
    def from_binary_string(cls, bits: str) -> "PitchClassSet":
        """Build a set from a 12-character binary string.

        Args:
            bits: Character i is '1' when pitch class i is present

        Returns:
            PitchClassSet with the given members

        Raises:
            ValueError: If the string is not 12 characters of '0'/'1'
        """
        if len(bits) != 12 or set(bits) - {"0", "1"}:
            raise ValueError(f"Invalid pitch-class string: {bits!r}")

        mask = 0
        for pitch_class, bit in enumerate(bits):
            if bit == "1":
                mask |= 1 << pitch_class
        return cls(mask)

    @classmethod
    def from_pitch_classes(cls, pitch_classes) -> "PitchClassSet":
        """Build a set from an iterable of integers (taken modulo 12)."""
        mask = 0
        for pitch_class in pitch_classes:
            mask |= 1 << (int(pitch_class) % 12)
        return cls(mask)

    @property
    def members(self) -> FrozenSet[int]:
        return frozenset(self.as_sequence())

    @property
    def binary(self) -> str:
        """12-character binary string, character i = pitch class i."""
        return "".join("1" if self.mask & (1 << i) else "0" for i in range(12))

    @property
    def name(self) -> str:
        """Canonical display name, e.g. "C-E-G" ("{}" when empty)."""
        if self.mask == 0:
            return "{}"
        return "-".join(NOTE_NAMES[pc] for pc in self.as_sequence())

    def as_sequence(self) -> Tuple[int, ...]:
        """Members in ascending order."""
        return tuple(pc for pc in range(12) if self.mask & (1 << pc))

    def is_empty(self) -> bool:
        return self.mask == 0

    def __contains__(self, pitch_class: object) -> bool:
        if not isinstance(pitch_class, int) or not (0 <= pitch_class <= 11):
            return False
        return bool(self.mask & (1 << pitch_class))

    def __iter__(self) -> Iterator[int]:
        return iter(self.as_sequence())

    def __len__(self) -> int:
        return bin(self.mask).count("1")

    def __str__(self) -> str:
        return self.name


EMPTY_SET = PitchClassSet(0)
