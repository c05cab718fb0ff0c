"""Symbolic musical durations and rhythmic grid quantization."""

import math
from typing import Literal, get_args

MusicalDuration = Literal[
    "2/1", "2/1D", "2/1T",
    "1/1", "1/1D", "1/1T",
    "1/2", "1/2D", "1/2T",
    "1/4", "1/4D", "1/4T",
    "1/8", "1/8D", "1/8T",
    "1/16", "1/16D", "1/16T",
    "1/32", "1/32D", "1/32T",
]

MUSICAL_DURATIONS = list(get_args(MusicalDuration))

# Fractions of a whole note
BASE_FRACTIONS = {
    "2/1": 2.0,
    "1/1": 1.0,
    "1/2": 1 / 2,
    "1/4": 1 / 4,
    "1/8": 1 / 8,
    "1/16": 1 / 16,
    "1/32": 1 / 32,
}

DOTTED = 1.5
TRIPLET = 2 / 3


def musical_duration_to_seconds(duration: str, bpm: float) -> float:
    """Convert a symbolic duration to seconds at the given tempo.

    Args:
        duration: Base value ("1/4") optionally suffixed with "D" (dotted)
            or "T" (triplet)
        bpm: Tempo in beats per minute (quarter note = one beat)

    Returns:
        Duration in seconds (unknown bases resolve to a quarter note)
    """
    whole_note = 4 * (60.0 / bpm)

    modifier = duration[-1:] if duration[-1:] in ("D", "T") else ""
    base = duration[:-1] if modifier else duration

    value = whole_note * BASE_FRACTIONS.get(base, 1 / 4)

    if modifier == "T":
        value *= TRIPLET
    elif modifier == "D":
        value *= DOTTED

    return value


def quantize_up(time: float, step: float) -> float:
    """Round time up to the next non-negative multiple of step."""
    if time <= 0:
        return 0.0

    steps = math.ceil(time / step)
    quantized = steps * step
    # Guard against float rounding leaving the result just below time
    if quantized < time:
        quantized = (steps + 1) * step
    return quantized


def quantize_to_sixteenth(time: float, bpm: float) -> float:
    """Quantize time upward onto the sixteenth-note grid."""
    return quantize_up(time, (60.0 / bpm) / 4)
