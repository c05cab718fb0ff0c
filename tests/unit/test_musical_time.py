"""Unit tests for symbolic durations, tempo context and grid quantization."""

import math

import pytest

from composition.musical_context import MusicalContext, clamp_bpm
from composition.musical_time import (
    MUSICAL_DURATIONS,
    musical_duration_to_seconds,
    quantize_to_sixteenth,
)


@pytest.mark.parametrize(
    "duration,bpm,expected",
    [
        ("1/4", 60, 1.0),
        ("1/4D", 60, 1.5),
        ("1/4T", 60, 2 / 3),
        ("2/1", 60, 8.0),
        ("1/1", 120, 2.0),
        ("1/2", 120, 1.0),
        ("1/32", 60, 0.125),
        ("1/16T", 90, (60 / 90) / 4 * 2 / 3),
    ],
)
def test_duration_to_seconds(duration, bpm, expected):
    """Test base values, dotted and triplet modifiers."""
    result = musical_duration_to_seconds(duration, bpm)
    assert math.isclose(result, expected, rel_tol=1e-12), f"{duration} @ {bpm}: {result} != {expected}"


def test_unknown_duration_falls_back_to_quarter():
    """Test unknown base values resolve to a quarter note."""
    assert musical_duration_to_seconds("3/4", 60) == 1.0
    assert musical_duration_to_seconds("3/4D", 60) == 1.5


def test_duration_catalogue():
    """Test every symbol is listed once and resolves to a positive length."""
    assert len(MUSICAL_DURATIONS) == 21
    assert len(set(MUSICAL_DURATIONS)) == 21
    for duration in MUSICAL_DURATIONS:
        assert musical_duration_to_seconds(duration, 100) > 0


@pytest.mark.parametrize(
    "time,bpm,expected",
    [
        (0.0, 60, 0.0),
        (-1.0, 60, 0.0),
        (0.3, 60, 0.5),
        (0.25, 60, 0.25),
        (0.6931, 60, 0.75),
        (1.0, 120, 1.0),
        (1.01, 120, 1.125),
    ],
)
def test_quantize_to_sixteenth(time, bpm, expected):
    """Test rounding up onto the sixteenth grid."""
    result = quantize_to_sixteenth(time, bpm)
    assert math.isclose(result, expected, abs_tol=1e-12), f"quantize({time}) = {result}, expected {expected}"


def test_quantize_never_rounds_down():
    """Test quantized time is on the grid and never earlier than the input."""
    bpm = 47.0
    step = (60.0 / bpm) / 4
    for i in range(1, 500):
        t = i * 0.0371
        q = quantize_to_sixteenth(t, bpm)
        assert q >= t, f"{q} < {t}"
        assert q - t < step + 1e-9
        assert math.isclose(q / step, round(q / step), abs_tol=1e-9)


def test_context_derived_values():
    """Test beat, bar, rate and hop lengths."""
    context = MusicalContext(bpm=60, mean_notes_per_bar=4)

    assert context.beat_seconds == 1.0
    assert context.bar_seconds == 4.0
    assert context.sixteenth_seconds == 0.25
    assert context.rate == 1.0
    assert context.hop_seconds == 16.0


def test_context_validation_and_clamping():
    """Test invalid tempo/density raise and with_bpm clamps."""
    with pytest.raises(ValueError):
        MusicalContext(bpm=10)
    with pytest.raises(ValueError):
        MusicalContext(mean_notes_per_bar=0)

    context = MusicalContext.default()
    assert context.bpm == 45.0
    assert context.mean_notes_per_bar == 6.0
    assert context.with_bpm(1000).bpm == 300.0
    assert context.with_bpm(1).bpm == 20.0
    assert clamp_bpm(120) == 120.0
