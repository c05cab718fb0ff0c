"""Unit tests for the delay/reverb effects chain."""

import math

import numpy as np
import pytest

import engine.effects as effects
from engine.effects import (
    EARLY_REFLECTIONS,
    MASTER_GAIN,
    EffectsChain,
    build_reverb_impulse,
    delay_gains,
    delay_tail_seconds,
)
from engine.exceptions import ReverbError
from engine.offline_graph import OfflineAudioGraph
from engine.synth_params import DelayParams

SR = 8000


@pytest.fixture
def graph():
    return OfflineAudioGraph(SR, sample_rate=SR)


@pytest.fixture
def no_reverb(monkeypatch):
    def fail(*args, **kwargs):
        raise ReverbError("impulse disabled for test")

    monkeypatch.setattr(effects, "build_reverb_impulse", fail)


def test_delay_gains():
    """Test dry/wet weights follow mix and bypass when disabled."""
    assert delay_gains(DelayParams(mix=0.4, feedback=0.3)) == pytest.approx((0.3, 0.6, 0.4))
    assert delay_gains(DelayParams(enabled=False, mix=0.4)) == (0.0, 1.0, 0.0)


def test_delay_tail_seconds():
    """Test the 60 dB decay tail counts whole repeats of the delay time."""
    # 20*log10(0.25) = -12.04 dB per repeat: 5 repeats of a half note (2s at 60 bpm)
    assert delay_tail_seconds(DelayParams(feedback=0.25, duration="1/2"), 60) == pytest.approx(10.0)
    assert delay_tail_seconds(DelayParams(feedback=0.01), 60) == 0.0
    assert delay_tail_seconds(DelayParams(enabled=False), 60) == 0.0


@pytest.mark.parametrize("order,stages", [(6, 1), (12, 2), (24, 4)])
def test_filter_cascade_length(graph, no_reverb, order, stages):
    """Test each 6 dB/octave of filter order adds one biquad stage."""
    chain = EffectsChain(graph, DelayParams(filter_order=order), bpm=60)

    assert len(chain.filters) == stages
    assert chain.filters[-1].outputs == [chain.feedback, chain.wet]


def test_order_change_rebuilds_filters(graph, no_reverb):
    """Test a stage count change tears down the old cascade and wires a new one."""
    chain = EffectsChain(graph, DelayParams(filter_order=12), bpm=60)
    old_filters = list(chain.filters)

    chain.update(DelayParams(filter_order=24), bpm=60)

    assert len(chain.filters) == 4
    assert not any(stage.is_connected for stage in old_filters)
    assert chain.delay.outputs == [chain.filters[0]]
    assert chain.feedback.inputs == [chain.filters[-1]]


def test_type_change_mutates_in_place(graph, no_reverb):
    """Test a type/frequency change keeps the same stages and glides frequency."""
    chain = EffectsChain(graph, DelayParams(filter_order=12), bpm=60)
    old_filters = list(chain.filters)

    chain.update(DelayParams(filter_order=12, filter_type="highpass", filter_frequency=2000.0), bpm=60)

    assert chain.filters == old_filters
    assert all(stage.type == "highpass" for stage in chain.filters)
    frequency = chain.filters[0].frequency.timeline
    assert frequency.value_at(0.05) == pytest.approx(1000.0 + (2000.0 - 1000.0) * (1 - math.exp(-1)))
    assert frequency.value_at(2.0) == pytest.approx(2000.0)


def test_update_glides_gains_and_delay_time(graph, no_reverb):
    """Test gain and delay time changes are smoothed rather than stepped."""
    chain = EffectsChain(graph, DelayParams(mix=0.4, duration="1/2"), bpm=60)

    chain.update(DelayParams(mix=0.8, duration="1/4"), bpm=60)

    wet = chain.wet.gain.timeline
    assert wet.value_at(0.0) == pytest.approx(0.4)
    assert 0.4 < wet.value_at(0.05) < 0.8
    assert wet.value_at(3.0) == pytest.approx(0.8)
    assert chain.delay.delay_time.timeline.value_at(3.0) == pytest.approx(1.0)


def test_dry_path_before_first_echo(graph, no_reverb):
    """Test a constant input passes master gain and dry weight until the first repeat."""
    chain = EffectsChain(graph, DelayParams(mix=0.4, duration="1/2"), bpm=60)
    source = graph.create_oscillator("square", 0.0)
    source.start(0.0)
    source.connect(chain.input)

    audio = graph.render_frames(SR)[0]

    assert np.allclose(audio, MASTER_GAIN * 0.6)


def test_reverb_failure_falls_back_to_dry(graph, no_reverb):
    """Test the chain still reaches the destination without a reverb."""
    chain = EffectsChain(graph, DelayParams(), bpm=60)

    assert not chain.has_reverb
    assert chain.mix.outputs == [graph.destination]


def test_reverb_bus_wiring(graph):
    """Test the reverb dry/wet buses both feed the destination."""
    chain = EffectsChain(graph, DelayParams(), bpm=60, reverb_rng=np.random.default_rng(1))

    assert chain.has_reverb
    assert chain.reverb_dry.gain.value == pytest.approx(0.7)
    assert chain.reverb_wet.gain.value == pytest.approx(0.3)
    assert set(map(id, graph.destination.inputs)) == {id(chain.reverb_dry), id(chain.reverb_wet)}


def test_release_disconnects_every_node(graph):
    """Test release leaves every chain node disconnected."""
    chain = EffectsChain(graph, DelayParams(), bpm=60, reverb_rng=np.random.default_rng(1))

    chain.release()

    assert not any(node.is_connected for node in chain.nodes())
    assert not graph.destination.inputs


def test_reverb_impulse_shape_and_decay():
    """Test impulse length, channel independence and exponential decay."""
    impulse = build_reverb_impulse(SR, np.random.default_rng(3))

    assert impulse.shape == (2, SR * 3)
    assert not np.array_equal(impulse[0], impulse[1])

    head = np.sqrt(np.mean(impulse[:, int(0.2 * SR) : int(0.7 * SR)] ** 2))
    tail = np.sqrt(np.mean(impulse[:, int(2.4 * SR) : int(2.9 * SR)] ** 2))
    assert tail < head * 0.6, f"Tail RMS {tail:.4f} not below head RMS {head:.4f}"


def test_reverb_early_reflections():
    """Test extra energy sits around each early reflection offset."""
    impulse = build_reverb_impulse(44100, np.random.default_rng(5))

    for offset in EARLY_REFLECTIONS:
        window = impulse[:, int((offset - 0.0009) * 44100) : int((offset + 0.0009) * 44100)]
        assert np.max(np.abs(window)) > 0.3, f"No reflection near {offset}s"
    assert np.max(np.abs(impulse[:, int(0.1 * 44100) :])) <= 0.3


def test_reverb_impulse_is_seed_reproducible():
    """Test the same seed yields the same impulse."""
    first = build_reverb_impulse(SR, np.random.default_rng(42))
    second = build_reverb_impulse(SR, np.random.default_rng(42))

    assert np.array_equal(first, second)


def test_reverb_impulse_invalid_length():
    """Test a zero-length impulse raises ReverbError."""
    with pytest.raises(ReverbError):
        build_reverb_impulse(SR, seconds=0.0)
