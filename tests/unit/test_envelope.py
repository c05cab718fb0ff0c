"""Unit tests for the note amplitude envelope."""

import math

import numpy as np

from engine.envelope import PEAK, EnvelopeModel
from engine.offline_graph import OfflineAudioGraph
from engine.synth_params import EnvelopeParams


def test_default_envelope_shape():
    """Test attack to peak then decay to silence with sustain 0."""
    envelope = EnvelopeModel()
    t0, d = 1.0, 0.5

    assert envelope.amplitude_at(0.5, t0, d) == 0.0
    assert envelope.amplitude_at(t0, t0, d) == 0.0
    assert math.isclose(envelope.amplitude_at(t0 + 0.005, t0, d), PEAK / 2)
    assert math.isclose(envelope.amplitude_at(t0 + 0.01, t0, d), PEAK)
    assert math.isclose(envelope.amplitude_at(t0 + 0.06, t0, d), PEAK / 2)
    assert envelope.amplitude_at(t0 + 0.3, t0, d) == 0.0
    assert envelope.end_time(t0, d) == 1.5


def test_sustain_and_release_stages():
    """Test hold at peak * sustain until t0 + d, then a linear release to zero."""
    params = EnvelopeParams(attack=0.1, decay=0.1, sustain=0.5, release=0.4)
    envelope = EnvelopeModel(params)
    t0, d = 0.0, 1.0
    sustain_level = PEAK * 0.5

    assert math.isclose(envelope.amplitude_at(0.5, t0, d), sustain_level)
    assert math.isclose(envelope.amplitude_at(1.0, t0, d), sustain_level)
    assert math.isclose(envelope.amplitude_at(1.2, t0, d), sustain_level / 2)
    assert envelope.amplitude_at(1.4, t0, d) == 0.0
    assert envelope.amplitude_at(3.0, t0, d) == 0.0
    assert math.isclose(envelope.end_time(t0, d), 1.4)


def test_short_note_stays_bounded():
    """Test a note shorter than attack + decay never exceeds the peak."""
    params = EnvelopeParams(attack=0.1, decay=0.2, sustain=0.5, release=0.2)
    envelope = EnvelopeModel(params)

    samples = [envelope.amplitude_at(i / 1000, 0.0, 0.05) for i in range(600)]

    assert max(samples) <= PEAK + 1e-12
    assert min(samples) >= 0.0
    assert math.isclose(envelope.amplitude_at(0.05, 0.0, 0.05), PEAK * 0.5)


def test_apply_schedules_gain_param():
    """Test the envelope rendered through a gain node matches amplitude_at."""
    sample_rate = 8000
    graph = OfflineAudioGraph(sample_rate, sample_rate=sample_rate)
    source = graph.create_oscillator("square", 0.0)
    source.start(0.0)
    gain = graph.create_gain(0.0)
    source.connect(gain)
    gain.connect(graph.destination)

    params = EnvelopeParams(attack=0.02, decay=0.05, sustain=0.4, release=0.1)
    envelope = EnvelopeModel(params)
    end = envelope.apply(gain.gain, 0.1, 0.2)
    audio = graph.render_frames(4000)[0]

    expected = [envelope.amplitude_at(i / sample_rate, 0.1, 0.2) for i in range(4000)]
    assert math.isclose(end, 0.4)
    assert np.allclose(audio, expected, atol=1e-9)
    assert np.all(audio[int(0.41 * sample_rate) :] == 0.0)
