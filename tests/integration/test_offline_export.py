"""Integration tests for offline generation and WAV/MIDI export."""

import io
import random

import mido
import numpy as np
import pytest
import soundfile as sf

from composition.musical_context import MusicalContext
from engine.exceptions import ExportError
from engine.music_engine import MusicEngine
from engine.offline_graph import OfflineAudioGraph

SR = 8000


@pytest.fixture
def engine(triad_dataset):
    return MusicEngine(
        triad_dataset,
        lambda: OfflineAudioGraph(SR, sample_rate=SR),
        context=MusicalContext(bpm=120, mean_notes_per_bar=6),
        sample_rate=SR,
        rng=random.Random(0),
        tick_interval=None,
    )


def test_generation_is_reproducible(engine):
    """Test the same seed yields the same note list."""
    first = engine.generate_music_data(2, seed=99)
    second = engine.generate_music_data(2, seed=99)
    other = engine.generate_music_data(2, seed=100)

    assert first == second
    assert first != other


def test_generated_notes_are_well_formed(engine, triad_dataset):
    """Test onsets are ordered, on the grid, inside the bars and drawn from graph nodes."""
    notes = engine.generate_music_data(2, seed=4)
    total = 2 * 8 * engine.context.bar_seconds
    step = engine.context.sixteenth_seconds
    max_duration = engine.context.beat_seconds  # "1/4"
    members = {int(i) for bits in triad_dataset.nodes for i, b in enumerate(bits) if b == "1"}

    assert notes, "No notes generated"
    assert [n.start_time for n in notes] == sorted(n.start_time for n in notes)
    for note in notes:
        assert 0 < note.start_time < total
        assert note.start_time / step == pytest.approx(round(note.start_time / step), abs=1e-9)
        assert max_duration * 0.5 <= note.duration <= max_duration
        assert note.pitch_class in members
        assert note.midi_note % 12 == note.pitch_class
        assert 48 <= note.midi_note < 96


def test_generation_leaves_live_state_alone(engine):
    """Test exports do not consume the live random source or move the live walk."""
    rng_state = engine.rng.getstate()
    index = engine.relation_graph.current_index

    engine.generate_music_data(1, seed=1)
    engine.export_to_midi(1, seed=1)

    assert engine.rng.getstate() == rng_state
    assert engine.relation_graph.current_index == index


def test_zero_and_negative_hyperbars(engine):
    """Test zero hyperbars is empty and negative counts are rejected."""
    assert engine.generate_music_data(0, seed=1) == []

    with pytest.raises(ValueError):
        engine.generate_music_data(-1)
    with pytest.raises(ExportError):
        engine.export_to_midi(-1)


def test_midi_export_matches_generation(engine):
    """Test the MIDI file carries one note on/off pair per generated note."""
    notes = engine.generate_music_data(1, seed=3)
    data = engine.export_to_midi(1, seed=3)
    midi = mido.MidiFile(file=io.BytesIO(data))

    track = midi.tracks[0]
    note_ons = [m for m in track if m.type == "note_on"]
    note_offs = [m for m in track if m.type == "note_off"]

    assert midi.type == 0
    assert len(note_ons) == len(notes)
    assert len(note_offs) == len(notes)
    assert sorted(m.note for m in note_ons) == sorted(n.midi_note for n in notes)
    assert track[0].tempo == 500000
    assert sum(1 for m in track if m.type == "end_of_track") == 1
    assert data == engine.export_to_midi(1, seed=3)


def test_export_seed_default(triad_dataset):
    """Test a configured export seed is used when none is passed."""
    engine = MusicEngine(
        triad_dataset,
        lambda: OfflineAudioGraph(SR, sample_rate=SR),
        sample_rate=SR,
        export_seed=21,
        tick_interval=None,
    )

    assert engine.export_to_midi(1) == engine.export_to_midi(1, seed=21)


@pytest.mark.asyncio
async def test_wav_export_decodes(engine):
    """Test the WAV export is a decodable stereo PCM16 file with audible content."""
    progress = []

    data = await engine.export_to_wav(1, seed=8, on_progress=progress.append)
    audio, sample_rate = sf.read(io.BytesIO(data), dtype="float32")

    assert sample_rate == SR
    assert audio.ndim == 2 and audio.shape[1] == 2
    assert audio.shape[0] >= 8 * engine.context.bar_seconds * SR * 0.5
    assert np.max(np.abs(audio)) > 0.01
    assert progress == sorted(progress)
    assert 0.9 in progress
    assert progress[-1] == 1.0


@pytest.mark.asyncio
async def test_wav_export_is_reproducible(engine):
    """Test the same seed produces byte-identical WAV files."""
    first = await engine.export_to_wav(1, seed=12)
    second = await engine.export_to_wav(1, seed=12)

    assert first == second


@pytest.mark.asyncio
async def test_empty_wav_export(engine):
    """Test zero hyperbars still yields a valid (silent) file."""
    data = await engine.export_to_wav(0, seed=1)
    audio, sample_rate = sf.read(io.BytesIO(data), dtype="int16")

    assert sample_rate == SR
    assert len(data) == 44 + audio.size * 2
    assert not np.any(audio)


@pytest.mark.asyncio
async def test_wav_export_error_wrapped(engine):
    """Test failures surface as ExportError."""
    with pytest.raises(ExportError):
        await engine.export_to_wav(-1)
