"""File encoders for exported music: PCM16 WAV and format-0 Standard MIDI."""

import logging
import math
import struct
from typing import Iterable, List

import numpy as np

from composition.melody_generator import NoteEvent

logger = logging.getLogger(__name__)

TICKS_PER_BEAT = 480
NOTE_ON_VELOCITY = 80

MIDI_HEADER = b"MThd"
MIDI_TRACK_HEADER = b"MTrk"
END_OF_TRACK = bytes([0x00, 0xFF, 0x2F, 0x00])
TIME_SIGNATURE_4_4 = bytes([0x00, 0xFF, 0x58, 0x04, 0x04, 0x02, 0x18, 0x08])


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    """Encode float audio as a 16-bit PCM RIFF/WAVE file.

    Args:
        samples: Array of shape (channels, frames), nominal range [-1, 1]
        sample_rate: Sample rate in Hz

    Returns:
        WAV file bytes (44-byte header followed by interleaved samples)
    """
    samples = np.atleast_2d(np.asarray(samples, dtype=np.float64))
    channels, frames = samples.shape

    block_align = channels * 2
    data_size = frames * block_align

    header = b"RIFF" + struct.pack("<I", 36 + data_size) + b"WAVE"
    header += b"fmt " + struct.pack(
        "<IHHIIHH", 16, 1, channels, sample_rate, sample_rate * block_align, block_align, 16
    )
    header += b"data" + struct.pack("<I", data_size)

    clipped = np.clip(samples, -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 0x8000, clipped * 0x7FFF)
    pcm = np.trunc(scaled).astype("<i2")

    return header + pcm.T.tobytes()


def write_variable_length(value: int) -> bytes:
    """Encode a MIDI variable-length quantity (negative values encode as 0)."""
    value = max(0, int(value))
    out = [value & 0x7F]
    value >>= 7
    while value > 0:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    return bytes(reversed(out))


def read_variable_length(data: bytes, offset: int = 0) -> tuple[int, int]:
    """Decode a variable-length quantity.

    Returns:
        Tuple of (value, offset after the quantity)
    """
    value = 0
    while True:
        byte = data[offset]
        offset += 1
        value = (value << 7) | (byte & 0x7F)
        if not byte & 0x80:
            return value, offset


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def encode_midi(notes: Iterable[NoteEvent], bpm: float) -> bytes:
    """Encode notes as a single-track (format 0) Standard MIDI File.

    Args:
        notes: Notes with start times and durations in seconds
        bpm: Tempo written to the tempo meta event

    Returns:
        MIDI file bytes
    """
    ticks_per_second = TICKS_PER_BEAT * bpm / 60

    # (tick, order, status, note, velocity); note-off sorts before note-on
    events: List[tuple[int, int, int, int, int]] = []
    for note in notes:
        start_tick = round_half_up(note.start_time * ticks_per_second)
        end_tick = round_half_up(note.end_time * ticks_per_second)
        events.append((start_tick, 1, 0x90, note.midi_note & 0x7F, NOTE_ON_VELOCITY))
        events.append((end_tick, 0, 0x80, note.midi_note & 0x7F, 0))
    events.sort(key=lambda e: (e[0], e[1]))

    microseconds_per_beat = round_half_up(60_000_000 / bpm)
    track = bytearray([0x00, 0xFF, 0x51, 0x03])
    track += microseconds_per_beat.to_bytes(3, "big")
    track += TIME_SIGNATURE_4_4

    last_tick = 0
    for tick, _, status, midi_note, velocity in events:
        track += write_variable_length(tick - last_tick)
        track += bytes([status, midi_note, velocity])
        last_tick = tick

    track += END_OF_TRACK

    header = MIDI_HEADER + struct.pack(">IHHH", 6, 0, 1, TICKS_PER_BEAT)
    logger.debug(f"Encoded MIDI: {len(events)} events, {len(track)} track bytes @ {bpm:g} BPM")

    return header + MIDI_TRACK_HEADER + struct.pack(">I", len(track)) + bytes(track)
