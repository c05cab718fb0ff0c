"""Music Box Composition - Stochastic generative process.

This module contains the sample-rate-free music logic: pitch-class sets, the
relation graph walk, tempo and durations, Poisson note scheduling and note
choice.
"""

from composition.melody_generator import MelodyGenerator, NoteEvent, generate_music_data
from composition.musical_context import MusicalContext
from composition.note_scheduler import NoteScheduler
from composition.pitch_class_set import PitchClassSet
from composition.relation_graph import GraphDataset, RelationGraph, load_graph_dataset

__version__ = "1.0.0"

__all__ = [
    "GraphDataset",
    "MelodyGenerator",
    "MusicalContext",
    "NoteEvent",
    "NoteScheduler",
    "PitchClassSet",
    "RelationGraph",
    "generate_music_data",
    "load_graph_dataset",
]
