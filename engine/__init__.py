"""Music Box Engine - Synthesis, playback and export.

This module contains the audio node graph, voices and effects, the live
music engine, offline rendering, file encoders and the FastAPI control
surface.
"""

from engine.audio_graph import AudioGraph
from engine.config import MusicBoxConfig, get_config
from engine.effects import EffectsChain
from engine.encoders import encode_midi, encode_wav
from engine.metrics import EngineMetrics
from engine.music_engine import EngineState, MusicEngine
from engine.notifications import EngineEvents
from engine.offline_graph import OfflineAudioGraph
from engine.offline_renderer import OfflineRenderer
from engine.realtime_graph import RealtimeAudioGraph
from engine.synth_params import SynthParams, SynthParamsUpdate

__version__ = "1.0.0"

__all__ = [
    # Core components
    "MusicEngine",
    "EngineState",
    "EffectsChain",
    "OfflineRenderer",
    # Audio backends
    "AudioGraph",
    "OfflineAudioGraph",
    "RealtimeAudioGraph",
    # Parameters
    "SynthParams",
    "SynthParamsUpdate",
    # Encoders
    "encode_wav",
    "encode_midi",
    # Configuration
    "MusicBoxConfig",
    "get_config",
    # Notifications and metrics
    "EngineEvents",
    "EngineMetrics",
]
