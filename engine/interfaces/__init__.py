"""Internal interfaces for Music Box engine components.

Abstract Base Classes (ABCs) defining contracts for the music engine and
metrics collection.
"""

from engine.interfaces.engine import IMusicEngine
from engine.interfaces.metrics import IMetricsCollector

__all__ = [
    "IMusicEngine",
    "IMetricsCollector",
]
