"""Metrics and monitoring interface definitions."""

from abc import ABC, abstractmethod
from typing import Any


class IMetricsCollector(ABC):
    """Collects and aggregates engine performance metrics."""

    @abstractmethod
    def record_tick_latency(self, latency_ms: float) -> None:
        """Record time spent in one scheduler tick.

        Args:
            latency_ms: Tick duration in milliseconds
        """
        pass

    @abstractmethod
    def record_render_latency(self, latency_ms: float, budget_ms: float) -> None:
        """Record time spent rendering one output buffer.

        Args:
            latency_ms: Render duration in milliseconds
            budget_ms: Playback duration of the buffer in milliseconds
        """
        pass

    @abstractmethod
    def increment_notes(self, count: int = 1) -> None:
        """Count triggered notes."""
        pass

    @abstractmethod
    def increment_hops(self) -> None:
        """Count relation graph hops."""
        pass

    @abstractmethod
    def increment_evictions(self) -> None:
        """Count voices evicted from a full pool."""
        pass

    @abstractmethod
    def increment_underflow(self) -> None:
        """Count output stream underflows."""
        pass

    @abstractmethod
    def get_snapshot(self) -> dict[str, Any]:
        """Get current metrics snapshot.

        Returns:
            Dictionary with metrics data:
            - tick_latency_ms: {avg, p50, p95, p99, samples}
            - render_latency_ms: {avg, p50, p95, p99, samples}
            - notes_triggered: int
            - graph_hops: int
            - voice_evictions: int
            - output_underflows: int
            - memory_usage_mb: float
            - timestamp: ISO 8601 string
        """
        pass
