"""Performance metrics collection and aggregation.

Tracks scheduler tick latency, audio render latency, generation counters and
memory usage for monitoring.
"""

import logging
import threading
import time
from collections import deque
from datetime import datetime
from typing import Any

import numpy as np
import psutil

from engine.interfaces.metrics import IMetricsCollector

logger = logging.getLogger(__name__)


class LatencyHistogram:
    """Rolling window of latency samples in milliseconds."""

    PERCENTILES = (50, 95, 99)

    def __init__(self, max_samples: int = 10000):
        self.samples: deque[float] = deque(maxlen=max_samples)

    def record(self, latency_ms: float) -> None:
        self.samples.append(latency_ms)

    def get_stats(self) -> dict[str, float | int]:
        """Summarize the window.

        Returns:
            Mean, p50/p95/p99 and the number of samples held
        """
        count = len(self.samples)
        if count == 0:
            stats: dict[str, float | int] = {"avg": 0.0}
            stats.update({f"p{p}": 0.0 for p in self.PERCENTILES})
        else:
            window = np.fromiter(self.samples, dtype=np.float64, count=count)
            stats = {"avg": float(window.mean())}
            for p, value in zip(self.PERCENTILES, np.percentile(window, self.PERCENTILES)):
                stats[f"p{p}"] = float(value)
        stats["samples"] = count
        return stats


class EngineMetrics(IMetricsCollector):
    """Collects engine metrics from the event loop and the audio thread."""

    TICK_WARNING_MS = 25.0

    def __init__(self) -> None:
        self.tick_latency = LatencyHistogram()
        self.render_latency = LatencyHistogram()

        self.notes_triggered = 0
        self.graph_hops = 0
        self.voice_evictions = 0
        self.output_underflows = 0

        # Counters are bumped from the sound device callback thread as well
        self._lock = threading.Lock()
        self.start_time = time.time()

        logger.info("Metrics collector initialized")

    def record_tick_latency(self, latency_ms: float) -> None:
        """Record scheduler tick duration.

        Args:
            latency_ms: Tick duration in milliseconds
        """
        self.tick_latency.record(latency_ms)

        if latency_ms > self.TICK_WARNING_MS:
            logger.warning(
                f"Scheduler tick over {self.TICK_WARNING_MS:.0f}ms", extra={"latency_ms": round(latency_ms, 2)}
            )

    def record_render_latency(self, latency_ms: float, budget_ms: float) -> None:
        self.render_latency.record(latency_ms)

        if latency_ms > budget_ms:
            logger.warning(f"Render took {latency_ms:.1f}ms for a {budget_ms:.1f}ms buffer")

    def increment_notes(self, count: int = 1) -> None:
        with self._lock:
            self.notes_triggered += count

    def increment_hops(self) -> None:
        with self._lock:
            self.graph_hops += 1

    def increment_evictions(self) -> None:
        with self._lock:
            self.voice_evictions += 1
        logger.debug(f"Voice evicted (total: {self.voice_evictions})")

    def increment_underflow(self) -> None:
        with self._lock:
            self.output_underflows += 1
        logger.warning(f"Output underflow detected (total: {self.output_underflows})")

    def get_snapshot(self) -> dict[str, Any]:
        """Get current metrics snapshot.

        Returns:
            Dictionary with all metrics data
        """
        process = psutil.Process()
        memory_mb = process.memory_info().rss / (1024 * 1024)

        return {
            "tick_latency_ms": self.tick_latency.get_stats(),
            "render_latency_ms": self.render_latency.get_stats(),
            "notes_triggered": self.notes_triggered,
            "graph_hops": self.graph_hops,
            "voice_evictions": self.voice_evictions,
            "output_underflows": self.output_underflows,
            "memory_usage_mb": memory_mb,
            "uptime_sec": time.time() - self.start_time,
            "timestamp": datetime.now().isoformat(),
        }
