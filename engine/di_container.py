"""Dependency injection container for Music Box engine components.

Provides centralized management of service instances with proper lifecycle
and dependency resolution.
"""

import logging
from typing import Any, Optional

from composition.musical_context import MusicalContext
from composition.relation_graph import GraphDataset, load_graph_dataset
from engine.audio_graph import AudioGraph
from engine.config import MusicBoxConfig, get_config
from engine.exceptions import GraphDataError
from engine.metrics import EngineMetrics
from engine.music_engine import MusicEngine
from engine.notifications import EngineEvents, EventBroadcaster
from engine.realtime_graph import RealtimeAudioGraph

logger = logging.getLogger(__name__)


class DIContainer:
    """Dependency injection container for engine components."""

    def __init__(self, config: Optional[MusicBoxConfig] = None) -> None:
        self._config = config if config is not None else get_config()
        self._instances: dict[str, Any] = {}

        logger.info("DI container initialized")

    def override(self, name: str, instance: Any) -> None:
        """Replace a managed instance (tests)."""
        self._instances[name] = instance

    def get_config(self) -> MusicBoxConfig:
        return self._config

    def get_dataset(self) -> GraphDataset:
        """Get or load the relation graph dataset.

        Raises:
            GraphDataError: If the dataset file is missing or malformed
        """
        if "dataset" not in self._instances:
            try:
                self._instances["dataset"] = load_graph_dataset(self._config.graph_dataset_path)
            except (OSError, ValueError) as e:
                raise GraphDataError(f"Failed to load relation graph dataset: {e}") from e
        return self._instances["dataset"]

    def get_metrics(self) -> EngineMetrics:
        if "metrics" not in self._instances:
            self._instances["metrics"] = EngineMetrics()
        return self._instances["metrics"]

    def get_events(self) -> EngineEvents:
        if "events" not in self._instances:
            self._instances["events"] = EngineEvents()
        return self._instances["events"]

    def get_broadcaster(self) -> EventBroadcaster:
        if "broadcaster" not in self._instances:
            self._instances["broadcaster"] = EventBroadcaster(self.get_events())
        return self._instances["broadcaster"]

    def create_audio_graph(self) -> AudioGraph:
        """Create the realtime playback graph from configuration."""
        return RealtimeAudioGraph(
            sample_rate=self._config.sample_rate,
            block_size=self._config.block_size,
            device=self._config.output_device_selector,
            latency=self._config.stream_latency,
            metrics=self.get_metrics(),
        )

    def get_music_engine(self) -> MusicEngine:
        """Get or create music engine instance."""
        if "music_engine" not in self._instances:
            self._instances["music_engine"] = MusicEngine(
                dataset=self.get_dataset(),
                graph_factory=self.create_audio_graph,
                events=self.get_events(),
                metrics=self.get_metrics(),
                context=MusicalContext(
                    bpm=self._config.default_bpm,
                    mean_notes_per_bar=self._config.default_mean_notes_per_bar,
                ),
                max_voices=self._config.max_voices,
                sample_rate=self._config.sample_rate,
                block_size=self._config.block_size,
                export_seed=self._config.export_seed,
            )
        return self._instances["music_engine"]

    async def cleanup(self) -> None:
        """Clean up all managed instances."""
        logger.info("Cleaning up DI container")

        if "music_engine" in self._instances:
            try:
                await self._instances["music_engine"].close()
            except Exception as e:
                logger.error(f"Error closing music engine: {e}")

        if "broadcaster" in self._instances:
            self._instances["broadcaster"].close()

        self._instances.clear()
        logger.info("DI container cleaned up")


# Global container instance
_container: Optional[DIContainer] = None


def get_container() -> DIContainer:
    """Get the global DI container instance.

    Returns:
        DIContainer singleton
    """
    global _container
    if _container is None:
        _container = DIContainer()
    return _container


def set_container(container: Optional[DIContainer]) -> None:
    """Install a container (tests)."""
    global _container
    _container = container


async def cleanup_container() -> None:
    """Clean up the global DI container."""
    global _container
    if _container is not None:
        await _container.cleanup()
        _container = None
