"""Music engine interface definitions."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Optional

if TYPE_CHECKING:
    from composition.melody_generator import NoteEvent
    from engine.synth_params import SynthParams, SynthParamsUpdate


class IMusicEngine(ABC):
    """Live generative playback plus offline export."""

    @abstractmethod
    async def start(self) -> None:
        """Acquire the playback backend and begin scheduling notes.

        Raises:
            BackendUnavailableError: If the audio backend cannot be started
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop scheduling and release every audio node (idempotent)."""
        pass

    @abstractmethod
    async def toggle(self) -> None:
        """Start when stopped, stop otherwise."""
        pass

    @abstractmethod
    def tick(self, now: float) -> int:
        """Run one scheduling step at playback time now.

        Args:
            now: Playback clock in seconds

        Returns:
            Number of notes triggered
        """
        pass

    @abstractmethod
    def is_running(self) -> bool:
        pass

    @abstractmethod
    def set_synth_params(self, update: "SynthParamsUpdate") -> "SynthParams":
        """Apply a partial parameter update.

        Args:
            update: Changed fields only

        Returns:
            The new parameter snapshot
        """
        pass

    @abstractmethod
    def generate_music_data(self, hyperbars: int, seed: Optional[int] = None) -> list["NoteEvent"]:
        """Generate a finite note list over hyperbars x 8 bars."""
        pass

    @abstractmethod
    async def export_to_wav(
        self,
        hyperbars: int,
        seed: Optional[int] = None,
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> bytes:
        """Generate, render and encode a PCM16 WAV file.

        Raises:
            ExportError: If rendering or encoding fails
        """
        pass

    @abstractmethod
    def export_to_midi(self, hyperbars: int, seed: Optional[int] = None) -> bytes:
        """Generate and encode a format-0 Standard MIDI File."""
        pass
