"""Offline audio graph rendering into a fixed-length buffer."""

import logging
from typing import Callable, Optional

import numpy as np

from engine.audio_graph import BLOCK_SIZE, AudioGraph

logger = logging.getLogger(__name__)


class OfflineAudioGraph(AudioGraph):
    """Renders as fast as possible into a (channels, length) buffer.

    The clock only moves while rendering, so the graph also serves as a
    manually driven backend (``render_until``) for deterministic tests of the
    live engine.
    """

    def __init__(
        self,
        length_frames: int,
        sample_rate: int = 44100,
        channels: int = 2,
        block_size: int = BLOCK_SIZE,
    ):
        """Initialize offline graph.

        Args:
            length_frames: Total frames to render
            sample_rate: Sample rate in Hz
            channels: Output channel count
            block_size: Frames per processing block
        """
        if length_frames < 0:
            raise ValueError(f"Invalid render length: {length_frames}")

        super().__init__(sample_rate=sample_rate, channels=channels, block_size=block_size)
        self.length_frames = int(length_frames)
        self.resume_count = 0
        self.closed = False

    @property
    def duration(self) -> float:
        return self.length_frames / self.sample_rate

    def render(
        self,
        on_block: Optional[Callable[[float, float], None]] = None,
        callback_interval: float = 0.25,
    ) -> np.ndarray:
        """Render the whole buffer.

        Args:
            on_block: Called as ``on_block(current_time, horizon)`` before
                rendering each span, so callers can schedule the nodes needed
                up to ``horizon`` progressively
            callback_interval: Seconds rendered between callbacks

        Returns:
            Float64 array of shape (channels, length_frames)
        """
        out = np.zeros((self.channels, self.length_frames))
        span = max(self.block_size, int(callback_interval * self.sample_rate))
        position = 0

        while position < self.length_frames:
            frames = min(span, self.length_frames - position)
            if on_block is not None:
                on_block(self.current_time, (self._frame + frames + self.block_size) / self.sample_rate)
            out[:, position : position + frames] = self.render_frames(frames)
            position += frames

        logger.debug(f"Offline render complete: {self.length_frames} frames @ {self.sample_rate}Hz")
        return out

    def render_until(self, time: float) -> np.ndarray:
        """Render whole blocks until the clock reaches time.

        Returns:
            The rendered audio, shape (channels, frames)
        """
        target = int(round(time * self.sample_rate))
        blocks = [np.zeros((self.channels, 0))]
        while self._frame < target:
            blocks.append(self.render_block())
        return np.concatenate(blocks, axis=1)

    async def resume(self) -> None:
        self.resume_count += 1
        self.state = "running"

    async def suspend(self) -> None:
        self.state = "suspended"

    async def close(self) -> None:
        self.closed = True
        self.state = "closed"
