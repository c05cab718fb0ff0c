"""Realtime audio graph playing through a sound device.

The PortAudio output stream pulls blocks from the graph on its callback
thread; the graph clock therefore advances with the device. Graph mutations
from the event loop are serialized with ``AudioGraph.lock``.
"""

import asyncio
import logging
import time
from typing import Optional, Union

import numpy as np

from engine.audio_graph import BLOCK_SIZE, AudioGraph
from engine.exceptions import BackendUnavailableError
from engine.interfaces.metrics import IMetricsCollector

logger = logging.getLogger(__name__)


class RealtimeAudioGraph(AudioGraph):
    """Audio graph rendered on demand by a ``sounddevice.OutputStream``."""

    def __init__(
        self,
        sample_rate: int = 44100,
        channels: int = 2,
        block_size: int = BLOCK_SIZE,
        device: Optional[Union[int, str]] = None,
        latency: Union[float, str] = "high",
        metrics: Optional[IMetricsCollector] = None,
    ):
        """Initialize realtime graph.

        Args:
            sample_rate: Stream sample rate in Hz
            channels: Output channel count
            block_size: Frames per processing block
            device: Output device index or name (None = system default)
            latency: Stream latency in seconds or "low"/"high"
            metrics: Optional metrics collector for render timing and underflows
        """
        super().__init__(sample_rate=sample_rate, channels=channels, block_size=block_size)
        self.device = device
        self.latency = latency
        self.metrics = metrics
        self._stream = None

    def _callback(self, outdata, frames, time_info, status) -> None:
        if status.output_underflow and self.metrics is not None:
            self.metrics.increment_underflow()

        started = time.perf_counter()
        audio = self.render_frames(frames)
        outdata[:] = np.clip(audio.T, -1.0, 1.0)

        if self.metrics is not None:
            elapsed_ms = (time.perf_counter() - started) * 1000
            self.metrics.record_render_latency(elapsed_ms, frames / self.sample_rate * 1000)

    def _open_stream(self):
        # Imported lazily: the PortAudio library is loaded at import time
        import sounddevice as sd

        return sd.OutputStream(
            samplerate=self.sample_rate,
            channels=self.channels,
            dtype="float32",
            blocksize=self.block_size * 4,
            device=self.device,
            latency=self.latency,
            callback=self._callback,
        )

    async def resume(self) -> None:
        """Open (first call) and start the output stream.

        Raises:
            BackendUnavailableError: If PortAudio or the device is unavailable
        """
        if self.state == "closed":
            raise BackendUnavailableError("Audio graph is closed")

        try:
            if self._stream is None:
                self._stream = await asyncio.to_thread(self._open_stream)
                logger.info(
                    f"Opened output stream: {self.sample_rate}Hz, {self.channels}ch, "
                    f"device={self.device if self.device is not None else 'default'}"
                )
            if not self._stream.active:
                await asyncio.to_thread(self._stream.start)
        except (ImportError, OSError, RuntimeError) as e:
            # ImportError without the sounddevice package, OSError when PortAudio
            # is missing, PortAudioError (a RuntimeError) for device failures
            stream, self._stream = self._stream, None
            if stream is not None:
                try:
                    stream.close()
                except Exception as close_error:
                    logger.debug(f"Closing failed output stream raised: {close_error}")
            raise BackendUnavailableError(f"Audio output unavailable: {e}") from e

        self.state = "running"

    async def suspend(self) -> None:
        if self._stream is not None and self._stream.active:
            await asyncio.to_thread(self._stream.stop)
        if self.state != "closed":
            self.state = "suspended"

    async def close(self) -> None:
        if self._stream is not None:
            stream, self._stream = self._stream, None
            await asyncio.to_thread(stream.close)
            logger.info("Output stream closed")
        self.state = "closed"
