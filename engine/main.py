"""FastAPI control surface for the Music Box engine.

REST endpoints for transport, parameters and export, plus a WebSocket that
streams chord, note and play-state notifications.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from engine.di_container import cleanup_container, get_container
from engine.exceptions import BackendUnavailableError, MusicBoxError
from engine.logging_config import setup_logging
from engine.synth_params import SynthParamsUpdate

# Initialize logging
setup_logging()
logger = logging.getLogger(__name__)

# Global startup timestamp
_startup_time = 0.0

MAX_EXPORT_HYPERBARS = 64


class TempoUpdate(BaseModel):
    """Tempo and density change; unset fields are left alone."""

    bpm: Optional[float] = Field(default=None, gt=0.0)
    mean_notes_per_bar: Optional[float] = Field(default=None, gt=0.0, le=64.0)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager (startup/shutdown).

    Args:
        app: FastAPI application instance

    Yields:
        Control during application lifetime
    """
    global _startup_time

    logger.info("=" * 60)
    logger.info("Starting Music Box server...")
    _startup_time = time.time()

    container = get_container()
    config = container.get_config()

    logger.info(f"Environment: {config.env}")
    logger.info(f"Host: {config.host}:{config.port}")
    logger.info(f"Audio: {config.sample_rate}Hz, block {config.block_size}")

    # Fail fast on a missing or malformed dataset
    dataset = container.get_dataset()
    logger.info(f"Relation graph: {len(dataset.nodes)} nodes")

    container.get_music_engine()
    container.get_broadcaster()

    logger.info("Music Box server ready (playback starts on POST /api/play)")
    logger.info("=" * 60)

    yield

    logger.info("Shutting down Music Box server...")
    await cleanup_container()
    logger.info("Music Box server stopped")


app = FastAPI(
    title="Music Box API",
    version="1.0.0",
    description="Generative ambient music engine",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BackendUnavailableError)
async def backend_unavailable_handler(request, exc: BackendUnavailableError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"error": "backend_unavailable", "detail": str(exc)})


@app.exception_handler(MusicBoxError)
async def music_box_error_handler(request, exc: MusicBoxError) -> JSONResponse:
    logger.error(f"Request failed: {exc}")
    return JSONResponse(status_code=500, content={"error": type(exc).__name__, "detail": str(exc)})


# Transport


@app.get("/api/status")
async def get_status() -> dict[str, Any]:
    """Get engine status.

    Returns:
        Dictionary with playback state, tempo, chord and voice count
    """
    container = get_container()
    engine = container.get_music_engine()

    return {
        **engine.get_status(),
        "event_subscribers": container.get_broadcaster().get_active_subscribers(),
        "uptime_sec": time.time() - _startup_time,
        "timestamp": time.time(),
    }


@app.post("/api/play")
async def play() -> dict[str, Any]:
    engine = get_container().get_music_engine()
    await engine.start()
    return {"state": engine.state.value}


@app.post("/api/stop")
async def stop() -> dict[str, Any]:
    engine = get_container().get_music_engine()
    await engine.stop()
    return {"state": engine.state.value}


@app.post("/api/toggle")
async def toggle() -> dict[str, Any]:
    engine = get_container().get_music_engine()
    await engine.toggle()
    return {"state": engine.state.value}


# Parameters


@app.get("/api/params")
async def get_params() -> dict[str, Any]:
    return get_container().get_music_engine().params.model_dump()


@app.patch("/api/params")
async def update_params(update: SynthParamsUpdate) -> dict[str, Any]:
    """Apply a partial synthesis parameter update.

    Returns:
        The complete new parameter snapshot
    """
    params = get_container().get_music_engine().set_synth_params(update)
    return params.model_dump()


@app.put("/api/tempo")
async def update_tempo(update: TempoUpdate) -> dict[str, Any]:
    """Set tempo (clamped to 20-300 BPM) and/or note density."""
    engine = get_container().get_music_engine()

    if update.bpm is not None:
        engine.set_bpm(update.bpm)
    if update.mean_notes_per_bar is not None:
        engine.set_mean_notes_per_bar(update.mean_notes_per_bar)

    return {"bpm": engine.bpm, "mean_notes_per_bar": engine.context.mean_notes_per_bar}


@app.get("/api/metrics")
async def get_metrics() -> dict[str, Any]:
    """Get performance metrics.

    Returns:
        Dictionary with tick/render latency, counters and memory usage
    """
    return get_container().get_metrics().get_snapshot()


# Export


@app.get("/api/export/wav")
async def export_wav(
    hyperbars: int = Query(default=1, ge=0, le=MAX_EXPORT_HYPERBARS),
    seed: Optional[int] = Query(default=None),
) -> Response:
    data = await get_container().get_music_engine().export_to_wav(hyperbars, seed=seed)
    return Response(
        content=data,
        media_type="audio/wav",
        headers={"Content-Disposition": f'attachment; filename="musicbox-{hyperbars}hb.wav"'},
    )


@app.get("/api/export/midi")
async def export_midi(
    hyperbars: int = Query(default=1, ge=0, le=MAX_EXPORT_HYPERBARS),
    seed: Optional[int] = Query(default=None),
) -> Response:
    data = get_container().get_music_engine().export_to_midi(hyperbars, seed=seed)
    return Response(
        content=data,
        media_type="audio/midi",
        headers={"Content-Disposition": f'attachment; filename="musicbox-{hyperbars}hb.mid"'},
    )


# WebSocket Endpoint


@app.websocket("/ws/events")
async def websocket_events(websocket: WebSocket) -> None:
    """Stream engine notifications as JSON messages.

    Args:
        websocket: WebSocket connection
    """
    broadcaster = get_container().get_broadcaster()
    queue = broadcaster.subscribe()

    try:
        await websocket.accept()
        while True:
            message = await queue.get()
            await websocket.send_json(message)
    except WebSocketDisconnect:
        logger.debug("Event subscriber went away")
    finally:
        broadcaster.unsubscribe(queue)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        Health status
    """
    return {"status": "healthy", "service": "musicbox"}


def run() -> None:
    """Run the server with uvicorn using configured host and port."""
    import uvicorn

    config = get_container().get_config()
    uvicorn.run(app, host=config.host, port=config.port, log_config=None)
