"""Integration tests for the HTTP/WebSocket control surface."""

import io
import random

import mido
import pytest
from fastapi.testclient import TestClient

from engine.config import MusicBoxConfig
from engine.di_container import DIContainer, set_container
from engine.exceptions import BackendUnavailableError
from engine.main import app
from engine.music_engine import MusicEngine
from engine.offline_graph import OfflineAudioGraph

SR = 8000


class BrokenGraph(OfflineAudioGraph):
    async def resume(self) -> None:
        raise BackendUnavailableError("no output device")


def install_container(graph_cls=OfflineAudioGraph) -> DIContainer:
    container = DIContainer(MusicBoxConfig(env="test", sample_rate=SR))
    engine = MusicEngine(
        container.get_dataset(),
        lambda: graph_cls(SR, sample_rate=SR),
        events=container.get_events(),
        metrics=container.get_metrics(),
        sample_rate=SR,
        rng=random.Random(5),
        tick_interval=None,
    )
    container.override("music_engine", engine)
    set_container(container)
    return container


@pytest.fixture
def client():
    install_container()
    with TestClient(app) as test_client:
        yield test_client
    set_container(None)


def test_health(client):
    """Test the health endpoint."""
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "musicbox"}


def test_status_reports_stopped_engine(client):
    """Test status before playback."""
    data = client.get("/api/status").json()

    assert data["state"] == "stopped"
    assert data["bpm"] == 45.0
    assert data["active_voices"] == 0
    assert "chord" in data
    assert data["event_subscribers"] == 0


def test_transport(client):
    """Test play, stop and toggle round-trip the engine state."""
    assert client.post("/api/play").json() == {"state": "running"}
    assert client.get("/api/status").json()["state"] == "running"
    assert client.post("/api/stop").json() == {"state": "stopped"}
    assert client.post("/api/toggle").json() == {"state": "running"}
    assert client.post("/api/toggle").json() == {"state": "stopped"}


def test_params_patch(client):
    """Test partial parameter updates return the full merged snapshot."""
    response = client.patch("/api/params", json={"delay": {"mix": 0.6}, "vibrato": {"rate": 6.0}})

    assert response.status_code == 200
    data = response.json()
    assert data["delay"]["mix"] == 0.6
    assert data["delay"]["feedback"] == 0.25
    assert data["vibrato"]["rate"] == 6.0
    assert client.get("/api/params").json() == data


@pytest.mark.parametrize(
    "payload",
    [{"delay": {"feedback": 2.0}}, {"delay": {"filter_order": 7}}, {"volume": 1}],
)
def test_params_patch_rejects_invalid(client, payload):
    """Test invalid updates are rejected and leave parameters untouched."""
    before = client.get("/api/params").json()

    response = client.patch("/api/params", json=payload)

    assert response.status_code == 422
    assert client.get("/api/params").json() == before


def test_tempo_update_clamps(client):
    """Test tempo is clamped to the supported range."""
    assert client.put("/api/tempo", json={"bpm": 500}).json()["bpm"] == 300.0
    data = client.put("/api/tempo", json={"bpm": 60, "mean_notes_per_bar": 3}).json()

    assert data == {"bpm": 60.0, "mean_notes_per_bar": 3.0}
    assert client.put("/api/tempo", json={"mean_notes_per_bar": 0}).status_code == 422


def test_metrics_endpoint(client):
    """Test the metrics snapshot is served."""
    data = client.get("/api/metrics").json()

    assert "tick_latency_ms" in data
    assert data["notes_triggered"] == 0
    assert data["memory_usage_mb"] > 0


def test_midi_export(client):
    """Test MIDI export returns a decodable attachment."""
    response = client.get("/api/export/midi", params={"hyperbars": 1, "seed": 2})

    assert response.status_code == 200
    assert response.headers["content-type"] == "audio/midi"
    assert "musicbox-1hb.mid" in response.headers["content-disposition"]
    midi = mido.MidiFile(file=io.BytesIO(response.content))
    assert midi.type == 0


def test_export_validates_hyperbars(client):
    """Test out-of-range hyperbar counts are rejected."""
    assert client.get("/api/export/midi", params={"hyperbars": -1}).status_code == 422
    assert client.get("/api/export/wav", params={"hyperbars": 1000}).status_code == 422


def test_wav_export_empty(client):
    """Test a zero-length WAV export is served as audio/wav."""
    response = client.get("/api/export/wav", params={"hyperbars": 0, "seed": 1})

    assert response.status_code == 200
    assert response.headers["content-type"] == "audio/wav"
    assert response.content[:4] == b"RIFF"


def test_event_stream(client):
    """Test play-state and chord notifications reach WebSocket subscribers."""
    with client.websocket_connect("/ws/events") as websocket:
        client.post("/api/play")

        messages = [websocket.receive_json(), websocket.receive_json()]

    assert messages[0]["type"] == "chord_changed"
    assert messages[1] == {"type": "play_state_changed", "value": True}


def test_backend_unavailable_returns_503():
    """Test a missing audio device maps to 503 and leaves the engine stopped."""
    install_container(BrokenGraph)

    with TestClient(app) as client:
        response = client.post("/api/play")
        status = client.get("/api/status").json()

    set_container(None)
    assert response.status_code == 503
    assert response.json()["error"] == "backend_unavailable"
    assert status["state"] == "stopped"
