import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock

from vidmem.main import create_app
from vidmem.api.dependencies import get_registry
from vidmem.sessions.registry import SessionRegistry


@pytest.fixture
def registry(small_settings, embedder, qr_codec, frame_codec):
    return SessionRegistry(small_settings, embedder, qr_codec=qr_codec, frame_codec=frame_codec)


@pytest.fixture
def client(registry):
    app = create_app()
    app.dependency_overrides[get_registry] = lambda: registry

    with TestClient(app, raise_server_exceptions=False) as c:
        yield c

    app.dependency_overrides = {}


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_encoder_lifecycle(client, tmp_path):
    resp = client.post("/encoders", json={"session_id": "s1"})
    assert resp.status_code == 201
    assert resp.json()["state"] == "ready"

    resp = client.post("/encoders/s1/chunks", json={"chunks": ["Test chunk 1", "Test chunk 2"]})
    assert resp.status_code == 200
    assert resp.json()["chunk_count"] == 2

    resp = client.post("/encoders/s1/text", json={"text": "Test chunk 3"})
    assert resp.json()["state"] == "collecting"
    assert resp.json()["chunk_count"] == 3

    resp = client.post(
        "/encoders/s1/build",
        json={"output_path": str(tmp_path / "v.mp4"), "index_path": str(tmp_path / "v.json")},
    )
    assert resp.status_code == 200
    stats = resp.json()
    assert stats["total_frames"] == 3
    assert stats["duration_seconds"] == pytest.approx(0.1)

    resp = client.get("/encoders/s1")
    assert resp.json()["state"] == "completed"

    resp = client.post("/encoders/s1/chunks", json={"chunks": ["more"]})
    assert resp.status_code == 409
    assert resp.json()["error"] == "already_completed"

    resp = client.post("/encoders/s1/reset")
    assert resp.json()["state"] == "ready"

    assert client.get("/encoders").json() == {"sessions": ["s1"], "count": 1}

    resp = client.delete("/encoders/s1")
    assert resp.status_code == 200
    assert client.get("/encoders/s1").status_code == 404


def test_build_without_chunks_is_conflict(client, tmp_path):
    client.post("/encoders", json={"session_id": "s1"})

    resp = client.post(
        "/encoders/s1/build",
        json={"output_path": str(tmp_path / "v.mp4"), "index_path": str(tmp_path / "v.json")},
    )

    assert resp.status_code == 409
    assert resp.json()["error"] == "no_chunks"
    assert client.get("/encoders/s1").json()["state"] == "ready"


def test_start_encoder_without_body(client):
    resp = client.post("/encoders")
    assert resp.status_code == 201
    assert len(resp.json()["session_id"]) == 32


def test_duplicate_session_is_conflict(client):
    client.post("/encoders", json={"session_id": "s1"})
    resp = client.post("/encoders", json={"session_id": "s1"})
    assert resp.status_code == 409
    assert resp.json()["error"] == "session_exists"


def test_unknown_session_is_not_found(client):
    assert client.post("/encoders/nope/chunks", json={"chunks": ["a"]}).status_code == 404
    assert client.get("/retrievers/nope").status_code == 404
    assert client.delete("/retrievers/nope").status_code == 404


def test_invalid_payload(client):
    client.post("/encoders", json={"session_id": "s1"})
    resp = client.post("/encoders/s1/chunks", json={"chunks": "not a list"})
    assert resp.status_code == 422


def test_retriever_endpoints(client, tmp_path):
    video, index = str(tmp_path / "v.mp4"), str(tmp_path / "v.json")
    client.post("/encoders", json={"session_id": "s1"})
    client.post("/encoders/s1/chunks", json={"chunks": ["apple", "apricot", "banana"]})
    client.post("/encoders/s1/build", json={"output_path": video, "index_path": index})

    resp = client.post(
        "/retrievers",
        json={"video_path": video, "index_path": index, "retriever_id": "r1"},
    )
    assert resp.status_code == 201
    assert resp.json()["retriever_id"] == "r1"
    assert resp.json()["info"]["index"]["total_items"] == 3

    resp = client.post("/retrievers/r1/search", json={"query": "apply", "top_k": 2})
    assert resp.status_code == 200
    assert set(resp.json()["results"]) == {"apple", "apricot"}

    assert client.get("/retrievers/r1").json()["cached_frames"] == 2
    assert client.get("/retrievers").json()["sessions"] == ["r1"]

    assert client.delete("/retrievers/r1").status_code == 200
    assert client.get("/retrievers").json()["count"] == 0


def test_blank_query_is_unprocessable(client, tmp_path):
    video, index = str(tmp_path / "v.mp4"), str(tmp_path / "v.json")
    client.post("/encoders", json={"session_id": "s1"})
    client.post("/encoders/s1/chunks", json={"chunks": ["apple"]})
    client.post("/encoders/s1/build", json={"output_path": video, "index_path": index})
    client.post("/retrievers", json={"video_path": video, "index_path": index, "retriever_id": "r1"})

    resp = client.post("/retrievers/r1/search", json={"query": "   "})

    assert resp.status_code == 422
    assert resp.json()["error"] == "empty_text"


def test_shutdown_closes_embedder(registry, embedder):
    app = create_app()
    app.dependency_overrides[get_registry] = lambda: registry

    with TestClient(app) as c:
        c.post("/encoders", json={"session_id": "s1"})
        assert not embedder.closed

    assert embedder.closed
    assert registry.count_encoders() == 0


def test_unexpected_error_is_generic_500(client, registry):
    registry.start_encoder("s1")
    encoder = registry.get_encoder("s1")
    encoder.add_chunks(["a"])
    encoder.build = AsyncMock(side_effect=KeyError("boom"))

    resp = client.post(
        "/encoders/s1/build",
        json={"output_path": "/tmp/v.mp4", "index_path": "/tmp/v.json"},
    )

    assert resp.status_code == 500
    assert resp.json() == {"error": "internal_server_error", "detail": "Internal server error"}
