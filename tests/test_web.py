import pytest
from starlette.testclient import TestClient

from narrator.engine import ReaderEngine
from narrator.web import server
from narrator.web.server import create_app
from narrator.web.state import ReaderState


def _receive_until(ws, event, match=lambda data: True, limit=50):
    """Read WebSocket messages until one of type event satisfies match."""
    seen = []
    for _ in range(limit):
        msg = ws.receive_json()
        seen.append(msg)
        if msg["type"] == event and match(msg["data"]):
            return msg, seen
    raise AssertionError(f"no {event!r} message in {seen}")


@pytest.fixture
def app(backend):
    return create_app(ReaderEngine(fetch=backend.fetch))


def test_state_route(app):
    with TestClient(app) as client:
        r = client.get("/api/state")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "idle"
    assert data["content_id"] is None
    assert data["current_word_index"] == -1


def test_health_reports_backend(app, monkeypatch):
    async def backend_down(host):
        return False

    monkeypatch.setattr(server, "check_server", backend_down)
    with TestClient(app) as client:
        data = client.get("/api/health").json()
    assert data["status"] == "degraded"
    assert data["checks"]["tts_backend"]["ok"] is False


def test_ws_sync_attach_and_play(app):
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            sync = ws.receive_json()
            assert sync["type"] == "sync"
            assert sync["data"]["status"] == "idle"

            ws.send_json({"type": "attach", "lesson_id": "lesson-a", "text": "Hello world"})
            ws.send_json({"type": "play"})

            msg, seen = _receive_until(ws, "timings_loaded")
            assert msg["data"] == {"words": ["Hello", "world"]}
            assert {"type": "status", "data": {"status": "loading"}} in seen

            msg, _ = _receive_until(ws, "word_index", lambda d: d["index"] == 0)
            assert msg["data"]["position"] == [0, 0]

            ws.send_json({"type": "pause"})
            _receive_until(ws, "status", lambda d: d["status"] == "paused")


def test_ws_play_without_lesson(app):
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"type": "play"})
            msg, _ = _receive_until(ws, "error")
    assert msg["data"]["kind"] == "not_ready"


def test_ws_invalid_rate(app):
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"type": "set_rate", "rate": "fast"})
            msg, _ = _receive_until(ws, "error")
            assert msg["data"]["kind"] == "invalid_rate"

            ws.send_json({"type": "set_rate", "rate": 1.3})
            msg, _ = _receive_until(ws, "rate")
            assert msg["data"] == {"rate": 1.25}


async def test_slow_client_drops_oldest():
    state = ReaderState()
    queue = state.subscribe("slow")
    for i in range(60):
        state.publish("tick", {"n": i})

    assert queue.qsize() == 50
    event, data = queue.get_nowait()
    assert data == {"n": 10}
    state.unsubscribe("slow")
    assert state.client_count == 0
