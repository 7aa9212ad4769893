"""HTTP and WebSocket surface tests."""

import asyncio

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from runpad.config import settings
from runpad.main import app
from runpad.routes.stream import _offer
from runpad.session import get_session


@pytest.fixture
def client(session):
    app.dependency_overrides[get_session] = lambda: session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["active_runs"] == 0


def test_run_returns_result_and_line(client):
    response = client.post("/api/run", json={"source": "x = 20\nx + 22\n"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["result"] == 42
    assert body["line"] == 2
    assert "error" not in body


def test_run_reports_none_result(client):
    body = client.post("/api/run", json={"source": "None"}).json()

    assert "result" in body
    assert body["result"] is None


def test_run_reports_errors_with_line(client):
    body = client.post("/api/run", json={"source": "a = 1\nb = a / 0"}).json()

    assert body["success"] is False
    assert "division by zero" in body["error"]
    assert body["error_type"] == "ZeroDivisionError"
    assert body["line"] == 2


def test_run_requires_source(client):
    assert client.post("/api/run", json={}).status_code == 422


def test_cancel_without_active_run(client):
    response = client.post("/api/run/cancel", json={})
    assert response.json() == {"cancelled": False}


def test_output_stream_receives_console_events(client):
    with client.websocket_connect("/ws/output") as websocket:
        run = client.post("/api/run", json={"source": 'console.log("hi")\nconsole.warn("careful")'}).json()
        first = websocket.receive_json()
        second = websocket.receive_json()

    assert (first["method"], first["data"], first["line"]) == ("log", ["hi"], 1)
    assert (second["method"], second["data"], second["line"]) == ("warn", ["careful"], 2)
    assert first["run_id"] == second["run_id"] == run["run_id"]


def test_package_routes(client, installer):
    assert client.post("/api/packages/install", json={"name": "six"}).json() == {"success": True}
    assert client.get("/api/packages").json() == {"success": True, "packages": {"six": "==1.0.0"}}

    failed = client.post("/api/packages/install", json={"name": "broken-thing"}).json()
    assert failed["success"] is False
    assert "No matching distribution" in failed["error"]

    assert client.post("/api/packages/uninstall", json={"name": "six"}).json() == {"success": True}
    assert installer.packages == {}


def test_api_key_is_enforced(client, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", "secret")

    assert client.post("/api/run", json={"source": "1"}).status_code == 401
    assert client.get("/api/packages", headers={"X-API-Key": "wrong"}).status_code == 401
    assert client.post("/api/run", json={"source": "1"}, headers={"X-API-Key": "secret"}).status_code == 200
    assert client.get("/health").status_code == 200


def test_output_stream_rejects_missing_key(client, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", "secret")

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/output") as websocket:
            websocket.receive_json()

    with client.websocket_connect("/ws/output?api_key=secret"):
        pass


def test_slow_subscriber_keeps_the_newest_events():
    queue = asyncio.Queue(maxsize=2)

    for n in range(3):
        _offer(queue, {"data": [n]})

    assert queue.qsize() == 2
    assert [queue.get_nowait()["data"] for _ in range(2)] == [[1], [2]]
