"""HTTP and WebSocket surface, driven through the real app and container."""

import pytest
from dependency_injector import providers
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import make_settings
from core.container import container

PASSWORD = "Sup3rSecret"


@pytest.fixture
def client(tmp_path):
    settings = make_settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    container.settings.override(providers.Object(settings))
    container.reset_singletons()

    import main

    with TestClient(main.app) as test_client:
        yield test_client

    container.settings.reset_override()
    container.reset_singletons()


def register(client, username="owner", email="owner@example.com"):
    response = client.post("/api/auth/register", json={
        "username": username, "email": email, "password": PASSWORD,
    })
    assert response.status_code == 200, response.text
    return response.json()


def test_health_is_public(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["checks"] == {"database": True, "cache": True}
    assert body["services"] == []
    assert body["websocket_connections"] == 0


def test_protected_routes_require_a_session(client):
    response = client.get("/api/downloads")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTHENTICATION_ERROR"

    response = client.get("/api/downloads", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_register_login_and_me(client):
    registered = register(client)
    assert registered["user"]["role"] == "admin"

    client.cookies.clear()
    response = client.post("/api/auth/login", json={"username": "owner@example.com", "password": PASSWORD})
    assert response.status_code == 200

    me = client.get("/api/auth/me").json()
    assert me["username"] == "owner"
    assert "password_hash" not in me

    client.post("/api/auth/logout")
    client.cookies.clear()
    assert client.get("/api/auth/me").status_code == 401


def test_unconfigured_torrent_client_is_service_unavailable(client):
    register(client)

    response = client.get("/api/downloads")

    assert response.status_code == 503
    assert response.json() == {
        "success": False,
        "error": {"code": "SERVICE_UNAVAILABLE", "message": "qbittorrent: Service not available or not configured"},
    }


def test_add_rejects_invalid_magnet(client):
    register(client)
    response = client.post("/api/downloads", json={"magnet_url": "https://example.com/a.torrent"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_dashboard_reports_each_unconfigured_section(client):
    register(client)

    response = client.get("/api/system/dashboard")

    assert response.status_code == 200
    assert response.json()["data"] == {
        "downloads": {"status": "unavailable"},
        "containers": {"status": "unavailable"},
        "libraries": {"status": "unavailable"},
    }


def test_home_server_mutations_are_admin_only(client):
    register(client)
    assert client.post("/api/files/directory", json={"path": "/media/new"}).status_code == 503
    assert client.get("/api/containers").status_code == 503

    register(client, username="member", email="member@example.com")

    assert client.post("/api/files/directory", json={"path": "/media/new"}).status_code == 403
    assert client.post("/api/containers/abc/restart").status_code == 403
    assert client.post("/api/libraries/1/refresh").status_code == 403


def test_websocket_rejects_missing_token(client):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/ws/status"):
            pass
    assert exc_info.value.code == 4001


def test_websocket_ping_and_stats(client):
    token = register(client)["token"]
    client.cookies.clear()

    with client.websocket_connect(f"/ws/status?token={token}") as ws:
        connected = ws.receive_json()
        assert connected["event"] == "connected"

        ws.send_json({"type": "ping", "request_id": "r1"})
        pong = ws.receive_json()
        assert pong["type"] == "pong"
        assert pong["request_id"] == "r1"

        ws.send_json({"type": "get_stats"})
        assert ws.receive_json()["data"]["connections"] == 1

        ws.send_json({"type": "refresh_downloads", "request_id": "r2"})
        reply = ws.receive_json()
        assert reply["type"] == "error"
        assert reply["code"] == "SERVICE_UNAVAILABLE"
        assert reply["request_id"] == "r2"

        ws.send_json({"type": "bogus"})
        assert ws.receive_json()["code"] == "UNKNOWN_MESSAGE_TYPE"
