# tests/test_websocket.py — WebSocket change notifications and HTTP middleware
import pytest
from httpx import AsyncClient
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from main import create_app
from models import UserRole
from tests.conftest import FakeIdentityProvider, FakeAIClient, add_profile


@pytest.mark.asyncio
async def test_request_timing_header(client: AsyncClient):
    resp = await client.get("/health")
    headers_lower = {k.lower(): v for k, v in resp.headers.items()}
    assert "x-response-time" in headers_lower


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient):
    resp = await client.get("/health", headers={"X-Request-ID": "rid-123"})
    assert resp.headers["X-Request-ID"] == "rid-123"


@pytest.mark.asyncio
async def test_cors_preflight(client: AsyncClient):
    resp = await client.options(
        "/health",
        headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "GET"},
    )
    assert resp.status_code in (200, 204, 400, 405)


def _receive_until(ws, message_type: str, limit: int = 10) -> dict:
    for _ in range(limit):
        message = ws.receive_json()
        if message["type"] == message_type:
            return message
    raise AssertionError(f"no {message_type} message received")


def test_websocket_pushes_snapshot_changes(settings, blob_store):
    app = create_app(settings, identity_provider=FakeIdentityProvider(), ai_client=FakeAIClient(), blob_store=blob_store)

    with TestClient(app) as test_client:
        store = app.state.store
        user = test_client.portal.call(add_profile, store, "Ana Admin", "ana@iti.tech", UserRole.ADMIN)
        token = FakeIdentityProvider.issue_token(user["id"])

        with test_client.websocket_connect(f"/ws?token={token}") as ws:
            connected = ws.receive_json()
            assert connected["type"] == "connected"
            assert connected["user_id"] == user["id"]

            # Subscribing to a ready cache delivers one notification immediately
            assert ws.receive_json()["type"] == "snapshot.changed"

            ws.send_json({"type": "ping"})
            assert _receive_until(ws, "pong")["type"] == "pong"

            test_client.portal.call(store.insert, "sectors", {"name": "Financeiro"})
            changed = _receive_until(ws, "snapshot.changed")
            assert changed["degraded"] == []


def test_websocket_rejects_bad_token(settings, blob_store):
    app = create_app(settings, identity_provider=FakeIdentityProvider(), ai_client=FakeAIClient(), blob_store=blob_store)

    with TestClient(app) as test_client:
        with pytest.raises(WebSocketDisconnect) as exc:
            with test_client.websocket_connect("/ws?token=not-a-jwt") as ws:
                ws.receive_json()
        assert exc.value.code == 4001


def test_websocket_survives_malformed_frames(settings, blob_store):
    app = create_app(settings, identity_provider=FakeIdentityProvider(), ai_client=FakeAIClient(), blob_store=blob_store)

    with TestClient(app) as test_client:
        user = test_client.portal.call(add_profile, app.state.store, "Bruno Silva", "bruno@iti.tech")
        token = FakeIdentityProvider.issue_token(user["id"])

        with test_client.websocket_connect(f"/ws?token={token}") as ws:
            assert ws.receive_json()["type"] == "connected"

            ws.send_text("isto não é json")
            assert _receive_until(ws, "error")["detail"] == "Mensagem inválida."

            ws.send_json({"type": "ping"})
            assert _receive_until(ws, "pong")["type"] == "pong"
