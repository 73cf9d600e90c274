# routers/websocket_router.py — Push a message to the browser after every cache notification
import asyncio
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query

from cache import DashboardCache
from errors import AuthFailure

router = APIRouter(tags=["WebSocket"])
logger = logging.getLogger("iti-tech.realtime")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _snapshot_message(cache: DashboardCache) -> dict:
    return {
        "type": "snapshot.changed",
        "degraded": sorted(cache.degraded),
        "timestamp": _now(),
    }


async def _pump(websocket: WebSocket, queue: asyncio.Queue):
    while True:
        message = await queue.get()
        await websocket.send_json(message)


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: str = Query(...)):
    """The client re-reads whatever collections it shows when it receives `snapshot.changed`."""
    try:
        cache = await websocket.app.state.sessions.resolve(token)
    except AuthFailure as e:
        await websocket.close(code=4001, reason=e.message)
        return

    await websocket.accept()
    user_id = cache.current_user.id
    logger.info(f"WS connected: user={user_id[:8]}")
    await websocket.send_json({"type": "connected", "user_id": user_id, "timestamp": _now()})

    queue: asyncio.Queue = asyncio.Queue()
    sender = asyncio.create_task(_pump(websocket, queue))

    def _enqueue(message: dict):
        # Nothing drains the queue once the sender has stopped
        if not sender.done():
            queue.put_nowait(message)

    unsubscribe = cache.subscribe(lambda: _enqueue(_snapshot_message(cache)))

    try:
        while True:
            try:
                data = await websocket.receive_json()
            except (ValueError, KeyError):
                _enqueue({"type": "error", "detail": "Mensagem inválida.", "timestamp": _now()})
                continue
            if isinstance(data, dict) and data.get("type") == "ping":
                _enqueue({"type": "pong", "timestamp": _now()})
    except WebSocketDisconnect:
        logger.info(f"WS disconnected: user={user_id[:8]}")
    finally:
        unsubscribe()
        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f"WS sender stopped: user={user_id[:8]} {e}")
