"""
WebSocket endpoint for session notifications (/ws).

Protocol:
    Subscriber -> Server: {"type": "join", "clientId": "..."}
    Server -> Subscriber: {"event": "status", "data": {"code", "reason", "ts"}}
                          {"event": "qr", "data": {"qr": "..."}}
                          {"event": "session_cleaned", "data": {"status": "cleaned", "reason"}}

Browsers cannot set arbitrary headers on a WebSocket handshake, so the API
key is also accepted as the ``apiKey`` query parameter.
"""

from pydantic import ValidationError
from starlette.websockets import WebSocket, WebSocketDisconnect

from wagate.logger import get_logger
from wagate.middleware import KeyRing
from wagate.models import JoinMessage
from wagate.sessions.status import now_ms

logger = get_logger(__name__)


def _authorized(websocket: WebSocket) -> bool:
    expected = getattr(websocket.app.state, "api_key", "")
    if not expected:
        return True
    key = websocket.query_params.get("apiKey") or websocket.headers.get("x-api-key")
    return KeyRing([expected]).accepts(key)


async def notifications_websocket_endpoint(websocket: WebSocket):
    """Room subscriptions for session status pushes."""
    hub = getattr(websocket.app.state, "hub", None)
    registry = getattr(websocket.app.state, "registry", None)
    if hub is None or registry is None:
        await websocket.close(code=1011, reason="Session system not initialized")
        return

    if not _authorized(websocket):
        await websocket.close(code=1008, reason="unauthorized")
        return

    await websocket.accept()

    try:
        while True:
            data = await websocket.receive_json()
            if not isinstance(data, dict) or data.get("type") != "join":
                logger.debug(f"Ignoring subscriber message: {data!r}")
                continue

            try:
                join = JoinMessage(**data)
            except ValidationError:
                continue
            if not join.client_id:
                continue

            hub.join(websocket, join.client_id)

            session = registry.get(join.client_id)
            if session is not None:
                await hub.send(
                    websocket,
                    "status",
                    {
                        "code": session.status.code,
                        "reason": session.status.reason,
                        "ts": now_ms(),
                    },
                )

    except WebSocketDisconnect:
        logger.debug("Notification subscriber disconnected")
    except Exception as e:
        logger.error(f"Notification WebSocket error: {e}")
    finally:
        hub.leave(websocket)
