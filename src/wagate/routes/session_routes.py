"""
Routes for session management.

Provides:
- POST /api/session        create or reuse a session
- POST /api/send           send text or image with one safe retry
- POST /api/logout         logout and delete credentials
- POST /api/restart        reinitialize without losing credentials
- GET  /api/sessions       cached status of every session
- GET  /api/status/{id}    live status of one session
"""

import json

from pydantic import ValidationError as ModelValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse

from wagate.logger import get_logger
from wagate.models import ActionResponse, ClientRequest, SendRequest, SendResponse
from wagate.sessions.errors import SessionNotFound, SessionNotReady
from wagate.sessions.registry import SessionRegistry
from wagate.validation import (
    ValidationError,
    validate_client_id,
    validate_send_request,
)

logger = get_logger(__name__)


def _get_registry(request: Request) -> SessionRegistry:
    """Get the SessionRegistry from app state."""
    return request.app.state.registry


async def _read_body(request: Request) -> dict:
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _client_id_from_body(request: Request) -> str:
    try:
        body = ClientRequest(**await _read_body(request))
    except ModelValidationError as e:
        raise ValidationError(f"Invalid request: {e}") from e
    return validate_client_id(body.client_id)


async def create_session(request: Request) -> JSONResponse:
    """Create (or reuse) a session; initialization continues in background."""
    try:
        client_id = await _client_id_from_body(request)
    except ValidationError as e:
        return _error(str(e), 400)

    _get_registry(request).get_or_create(client_id)
    return JSONResponse(ActionResponse(status="pending", client_id=client_id).dump())


async def send_message(request: Request) -> JSONResponse:
    """Send a text message and/or image through a session."""
    try:
        body = SendRequest(**await _read_body(request))
        client_id = validate_client_id(body.client_id)
        phone, message, image = validate_send_request(
            body.phone, body.message, body.image
        )
    except ModelValidationError as e:
        return _error(f"Invalid request: {e}", 400)
    except ValidationError as e:
        return _error(str(e), 400)

    registry = _get_registry(request)
    if registry.get(client_id) is None:
        return _error("Session not found", 404)

    try:
        result = await registry.send_message_safe(
            client_id, phone, message=message, image=image
        )
    except SessionNotFound:
        return _error("Session not found", 404)
    except SessionNotReady as e:
        return _error(str(e), 409)
    except ValidationError as e:
        return _error(str(e), 400)
    except Exception as e:
        logger.error(f"[{client_id}] Send to {phone} failed: {e}")
        return _error(str(e) or type(e).__name__, 500)

    return JSONResponse(SendResponse(id=result.id, attempt=result.attempt).dump())


async def logout_session(request: Request) -> JSONResponse:
    """Logout and delete credentials; the next session needs a new QR scan."""
    try:
        client_id = await _client_id_from_body(request)
    except ValidationError as e:
        return _error(str(e), 400)

    await _get_registry(request).logout(client_id)
    return JSONResponse(ActionResponse(status="logout", client_id=client_id).dump())


async def restart_session(request: Request) -> JSONResponse:
    """Rebuild the session's engine while keeping its credentials."""
    try:
        client_id = await _client_id_from_body(request)
    except ValidationError as e:
        return _error(str(e), 400)

    try:
        await _get_registry(request).restart(client_id)
    except SessionNotFound:
        return _error("Session not found", 404)
    except Exception as e:
        logger.error(f"[{client_id}] Restart failed: {e}")
        return _error(str(e) or type(e).__name__, 500)

    return JSONResponse(ActionResponse(status="restarting", client_id=client_id).dump())


async def list_sessions(request: Request) -> JSONResponse:
    """List in-memory sessions with their cached status."""
    sessions = _get_registry(request).list()
    return JSONResponse([info.dump() for info in sessions])


async def get_status(request: Request) -> JSONResponse:
    """Status of one session, for UIs resynchronizing after a refresh."""
    client_id = request.path_params["client_id"]
    status = await _get_registry(request).status(client_id)
    return JSONResponse(status.dump())
