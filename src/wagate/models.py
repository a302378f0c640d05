"""
Pydantic models for the gateway.

Covers:
- REST API request/response schemas (camelCase on the wire)
- WebSocket notification messages
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def dump(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


# ─── REST API Models ─────────────────────────────────────────────────


class ClientRequest(WireModel):
    """Body of POST /api/session, /api/logout and /api/restart."""

    client_id: Optional[str] = Field(default=None, alias="clientId")


class SendRequest(WireModel):
    """POST /api/send request body."""

    client_id: Optional[str] = Field(default=None, alias="clientId")
    phone: Optional[str] = None
    message: Optional[str] = None
    image: Optional[str] = None


class SendResponse(WireModel):
    status: str = "sent"
    id: str
    attempt: int


class SessionInfo(WireModel):
    """One entry of GET /api/sessions."""

    client_id: str = Field(alias="clientId")
    status: str
    reason: str = ""
    last_ready_at: int = Field(default=0, alias="lastReadyAt")
    last_qr_at: int = Field(default=0, alias="lastQrAt")


class StatusResponse(WireModel):
    """GET /api/status/{clientId} response."""

    code: str
    reason: str = ""
    wweb_state: Optional[str] = None
    last_ready_at: int = Field(default=0, alias="lastReadyAt")
    last_qr_at: int = Field(default=0, alias="lastQrAt")


class ActionResponse(WireModel):
    status: str
    client_id: str = Field(alias="clientId")


class ErrorResponse(BaseModel):
    error: str


# ─── WebSocket Messages ──────────────────────────────────────────────


class JoinMessage(WireModel):
    """Subscriber → Server: join the room of one session."""

    type: str = "join"
    client_id: str = Field(alias="clientId")


class NotificationMessage(BaseModel):
    """Server → Subscriber: one published event."""

    event: str
    data: dict[str, Any] = Field(default_factory=dict)
