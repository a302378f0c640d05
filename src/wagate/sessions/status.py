"""
Canonical session state machine.

Raw engine events and watchdog findings are normalized into one of the
SessionState values by ``canonicalize`` and applied by a StatusEmitter,
which writes the cached session fields first and publishes second, so a
status query never observes an older state than the one published.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from wagate.engine.base import (
    STATE_CONNECTED,
    STATE_OPENING,
    STATE_PAIRING,
    EngineEvent,
    EngineEventType,
)
from wagate.logger import get_logger

logger = get_logger(__name__)


class SessionState(str, Enum):
    CONNECTING = "connecting"
    WAITING_QR = "waiting_qr"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    AUTH_FAILURE = "auth_failure"
    ERROR = "error"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Transition:
    state: SessionState
    reason: str = ""


@dataclass
class SessionStatus:
    """Cached status fields of one session."""

    state: SessionState = SessionState.CONNECTING
    reason: str = ""
    ready: bool = False
    last_ready_at: int = 0
    last_qr_at: int = 0
    updated_at: int = 0

    @property
    def code(self) -> str:
        """
        Reported status code. A transient send failure clears ``ready`` but
        keeps ``state``, so the code stays ``ready`` until the next transition.
        """
        return SessionState.READY.value if self.ready else self.state.value


def canonicalize(event: EngineEvent) -> Optional[Transition]:
    """
    Map a raw engine event to its canonical transition.

    Returns None for events that carry no state change.
    """
    if event.type is EngineEventType.QR:
        return Transition(SessionState.WAITING_QR)
    if event.type is EngineEventType.AUTHENTICATED:
        return Transition(SessionState.AUTHENTICATED)
    if event.type is EngineEventType.READY:
        return Transition(SessionState.READY)
    if event.type is EngineEventType.DISCONNECTED:
        return Transition(SessionState.DISCONNECTED, _text(event.data))
    if event.type is EngineEventType.AUTH_FAILURE:
        return Transition(SessionState.AUTH_FAILURE, _text(event.data))
    if event.type is EngineEventType.CHANGE_STATE:
        state = _text(event.data)
        if state == STATE_CONNECTED:
            return None
        if state in (STATE_OPENING, STATE_PAIRING):
            return Transition(SessionState.CONNECTING, state)
        return Transition(SessionState.DISCONNECTED, state)
    return None


def _text(data: Any) -> str:
    if data is None:
        return ""
    if isinstance(data, dict):
        return str(data.get("reason") or data.get("message") or data.get("state") or "")
    return str(data)


class StatusEmitter:
    """
    Applies canonical transitions to a SessionStatus and publishes them on
    the session's notification topic.
    """

    def __init__(self, client_id: str, status: SessionStatus, notifier=None):
        self.client_id = client_id
        self.status = status
        self.notifier = notifier

    def apply(self, transition: Transition) -> SessionStatus:
        """Write the transition to the cached fields, then publish it."""
        status = self.status
        previous = status.state
        ts = now_ms()

        status.state = transition.state
        status.reason = transition.reason
        status.ready = transition.state is SessionState.READY
        status.updated_at = ts
        if transition.state is SessionState.READY:
            status.last_ready_at = ts
        elif transition.state is SessionState.WAITING_QR:
            status.last_qr_at = ts

        if previous is not transition.state:
            suffix = f" ({transition.reason})" if transition.reason else ""
            logger.info(
                f"[{self.client_id}] {previous.value} -> {transition.state.value}{suffix}"
            )

        self.publish(
            "status",
            {"code": transition.state.value, "reason": transition.reason, "ts": ts},
        )
        return status

    def transition(self, state: SessionState, reason: str = "") -> SessionStatus:
        return self.apply(Transition(state, reason))

    def handle_engine_event(self, event: EngineEvent) -> Optional[Transition]:
        """Canonicalize and apply one raw engine event."""
        transition = canonicalize(event)
        if transition is None:
            logger.debug(
                f"[{self.client_id}] Ignoring {event.type.value} event: {event.data!r}"
            )
            return None

        self.apply(transition)
        if event.type is EngineEventType.QR:
            self.publish("qr", {"qr": event.data})
        return transition

    def mark_not_ready(self) -> None:
        """Clear the ready flag without publishing a transition."""
        self.status.ready = False

    def publish(self, event: str, payload: dict[str, Any]) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.publish(self.client_id, event, payload)
        except Exception as e:
            logger.error(f"[{self.client_id}] Failed to publish {event}: {e}")
