"""
Session lifecycle management for wagate.

- registry: process-wide client ID -> Session map
- session: one engine handle with its queue, status and watchdog
- queue: per-session FIFO command sequencer
- status: canonical state machine and transition publishing
- watchdog: connectivity polling and passive reconnection
- credentials: on-disk login material
"""

from wagate.sessions.credentials import CredentialStore
from wagate.sessions.delivery import SendResult, is_transient_error
from wagate.sessions.errors import (
    InitializationError,
    SessionError,
    SessionNotFound,
    SessionNotReady,
)
from wagate.sessions.queue import DispatchQueue, QueueClosed
from wagate.sessions.registry import SessionRegistry
from wagate.sessions.session import Session
from wagate.sessions.status import SessionState, SessionStatus, StatusEmitter
from wagate.sessions.watchdog import ReconnectWatchdog

__all__ = [
    "CredentialStore",
    "DispatchQueue",
    "InitializationError",
    "QueueClosed",
    "ReconnectWatchdog",
    "SendResult",
    "Session",
    "SessionError",
    "SessionNotFound",
    "SessionNotReady",
    "SessionRegistry",
    "SessionState",
    "SessionStatus",
    "StatusEmitter",
    "is_transient_error",
]
