"""
Base classes and data models for messaging engines.

An engine is the external automation process that drives one web messaging
client on behalf of one session. The session lifecycle code only talks to
engines through this interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from wagate.logger import get_logger

logger = get_logger(__name__)

# Connectivity tokens reported by get_state()
STATE_CONNECTED = "CONNECTED"
STATE_OPENING = "OPENING"
STATE_PAIRING = "PAIRING"
STATE_UNKNOWN = "UNKNOWN"


class TransientConnectionError(ConnectionError):
    """
    Raised by an engine when a command failed because the automation
    connection dropped underneath it, and the command may succeed after
    reinitialization.
    """


class EngineEventType(str, Enum):
    QR = "qr"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    DISCONNECTED = "disconnected"
    AUTH_FAILURE = "auth_failure"
    CHANGE_STATE = "change_state"


@dataclass
class EngineEvent:
    """A raw event from the engine's event stream."""

    type: EngineEventType
    data: Any = None


@dataclass
class MessageMedia:
    """Base64-encoded media attachment."""

    mimetype: str
    data: str
    filename: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "mimetype": self.mimetype,
            "data": self.data,
            "filename": self.filename,
        }


@dataclass
class SendReceipt:
    """Acknowledgment that the engine accepted a message."""

    id: str
    raw: dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[EngineEvent], None]


class MessagingEngine(ABC):
    """
    Abstract base class for messaging engines.

    Each engine instance owns exactly one remote-control connection and is
    not safe for concurrent commands; callers serialize access.
    """

    def __init__(self, client_id: str, data_path: str):
        self.client_id = client_id
        self.data_path = data_path
        self._handlers: list[EventHandler] = []

    @abstractmethod
    async def initialize(self) -> None:
        """Launch (or relaunch) the client and restore credentials if present."""
        pass

    @abstractmethod
    async def get_state(self) -> Optional[str]:
        """Return the current connectivity token, e.g. ``CONNECTED``."""
        pass

    @abstractmethod
    async def send_message(
        self,
        chat_id: str,
        content: str | MessageMedia,
        options: Optional[dict[str, Any]] = None,
    ) -> SendReceipt:
        """Send text or media to a canonical chat address."""
        pass

    @abstractmethod
    async def logout(self) -> None:
        """Log the identity out on the remote side."""
        pass

    @abstractmethod
    async def destroy(self) -> None:
        """Tear down the automation client."""
        pass

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """
        Register an event handler.

        Returns:
            A callable that removes the handler again.
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def emit(self, event: EngineEvent) -> None:
        """Deliver an event to every subscribed handler."""
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    f"[{self.client_id}] Event handler failed for {event.type.value}: {e}"
                )
