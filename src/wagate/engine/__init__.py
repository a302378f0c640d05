"""
Messaging engines for wagate.

An engine is the external automation process that emulates a human user in
the web messaging client. Sessions drive engines only through the
MessagingEngine interface.
"""

from wagate.engine.base import (
    STATE_CONNECTED,
    STATE_UNKNOWN,
    EngineEvent,
    EngineEventType,
    MessageMedia,
    MessagingEngine,
    SendReceipt,
    TransientConnectionError,
)
from wagate.engine.bridge import BridgeEngine, EngineCommandError

__all__ = [
    "STATE_CONNECTED",
    "STATE_UNKNOWN",
    "BridgeEngine",
    "EngineCommandError",
    "EngineEvent",
    "EngineEventType",
    "MessageMedia",
    "MessagingEngine",
    "SendReceipt",
    "TransientConnectionError",
]
