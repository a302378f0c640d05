"""Session lifecycle errors."""


class SessionError(Exception):
    """Base class for session lifecycle errors."""


class SessionNotFound(SessionError):
    def __init__(self, client_id: str):
        super().__init__(f"Session not found: {client_id}")
        self.client_id = client_id


class SessionNotReady(SessionError):
    """The session cannot accept commands in its current state."""

    def __init__(self, client_id: str, reason: str):
        super().__init__(f"Session '{client_id}' is not ready: {reason}")
        self.client_id = client_id
        self.reason = reason


class InitializationError(SessionError):
    """The engine failed to (re)initialize."""
