"""
Registry of live sessions.
Responsible for session creation, lookup, teardown and command routing.
"""

import asyncio
from pathlib import Path
from typing import Any, Callable, Optional

import httpx

from wagate.config import GatewayConfig
from wagate.engine.base import STATE_UNKNOWN, MessagingEngine
from wagate.engine.bridge import BridgeEngine
from wagate.logger import get_logger
from wagate.models import SessionInfo, StatusResponse
from wagate.sessions.credentials import CredentialStore
from wagate.sessions.delivery import SendResult
from wagate.sessions.errors import SessionNotFound
from wagate.sessions.session import Session
from wagate.sessions.watchdog import DEFAULT_INTERVAL, DEFAULT_RECONNECT_DELAY

logger = get_logger(__name__)

# (client_id, credential root) -> engine
EngineFactory = Callable[[str, str], MessagingEngine]


class SessionRegistry:
    """
    Process-wide map from client ID to Session.

    Created once at application startup and drained on shutdown. All
    registry mutations are synchronous, so a check-then-insert can never
    interleave with another caller on the event loop.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        engine_factory: EngineFactory,
        notifier=None,
        *,
        watchdog_interval: float = DEFAULT_INTERVAL,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        media_timeout: float = 30.0,
    ):
        self.credentials = credentials
        self.engine_factory = engine_factory
        self.notifier = notifier
        self.watchdog_interval = watchdog_interval
        self.reconnect_delay = reconnect_delay
        self.media_timeout = media_timeout
        self.sessions: dict[str, Session] = {}
        self._http: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_config(cls, config: GatewayConfig, notifier=None) -> "SessionRegistry":
        """Build a registry whose sessions drive the configured bridge."""

        def factory(client_id: str, data_path: str) -> MessagingEngine:
            return BridgeEngine(client_id, data_path, bridge_url=config.bridge_url)

        return cls(
            CredentialStore(config.auth_dir),
            factory,
            notifier,
            watchdog_interval=config.watchdog_interval,
            reconnect_delay=config.reconnect_delay,
            media_timeout=config.media_timeout,
        )

    async def start(self) -> None:
        self.credentials.ensure_root()
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=self.media_timeout, follow_redirects=True
            )
        logger.info(f"Session registry started (credentials: {self.credentials.root})")

    async def shutdown(self) -> None:
        """Destroy every engine handle. Credentials are kept."""
        sessions = list(self.sessions.values())
        self.sessions.clear()
        if sessions:
            logger.info(f"Shutting down {len(sessions)} sessions")
            await asyncio.gather(
                *(session.close() for session in sessions), return_exceptions=True
            )

        if self._http is not None:
            await self._http.aclose()
            self._http = None

    # -- Lookup --------------------------------------------------------------

    def get(self, client_id: str) -> Optional[Session]:
        return self.sessions.get(client_id)

    def __contains__(self, client_id: str) -> bool:
        return client_id in self.sessions

    def __len__(self) -> int:
        return len(self.sessions)

    # -- Lifecycle -----------------------------------------------------------

    def get_or_create(self, client_id: str) -> Session:
        """
        Return the client's session, creating and starting it if needed.

        Returns immediately; initialization proceeds in the session queue.
        """
        session = self.sessions.get(client_id)
        if session is not None:
            return session

        session = self._build(client_id)
        self.sessions[client_id] = session
        logger.info(f"[{client_id}] Session created")
        session.start()
        return session

    def _build(self, client_id: str) -> Session:
        credential_path = self.credentials.path_for(client_id)
        engine = self.engine_factory(client_id, str(self.credentials.root))
        return Session(
            client_id,
            engine,
            credential_path,
            self.notifier,
            watchdog_interval=self.watchdog_interval,
            reconnect_delay=self.reconnect_delay,
            http_client=self._http,
            media_timeout=self.media_timeout,
        )

    async def logout(self, client_id: str, reason: str = "logout_manual") -> list[Path]:
        """
        Log out, destroy the engine and delete every credential entry of the
        client. Publishes a terminal ``session_cleaned`` notification.

        Returns:
            The deleted credential paths.
        """
        session = self.sessions.pop(client_id, None)
        if session is not None:
            await session.close(logout=True)

        removed = self.credentials.purge(client_id)
        logger.info(f"[{client_id}] Session cleaned ({reason})")
        self._publish(client_id, "session_cleaned", {"status": "cleaned", "reason": reason})
        return removed

    async def restart(self, client_id: str) -> Session:
        """
        Replace the client's session with a fresh one reusing the same
        credentials. The new session initializes once the old handle is down.

        Raises:
            SessionNotFound: No session is registered for the client.
        """
        old = self.sessions.get(client_id)
        if old is None:
            raise SessionNotFound(client_id)

        session = self._build(client_id)
        self.sessions[client_id] = session

        teardown = asyncio.ensure_future(old.close())
        session.start(after=teardown)
        logger.info(f"[{client_id}] Session restarting")
        await teardown
        return session

    # -- Commands ------------------------------------------------------------

    async def send_message_safe(
        self,
        client_id: str,
        to: str,
        message: Optional[str] = None,
        image: Any = None,
    ) -> SendResult:
        session = self.sessions.get(client_id)
        if session is None:
            raise SessionNotFound(client_id)
        return await session.send_message_safe(to, message=message, image=image)

    async def status(self, client_id: str) -> StatusResponse:
        """Live status of one session; unknown clients report not_found."""
        session = self.sessions.get(client_id)
        if session is None:
            return StatusResponse(code="disconnected", reason="not_found")

        try:
            engine_state = await session.engine.get_state() or STATE_UNKNOWN
        except Exception as e:
            logger.debug(f"[{client_id}] State poll failed: {e}")
            engine_state = STATE_UNKNOWN

        status = session.status
        return StatusResponse(
            code=status.code,
            reason=status.reason,
            wweb_state=engine_state,
            last_ready_at=status.last_ready_at,
            last_qr_at=status.last_qr_at,
        )

    def _publish(self, client_id: str, event: str, payload: dict) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.publish(client_id, event, payload)
        except Exception as e:
            logger.error(f"[{client_id}] Failed to publish {event}: {e}")

    # Defined last: the name shadows the builtin inside the class body
    def list(self) -> list[SessionInfo]:
        """Snapshot of cached status; never touches an engine."""
        return [session.info() for session in self.sessions.values()]
