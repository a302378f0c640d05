"""
One logical connection between the gateway and one messaging identity.

A Session owns its engine handle, its dispatch queue, its cached status and
its watchdog. Every mutating engine command runs inside a queue task;
reinitialization is single-flight so every reconnection trigger shares the
same attempt.
"""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import httpx

from wagate.engine.base import (
    STATE_CONNECTED,
    STATE_UNKNOWN,
    EngineEvent,
    EngineEventType,
    MessagingEngine,
    SendReceipt,
)
from wagate.logger import get_logger
from wagate.models import SessionInfo
from wagate.sessions.delivery import SendResult, build_media, is_transient_error
from wagate.sessions.errors import InitializationError, SessionNotReady
from wagate.sessions.queue import DispatchQueue
from wagate.sessions.status import SessionState, SessionStatus, StatusEmitter
from wagate.sessions.watchdog import (
    DEFAULT_INTERVAL,
    DEFAULT_RECONNECT_DELAY,
    ReconnectWatchdog,
)
from wagate.validation import ValidationError, normalize_recipient

logger = get_logger(__name__)


class Session:
    """
    Aggregates one engine handle with its queue, status and watchdog.

    Args:
        client_id: Caller-supplied session key.
        engine: The engine handle, exclusively owned by this session.
        credential_path: The client's credential folder.
        notifier: Notification channel for status transitions.
        http_client: Shared client used to fetch remote media.
    """

    def __init__(
        self,
        client_id: str,
        engine: MessagingEngine,
        credential_path: Path,
        notifier=None,
        *,
        watchdog_interval: float = DEFAULT_INTERVAL,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        http_client: Optional[httpx.AsyncClient] = None,
        media_timeout: float = 30.0,
    ):
        self.client_id = client_id
        self.engine = engine
        self.credential_path = credential_path
        self.status = SessionStatus()
        self.emitter = StatusEmitter(client_id, self.status, notifier)
        self.queue = DispatchQueue(name=client_id)
        self.watchdog = ReconnectWatchdog(
            self, interval=watchdog_interval, reconnect_delay=reconnect_delay
        )
        self.created_at = datetime.now()
        self._http = http_client
        self._media_timeout = media_timeout
        self._booting: Optional[asyncio.Future] = None
        self._unsubscribe = None
        self._closed = False

    @property
    def state(self) -> SessionState:
        return self.status.state

    @property
    def reason(self) -> str:
        return self.status.reason

    @property
    def ready(self) -> bool:
        return self.status.ready

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def booting(self) -> bool:
        return self._booting is not None

    def info(self) -> SessionInfo:
        return SessionInfo(
            client_id=self.client_id,
            status=self.status.code,
            reason=self.status.reason,
            last_ready_at=self.status.last_ready_at,
            last_qr_at=self.status.last_qr_at,
        )

    # -- Lifecycle -----------------------------------------------------------

    def start(self, after: Optional[asyncio.Future] = None) -> asyncio.Future:
        """
        Subscribe to engine events, start the watchdog and queue the first
        initialization.

        Args:
            after: Optional awaitable the initialization waits for first,
                e.g. the teardown of the session this one replaces.
        """
        self._unsubscribe = self.engine.subscribe(self.handle_event)
        self.watchdog.start()
        self.emitter.transition(SessionState.CONNECTING)
        return self.queue.add(lambda: self._initialize(after))

    async def _initialize(self, after: Optional[asyncio.Future] = None) -> bool:
        if after is not None:
            try:
                await after
            except Exception as e:
                logger.warning(f"[{self.client_id}] Previous session teardown failed: {e}")

        logger.info(f"[{self.client_id}] Initializing engine")
        try:
            await self.engine.initialize()
        except Exception as e:
            logger.error(f"[{self.client_id}] Initialization failed: {e}")
            self.emitter.transition(SessionState.ERROR, str(e))
            return False
        return True

    async def close(self, logout: bool = False) -> None:
        """
        Tear down the engine handle, cancel timers and any in-flight
        reinitialization, and stop publishing on the session topic.

        Queued tasks are not cancelled; they drain against the torn-down
        handle and fail on their own.
        """
        if self._closed:
            return
        self._closed = True

        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        # A replacement session may already own the notification topic
        self.emitter.notifier = None
        if self._booting is not None and not self._booting.done():
            self._booting.cancel()

        if logout:
            try:
                await self.engine.logout()
            except Exception as e:
                logger.warning(f"[{self.client_id}] Engine logout failed: {e}")

        try:
            await self.engine.destroy()
        except Exception as e:
            logger.error(f"[{self.client_id}] Error destroying engine: {e}")

        await self.watchdog.stop()
        self.queue.close()
        logger.info(f"[{self.client_id}] Session closed")

    # -- Events --------------------------------------------------------------

    def handle_event(self, event: EngineEvent) -> None:
        """Engine event subscription owned by this session."""
        if self._closed:
            return

        self.emitter.handle_engine_event(event)
        if event.type is EngineEventType.DISCONNECTED:
            self.watchdog.schedule_reconnect()

    def mark_disconnected(self, reason: str) -> None:
        self.emitter.transition(SessionState.DISCONNECTED, reason)

    def mark_not_ready(self) -> None:
        self.emitter.mark_not_ready()

    # -- Readiness -----------------------------------------------------------

    async def ensure_ready(self, trigger: str = "send") -> None:
        """
        Make sure the engine is connected.

        Joins the in-flight reinitialization when there is one; otherwise
        starts exactly one.

        Raises:
            SessionNotReady: The session is closed, its credentials were
                rejected, or it waits for a login code to be scanned.
        """
        if self.ready:
            return
        if self._closed:
            raise SessionNotReady(self.client_id, "session closed")

        state = self.status.state
        if state is SessionState.AUTH_FAILURE:
            raise SessionNotReady(
                self.client_id, f"authentication rejected: {self.status.reason}"
            )
        if state is SessionState.WAITING_QR:
            raise SessionNotReady(self.client_id, "waiting for QR scan")

        # Check-and-set with no await in between
        if self._booting is None:
            self._booting = asyncio.ensure_future(self._reinitialize(trigger))
            self._booting.add_done_callback(self._booting_done)

        booting = self._booting
        try:
            await asyncio.shield(booting)
        except asyncio.CancelledError:
            if booting.cancelled() and self._closed:
                raise SessionNotReady(self.client_id, "session closed") from None
            raise

    def _booting_done(self, future: asyncio.Future) -> None:
        if self._booting is future:
            self._booting = None
        if not future.cancelled():
            # Retrieve so a failure nobody awaited is not reported as lost
            future.exception()

    async def _reinitialize(self, trigger: str) -> None:
        state = await self._poll_state()
        self._check_open()
        if state == STATE_CONNECTED:
            self.emitter.transition(SessionState.READY, "reconnected")
            return

        logger.info(
            f"[{self.client_id}] Reinitializing (trigger={trigger}, engine={state})"
        )
        self.emitter.transition(SessionState.RECONNECTING, trigger)
        try:
            await self.engine.initialize()
        except Exception as e:
            self._check_open()
            self.emitter.transition(SessionState.ERROR, str(e))
            raise InitializationError(str(e)) from e

        self._check_open()
        if self.ready:
            return

        state = await self._poll_state()
        self._check_open()
        if state == STATE_CONNECTED:
            self.emitter.transition(SessionState.READY, "reconnected")
            return

        reason = f"engine {state} after reinitialize"
        if self.status.state is SessionState.RECONNECTING:
            self.emitter.transition(SessionState.ERROR, reason)
        raise SessionNotReady(self.client_id, reason)

    def _check_open(self) -> None:
        if self._closed:
            raise SessionNotReady(self.client_id, "session closed")

    async def _poll_state(self) -> str:
        try:
            return await self.engine.get_state() or STATE_UNKNOWN
        except Exception as e:
            logger.debug(f"[{self.client_id}] State poll failed: {e}")
            return STATE_UNKNOWN

    # -- Sending -------------------------------------------------------------

    async def send_message_safe(
        self,
        to: str,
        message: Optional[str] = None,
        image: Any = None,
    ) -> SendResult:
        """
        Send text and/or an image, retrying once on a transient failure.

        The whole sequence runs as one queue task.
        """
        chat_id = normalize_recipient(to)
        if not message and not image:
            raise ValidationError("Missing data: message or image required")

        return await self.queue.add(
            lambda: self._send_with_retry(chat_id, message, image)
        )

    async def _send_with_retry(
        self, chat_id: str, message: Optional[str], image: Any
    ) -> SendResult:
        await self.ensure_ready()
        try:
            receipt = await self._send_once(chat_id, message, image)
            attempt = 1
        except Exception as e:
            if not is_transient_error(e):
                raise
            logger.warning(
                f"[{self.client_id}] Transient send failure to {chat_id}: {e}. Retrying once"
            )
            self.mark_not_ready()
            await self.ensure_ready()
            receipt = await self._send_once(chat_id, message, image)
            attempt = 2

        logger.info(
            f"[{self.client_id}] Sent {receipt.id} to {chat_id} (attempt {attempt})"
        )
        return SendResult(id=receipt.id, attempt=attempt)

    async def _send_once(
        self, chat_id: str, message: Optional[str], image: Any
    ) -> SendReceipt:
        if image:
            # Media handles do not survive a reconnect; rebuild every attempt
            media = await build_media(
                image, client=self._http, timeout=self._media_timeout
            )
            options = {"caption": message} if message else {}
            return await self.engine.send_message(chat_id, media, options)

        return await self.engine.send_message(chat_id, message, {})
