"""
Reconnect Watchdog: periodic connectivity polling for one session.

Every tick polls the engine's connectivity. A session that is no longer
connected is marked disconnected and one delayed reconnection is scheduled,
the same as for an explicit engine disconnect, so the engine can settle
first. Reconnections run as tasks on the session queue and join the
session's single-flight attempt.
"""

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from wagate.engine.base import STATE_CONNECTED, STATE_UNKNOWN
from wagate.logger import get_logger
from wagate.sessions.status import SessionState

if TYPE_CHECKING:
    from wagate.sessions.session import Session

logger = get_logger(__name__)

DEFAULT_INTERVAL = 300.0
DEFAULT_RECONNECT_DELAY = 10.0

# Pairing, booting and rejected sessions are left alone
SKIP_STATES = frozenset(
    {
        SessionState.CONNECTING,
        SessionState.WAITING_QR,
        SessionState.RECONNECTING,
        SessionState.AUTH_FAILURE,
    }
)


class ReconnectWatchdog:
    """Keepalive timer and passive reconnect scheduler for one session."""

    def __init__(
        self,
        session: "Session",
        interval: float = DEFAULT_INTERVAL,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
    ):
        self.session = session
        self.interval = interval
        self.reconnect_delay = reconnect_delay
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._last_run_at: Optional[datetime] = None
        self._last_state: Optional[str] = None
        self._last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def start(self) -> None:
        """Start the polling loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.debug(
            f"[{self.session.client_id}] Watchdog started (every {self.interval}s)"
        )

    async def stop(self) -> None:
        """Cancel the polling loop and any pending passive reconnect."""
        self._running = False
        for task in (self._task, self._reconnect_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._task = None
        self._reconnect_task = None

    def schedule_reconnect(self) -> bool:
        """
        Schedule one delayed passive reconnection.

        Returns:
            False when one is already pending or the watchdog is stopped.
        """
        if not self._running or self.reconnect_pending:
            return False

        logger.info(
            f"[{self.session.client_id}] Passive reconnect in {self.reconnect_delay}s"
        )
        self._reconnect_task = asyncio.create_task(self._delayed_reconnect())
        return True

    def get_status(self) -> dict:
        return {
            "running": self._running,
            "interval_seconds": self.interval,
            "reconnect_pending": self.reconnect_pending,
            "last_run_at": self._last_run_at.isoformat() if self._last_run_at else None,
            "last_state": self._last_state,
            "last_error": self._last_error,
        }

    # -- Internal ------------------------------------------------------------

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                break

            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[{self.session.client_id}] Watchdog tick error: {e}")
                self._last_error = str(e)

    async def tick(self) -> None:
        """Single connectivity poll."""
        session = self.session
        if session.status.state in SKIP_STATES:
            logger.debug(
                f"[{session.client_id}] Watchdog skipped ({session.status.state.value})"
            )
            return

        self._last_run_at = datetime.now()
        try:
            state = await session.engine.get_state() or STATE_UNKNOWN
        except Exception as e:
            logger.warning(f"[{session.client_id}] Watchdog state poll failed: {e}")
            state = STATE_UNKNOWN
        self._last_state = state

        if state == STATE_CONNECTED:
            if session.status.state in (SessionState.DISCONNECTED, SessionState.ERROR):
                await self._reconnect("watchdog")
            return

        logger.warning(f"[{session.client_id}] Watchdog found engine {state}")
        session.mark_disconnected(state)
        self.schedule_reconnect()

    async def _delayed_reconnect(self) -> None:
        await asyncio.sleep(self.reconnect_delay)
        await self._reconnect("passive")

    async def _reconnect(self, trigger: str) -> None:
        # Queued so initialize never overlaps a send on the same handle
        session = self.session
        try:
            await session.queue.add(lambda: session.ensure_ready(trigger=trigger))
            self._last_error = None
        except Exception as e:
            logger.warning(
                f"[{self.session.client_id}] {trigger} reconnect failed: {e}"
            )
            self._last_error = str(e)
