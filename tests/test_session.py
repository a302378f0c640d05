"""Tests for Session readiness, reconnection and sending."""

import asyncio
import base64

import pytest

from conftest import make_ready
from wagate.engine.base import EngineEventType, MessageMedia, TransientConnectionError
from wagate.sessions.errors import InitializationError, SessionNotReady
from wagate.sessions.queue import QueueClosed
from wagate.sessions.status import SessionState
from wagate.validation import ValidationError

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def record_active_sends_at_init(engine):
    """Wrap engine.initialize to record how many sends were running."""
    seen = []
    initialize = engine.initialize

    async def recording_initialize():
        seen.append(engine.active_sends)
        await initialize()

    engine.initialize = recording_initialize
    return seen


class TestEnsureReady:
    @pytest.mark.asyncio
    async def test_ready_session_returns_immediately(self, registry):
        session = registry.get_or_create("alpha")
        await make_ready(session)

        await session.ensure_ready()
        assert session.engine.init_calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_reinitialization(self, registry):
        session = registry.get_or_create("alpha")
        await session.queue.join()
        engine = session.engine
        engine.state = "UNPAIRED"
        engine.init_delay = 0.05
        session.mark_disconnected("UNPAIRED")

        await asyncio.gather(*(session.ensure_ready() for _ in range(5)))

        assert engine.init_calls == 2
        assert session.ready
        assert session.state is SessionState.READY
        assert session.reason == "reconnected"
        assert not session.booting

    @pytest.mark.asyncio
    async def test_connected_engine_skips_initialize(self, registry):
        session = registry.get_or_create("alpha")
        await session.queue.join()
        session.mark_disconnected("NAVIGATION")

        await session.ensure_ready()

        assert session.engine.init_calls == 1
        assert session.ready

    @pytest.mark.asyncio
    async def test_reinitialize_failure_moves_to_error(self, registry):
        session = registry.get_or_create("alpha")
        await session.queue.join()
        engine = session.engine
        engine.state = "UNPAIRED"
        engine.init_error = RuntimeError("browser crashed")
        session.mark_disconnected("UNPAIRED")

        results = await asyncio.gather(
            session.ensure_ready(), session.ensure_ready(), return_exceptions=True
        )

        assert all(isinstance(r, InitializationError) for r in results)
        assert engine.init_calls == 2
        assert session.state is SessionState.ERROR
        assert not session.booting

    @pytest.mark.asyncio
    async def test_still_disconnected_after_initialize(self, registry):
        session = registry.get_or_create("alpha")
        await session.queue.join()
        engine = session.engine
        engine.state = "UNPAIRED"
        engine.state_after_init = "UNPAIRED"
        session.mark_disconnected("UNPAIRED")

        with pytest.raises(SessionNotReady):
            await session.ensure_ready()
        assert session.state is SessionState.ERROR

    @pytest.mark.asyncio
    async def test_auth_failure_fails_fast(self, registry, credentials):
        session = registry.get_or_create("alpha")
        await session.queue.join()
        session.engine.fire(EngineEventType.AUTH_FAILURE, "invalid session")

        with pytest.raises(SessionNotReady, match="authentication rejected"):
            await session.ensure_ready()
        assert session.engine.init_calls == 1
        assert credentials.exists("alpha")

    @pytest.mark.asyncio
    async def test_waiting_for_qr_fails_fast(self, registry):
        session = registry.get_or_create("alpha")
        await session.queue.join()
        session.engine.fire(EngineEventType.QR, "2@abc")

        with pytest.raises(SessionNotReady, match="QR"):
            await session.ensure_ready()
        assert session.engine.init_calls == 1


class TestEngineEvents:
    @pytest.mark.asyncio
    async def test_lifecycle_events_update_status(self, registry, notifier):
        session = registry.get_or_create("alpha")
        await session.queue.join()
        engine = session.engine

        engine.fire(EngineEventType.QR, "2@abc")
        assert session.info().status == "waiting_qr"
        assert session.status.last_qr_at > 0

        engine.fire(EngineEventType.AUTHENTICATED)
        engine.fire(EngineEventType.READY)
        assert session.info().status == "ready"

        codes = [p["code"] for p in notifier.of("alpha", "status")]
        assert codes == ["connecting", "waiting_qr", "authenticated", "ready"]

    @pytest.mark.asyncio
    async def test_disconnect_schedules_one_passive_reconnect(self, registry):
        session = registry.get_or_create("alpha")
        await make_ready(session)
        engine = session.engine
        engine.state = "UNPAIRED"

        engine.fire(EngineEventType.DISCONNECTED, "NAVIGATION")
        engine.fire(EngineEventType.DISCONNECTED, "NAVIGATION")

        assert session.state is SessionState.DISCONNECTED
        assert session.reason == "NAVIGATION"
        assert session.watchdog.reconnect_pending

        await asyncio.sleep(0.1)
        assert engine.init_calls == 2
        assert session.ready
        assert not session.watchdog.reconnect_pending

    @pytest.mark.asyncio
    async def test_closed_session_ignores_events(self, registry):
        session = registry.get_or_create("alpha")
        await make_ready(session)
        engine = session.engine

        await session.close()
        engine.fire(EngineEventType.DISCONNECTED, "NAVIGATION")

        assert session.state is SessionState.READY
        assert session.closed
        assert engine.destroyed


class TestWatchdog:
    @pytest.mark.asyncio
    async def test_tick_marks_disconnected_and_schedules_reconnect(self, registry):
        session = registry.get_or_create("alpha")
        await make_ready(session)
        session.engine.state = "UNPAIRED"

        await session.watchdog.tick()

        assert session.state is SessionState.DISCONNECTED
        assert session.reason == "UNPAIRED"
        assert not session.ready
        assert session.watchdog.reconnect_pending
        assert not session.watchdog.schedule_reconnect()

        await asyncio.sleep(0.1)
        assert session.ready

    @pytest.mark.asyncio
    async def test_tick_on_connected_ready_session_is_quiet(self, registry, notifier):
        session = registry.get_or_create("alpha")
        await make_ready(session)
        published = len(notifier.events)

        await session.watchdog.tick()

        assert session.ready
        assert len(notifier.events) == published
        assert session.watchdog.get_status()["last_state"] == "CONNECTED"

    @pytest.mark.asyncio
    async def test_tick_skips_pairing_sessions(self, registry):
        session = registry.get_or_create("alpha")
        await session.queue.join()
        session.engine.fire(EngineEventType.QR, "2@abc")
        session.engine.state = "UNPAIRED"

        await session.watchdog.tick()

        assert session.state is SessionState.WAITING_QR
        assert not session.watchdog.reconnect_pending

    @pytest.mark.asyncio
    async def test_tick_recovers_errored_session(self, registry):
        session = registry.get_or_create("alpha")
        await session.queue.join()
        session.emitter.transition(SessionState.ERROR, "boom")

        await session.watchdog.tick()

        assert session.ready
        assert session.reason == "reconnected"

    @pytest.mark.asyncio
    async def test_state_poll_failure_counts_as_unknown(self, registry):
        session = registry.get_or_create("alpha")
        await make_ready(session)
        session.engine.state_error = RuntimeError("page crashed")

        await session.watchdog.tick()

        assert session.state is SessionState.DISCONNECTED
        assert session.reason == "UNKNOWN"

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_reconnect(self, registry):
        session = registry.get_or_create("alpha")
        await make_ready(session)
        session.watchdog.reconnect_delay = 60
        session.engine.fire(EngineEventType.DISCONNECTED, "NAVIGATION")
        assert session.watchdog.reconnect_pending

        await session.watchdog.stop()

        assert not session.watchdog.running
        assert not session.watchdog.reconnect_pending

    @pytest.mark.asyncio
    async def test_passive_reconnect_waits_for_send_in_flight(self, registry):
        session = registry.get_or_create("alpha")
        await make_ready(session)
        engine = session.engine
        engine.send_delay = 0.2
        active_at_init = record_active_sends_at_init(engine)

        sending = asyncio.ensure_future(session.send_message_safe("123", message="hi"))
        await asyncio.sleep(0.05)
        assert engine.active_sends == 1
        engine.state = "TIMEOUT"
        engine.fire(EngineEventType.DISCONNECTED, "NAVIGATION")

        result = await sending
        await session.queue.join()

        assert result.attempt == 1
        assert active_at_init == [0]
        assert session.ready

    @pytest.mark.asyncio
    async def test_tick_reconnect_waits_for_send_in_flight(self, registry):
        session = registry.get_or_create("alpha")
        await make_ready(session)
        engine = session.engine
        engine.send_delay = 0.2
        active_at_init = record_active_sends_at_init(engine)

        sending = asyncio.ensure_future(session.send_message_safe("123", message="hi"))
        await asyncio.sleep(0.05)
        engine.state = "TIMEOUT"
        await session.watchdog.tick()
        assert session.state is SessionState.DISCONNECTED

        await sending
        await session.queue.join()

        assert active_at_init == [0]
        assert engine.max_active_sends == 1
        assert session.ready


class TestSendMessageSafe:
    @pytest.mark.asyncio
    async def test_text_send(self, registry):
        session = registry.get_or_create("alpha")
        await make_ready(session)

        result = await session.send_message_safe("55 11 9999", message="hello")

        assert result.attempt == 1
        assert result.id == "alpha-msg-1"
        assert session.engine.sent == [("55119999@c.us", "hello", {})]

    @pytest.mark.asyncio
    async def test_image_send_with_caption(self, registry):
        session = registry.get_or_create("alpha")
        await make_ready(session)

        await session.send_message_safe("123", message="look", image=PNG)

        chat_id, content, options = session.engine.sent[0]
        assert isinstance(content, MessageMedia)
        assert content.mimetype == "image/png"
        assert options == {"caption": "look"}

    @pytest.mark.asyncio
    async def test_requires_message_or_image(self, registry):
        session = registry.get_or_create("alpha")
        with pytest.raises(ValidationError):
            await session.send_message_safe("123")

    @pytest.mark.asyncio
    async def test_transient_failure_retries_once(self, registry):
        session = registry.get_or_create("alpha")
        await make_ready(session)
        session.engine.send_errors = [RuntimeError("Protocol error: Session closed.")]

        result = await session.send_message_safe("123", message="hello")

        assert result.attempt == 2
        assert len(session.engine.calls) == 2
        assert len(session.engine.sent) == 1

    @pytest.mark.asyncio
    async def test_retry_reinitializes_dead_engine(self, registry):
        session = registry.get_or_create("alpha")
        await make_ready(session)
        engine = session.engine
        engine.send_errors = [TransientConnectionError("socket dropped")]
        engine.state = "UNPAIRED"

        result = await session.send_message_safe("123", message="hello")

        assert result.attempt == 2
        assert engine.init_calls == 2
        assert session.ready

    @pytest.mark.asyncio
    async def test_second_transient_failure_propagates(self, registry):
        session = registry.get_or_create("alpha")
        await make_ready(session)
        session.engine.send_errors = [
            TransientConnectionError("dropped"),
            TransientConnectionError("dropped again"),
        ]

        with pytest.raises(TransientConnectionError, match="dropped again"):
            await session.send_message_safe("123", message="hello")
        assert len(session.engine.calls) == 2

    @pytest.mark.asyncio
    async def test_permanent_failure_is_not_retried(self, registry):
        session = registry.get_or_create("alpha")
        await make_ready(session)
        session.engine.send_errors = [ValueError("invalid wid")]

        with pytest.raises(ValueError, match="invalid wid"):
            await session.send_message_safe("123", message="hello")
        assert len(session.engine.calls) == 1
        assert session.ready

    @pytest.mark.asyncio
    async def test_retry_rebuilds_media(self, registry):
        session = registry.get_or_create("alpha")
        await make_ready(session)
        session.engine.send_errors = [RuntimeError("Target closed")]
        uri = "data:image/png;base64," + base64.b64encode(PNG).decode()

        await session.send_message_safe("123", image=uri)

        first, second = session.engine.calls
        assert first is not second
        assert first == second

    @pytest.mark.asyncio
    async def test_sends_on_one_session_never_overlap(self, registry):
        session = registry.get_or_create("alpha")
        await make_ready(session)
        session.engine.send_delay = 0.01

        results = await asyncio.gather(
            *(session.send_message_safe("123", message=f"m{i}") for i in range(4))
        )

        assert session.engine.max_active_sends == 1
        assert [content for _, content, _ in session.engine.sent] == ["m0", "m1", "m2", "m3"]
        assert [r.attempt for r in results] == [1, 1, 1, 1]

    @pytest.mark.asyncio
    async def test_sends_on_different_sessions_overlap(self, registry):
        alpha = registry.get_or_create("alpha")
        bravo = registry.get_or_create("bravo")
        await make_ready(alpha)
        await make_ready(bravo)
        both_sending = asyncio.Event()
        arrived = []

        async def rendezvous():
            arrived.append(True)
            if len(arrived) == 2:
                both_sending.set()
            await asyncio.wait_for(both_sending.wait(), timeout=1)

        alpha.engine.on_send = rendezvous
        bravo.engine.on_send = rendezvous

        await asyncio.gather(
            alpha.send_message_safe("1", message="a"),
            bravo.send_message_safe("2", message="b"),
        )
        assert both_sending.is_set()

    @pytest.mark.asyncio
    async def test_send_after_close_is_rejected(self, registry):
        session = registry.get_or_create("alpha")
        await make_ready(session)
        await session.close()

        with pytest.raises(QueueClosed):
            await session.send_message_safe("123", message="hello")
