"""Shared pytest fixtures and configuration."""

import asyncio
import uuid

import pytest
import pytest_asyncio

from wagate.engine.base import (
    STATE_CONNECTED,
    EngineEvent,
    EngineEventType,
    MessagingEngine,
    SendReceipt,
)
from wagate.sessions.credentials import CredentialStore
from wagate.sessions.registry import SessionRegistry


class MockEngine(MessagingEngine):
    """A scriptable engine for testing."""

    def __init__(self, client_id="test-client", data_path="auth", state=STATE_CONNECTED):
        super().__init__(client_id, data_path)
        self.state = state
        self.init_calls = 0
        self.init_delay = 0.0
        self.init_error = None
        self.state_after_init = STATE_CONNECTED
        self.state_error = None
        self.send_delay = 0.0
        self.send_errors = []
        self.sent = []
        self.calls = []
        self.on_send = None
        self.active_sends = 0
        self.max_active_sends = 0
        self.logged_out = False
        self.destroyed = False

    async def initialize(self):
        self.init_calls += 1
        if self.init_delay:
            await asyncio.sleep(self.init_delay)
        if self.init_error:
            raise self.init_error
        self.state = self.state_after_init

    async def get_state(self):
        if self.state_error:
            raise self.state_error
        return self.state

    async def send_message(self, chat_id, content, options=None):
        self.calls.append(content)
        self.active_sends += 1
        self.max_active_sends = max(self.max_active_sends, self.active_sends)
        try:
            if self.on_send:
                await self.on_send()
            if self.send_delay:
                await asyncio.sleep(self.send_delay)
            if self.send_errors:
                raise self.send_errors.pop(0)
            self.sent.append((chat_id, content, options))
            return SendReceipt(id=f"{self.client_id}-msg-{len(self.sent)}")
        finally:
            self.active_sends -= 1

    async def logout(self):
        self.logged_out = True

    async def destroy(self):
        self.destroyed = True

    def fire(self, event_type: EngineEventType, data=None):
        self.emit(EngineEvent(type=event_type, data=data))


class RecordingNotifier:
    """Captures published notifications."""

    def __init__(self):
        self.events = []

    def publish(self, topic, event, payload):
        self.events.append((topic, event, payload))

    def of(self, topic, event=None):
        return [
            payload
            for t, e, payload in self.events
            if t == topic and (event is None or e == event)
        ]


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engines():
    """client_id -> engines built for it, oldest first."""
    return {}


@pytest.fixture
def credentials(tmp_path):
    return CredentialStore(tmp_path / "wwebjs_auth")


@pytest.fixture
def engine_factory(engines):
    def factory(client_id, data_path):
        engine = MockEngine(client_id, data_path)
        engines.setdefault(client_id, []).append(engine)
        return engine

    return factory


@pytest_asyncio.fixture
async def registry(credentials, engine_factory, notifier):
    registry = SessionRegistry(
        credentials,
        engine_factory,
        notifier,
        watchdog_interval=3600,
        reconnect_delay=0.01,
    )
    await registry.start()
    yield registry
    await registry.shutdown()


async def make_ready(session):
    """Let the boot task finish and deliver the engine's ready event."""
    await session.queue.join()
    session.engine.fire(EngineEventType.READY)
    assert session.ready


@pytest.fixture
def unique_id():
    """Generate a unique client ID."""
    return f"test-{uuid.uuid4().hex[:12]}"
