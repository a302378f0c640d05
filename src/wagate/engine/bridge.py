"""
Bridge engine: drives a whatsapp-web.js sidecar process.

The sidecar owns the headless browser. Commands go over its REST API and
events come back over a per-client WebSocket stream.

Sidecar protocol:
    POST   /clients/{client_id}/initialize   {"clientId", "dataPath", "puppeteer"}
    GET    /clients/{client_id}/state        -> {"state": "CONNECTED" | null}
    POST   /clients/{client_id}/messages     {"chatId", "content" | "media", "options"}
                                             -> {"id": {"_serialized": "..."}}
    POST   /clients/{client_id}/logout
    DELETE /clients/{client_id}
    WS     /clients/{client_id}/events       <- {"event": "qr", "data": "..."}
"""

import asyncio
import json
from typing import Any, Optional

import httpx
import websockets
from websockets.exceptions import WebSocketException

from wagate.engine.base import (
    EngineEvent,
    EngineEventType,
    MessageMedia,
    MessagingEngine,
    SendReceipt,
    TransientConnectionError,
)
from wagate.logger import get_logger

logger = get_logger(__name__)

DEFAULT_COMMAND_TIMEOUT = 120.0
EVENT_RECONNECT_DELAY = 5  # seconds between event stream reconnects

PUPPETEER_OPTIONS = {
    "headless": True,
    "args": ["--no-sandbox", "--disable-setuid-sandbox"],
}


class EngineCommandError(RuntimeError):
    """Raised when the sidecar rejects a command."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class BridgeEngine(MessagingEngine):
    """
    A messaging engine backed by a whatsapp-web.js sidecar.

    Args:
        client_id: Session client ID, also the LocalAuth client ID.
        data_path: Credential root handed to LocalAuth.
        bridge_url: Base HTTP URL of the sidecar.
        timeout: Per-command timeout in seconds.
    """

    def __init__(
        self,
        client_id: str,
        data_path: str,
        bridge_url: str,
        timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ):
        super().__init__(client_id, data_path)
        self.bridge_url = bridge_url.rstrip("/")
        self._http = httpx.AsyncClient(base_url=self.bridge_url, timeout=timeout)
        self._events_task: Optional[asyncio.Task] = None
        self._stop = False

    @property
    def events_url(self) -> str:
        if self.bridge_url.startswith("https://"):
            base = "wss://" + self.bridge_url[len("https://") :]
        elif self.bridge_url.startswith("http://"):
            base = "ws://" + self.bridge_url[len("http://") :]
        else:
            base = self.bridge_url
        return f"{base}/clients/{self.client_id}/events"

    # -- Commands ------------------------------------------------------------

    async def initialize(self) -> None:
        self._stop = False
        self._ensure_event_stream()
        await self._request(
            "POST",
            "initialize",
            json={
                "clientId": self.client_id,
                "dataPath": self.data_path,
                "puppeteer": PUPPETEER_OPTIONS,
            },
        )

    async def get_state(self) -> Optional[str]:
        data = await self._request("GET", "state")
        return data.get("state")

    async def send_message(
        self,
        chat_id: str,
        content: str | MessageMedia,
        options: Optional[dict[str, Any]] = None,
    ) -> SendReceipt:
        body: dict[str, Any] = {"chatId": chat_id, "options": options or {}}
        if isinstance(content, MessageMedia):
            body["media"] = content.to_dict()
        else:
            body["content"] = content

        data = await self._request("POST", "messages", json=body)
        message_id = data.get("id")
        if isinstance(message_id, dict):
            message_id = message_id.get("_serialized") or message_id.get("id")
        return SendReceipt(id=str(message_id or ""), raw=data)

    async def logout(self) -> None:
        await self._request("POST", "logout")

    async def destroy(self) -> None:
        self._stop = True
        if self._events_task:
            self._events_task.cancel()
            try:
                await self._events_task
            except asyncio.CancelledError:
                pass
            self._events_task = None

        try:
            await self._request("DELETE", "")
        finally:
            await self._http.aclose()

    async def _request(
        self, method: str, action: str, json: Optional[dict] = None
    ) -> dict[str, Any]:
        path = f"/clients/{self.client_id}"
        if action:
            path += f"/{action}"

        try:
            resp = await self._http.request(method, path, json=json)
        except httpx.TransportError as e:
            raise TransientConnectionError(
                f"Bridge unreachable during {method} {path}: {e}"
            ) from e

        if resp.status_code >= 400:
            try:
                message = resp.json().get("error") or resp.text
            except ValueError:
                message = resp.text
            raise EngineCommandError(message, status_code=resp.status_code)

        if not resp.content:
            return {}
        return resp.json()

    # -- Event stream --------------------------------------------------------

    def _ensure_event_stream(self) -> None:
        if self._events_task is None or self._events_task.done():
            self._events_task = asyncio.create_task(self._run_event_stream())

    async def _run_event_stream(self) -> None:
        """Consume the sidecar event stream with automatic reconnection."""
        while not self._stop:
            try:
                async with websockets.connect(self.events_url) as ws:
                    logger.debug(f"[{self.client_id}] Event stream connected")
                    async for raw in ws:
                        self._dispatch(raw)
            except (OSError, WebSocketException) as e:
                if self._stop:
                    break
                logger.warning(
                    f"[{self.client_id}] Event stream lost: {e}. "
                    f"Reconnecting in {EVENT_RECONNECT_DELAY}s..."
                )
                await asyncio.sleep(EVENT_RECONNECT_DELAY)

    def _dispatch(self, raw: str | bytes) -> None:
        try:
            data = json.loads(raw)
            event_type = EngineEventType(data.get("event"))
        except (ValueError, TypeError):
            logger.warning(f"[{self.client_id}] Malformed engine event: {raw!r}")
            return

        self.emit(EngineEvent(type=event_type, data=data.get("data")))
