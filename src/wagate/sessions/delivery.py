"""
Payload materialization and failure classification for outgoing messages.
"""

import base64
import binascii
import mimetypes
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Optional
from urllib.parse import unquote_to_bytes, urlparse

import httpx

from wagate.engine.base import MessageMedia, TransientConnectionError
from wagate.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MIMETYPE = "image/jpeg"

# Lower-cased fragments of errors raised when the automation connection
# died underneath a command.
TRANSIENT_SIGNATURES = (
    "session closed",
    "target closed",
    "protocol error",
    "websocket is not open",
)

_MAGIC = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


@dataclass
class SendResult:
    id: str
    attempt: int

    def to_dict(self) -> dict:
        return {"id": self.id, "attempt": self.attempt}


def is_transient_error(exc: BaseException) -> bool:
    """
    Classify an engine failure as retryable.

    Typed TransientConnectionError wins; otherwise the message is matched
    against the known signatures.
    """
    if isinstance(exc, TransientConnectionError):
        return True
    text = str(exc).lower()
    return any(signature in text for signature in TRANSIENT_SIGNATURES)


def sniff_mimetype(data: bytes) -> str:
    for magic, mimetype in _MAGIC:
        if data.startswith(magic):
            return mimetype
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return DEFAULT_MIMETYPE


def media_from_bytes(data: bytes, filename: Optional[str] = None) -> MessageMedia:
    return MessageMedia(
        mimetype=sniff_mimetype(data),
        data=base64.b64encode(data).decode("ascii"),
        filename=filename,
    )


def media_from_data_uri(uri: str) -> MessageMedia:
    """Decode ``data:<mime>[;base64],<payload>``."""
    header, _, payload = uri.partition(",")
    meta = header[len("data:") :].split(";")
    mimetype = meta[0] or DEFAULT_MIMETYPE

    if "base64" in meta[1:]:
        try:
            base64.b64decode(payload, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Invalid base64 image data: {e}") from e
        data = payload
    else:
        data = base64.b64encode(unquote_to_bytes(payload)).decode("ascii")

    return MessageMedia(mimetype=mimetype, data=data)


async def media_from_url(
    url: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0
) -> MessageMedia:
    """Download remote media."""
    if client is None:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as c:
            resp = await c.get(url)
    else:
        resp = await client.get(url)
    resp.raise_for_status()

    filename = PurePosixPath(urlparse(url).path).name or None
    mimetype = resp.headers.get("content-type", "").split(";")[0].strip()
    if not mimetype or mimetype == "application/octet-stream":
        guessed = mimetypes.guess_type(filename or "")[0]
        mimetype = guessed or sniff_mimetype(resp.content)

    return MessageMedia(
        mimetype=mimetype,
        data=base64.b64encode(resp.content).decode("ascii"),
        filename=filename,
    )


async def build_media(
    image: str | bytes,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 30.0,
) -> MessageMedia:
    """
    Materialize an image payload.

    Accepts inline bytes, an http(s) URL, a data URI, or an opaque string
    that is already base64-encoded image data.
    """
    if isinstance(image, (bytes, bytearray)):
        return media_from_bytes(bytes(image))

    if image.startswith(("http://", "https://")):
        logger.debug(f"Fetching media from {image}")
        return await media_from_url(image, client=client, timeout=timeout)

    if image.startswith("data:"):
        return media_from_data_uri(image)

    return MessageMedia(mimetype=DEFAULT_MIMETYPE, data=image)
