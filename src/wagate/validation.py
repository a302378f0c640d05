"""
Input validation utilities for wagate.

Validates control-surface inputs before they reach the session registry.
"""
import re
from typing import Any, Optional

from wagate.logger import get_logger

logger = get_logger(__name__)

ADDRESS_SUFFIX = "@c.us"


class ValidationError(Exception):
    """Raised when input validation fails."""
    pass


def validate_client_id(client_id: Any) -> str:
    """
    Validate a session client ID.

    Client IDs name on-disk credential folders, so only letters, numbers,
    hyphens and underscores are accepted.
    """
    if not client_id or not isinstance(client_id, str):
        raise ValidationError("Missing clientId")

    client_id = client_id.strip()
    if not re.match(r'^[a-zA-Z0-9\-_]+$', client_id):
        raise ValidationError(
            "clientId can only contain letters, numbers, hyphens, and underscores"
        )

    if len(client_id) > 100:
        raise ValidationError("clientId too long (max 100 characters)")

    return client_id


def normalize_recipient(phone: Any) -> str:
    """
    Normalize a recipient into canonical address form.

    Whitespace is removed and the ``@c.us`` suffix appended when the input
    carries no address suffix of its own.
    """
    if phone is None:
        raise ValidationError("Missing phone")

    address = re.sub(r"\s+", "", str(phone))
    if not address:
        raise ValidationError("Missing phone")

    if "@" not in address:
        address += ADDRESS_SUFFIX
    return address


def validate_message_text(message: Optional[str]) -> Optional[str]:
    """Validate an optional text body."""
    if message is None:
        return None

    if not isinstance(message, str):
        raise ValidationError("message must be a string")

    if len(message) > 65536:
        raise ValidationError("Message too long (max 64KB)")

    return message


def validate_image(image: Any) -> Any:
    """
    Validate an image payload.

    Accepts inline bytes, an http(s) URL, a data URI or an opaque base64
    string.
    """
    if image is None:
        return None

    if isinstance(image, (bytes, bytearray)):
        if not image:
            raise ValidationError("image cannot be empty")
        return bytes(image)

    if not isinstance(image, str):
        raise ValidationError("image must be a URL, data URI or base64 string")

    image = image.strip()
    if not image:
        return None

    if image.startswith("data:") and "," not in image:
        raise ValidationError("Invalid data URI")

    return image


def validate_send_request(
    phone: Any, message: Optional[str], image: Any
) -> tuple[str, Optional[str], Any]:
    """Validate a send request; at least one of message or image is required."""
    message = validate_message_text(message)
    image = validate_image(image)

    if not message and not image:
        raise ValidationError("Missing data: message or image required")

    return normalize_recipient(phone), message or None, image
