"""Tests for control-surface input validation."""

import pytest

from wagate.validation import (
    ValidationError,
    normalize_recipient,
    validate_client_id,
    validate_send_request,
)


class TestClientId:
    def test_accepts_simple_ids(self):
        assert validate_client_id("tenant_01-a") == "tenant_01-a"

    @pytest.mark.parametrize("bad", [None, "", 5])
    def test_missing(self, bad):
        with pytest.raises(ValidationError, match="Missing clientId"):
            validate_client_id(bad)

    def test_rejects_path_characters(self):
        with pytest.raises(ValidationError):
            validate_client_id("../etc")

    def test_rejects_long_ids(self):
        with pytest.raises(ValidationError, match="too long"):
            validate_client_id("a" * 101)


class TestRecipient:
    def test_appends_suffix(self):
        assert normalize_recipient("5511999998888") == "5511999998888@c.us"

    def test_strips_whitespace(self):
        assert normalize_recipient(" 55 11 9999 8888 ") == "551199998888@c.us"

    def test_keeps_existing_suffix(self):
        assert normalize_recipient("12345-678@g.us") == "12345-678@g.us"

    @pytest.mark.parametrize("bad", [None, "", "   "])
    def test_missing(self, bad):
        with pytest.raises(ValidationError, match="Missing phone"):
            normalize_recipient(bad)


class TestSendRequest:
    def test_text_only(self):
        assert validate_send_request("123", "hi", None) == ("123@c.us", "hi", None)

    def test_image_only(self):
        address, message, image = validate_send_request("123", None, "https://x/y.png")
        assert message is None
        assert image == "https://x/y.png"

    def test_requires_message_or_image(self):
        with pytest.raises(ValidationError, match="message or image required"):
            validate_send_request("123", "", None)

    def test_rejects_malformed_data_uri(self):
        with pytest.raises(ValidationError, match="Invalid data URI"):
            validate_send_request("123", None, "data:image/png;base64")
