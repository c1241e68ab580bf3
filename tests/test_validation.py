"""
Tests for input validation and recipient normalization.
"""

import pytest

from wagate.sessions.errors import InvalidRecipientFormat
from wagate.validation import (
    ValidationError,
    normalize_recipient,
    validate_message_text,
    validate_phone_number,
    validate_token,
    validate_url,
)


class TestNormalizeRecipient:
    @pytest.mark.parametrize(
        "recipient, expected",
        [
            ("+15551234567", "15551234567@c.us"),
            ("15551234567", "15551234567@c.us"),
            ("15551234567@c.us", "15551234567@c.us"),
            ("+15551234567@c.us", "15551234567@c.us"),
            ("  15551234567 ", "15551234567@c.us"),
            ("120363041234567890@g.us", "120363041234567890@g.us"),
            ("15551234567-1612345678@g.us", "15551234567-1612345678@g.us"),
        ],
    )
    def test_normalizes(self, recipient, expected):
        assert normalize_recipient(recipient) == expected

    @pytest.mark.parametrize(
        "recipient",
        ["+15551234567", "15551234567@c.us", "120363041234567890@g.us"],
    )
    def test_idempotent(self, recipient):
        once = normalize_recipient(recipient)
        assert normalize_recipient(once) == once

    @pytest.mark.parametrize(
        "recipient",
        ["", "abc", "++15551234567", "0123", "555-1234", "@c.us", "abc@g.us", None],
    )
    def test_rejects(self, recipient):
        with pytest.raises(InvalidRecipientFormat):
            normalize_recipient(recipient)


class TestValidatePhoneNumber:
    def test_valid(self):
        assert validate_phone_number("+15551234567") == "+15551234567"
        assert validate_phone_number(" 447700900123 ") == "447700900123"

    @pytest.mark.parametrize("number", ["", "+0123", "12ab", "+1234567890123456"])
    def test_invalid(self, number):
        with pytest.raises(ValidationError):
            validate_phone_number(number)


class TestValidateToken:
    def test_valid(self):
        assert validate_token("+15551234567") == "+15551234567"
        assert validate_token("team_bot-1") == "team_bot-1"

    @pytest.mark.parametrize("token", ["", "../etc", "a/b", "a.b", "x" * 65, "sp ace"])
    def test_invalid(self, token):
        with pytest.raises(ValidationError):
            validate_token(token)


class TestValidateUrl:
    def test_valid(self):
        assert validate_url("https://example.com/cat.png") == "https://example.com/cat.png"

    @pytest.mark.parametrize(
        "url", ["", "not a url", "ftp://example.com/a.png", "https://" + "a" * 2000]
    )
    def test_invalid(self, url):
        with pytest.raises(ValidationError):
            validate_url(url)


class TestValidateMessageText:
    def test_valid(self):
        assert validate_message_text("hello") == "hello"

    def test_empty(self):
        with pytest.raises(ValidationError):
            validate_message_text("")

    def test_too_long(self):
        with pytest.raises(ValidationError, match="too long"):
            validate_message_text("x" * 65537)
