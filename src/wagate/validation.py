"""
Input validation utilities for wagate.

Tokens double as credential directory names and recipients are routed by
suffix, so both are checked before they reach a client.
"""
import re
from typing import List, Optional

from wagate.sessions.errors import InvalidRecipientFormat

CHAT_SUFFIX = "@c.us"
GROUP_SUFFIX = "@g.us"

_E164 = re.compile(r"^\+?[1-9]\d{1,14}$")
_TOKEN = re.compile(r"^[A-Za-z0-9+_\-]{1,64}$")
_BARE_NUMBER = re.compile(r"^[1-9]\d{1,14}$")
_GROUP_ID = re.compile(r"^\d+(-\d+)?$")


class ValidationError(Exception):
    """Raised when input validation fails."""
    pass


def validate_phone_number(number: str) -> str:
    """Validate an E.164 phone number (leading + optional)."""
    if not number:
        raise ValidationError("Phone number is required")

    number = number.strip()
    if not _E164.match(number):
        raise ValidationError("Invalid phone number format")

    return number


def validate_token(token: str) -> str:
    """
    Validate a session token.

    Tokens name the credential directory on disk, so path separators and
    dots are rejected outright.
    """
    if not token:
        raise ValidationError("Token is required")

    if not _TOKEN.match(token):
        raise ValidationError(
            "Token can only contain letters, numbers, '+', '-' and '_' (max 64)"
        )

    return token


def normalize_recipient(recipient: str) -> str:
    """
    Normalize a recipient to a routable chat id.

    A bare number (with or without a leading +) gets the contact suffix
    appended; ids already carrying a routing suffix pass through. Applying
    the function twice gives the same result as applying it once.

    Raises:
        InvalidRecipientFormat: If the bare part is not a valid number or group id.
    """
    if not isinstance(recipient, str):
        raise InvalidRecipientFormat(repr(recipient))

    value = recipient.strip()

    if value.endswith(GROUP_SUFFIX):
        if not _GROUP_ID.match(value[: -len(GROUP_SUFFIX)]):
            raise InvalidRecipientFormat(recipient)
        return value

    if value.endswith(CHAT_SUFFIX):
        value = value[: -len(CHAT_SUFFIX)]
    if value.startswith("+"):
        value = value[1:]

    if not _BARE_NUMBER.match(value):
        raise InvalidRecipientFormat(recipient)

    return f"{value}{CHAT_SUFFIX}"


def validate_url(url: str, allowed_schemes: Optional[List[str]] = None) -> str:
    """
    Validate URL format.

    Args:
        url: URL to validate
        allowed_schemes: List of allowed schemes (default: http, https)
    """
    if not url:
        raise ValidationError("URL cannot be empty")

    if len(url) > 2000:
        raise ValidationError("URL too long (max 2000 characters)")

    allowed_schemes = allowed_schemes or ["http", "https"]

    url_pattern = r'^([a-z]+)://[^\s/$.?#].[^\s]*$'
    if not re.match(url_pattern, url, re.IGNORECASE):
        raise ValidationError("Invalid URL format")

    scheme = url.split("://")[0].lower()
    if scheme not in allowed_schemes:
        raise ValidationError(f"URL scheme not allowed: {scheme}")

    return url


def validate_message_text(text: str) -> str:
    """Validate outgoing message text."""
    if not text:
        raise ValidationError("Message cannot be empty")

    if len(text) > 65536:
        raise ValidationError("Message too long (max 64KB)")

    return text
