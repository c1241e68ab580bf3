"""
Typed failures raised by the session supervisor.

Every error carries the HTTP status the route layer answers with, so the
mapping lives next to the error instead of in each handler.
"""

from typing import Optional


class SessionError(Exception):
    """Base class for all session lifecycle failures."""

    status_code = 500

    def __init__(self, message: str, token: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.token = token


class AlreadyExists(SessionError):
    status_code = 409

    def __init__(self, token: str):
        super().__init__(f"Session already exists for token '{token}'", token)


class NotFound(SessionError):
    status_code = 404

    def __init__(self, token: str):
        super().__init__(f"Session not found: {token}", token)


class NotAuthenticated(SessionError):
    status_code = 409

    def __init__(self, token: str, state: str):
        super().__init__(f"Session '{token}' is not authenticated (state: {state})", token)
        self.state = state


class AlreadyAuthenticated(SessionError):
    status_code = 409

    def __init__(self, token: str):
        super().__init__(f"Session '{token}' is already authenticated", token)


class HandshakeFailed(SessionError):
    """The session failed its handshake while a caller was waiting on it."""

    status_code = 502

    def __init__(self, token: str, reason: Optional[str] = None):
        super().__init__(
            f"Authentication failed for '{token}': {reason or 'unknown reason'}", token
        )
        self.reason = reason


class ArtifactTimeout(SessionError):
    status_code = 504

    def __init__(self, token: str, timeout: float):
        super().__init__(
            f"No authentication code for '{token}' within {timeout:g}s, try again shortly",
            token,
        )
        self.timeout = timeout


class DeliveryFailed(SessionError):
    status_code = 502

    def __init__(self, token: str, detail: str):
        super().__init__(f"Delivery failed for '{token}': {detail}", token)
        self.detail = detail


class MediaFetchFailed(SessionError):
    status_code = 502

    def __init__(self, url: str, detail: str):
        super().__init__(f"Failed to fetch media from {url}: {detail}")
        self.url = url
        self.detail = detail


class InvalidRecipientFormat(SessionError):
    status_code = 400

    def __init__(self, recipient: str):
        super().__init__(f"Invalid recipient format: {recipient!r}")
        self.recipient = recipient


class TeardownFailed(SessionError):
    """Releasing a client or its credentials failed."""

    status_code = 500

    def __init__(self, token: str, detail: str):
        super().__init__(f"Teardown failed for '{token}': {detail}", token)
        self.detail = detail
