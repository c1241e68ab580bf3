"""
Pydantic models for the session API.

Covers:
- REST request bodies (create, send, logout)
- REST responses (session info, listings, artifacts)
- Bridge sidecar event callbacks
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from wagate.sessions.base import ArtifactKind
from wagate.validation import (
    ValidationError,
    validate_message_text,
    validate_phone_number,
    validate_token,
    validate_url,
)


def _check(validator, value):
    # Re-raise as ValueError so pydantic reports it as a field error
    try:
        return validator(value)
    except ValidationError as e:
        raise ValueError(str(e)) from None


# ─── REST Requests ───────────────────────────────────────────────────


class CreateSessionRequest(BaseModel):
    """POST /sessions request body. The phone number becomes the token."""

    number: str
    auth_method: ArtifactKind = ArtifactKind.QR

    @field_validator("number")
    @classmethod
    def _valid_number(cls, value: str) -> str:
        return _check(validate_phone_number, value)


class SendTextRequest(BaseModel):
    """POST /send-text request body."""

    token: str
    number: str
    message: str

    @field_validator("token")
    @classmethod
    def _valid_token(cls, value: str) -> str:
        return _check(validate_token, value)

    @field_validator("message")
    @classmethod
    def _valid_message(cls, value: str) -> str:
        return _check(validate_message_text, value)


class SendImageRequest(BaseModel):
    """POST /send-image-url request body."""

    model_config = ConfigDict(populate_by_name=True)

    token: str
    number: str
    image_url: str = Field(alias="imageUrl")
    caption: str = ""

    @field_validator("token")
    @classmethod
    def _valid_token(cls, value: str) -> str:
        return _check(validate_token, value)

    @field_validator("image_url")
    @classmethod
    def _valid_url(cls, value: str) -> str:
        return _check(validate_url, value)


class LogoutRequest(BaseModel):
    """POST /logout request body."""

    token: str


# ─── REST Responses ──────────────────────────────────────────────────


class SessionInfo(BaseModel):
    """Serialized session status for API responses."""

    token: str
    status: str
    authenticated: bool
    auth_method: str
    has_artifact: bool
    reason: Optional[str] = None
    created_at: str
    last_transition_at: str


class SessionListResponse(BaseModel):
    """GET /sessions response."""

    success: bool = True
    sessions: list[SessionInfo]
    count: int


class ArtifactResponse(BaseModel):
    """Artifact lookups. The value is in ``qr`` or ``code`` depending on kind."""

    success: bool = True
    token: str
    kind: Optional[str] = None
    qr: Optional[str] = None
    code: Optional[str] = None
    issued_at: Optional[str] = None


# ─── Bridge Callbacks ────────────────────────────────────────────────


class BridgeEvent(BaseModel):
    """Sidecar → Server: lifecycle event for one client."""

    token: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)
