"""
Core types for the session supervisor.

A Session pairs a token with the lifecycle state of exactly one underlying
messaging client. Clients implement MessagingClient and report handshake
progress to a ClientObserver bound by the controller.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(str, Enum):
    INITIALIZING = "initializing"
    AWAITING_CODE = "awaiting_code"
    AUTHENTICATED = "authenticated"
    AUTH_FAILED = "auth_failed"
    LOGGED_OUT = "logged_out"
    REMOVED = "removed"


# States in which a session still holds (or may receive) an artifact
PENDING_STATES = frozenset({SessionState.INITIALIZING, SessionState.AWAITING_CODE})

# States whose client is unrecoverable and must be recreated
STALE_STATES = frozenset({SessionState.AUTH_FAILED, SessionState.LOGGED_OUT})

TRANSITIONS: dict[SessionState, frozenset] = {
    SessionState.INITIALIZING: frozenset(
        {
            SessionState.AWAITING_CODE,
            SessionState.AUTHENTICATED,
            SessionState.AUTH_FAILED,
        }
    ),
    SessionState.AWAITING_CODE: frozenset(
        {
            SessionState.AWAITING_CODE,
            SessionState.AUTHENTICATED,
            SessionState.AUTH_FAILED,
        }
    ),
    SessionState.AUTHENTICATED: frozenset({SessionState.LOGGED_OUT}),
    SessionState.AUTH_FAILED: frozenset(),
    SessionState.LOGGED_OUT: frozenset(),
    SessionState.REMOVED: frozenset(),
}


def can_transition(current: SessionState, target: SessionState) -> bool:
    """Check an edge of the lifecycle state machine."""
    if current is SessionState.REMOVED:
        return False
    if target is SessionState.REMOVED:
        return True
    return target in TRANSITIONS[current]


class ArtifactKind(str, Enum):
    QR = "qr"
    PAIRING_CODE = "pairing_code"


@dataclass(frozen=True)
class AuthArtifact:
    """A QR payload or pairing code a human uses to finish the handshake."""

    kind: ArtifactKind
    value: str
    issued_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "value": self.value,
            "issued_at": self.issued_at.isoformat(),
        }


@dataclass(frozen=True)
class MediaPayload:
    """Base64-encoded media ready to hand to a client."""

    mimetype: str
    data: str
    filename: str


class ClientObserver(ABC):
    """Receives lifecycle callbacks from one MessagingClient."""

    @abstractmethod
    def on_artifact(self, artifact: AuthArtifact) -> None:
        pass

    @abstractmethod
    def on_authenticated(self) -> None:
        pass

    @abstractmethod
    def on_auth_failed(self, reason: str) -> None:
        pass

    @abstractmethod
    def on_disconnected(self, reason: str) -> None:
        pass


class MessagingClient(ABC):
    """
    Abstract base class for underlying messaging-platform clients.

    One instance is created per token via ``factory(token, credentials_dir)``
    and is owned by exactly one Session. Implementations report handshake
    progress with the ``_emit_*`` helpers; these may be called from any
    thread.
    """

    def __init__(self, token: str, credentials_dir: Path):
        self.token = token
        self.credentials_dir = credentials_dir
        self._observer: Optional[ClientObserver] = None

    @classmethod
    def from_config(cls, token: str, credentials_dir: Path, config: Any):
        """Build a client from gateway config. Drivers override as needed."""
        return cls(token, credentials_dir)

    def bind(self, observer: ClientObserver) -> None:
        """Attach the observer that receives lifecycle callbacks."""
        self._observer = observer

    @abstractmethod
    async def start(
        self,
        auth_method: ArtifactKind = ArtifactKind.QR,
        phone_number: Optional[str] = None,
    ) -> None:
        """
        Begin the authentication handshake.

        Args:
            auth_method: Whether to produce a QR payload or a pairing code.
            phone_number: Number to pair with, required for pairing codes.
        """
        pass

    @abstractmethod
    async def send_text(self, chat_id: str, text: str) -> None:
        """Send a text message; raise on failure."""
        pass

    @abstractmethod
    async def send_media(
        self, chat_id: str, media: MediaPayload, caption: str = ""
    ) -> None:
        """Send a media message; raise on failure."""
        pass

    @abstractmethod
    async def shutdown(self) -> None:
        """Release the client and any resources it holds."""
        pass

    def _emit_artifact(self, kind: ArtifactKind, value: str) -> None:
        if self._observer:
            self._observer.on_artifact(AuthArtifact(kind=kind, value=value))

    def _emit_authenticated(self) -> None:
        if self._observer:
            self._observer.on_authenticated()

    def _emit_auth_failed(self, reason: str) -> None:
        if self._observer:
            self._observer.on_auth_failed(reason)

    def _emit_disconnected(self, reason: str) -> None:
        if self._observer:
            self._observer.on_disconnected(reason)


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a session, safe to hand out of the registry lock."""

    token: str
    state: SessionState
    auth_method: ArtifactKind
    artifact: Optional[AuthArtifact]
    reason: Optional[str]
    created_at: datetime
    last_transition_at: datetime

    @property
    def authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses."""
        return {
            "token": self.token,
            "status": self.state.value,
            "authenticated": self.authenticated,
            "auth_method": self.auth_method.value,
            "has_artifact": self.artifact is not None,
            "reason": self.reason,
            "created_at": self.created_at.isoformat(),
            "last_transition_at": self.last_transition_at.isoformat(),
        }


@dataclass(eq=False)
class Session:
    """
    Mutable per-token record. Only the registry mutates it, under its lock.
    """

    token: str
    client: MessagingClient
    auth_method: ArtifactKind = ArtifactKind.QR
    state: SessionState = SessionState.INITIALIZING
    artifact: Optional[AuthArtifact] = None
    reason: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    last_transition_at: datetime = field(default_factory=utcnow)
    waiters: list[asyncio.Future] = field(default_factory=list, repr=False)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            token=self.token,
            state=self.state,
            auth_method=self.auth_method,
            artifact=self.artifact,
            reason=self.reason,
            created_at=self.created_at,
            last_transition_at=self.last_transition_at,
        )


@dataclass(frozen=True)
class LifecycleEvent:
    """Emitted to external listeners after a transition is applied."""

    type: str
    token: str
    artifact: Optional[AuthArtifact] = None
    reason: Optional[str] = None
