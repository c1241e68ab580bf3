"""
Registry of live sessions.
Responsible for atomic create, lookup, listing, state transitions and purge.
"""

import asyncio
import threading
from collections import Counter
from typing import Optional

from wagate.logger import get_logger
from wagate.sessions.base import (
    PENDING_STATES,
    ArtifactKind,
    AuthArtifact,
    MessagingClient,
    Session,
    SessionSnapshot,
    SessionState,
    can_transition,
    utcnow,
)
from wagate.sessions.errors import AlreadyExists, NotFound

logger = get_logger(__name__)


class SessionRegistry:
    """
    Process-wide token -> Session map.

    Every read and write goes through one re-entrant lock, so client
    callbacks may arrive on any thread. Methods never block beyond the lock
    and never call out to clients.
    """

    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._lock = threading.RLock()

    def create(
        self,
        token: str,
        client: MessagingClient,
        auth_method: ArtifactKind = ArtifactKind.QR,
    ) -> Session:
        """
        Register a new session in the initializing state.

        Raises:
            AlreadyExists: If a non-removed session exists for the token.
        """
        with self._lock:
            current = self._sessions.get(token)
            if current is not None and current.state is not SessionState.REMOVED:
                raise AlreadyExists(token)
            for other in self._sessions.values():
                if other.client is client:
                    raise ValueError(
                        f"Client already owned by session '{other.token}'"
                    )

            session = Session(token=token, client=client, auth_method=auth_method)
            self._sessions[token] = session

        logger.info(f"Registered session {token} ({auth_method.value})")
        return session

    def get(self, token: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(token)

    def snapshot(self, token: str) -> Optional[SessionSnapshot]:
        with self._lock:
            session = self._sessions.get(token)
            return session.snapshot() if session else None

    def checkout(self, token: str) -> tuple[SessionSnapshot, MessagingClient]:
        """
        Read a session's state and client handle atomically.

        Raises:
            NotFound: If the token is unknown or being removed.
        """
        with self._lock:
            session = self._sessions.get(token)
            if session is None or session.state is SessionState.REMOVED:
                raise NotFound(token)
            return session.snapshot(), session.client

    def count_by_state(self) -> dict[str, int]:
        with self._lock:
            counts = Counter(s.state.value for s in self._sessions.values())
        return dict(counts)

    def transition(
        self,
        session: Session,
        target: SessionState,
        artifact: Optional[AuthArtifact] = None,
        reason: Optional[str] = None,
    ) -> Optional[list[asyncio.Future]]:
        """
        Apply a state change to a registered session.

        Returns:
            The artifact waiters to release, or None if the transition was
            rejected (invalid edge, or the session is no longer the entry
            registered for its token).
        """
        with self._lock:
            if self._sessions.get(session.token) is not session:
                logger.warning(
                    f"Ignoring {target.value} for stale session handle {session.token}"
                )
                return None

            previous = session.state
            if not can_transition(previous, target):
                logger.warning(
                    f"Rejected transition for {session.token}: "
                    f"{previous.value} -> {target.value}"
                )
                return None

            session.state = target
            session.last_transition_at = utcnow()
            session.artifact = artifact if target is SessionState.AWAITING_CODE else None
            if reason is not None:
                session.reason = reason
            elif target is SessionState.AUTHENTICATED:
                session.reason = None

            waiters = session.waiters
            session.waiters = []

        logger.info(
            f"Session {session.token}: {previous.value} -> {target.value}"
            + (f" ({reason})" if reason else "")
        )
        return waiters

    def disconnect(
        self, session: Session, reason: str
    ) -> Optional[tuple[SessionState, str, list[asyncio.Future]]]:
        """
        Apply a client disconnect.

        An authenticated session becomes logged_out; any other session
        fails its handshake with a ``disconnected:`` reason. The target is
        chosen and applied under one lock acquisition.

        Returns:
            (target state, recorded reason, waiters), or None if rejected.
        """
        with self._lock:
            if session.state is SessionState.AUTHENTICATED:
                target = SessionState.LOGGED_OUT
            else:
                target = SessionState.AUTH_FAILED
                reason = f"disconnected: {reason}"
            waiters = self.transition(session, target, reason=reason)

        if waiters is None:
            return None
        return target, reason, waiters

    def mark_removed(self, token: str) -> tuple[Session, list[asyncio.Future]]:
        """
        Claim a session for removal.

        Only one caller can claim a given session; later callers get NotFound.

        Returns:
            The session and the artifact waiters to release.
        """
        with self._lock:
            session = self._sessions.get(token)
            if session is None or session.state is SessionState.REMOVED:
                raise NotFound(token)
            waiters = self.transition(session, SessionState.REMOVED)
        return session, waiters or []

    def remove(self, token: str, session: Optional[Session] = None) -> Session:
        """
        Delete the map entry for a token.

        Args:
            token: The session token.
            session: If given, only delete when it is still the registered entry.

        Raises:
            NotFound: If no matching entry exists.
        """
        with self._lock:
            current = self._sessions.get(token)
            if current is None or (session is not None and current is not session):
                raise NotFound(token)
            del self._sessions[token]
        logger.debug(f"Purged session entry {token}")
        return current

    def add_waiter(self, token: str, future: asyncio.Future) -> SessionSnapshot:
        """
        Register an artifact waiter if the session is still waiting for one.

        The returned snapshot tells the caller whether to wait: a pending
        session without an artifact has the future attached, anything else
        does not.

        Raises:
            NotFound: If the token is unknown or being removed.
        """
        with self._lock:
            session = self._sessions.get(token)
            if session is None or session.state is SessionState.REMOVED:
                raise NotFound(token)
            if session.state in PENDING_STATES and session.artifact is None:
                session.waiters.append(future)
            return session.snapshot()

    def discard_waiter(self, token: str, future: asyncio.Future) -> None:
        with self._lock:
            session = self._sessions.get(token)
            if session and future in session.waiters:
                session.waiters.remove(future)

    def clear(self) -> list[Session]:
        """Drop every entry. Used for shutdown and test teardown."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        return sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, token: str) -> bool:
        with self._lock:
            return token in self._sessions

    # Keep last: this name shadows the builtin ``list`` inside the class body
    def list(self) -> list[SessionSnapshot]:
        """Consistent snapshot of every registered session."""
        with self._lock:
            return [session.snapshot() for session in self._sessions.values()]
