"""
Lifecycle controller for messaging sessions.

Wires each client's asynchronous callbacks into registry transitions,
gates outbound sends on session state, and implements re-initialization
and the wait-for-artifact contract used by QR and pairing-code flows.
"""

import asyncio
import shutil
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Awaitable, Callable, NamedTuple, Optional

from wagate.logger import get_logger
from wagate.media import fetch_media
from wagate.sessions.base import (
    PENDING_STATES,
    STALE_STATES,
    ArtifactKind,
    AuthArtifact,
    ClientObserver,
    LifecycleEvent,
    MediaPayload,
    MessagingClient,
    Session,
    SessionSnapshot,
    SessionState,
)
from wagate.sessions.errors import (
    AlreadyAuthenticated,
    AlreadyExists,
    ArtifactTimeout,
    DeliveryFailed,
    HandshakeFailed,
    NotAuthenticated,
    NotFound,
    SessionError,
    TeardownFailed,
)
from wagate.sessions.registry import SessionRegistry
from wagate.validation import ValidationError, normalize_recipient, validate_token

logger = get_logger(__name__)

# Default bound for waiting on an authentication artifact (seconds)
DEFAULT_ARTIFACT_TIMEOUT = 10.0
DEFAULT_SHUTDOWN_TIMEOUT = 10.0

ClientFactory = Callable[[str, Path], MessagingClient]
LifecycleListener = Callable[[LifecycleEvent], None]
MediaFetcher = Callable[..., Awaitable[MediaPayload]]


class _Outcome(NamedTuple):
    """What an artifact waiter is woken with."""

    state: SessionState
    artifact: Optional[AuthArtifact] = None
    reason: Optional[str] = None


def _resolve(future: asyncio.Future, outcome: _Outcome) -> None:
    if not future.done():
        future.set_result(outcome)


def _delete_tree(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path)


class _SessionObserver(ClientObserver):
    """Routes one client's callbacks to the controller, bound to its session."""

    def __init__(self, controller: "SessionLifecycleController", session: Session):
        self._controller = controller
        self._session = session

    def on_artifact(self, artifact: AuthArtifact) -> None:
        self._controller._apply(
            self._session, SessionState.AWAITING_CODE, artifact=artifact
        )

    def on_authenticated(self) -> None:
        self._controller._apply(self._session, SessionState.AUTHENTICATED)

    def on_auth_failed(self, reason: str) -> None:
        self._controller._apply(
            self._session, SessionState.AUTH_FAILED, reason=reason or "unknown"
        )

    def on_disconnected(self, reason: str) -> None:
        self._controller._apply_disconnect(self._session, reason or "unknown")


class SessionLifecycleController:
    """
    Drives every session through its state machine.

    Create, remove and re-initialize for one token are serialized by a
    per-token asyncio lock; client callbacks go straight to the registry
    and may arrive from any thread.
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        auth_dir: Path,
        registry: Optional[SessionRegistry] = None,
        artifact_timeout: float = DEFAULT_ARTIFACT_TIMEOUT,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
        media_fetcher: MediaFetcher = fetch_media,
        media_timeout: float = 20.0,
        media_max_bytes: int = 16 * 1024 * 1024,
    ):
        self.registry = registry if registry is not None else SessionRegistry()
        self.auth_dir = Path(auth_dir)
        self.artifact_timeout = artifact_timeout
        self.shutdown_timeout = shutdown_timeout
        self.media_timeout = media_timeout
        self.media_max_bytes = media_max_bytes
        self._client_factory = client_factory
        self._fetch_media = media_fetcher
        # token -> [lock, holders and waiters]
        self._token_locks: dict[str, list] = {}
        self._listeners: list[LifecycleListener] = []
        self._stale_credentials: set[str] = set()

    @classmethod
    def from_config(cls, config, client_factory: ClientFactory):
        return cls(
            client_factory=client_factory,
            auth_dir=config.auth_dir,
            artifact_timeout=config.artifact_timeout,
            shutdown_timeout=config.shutdown_timeout,
            media_timeout=config.media_timeout,
            media_max_bytes=config.media_max_bytes,
        )

    # ─── Listeners ───────────────────────────────────────────────────

    def subscribe(self, listener: LifecycleListener) -> None:
        """Register a callable that receives every LifecycleEvent."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: LifecycleListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: LifecycleEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Lifecycle listener failed on {event.type}: {e}")

    # ─── Event application ───────────────────────────────────────────

    def _apply(
        self,
        session: Session,
        target: SessionState,
        artifact: Optional[AuthArtifact] = None,
        reason: Optional[str] = None,
    ) -> bool:
        waiters = self.registry.transition(session, target, artifact, reason)
        if waiters is None:
            return False

        self._publish(session, waiters, target, artifact, reason)
        return True

    def _apply_disconnect(self, session: Session, reason: str) -> bool:
        result = self.registry.disconnect(session, reason)
        if result is None:
            return False

        target, applied_reason, waiters = result
        self._publish(session, waiters, target, reason=applied_reason)
        return True

    def _publish(
        self,
        session: Session,
        waiters: list[asyncio.Future],
        target: SessionState,
        artifact: Optional[AuthArtifact] = None,
        reason: Optional[str] = None,
    ) -> None:
        self._release_waiters(waiters, _Outcome(target, artifact, reason))
        self._emit(
            LifecycleEvent(
                type=target.value, token=session.token, artifact=artifact, reason=reason
            )
        )

    @staticmethod
    def _release_waiters(waiters: list[asyncio.Future], outcome: _Outcome) -> None:
        for future in waiters:
            loop = future.get_loop()
            if loop.is_closed():
                continue
            loop.call_soon_threadsafe(_resolve, future, outcome)

    # ─── Creation ────────────────────────────────────────────────────

    def credentials_dir(self, token: str) -> Path:
        return self.auth_dir / token

    @asynccontextmanager
    async def _token_lock(self, token: str):
        """
        Serialize create, remove and re-initialize for one token.

        The lock entry lives only while someone holds or waits on it, so
        the map is bounded by in-flight operations.
        """
        entry = self._token_locks.get(token)
        if entry is None:
            entry = self._token_locks[token] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0 and self._token_locks.get(token) is entry:
                del self._token_locks[token]

    async def create_session(
        self, token: str, auth_method: ArtifactKind = ArtifactKind.QR
    ) -> SessionSnapshot:
        """
        Create a session and start its handshake.

        The session is registered as initializing before the client is
        started, so a concurrent status read always finds it.

        Raises:
            AlreadyExists: If a session for the token already exists.
            TeardownFailed: If stale credentials from a failed removal
                cannot be cleared.
        """
        async with self._token_lock(token):
            return await self._create_locked(token, auth_method)

    async def _create_locked(
        self, token: str, auth_method: ArtifactKind
    ) -> SessionSnapshot:
        existing = self.registry.get(token)
        if existing is not None and existing.state is not SessionState.REMOVED:
            raise AlreadyExists(token)

        if token in self._stale_credentials:
            await self._purge_credentials(token, strict=True)

        try:
            client = self._client_factory(token, self.credentials_dir(token))
        except Exception as e:
            logger.error(f"Failed to construct client for {token}: {e}")
            raise HandshakeFailed(token, f"client construction failed: {e}") from e

        session = self.registry.create(token, client, auth_method)
        client.bind(_SessionObserver(self, session))
        self._emit(LifecycleEvent(type=SessionState.INITIALIZING.value, token=token))

        phone_number = token.lstrip("+") if auth_method is ArtifactKind.PAIRING_CODE else None
        try:
            await client.start(auth_method=auth_method, phone_number=phone_number)
        except Exception as e:
            logger.error(f"Failed to start client for {token}: {e}")
            self._apply(session, SessionState.AUTH_FAILED, reason=f"start failed: {e}")

        return self.registry.snapshot(token) or session.snapshot()

    async def reinitialize(
        self,
        token: str,
        auth_method: Optional[ArtifactKind] = None,
        force: bool = False,
    ) -> SessionSnapshot:
        """
        Tear down a stale session and create a fresh one for the same token.

        Sessions that are not logged out or failed are left alone unless
        ``force`` is set; the stale client is never reused.

        Raises:
            NotFound: If no session exists for the token.
        """
        async with self._token_lock(token):
            snapshot = self.registry.snapshot(token)
            if snapshot is None or snapshot.state is SessionState.REMOVED:
                raise NotFound(token)
            if not force and snapshot.state not in STALE_STATES:
                return snapshot

            logger.info(f"Reinitializing session {token} (was {snapshot.state.value})")
            await self._remove_locked(token, purge_credentials=True)
            return await self._create_locked(token, auth_method or snapshot.auth_method)

    async def restore_sessions(self) -> list[str]:
        """
        Re-attach every token that still has a credential directory.

        Returns:
            Tokens that were restored.
        """
        if not self.auth_dir.is_dir():
            return []

        restored = []
        for path in sorted(self.auth_dir.iterdir()):
            if not path.is_dir():
                continue
            try:
                token = validate_token(path.name)
            except ValidationError:
                logger.warning(f"Skipping credential directory with invalid name: {path}")
                continue

            try:
                await self.create_session(token)
                restored.append(token)
            except SessionError as e:
                logger.warning(f"Could not restore session {token}: {e}")

        logger.info(f"Restored {len(restored)} session(s) from {self.auth_dir}")
        return restored

    # ─── Queries ─────────────────────────────────────────────────────

    def get_status(self, token: str) -> SessionSnapshot:
        snapshot = self.registry.snapshot(token)
        if snapshot is None:
            raise NotFound(token)
        return snapshot

    def list_sessions(self) -> list[SessionSnapshot]:
        return self.registry.list()

    async def _settled_snapshot(self, token: str) -> Optional[SessionSnapshot]:
        # A removed entry means a removal or re-initialization is in flight;
        # read again once it has finished.
        snapshot = self.registry.snapshot(token)
        if snapshot is not None and snapshot.state is SessionState.REMOVED:
            async with self._token_lock(token):
                snapshot = self.registry.snapshot(token)
        return snapshot

    async def get_artifact(
        self, token: str, timeout: Optional[float] = None
    ) -> Optional[AuthArtifact]:
        """
        Current artifact for a token.

        A logged-out or failed session is transparently re-initialized and
        the call waits for the fresh artifact. A pending session returns
        whatever it has right now, possibly None.

        Raises:
            NotFound, AlreadyAuthenticated, ArtifactTimeout, HandshakeFailed
        """
        snapshot = await self._settled_snapshot(token)
        if snapshot is None or snapshot.state is SessionState.REMOVED:
            raise NotFound(token)
        if snapshot.state is SessionState.AUTHENTICATED:
            raise AlreadyAuthenticated(token)

        if snapshot.state in STALE_STATES:
            await self.reinitialize(token)
            return await self.wait_for_artifact(token, timeout)

        return snapshot.artifact

    async def request_pairing_code(
        self, token: str, timeout: Optional[float] = None
    ) -> AuthArtifact:
        """
        Pairing-code flow: make sure a pending session exists, then wait for its code.

        Missing sessions are created in pairing mode and stale ones are
        re-initialized in pairing mode. A session that is already pending is
        reused as is, so a pending QR session yields its QR artifact.
        """
        snapshot = await self._settled_snapshot(token)
        if snapshot is None or snapshot.state is SessionState.REMOVED:
            try:
                await self.create_session(token, ArtifactKind.PAIRING_CODE)
            except AlreadyExists:
                pass
        elif snapshot.state is SessionState.AUTHENTICATED:
            raise AlreadyAuthenticated(token)
        elif snapshot.state in STALE_STATES:
            await self.reinitialize(token, ArtifactKind.PAIRING_CODE)

        return await self.wait_for_artifact(token, timeout)

    async def wait_for_artifact(
        self, token: str, timeout: Optional[float] = None
    ) -> AuthArtifact:
        """
        Suspend until the session publishes an artifact.

        All concurrent waiters on a token are woken by the same artifact. A
        timeout leaves the handshake running; a late artifact is stored for
        the next request.

        Raises:
            ArtifactTimeout: If nothing arrives within ``timeout`` seconds.
            AlreadyAuthenticated: If the session authenticates instead.
            HandshakeFailed: If the session fails while waiting.
            NotFound: If the session is unknown or removed.
        """
        timeout = self.artifact_timeout if timeout is None else timeout
        future = asyncio.get_running_loop().create_future()

        snapshot = self.registry.add_waiter(token, future)
        if snapshot.artifact is not None:
            return snapshot.artifact
        if snapshot.state not in PENDING_STATES:
            raise self._wait_error(token, _Outcome(snapshot.state, None, snapshot.reason))

        try:
            outcome = await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"No artifact for {token} within {timeout:g}s")
            raise ArtifactTimeout(token, timeout) from None
        finally:
            self.registry.discard_waiter(token, future)

        if outcome.state is SessionState.AWAITING_CODE and outcome.artifact:
            return outcome.artifact
        raise self._wait_error(token, outcome)

    @staticmethod
    def _wait_error(token: str, outcome: _Outcome) -> SessionError:
        if outcome.state is SessionState.AUTHENTICATED:
            return AlreadyAuthenticated(token)
        if outcome.state in STALE_STATES:
            return HandshakeFailed(token, outcome.reason)
        return NotFound(token)

    # ─── Outbound operations ─────────────────────────────────────────

    def _checkout_authenticated(self, token: str) -> MessagingClient:
        snapshot, client = self.registry.checkout(token)
        if snapshot.state is not SessionState.AUTHENTICATED:
            raise NotAuthenticated(token, snapshot.state.value)
        return client

    async def send_text(self, token: str, recipient: str, text: str) -> str:
        """
        Send a text message on behalf of an authenticated session.

        Returns:
            The normalized chat id the message was delivered to.

        Raises:
            NotFound, NotAuthenticated, InvalidRecipientFormat, DeliveryFailed
        """
        client = self._checkout_authenticated(token)
        chat_id = normalize_recipient(recipient)

        try:
            await client.send_text(chat_id, text)
        except Exception as e:
            logger.error(f"Text delivery from {token} to {chat_id} failed: {e}")
            raise DeliveryFailed(token, str(e) or e.__class__.__name__) from e

        logger.info(f"Sent text from {token} to {chat_id}")
        return chat_id

    async def send_media(
        self, token: str, recipient: str, source_url: str, caption: str = ""
    ) -> str:
        """
        Fetch media from a URL and send it on behalf of an authenticated session.

        Raises:
            NotFound, NotAuthenticated, InvalidRecipientFormat,
            MediaFetchFailed, DeliveryFailed
        """
        client = self._checkout_authenticated(token)
        chat_id = normalize_recipient(recipient)

        media = await self._fetch_media(
            source_url, timeout=self.media_timeout, max_bytes=self.media_max_bytes
        )

        try:
            await client.send_media(chat_id, media, caption or "")
        except Exception as e:
            logger.error(f"Media delivery from {token} to {chat_id} failed: {e}")
            raise DeliveryFailed(token, str(e) or e.__class__.__name__) from e

        logger.info(f"Sent {media.mimetype} from {token} to {chat_id}")
        return chat_id

    # ─── Removal ─────────────────────────────────────────────────────

    async def remove_session(self, token: str) -> None:
        """
        Release a session's client, delete its credentials and purge it.

        Teardown failures are logged, never raised; a second call for the
        same token raises NotFound.
        """
        async with self._token_lock(token):
            await self._remove_locked(token, purge_credentials=True)

    logout = remove_session

    async def _remove_locked(self, token: str, purge_credentials: bool) -> None:
        session, waiters = self.registry.mark_removed(token)
        self._release_waiters(waiters, _Outcome(SessionState.REMOVED))
        self._emit(LifecycleEvent(type=SessionState.REMOVED.value, token=token))

        await self._release_client(session)
        if purge_credentials:
            await self._purge_credentials(token)

        self.registry.remove(token, session)
        logger.info(f"Session {token} removed")

    async def _release_client(self, session: Session) -> None:
        try:
            await asyncio.wait_for(
                session.client.shutdown(), timeout=self.shutdown_timeout
            )
        except asyncio.TimeoutError:
            error = TeardownFailed(
                session.token, f"shutdown timed out after {self.shutdown_timeout:g}s"
            )
            logger.error(error.message)
        except Exception as e:
            logger.error(TeardownFailed(session.token, str(e)).message)

    async def _purge_credentials(self, token: str, strict: bool = False) -> None:
        path = self.credentials_dir(token)
        try:
            await asyncio.to_thread(_delete_tree, path)
        except OSError as e:
            self._stale_credentials.add(token)
            error = TeardownFailed(token, f"could not delete {path}: {e}")
            if strict:
                raise error from e
            logger.error(error.message)
            return

        self._stale_credentials.discard(token)
        logger.debug(f"Deleted credentials for {token}")

    async def shutdown(self) -> None:
        """Release every client, keeping credentials so sessions can resume."""
        tokens = [snapshot.token for snapshot in self.registry.list()]
        if not tokens:
            return

        async def close(token: str) -> None:
            async with self._token_lock(token):
                try:
                    await self._remove_locked(token, purge_credentials=False)
                except NotFound:
                    pass

        logger.info(f"Closing {len(tokens)} session(s)")
        await asyncio.gather(*(close(token) for token in tokens))
