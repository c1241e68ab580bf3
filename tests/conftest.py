"""Shared pytest fixtures and fakes."""

from pathlib import Path
from typing import Optional

import pytest

from wagate.sessions.base import ArtifactKind, MediaPayload, MessagingClient
from wagate.sessions.controller import SessionLifecycleController


class FakeClient(MessagingClient):
    """In-memory messaging client that records what it is asked to do."""

    def __init__(
        self,
        token: str,
        credentials_dir: Path,
        auto_artifact: Optional[str] = None,
        fail_start: Optional[Exception] = None,
        fail_send: Optional[Exception] = None,
        fail_shutdown: Optional[Exception] = None,
    ):
        super().__init__(token, credentials_dir)
        self.auto_artifact = auto_artifact
        self.fail_start = fail_start
        self.fail_send = fail_send
        self.fail_shutdown = fail_shutdown
        self.start_args = None
        self.sent = []
        self.shutdown_calls = 0

    async def start(self, auth_method=ArtifactKind.QR, phone_number=None):
        self.start_args = (auth_method, phone_number)
        self.credentials_dir.mkdir(parents=True, exist_ok=True)
        if self.fail_start:
            raise self.fail_start
        if self.auto_artifact:
            self._emit_artifact(auth_method, self.auto_artifact)

    async def send_text(self, chat_id, text):
        if self.fail_send:
            raise self.fail_send
        self.sent.append(("text", chat_id, text))

    async def send_media(self, chat_id, media, caption=""):
        if self.fail_send:
            raise self.fail_send
        self.sent.append(("media", chat_id, media, caption))

    async def shutdown(self):
        self.shutdown_calls += 1
        if self.fail_shutdown:
            raise self.fail_shutdown

    # Simulated platform events

    def emit_qr(self, value: str):
        self._emit_artifact(ArtifactKind.QR, value)

    def emit_code(self, value: str):
        self._emit_artifact(ArtifactKind.PAIRING_CODE, value)

    def authenticate(self):
        self._emit_authenticated()

    def fail(self, reason: str):
        self._emit_auth_failed(reason)

    def disconnect(self, reason: str):
        self._emit_disconnected(reason)


class FakeClientFactory:
    """Client factory that keeps every client it builds, per token."""

    def __init__(self):
        self.clients: dict[str, list[FakeClient]] = {}
        self.options: dict = {}
        self.per_token: dict[str, dict] = {}
        self.error: Optional[Exception] = None

    def __call__(self, token: str, credentials_dir: Path) -> FakeClient:
        if self.error:
            raise self.error
        options = {**self.options, **self.per_token.get(token, {})}
        client = FakeClient(token, credentials_dir, **options)
        self.clients.setdefault(token, []).append(client)
        return client

    def last(self, token: str) -> FakeClient:
        return self.clients[token][-1]


class FakeMediaFetcher:
    def __init__(self, error: Optional[Exception] = None):
        self.calls = []
        self.error = error

    async def __call__(self, url, *, timeout, max_bytes):
        self.calls.append(url)
        if self.error:
            raise self.error
        return MediaPayload(mimetype="image/png", data="aGVsbG8=", filename="cat.png")


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest.fixture
def media_fetcher():
    return FakeMediaFetcher()


@pytest.fixture
def auth_dir(tmp_path):
    return tmp_path / "auth"


@pytest.fixture
def controller(client_factory, media_fetcher, auth_dir):
    return SessionLifecycleController(
        client_factory=client_factory,
        auth_dir=auth_dir,
        artifact_timeout=0.5,
        shutdown_timeout=0.5,
        media_fetcher=media_fetcher,
    )
