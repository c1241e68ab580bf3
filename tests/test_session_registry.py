"""
Unit tests for the session registry and state machine.
"""

import asyncio
import threading
from pathlib import Path

import pytest

from wagate.sessions.base import (
    ArtifactKind,
    AuthArtifact,
    SessionState,
    can_transition,
)
from wagate.sessions.errors import AlreadyExists, NotFound
from wagate.sessions.registry import SessionRegistry

TOKEN = "+15551234567"


class TestStateMachine:
    def test_pending_edges(self):
        assert can_transition(SessionState.INITIALIZING, SessionState.AWAITING_CODE)
        assert can_transition(SessionState.INITIALIZING, SessionState.AUTHENTICATED)
        assert can_transition(SessionState.AWAITING_CODE, SessionState.AWAITING_CODE)
        assert can_transition(SessionState.AWAITING_CODE, SessionState.AUTH_FAILED)

    def test_authenticated_only_logs_out(self):
        assert can_transition(SessionState.AUTHENTICATED, SessionState.LOGGED_OUT)
        assert not can_transition(SessionState.AUTHENTICATED, SessionState.AWAITING_CODE)
        assert not can_transition(SessionState.AUTHENTICATED, SessionState.AUTH_FAILED)

    def test_terminal_states(self):
        assert not can_transition(SessionState.LOGGED_OUT, SessionState.AUTHENTICATED)
        assert not can_transition(SessionState.AUTH_FAILED, SessionState.AWAITING_CODE)
        assert not can_transition(SessionState.INITIALIZING, SessionState.LOGGED_OUT)

    def test_removed_reachable_from_anywhere(self):
        for state in SessionState:
            if state is SessionState.REMOVED:
                assert not can_transition(state, SessionState.REMOVED)
            else:
                assert can_transition(state, SessionState.REMOVED)


class TestSessionRegistry:
    @pytest.fixture(autouse=True)
    def _setup(self, client_factory, tmp_path):
        self.registry = SessionRegistry()
        self.factory = client_factory
        self.tmp_path = tmp_path

    def _client(self, token=TOKEN):
        return self.factory(token, Path(self.tmp_path) / token)

    def test_create_and_list(self):
        session = self.registry.create(TOKEN, self._client())
        assert session.state is SessionState.INITIALIZING
        assert session.artifact is None

        snapshots = self.registry.list()
        assert len(snapshots) == 1
        assert snapshots[0].token == TOKEN
        assert TOKEN in self.registry
        assert len(self.registry) == 1

    def test_create_duplicate(self):
        self.registry.create(TOKEN, self._client())
        with pytest.raises(AlreadyExists):
            self.registry.create(TOKEN, self._client())

    def test_client_cannot_be_shared(self):
        client = self._client()
        self.registry.create(TOKEN, client)
        with pytest.raises(ValueError, match="already owned"):
            self.registry.create("other", client)

    def test_snapshot_unknown(self):
        assert self.registry.snapshot("nope") is None
        assert self.registry.get("nope") is None

    def test_checkout_unknown(self):
        with pytest.raises(NotFound):
            self.registry.checkout("nope")

    def test_transition_sets_and_clears_artifact(self):
        session = self.registry.create(TOKEN, self._client())
        artifact = AuthArtifact(kind=ArtifactKind.QR, value="qr-1")

        assert self.registry.transition(session, SessionState.AWAITING_CODE, artifact) == []
        assert self.registry.snapshot(TOKEN).artifact == artifact

        assert self.registry.transition(session, SessionState.AUTHENTICATED) == []
        snapshot = self.registry.snapshot(TOKEN)
        assert snapshot.state is SessionState.AUTHENTICATED
        assert snapshot.artifact is None
        assert snapshot.authenticated

    def test_invalid_transition_is_rejected(self):
        session = self.registry.create(TOKEN, self._client())
        assert self.registry.transition(session, SessionState.LOGGED_OUT) is None
        assert self.registry.snapshot(TOKEN).state is SessionState.INITIALIZING

    def test_transition_records_reason(self):
        session = self.registry.create(TOKEN, self._client())
        self.registry.transition(session, SessionState.AUTH_FAILED, reason="bad creds")
        snapshot = self.registry.snapshot(TOKEN)
        assert snapshot.state is SessionState.AUTH_FAILED
        assert snapshot.reason == "bad creds"

    def test_disconnect_after_authentication_logs_out(self):
        session = self.registry.create(TOKEN, self._client())
        self.registry.transition(session, SessionState.AUTHENTICATED)

        target, reason, waiters = self.registry.disconnect(session, "LOGOUT")
        assert target is SessionState.LOGGED_OUT
        assert reason == "LOGOUT"
        assert waiters == []
        assert self.registry.snapshot(TOKEN).reason == "LOGOUT"

    def test_disconnect_before_authentication_fails(self):
        session = self.registry.create(TOKEN, self._client())

        target, reason, _ = self.registry.disconnect(session, "NAVIGATION")
        assert target is SessionState.AUTH_FAILED
        assert reason == "disconnected: NAVIGATION"
        assert self.registry.snapshot(TOKEN).state is SessionState.AUTH_FAILED

    def test_disconnect_is_rejected_for_terminal_or_stale_sessions(self):
        session = self.registry.create(TOKEN, self._client())
        self.registry.transition(session, SessionState.AUTH_FAILED, reason="bad")
        assert self.registry.disconnect(session, "late") is None
        assert self.registry.snapshot(TOKEN).reason == "bad"

        self.registry.mark_removed(TOKEN)
        self.registry.remove(TOKEN, session)
        self.registry.create(TOKEN, self._client())
        assert self.registry.disconnect(session, "late") is None
        assert self.registry.snapshot(TOKEN).state is SessionState.INITIALIZING

    def test_disconnects_from_many_threads_apply_once(self):
        session = self.registry.create(TOKEN, self._client())
        self.registry.transition(session, SessionState.AUTHENTICATED)

        results = []
        threads = [
            threading.Thread(
                target=lambda: results.append(self.registry.disconnect(session, "LOGOUT"))
            )
            for _ in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        applied = [r for r in results if r is not None]
        assert len(applied) == 1
        assert applied[0][0] is SessionState.LOGGED_OUT
        assert self.registry.snapshot(TOKEN).state is SessionState.LOGGED_OUT

    def test_stale_handle_is_ignored(self):
        old = self.registry.create(TOKEN, self._client())
        self.registry.mark_removed(TOKEN)
        self.registry.remove(TOKEN, old)
        self.registry.create(TOKEN, self._client())

        assert self.registry.transition(old, SessionState.AUTHENTICATED) is None
        assert self.registry.snapshot(TOKEN).state is SessionState.INITIALIZING

    def test_mark_removed_claims_once(self):
        self.registry.create(TOKEN, self._client())
        session, waiters = self.registry.mark_removed(TOKEN)
        assert session.state is SessionState.REMOVED
        assert waiters == []

        with pytest.raises(NotFound):
            self.registry.mark_removed(TOKEN)
        with pytest.raises(NotFound):
            self.registry.checkout(TOKEN)

    def test_removed_entry_can_be_replaced(self):
        self.registry.create(TOKEN, self._client())
        self.registry.mark_removed(TOKEN)
        replacement = self.registry.create(TOKEN, self._client())
        assert self.registry.get(TOKEN) is replacement

    def test_remove_checks_identity(self):
        old = self.registry.create(TOKEN, self._client())
        self.registry.mark_removed(TOKEN)
        self.registry.create(TOKEN, self._client())

        with pytest.raises(NotFound):
            self.registry.remove(TOKEN, old)
        assert TOKEN in self.registry

    def test_remove_unknown(self):
        with pytest.raises(NotFound):
            self.registry.remove("nope")

    def test_count_by_state(self):
        s1 = self.registry.create("a", self._client("a"))
        self.registry.create("b", self._client("b"))
        self.registry.transition(s1, SessionState.AUTHENTICATED)

        assert self.registry.count_by_state() == {"authenticated": 1, "initializing": 1}

    def test_clear(self):
        self.registry.create("a", self._client("a"))
        self.registry.create("b", self._client("b"))
        cleared = self.registry.clear()
        assert {s.token for s in cleared} == {"a", "b"}
        assert len(self.registry) == 0

    @pytest.mark.asyncio
    async def test_waiters_attach_only_while_pending(self):
        session = self.registry.create(TOKEN, self._client())
        loop = asyncio.get_running_loop()

        first = loop.create_future()
        snapshot = self.registry.add_waiter(TOKEN, first)
        assert snapshot.artifact is None
        assert session.waiters == [first]

        artifact = AuthArtifact(kind=ArtifactKind.QR, value="qr-1")
        released = self.registry.transition(session, SessionState.AWAITING_CODE, artifact)
        assert released == [first]
        assert session.waiters == []

        second = loop.create_future()
        snapshot = self.registry.add_waiter(TOKEN, second)
        assert snapshot.artifact == artifact
        assert session.waiters == []

    @pytest.mark.asyncio
    async def test_discard_waiter(self):
        session = self.registry.create(TOKEN, self._client())
        future = asyncio.get_running_loop().create_future()
        self.registry.add_waiter(TOKEN, future)

        self.registry.discard_waiter(TOKEN, future)
        assert session.waiters == []
        self.registry.discard_waiter("nope", future)

    @pytest.mark.asyncio
    async def test_add_waiter_unknown(self):
        future = asyncio.get_running_loop().create_future()
        with pytest.raises(NotFound):
            self.registry.add_waiter("nope", future)

    @pytest.mark.asyncio
    async def test_mark_removed_returns_waiters(self):
        self.registry.create(TOKEN, self._client())
        future = asyncio.get_running_loop().create_future()
        self.registry.add_waiter(TOKEN, future)

        _, waiters = self.registry.mark_removed(TOKEN)
        assert waiters == [future]


class TestSessionSnapshot:
    def test_to_dict(self, client_factory, tmp_path):
        registry = SessionRegistry()
        registry.create(TOKEN, client_factory(TOKEN, tmp_path), ArtifactKind.PAIRING_CODE)

        d = registry.snapshot(TOKEN).to_dict()
        assert d["token"] == TOKEN
        assert d["status"] == "initializing"
        assert d["authenticated"] is False
        assert d["auth_method"] == "pairing_code"
        assert d["has_artifact"] is False
        assert d["reason"] is None
        assert "created_at" in d and "last_transition_at" in d
