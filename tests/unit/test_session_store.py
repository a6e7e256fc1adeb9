"""Tests for the session store: initial check, auth events and auth operations."""

import asyncio

import pytest

from diary_app.backend.memory import InMemoryBackend
from diary_app.models.auth import AuthEvent, AuthEventKind, Session
from diary_app.services.session_store import SessionStore
from diary_app.utils.errors import AuthError, ValidationError


def test_start_without_session_resolves_to_no_identity(backend):
    store = SessionStore(backend)
    assert store.loading is True

    asyncio.run(store.start())

    assert store.identity is None
    assert store.loading is False
    assert store.is_subscribed


def test_start_picks_up_existing_session(backend):
    asyncio.run(backend.sign_in_with_password("alice@example.com", "correct-horse"))
    store = SessionStore(backend)
    seen = []
    store.add_listener(seen.append)

    asyncio.run(store.start())

    assert store.identity.email == "alice@example.com"
    assert [i.email for i in seen] == ["alice@example.com"]


def test_failed_session_check_is_not_retried(backend):
    backend.fail("get_session", "network down")
    store = SessionStore(backend)

    asyncio.run(store.start())

    assert store.identity is None
    assert store.loading is False
    assert sum(1 for op, _ in backend.calls if op == "get_session") == 1


def test_events_replace_identity(backend, sessions):
    asyncio.run(sessions.sign_in("alice@example.com", "correct-horse"))
    assert sessions.identity.email == "alice@example.com"

    asyncio.run(sessions.sign_out())
    assert sessions.identity is None


def test_token_refresh_replaces_identity_without_notifying(backend, sessions):
    asyncio.run(sessions.sign_in("alice@example.com", "correct-horse"))
    notified = []
    sessions.add_listener(notified.append)

    refreshed = Session(access_token="new", identity=sessions.identity.model_copy())
    asyncio.run(backend.auth_events.emit(AuthEvent(kind=AuthEventKind.TOKEN_REFRESHED,
                                                   session=refreshed)))

    assert sessions.identity == refreshed.identity
    assert notified == []


def test_password_recovery_clears_identity(backend, sessions):
    token = backend.issue_recovery_token("alice@example.com")

    asyncio.run(sessions.begin_password_recovery(token))

    assert sessions.identity is None
    assert sessions.recovery_pending is True


def test_complete_password_reset_signs_out(backend, sessions):
    token = backend.issue_recovery_token("alice@example.com")
    asyncio.run(sessions.begin_password_recovery(token))

    asyncio.run(sessions.complete_password_reset("new-secret", "new-secret"))

    assert sessions.recovery_pending is False
    assert sessions.identity is None
    assert asyncio.run(backend.get_session()) is None
    identity = asyncio.run(sessions.sign_in("alice@example.com", "new-secret"))
    assert identity.email == "alice@example.com"


def test_password_reset_requires_pending_recovery(sessions):
    with pytest.raises(AuthError):
        asyncio.run(sessions.complete_password_reset("new-secret", "new-secret"))


def test_password_mismatch_blocks_before_remote_call(backend, sessions):
    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(sessions.sign_up("carol@example.com", "secret1", "secret2"))

    assert excinfo.value.message == "Passwords do not match."
    assert not backend.called("sign_up")


def test_sign_up_existing_email_returns_message(sessions):
    result = asyncio.run(sessions.sign_up("alice@example.com", "whatever", "whatever"))

    assert result.identity is None
    assert "already registered" in result.message


def test_sign_up_without_auto_confirm_asks_for_verification():
    backend = InMemoryBackend(auto_confirm=False)
    store = SessionStore(backend)
    asyncio.run(store.start())

    result = asyncio.run(store.sign_up("carol@example.com", "secret1", "secret1"))

    assert result.identity.email == "carol@example.com"
    assert "verification email" in result.message
    assert store.identity is None
    assert backend.sent_emails[0][0] == "carol@example.com"


def test_wrong_password_raises_auth_error(sessions):
    with pytest.raises(AuthError):
        asyncio.run(sessions.sign_in("alice@example.com", "nope"))
    assert sessions.identity is None


def test_update_password_requires_identity(backend, sessions):
    with pytest.raises(AuthError):
        asyncio.run(sessions.update_password("another-one"))
    assert not backend.called("update_password")


def test_request_password_reset_uses_reset_route(backend, sessions):
    asyncio.run(sessions.request_password_reset("alice@example.com"))

    email, redirect = backend.sent_emails[-1]
    assert email == "alice@example.com"
    assert redirect.endswith("/reset-password")


def test_suppressed_events_leave_identity_alone(backend, sessions):
    asyncio.run(sessions.sign_in("alice@example.com", "correct-horse"))

    with sessions.suppress_events():
        asyncio.run(backend.sign_out())

    assert sessions.identity.email == "alice@example.com"


def test_close_unsubscribes(backend, sessions):
    sessions.close()

    asyncio.run(backend.sign_in_with_password("alice@example.com", "correct-horse"))

    assert sessions.identity is None
    assert backend.auth_events.subscriber_count == 0


def test_failing_listener_does_not_break_event_handling(backend, sessions):
    def broken(identity):
        raise RuntimeError("boom")

    received = []
    sessions.add_listener(broken)
    sessions.add_listener(received.append)

    asyncio.run(sessions.sign_in("alice@example.com", "correct-horse"))

    assert sessions.identity.email == "alice@example.com"
    assert len(received) == 1
