"""Tests for the account deletion sequence and its state machine."""

import asyncio

import pytest

from diary_app.models.diary import Category, DiaryEntryCreate
from diary_app.services.account_service import DeletionState
from diary_app.utils.errors import AuthError, RemoteError, ValidationError

MUTATIONS = {"insert", "update", "upsert", "delete", "upload_object", "delete_object",
             "invoke_privileged", "sign_out"}


@pytest.fixture
def alice(backend, sessions, entries, profiles):
    """Alice signed in, with two entries, a profile and an avatar."""
    asyncio.run(sessions.sign_in("alice@example.com", "correct-horse"))
    for title in ("first", "second"):
        asyncio.run(entries.create_entry(
            DiaryEntryCreate(title=title, content="text", category=Category.HOME)
        ))
    asyncio.run(profiles.upload_avatar(b"\x89PNG", "me.png", "image/png"))
    backend.calls.clear()
    return sessions.identity


def _mutations(backend):
    return [(op, target) for op, target in backend.calls if op in MUTATIONS]


def test_deletion_requires_confirmation_step(backend, account, alice):
    with pytest.raises(ValidationError):
        asyncio.run(account.delete_account("correct-horse"))

    assert account.state == DeletionState.IDLE
    assert backend.calls == []


def test_cancel_returns_to_idle(account, alice):
    assert account.request_deletion() == DeletionState.CONFIRMING
    assert account.cancel() == DeletionState.IDLE


def test_request_requires_identity(account):
    with pytest.raises(AuthError):
        account.request_deletion()


def test_wrong_password_has_no_side_effects(backend, sessions, entries, account, alice):
    account.request_deletion()

    with pytest.raises(AuthError) as excinfo:
        asyncio.run(account.delete_account("wrong"))

    assert excinfo.value.message == "Incorrect password. Please try again."
    assert account.state == DeletionState.FAILED
    assert _mutations(backend) == []
    assert alice.id in backend.users
    assert len(backend.tables["diary_entries"]) == 2
    assert len(backend.tables["profiles"]) == 1
    assert len(backend.objects) == 1
    assert sessions.identity == alice
    assert len(entries.list_entries()) == 2


def test_successful_deletion_removes_everything(backend, sessions, entries, account, alice):
    account.request_deletion()

    result = asyncio.run(account.delete_account("correct-horse"))

    assert result.state == DeletionState.DONE
    assert result.redirect_to == "/"
    assert result.warnings == []
    assert account.state == DeletionState.DONE
    assert alice.id not in backend.users
    assert backend.tables["diary_entries"] == []
    assert backend.tables["profiles"] == []
    assert backend.objects == {}
    assert sessions.identity is None
    assert entries.list_entries() == []


def test_steps_run_in_order(backend, account, alice):
    account.request_deletion()

    asyncio.run(account.delete_account("correct-horse"))

    assert _mutations(backend) == [
        ("sign_out", ""),
        ("delete_object", f"avatars/{alice.id}/" + _avatar_file(backend)),
        ("delete", "diary_entries"),
        ("delete", "profiles"),
        ("invoke_privileged", "delete_user"),
    ]


def _avatar_file(backend):
    for op, target in backend.calls:
        if op == "delete_object":
            return target.rsplit("/", 1)[-1]
    return ""


def test_cleanup_failures_do_not_stop_identity_deletion(backend, sessions, account, alice):
    backend.fail("delete_object", "storage unavailable")
    backend.fail("delete:diary_entries", "rows locked")
    account.request_deletion()

    result = asyncio.run(account.delete_account("correct-horse"))

    assert result.state == DeletionState.DONE
    assert backend.called("invoke_privileged")
    assert alice.id not in backend.users
    assert len(result.warnings) == 2
    assert "storage unavailable" in result.warnings[0]
    assert "rows locked" in result.warnings[1]
    assert sessions.identity is None


def test_identity_deletion_failure_is_terminal(backend, sessions, account, alice):
    backend.fail("invoke_privileged:delete_user", "permission denied for function")
    account.request_deletion()

    with pytest.raises(RemoteError) as excinfo:
        asyncio.run(account.delete_account("correct-horse"))

    assert excinfo.value.message == "Failed to delete account: permission denied for function"
    assert account.state == DeletionState.FAILED
    assert account.last_error == excinfo.value.message
    assert sessions.identity == alice
    assert asyncio.run(backend.get_session()) is None


def test_empty_password_is_rejected_locally(backend, account, alice):
    account.request_deletion()

    with pytest.raises(ValidationError):
        asyncio.run(account.delete_account(""))

    assert account.state == DeletionState.CONFIRMING
    assert backend.calls == []


def test_unexpected_error_moves_to_failed_and_allows_retry(backend, sessions, account, alice):
    backend.fail("invoke_privileged:delete_user", "unexpected payload", error_cls=ValueError)
    account.request_deletion()

    with pytest.raises(RemoteError) as excinfo:
        asyncio.run(account.delete_account("correct-horse"))

    assert excinfo.value.message == "Failed to delete account: unexpected payload"
    assert account.state == DeletionState.FAILED
    assert sessions.identity == alice

    backend.clear_failures()
    asyncio.run(sessions.sign_in("alice@example.com", "correct-horse"))
    assert account.request_deletion() == DeletionState.CONFIRMING
    result = asyncio.run(account.delete_account("correct-horse"))
    assert result.state == DeletionState.DONE


def test_entry_cache_follows_purge_when_identity_deletion_fails(backend, entries, account, alice):
    backend.fail("invoke_privileged:delete_user", "permission denied for function")
    account.request_deletion()

    with pytest.raises(RemoteError):
        asyncio.run(account.delete_account("correct-horse"))

    assert backend.tables["diary_entries"] == []
    assert entries.list_entries() == []


def test_entry_cache_kept_when_entry_purge_fails(backend, entries, account, alice):
    backend.fail("delete:diary_entries", "rows locked")
    backend.fail("invoke_privileged:delete_user", "permission denied for function")
    account.request_deletion()

    with pytest.raises(RemoteError):
        asyncio.run(account.delete_account("correct-horse"))

    assert len(backend.tables["diary_entries"]) == 2
    assert len(entries.list_entries()) == 2
