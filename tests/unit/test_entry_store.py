"""Tests for the entry store: full re-fetch sync, scoping and local filtering."""

import asyncio

import pytest

from diary_app.models.diary import Category, DiaryEntryCreate, DiaryEntryUpdate
from diary_app.utils.errors import AuthError, ConflictError, NotFoundError, RemoteError


def _draft(title: str, content: str = "some words", category: Category = Category.PERSONAL):
    return DiaryEntryCreate(title=title, content=content, category=category)


def _remote_ids(backend, user_id):
    rows = [r for r in backend.tables["diary_entries"] if r["user_id"] == user_id]
    rows.sort(key=lambda r: r["created_at"], reverse=True)
    return [r["id"] for r in rows]


def test_list_is_empty_without_identity(entries):
    assert entries.list_entries() == []
    asyncio.run(entries.refresh())
    assert entries.list_entries() == []


def test_create_requires_identity(entries):
    with pytest.raises(AuthError):
        asyncio.run(entries.create_entry(_draft("Paris")))


def test_list_matches_remote_after_every_mutation(backend, sessions, entries):
    asyncio.run(sessions.sign_in("alice@example.com", "correct-horse"))
    user_id = sessions.identity.id

    first = asyncio.run(entries.create_entry(_draft("one")))
    assert [e.id for e in entries.list_entries()] == _remote_ids(backend, user_id)

    second = asyncio.run(entries.create_entry(_draft("two")))
    assert [e.id for e in entries.list_entries()] == _remote_ids(backend, user_id)
    assert entries.list_entries()[0].id == second.id

    asyncio.run(entries.update_entry(first.id, DiaryEntryUpdate(title="one, edited")))
    assert [e.id for e in entries.list_entries()] == _remote_ids(backend, user_id)
    assert entries.get_entry(first.id).title == "one, edited"

    asyncio.run(entries.delete_entry(second.id))
    assert [e.id for e in entries.list_entries()] == _remote_ids(backend, user_id)
    assert [e.id for e in entries.list_entries()] == [first.id]


def test_update_only_sends_explicit_fields(backend, sessions, entries):
    asyncio.run(sessions.sign_in("alice@example.com", "correct-horse"))
    created = asyncio.run(entries.create_entry(_draft("Title", "Body", Category.WORK)))

    updated = asyncio.run(entries.update_entry(created.id, DiaryEntryUpdate(category=Category.HOME)))

    assert updated.title == "Title"
    assert updated.content == "Body"
    assert updated.category == Category.HOME
    assert updated.updated_at >= created.updated_at


def test_mutations_are_scoped_to_current_identity(backend, sessions, entries):
    asyncio.run(sessions.sign_in("bob@example.com", "battery-staple"))
    bobs = asyncio.run(entries.create_entry(_draft("bob's secret")))

    asyncio.run(sessions.sign_in("alice@example.com", "correct-horse"))
    assert entries.list_entries() == []

    with pytest.raises(NotFoundError):
        asyncio.run(entries.update_entry(bobs.id, DiaryEntryUpdate(title="hijacked")))
    with pytest.raises(NotFoundError):
        asyncio.run(entries.delete_entry(bobs.id))

    remaining = [r for r in backend.tables["diary_entries"] if r["id"] == bobs.id]
    assert remaining[0]["title"] == "bob's secret"


def test_identity_transitions_clear_and_repopulate(backend, sessions, entries):
    asyncio.run(sessions.sign_in("alice@example.com", "correct-horse"))
    asyncio.run(entries.create_entry(_draft("alice 1")))
    asyncio.run(entries.create_entry(_draft("alice 2")))
    assert len(entries.list_entries()) == 2

    asyncio.run(sessions.sign_out())
    assert entries.list_entries() == []

    asyncio.run(sessions.sign_in("bob@example.com", "battery-staple"))
    assert entries.list_entries() == []
    asyncio.run(entries.create_entry(_draft("bob 1")))

    asyncio.run(sessions.sign_in("alice@example.com", "correct-horse"))
    titles = sorted(e.title for e in entries.list_entries())
    assert titles == ["alice 1", "alice 2"]
    assert all(e.user_id == sessions.identity.id for e in entries.list_entries())


def test_failed_mutation_leaves_cache_untouched(backend, sessions, entries):
    asyncio.run(sessions.sign_in("alice@example.com", "correct-horse"))
    created = asyncio.run(entries.create_entry(_draft("keep me")))
    before = entries.list_entries()

    backend.fail("delete:diary_entries", "permission denied")
    with pytest.raises(RemoteError) as excinfo:
        asyncio.run(entries.delete_entry(created.id))

    assert excinfo.value.message == "permission denied"
    assert entries.list_entries() == before


def test_failed_refresh_keeps_last_good_state(backend, sessions, entries):
    asyncio.run(sessions.sign_in("alice@example.com", "correct-horse"))
    asyncio.run(entries.create_entry(_draft("cached")))
    before = entries.list_entries()

    backend.fail("select:diary_entries", "timeout")
    with pytest.raises(RemoteError):
        asyncio.run(entries.refresh())

    assert entries.list_entries() == before
    assert entries.loading is False


def test_second_mutation_for_same_entry_is_rejected_while_in_flight(backend, sessions, entries):
    asyncio.run(sessions.sign_in("alice@example.com", "correct-horse"))
    created = asyncio.run(entries.create_entry(_draft("slow")))

    original_delete = backend.delete
    gate = {}

    async def slow_delete(table, filters, privileged=False):
        await gate["event"].wait()
        return await original_delete(table, filters, privileged)

    backend.delete = slow_delete

    async def scenario():
        gate["event"] = asyncio.Event()
        first = asyncio.create_task(entries.delete_entry(created.id))
        await asyncio.sleep(0)
        with pytest.raises(ConflictError):
            await entries.delete_entry(created.id)
        gate["event"].set()
        await first

    asyncio.run(scenario())

    assert entries.list_entries() == []
    assert sum(1 for op, _ in backend.calls if op == "delete") == 1


def test_filter_and_search_are_pure(sessions, entries):
    asyncio.run(sessions.sign_in("alice@example.com", "correct-horse"))
    asyncio.run(entries.create_entry(_draft("Dreamt of whales", "ocean", Category.DREAM)))
    asyncio.run(entries.create_entry(_draft("Office day", "Meetings about OCEAN data", Category.WORK)))
    snapshot = entries.list_entries()

    first = entries.search("Ocean")
    second = entries.search("Ocean")
    assert first == second
    assert len(first) == 2

    dreams = entries.filter_by_category(Category.DREAM)
    assert dreams == entries.filter_by_category(Category.DREAM)
    assert [e.title for e in dreams] == ["Dreamt of whales"]

    dreams.clear()
    assert entries.list_entries() == snapshot


def test_travel_entry_end_to_end(sessions, entries):
    asyncio.run(sessions.sign_in("alice@example.com", "correct-horse"))
    asyncio.run(entries.create_entry(_draft("Paris", "trip", Category.TRAVEL)))

    by_category = entries.filter_by_category(Category.TRAVEL)
    assert [(e.title, e.content) for e in by_category] == [("Paris", "trip")]
    assert [e.title for e in entries.search("par")] == ["Paris"]
    assert entries.search("tokyo") == []


def test_count_by_category(sessions, entries):
    asyncio.run(sessions.sign_in("alice@example.com", "correct-horse"))
    asyncio.run(entries.create_entry(_draft("a", category=Category.HOME)))
    asyncio.run(entries.create_entry(_draft("b", category=Category.HOME)))

    counts = entries.count_by_category()
    assert counts[Category.HOME] == 2
    assert counts[Category.TRAVEL] == 0
