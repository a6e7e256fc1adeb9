"""Shared fixtures for the diary app tests."""

import asyncio
import os

# 测试中只输出到控制台，并且不访问真实的 Supabase
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("USE_IN_MEMORY_BACKEND", "true")

import pytest

from diary_app.backend.memory import InMemoryBackend
from diary_app.services.account_service import AccountLifecycleCoordinator
from diary_app.services.entry_store import EntryStore
from diary_app.services.profile_service import ProfileService
from diary_app.services.session_store import SessionStore


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def backend() -> InMemoryBackend:
    backend = InMemoryBackend()
    backend.add_user("alice@example.com", "correct-horse")
    backend.add_user("bob@example.com", "battery-staple")
    return backend


@pytest.fixture
def sessions(backend: InMemoryBackend) -> SessionStore:
    store = SessionStore(backend)
    run(store.start())
    yield store
    store.close()


@pytest.fixture
def entries(backend: InMemoryBackend, sessions: SessionStore) -> EntryStore:
    store = EntryStore(backend, sessions)
    yield store
    store.close()


@pytest.fixture
def profiles(backend: InMemoryBackend, sessions: SessionStore) -> ProfileService:
    return ProfileService(backend, sessions)


@pytest.fixture
def account(backend: InMemoryBackend, sessions: SessionStore,
            entries: EntryStore) -> AccountLifecycleCoordinator:
    return AccountLifecycleCoordinator(backend, sessions, entries)
