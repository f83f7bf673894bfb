"""
tests/conftest.py -- Shared test fixtures for rtest.

This module provides:
  - make_user_store(): isolated in-memory user database per test
  - seed_users(): a fixed cast of students and teachers
  - user_store / sessions: fresh stores per test
  - api_client: TestClient wired to the fixtures through a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because the handlers run every repository call through asyncio.to_thread,
and TestClient itself runs the app on another thread. Plain :memory: DBs are
per-connection and would present a blank schema to each worker thread. The
named URI format (file:name?mode=memory&cache=shared&uri=true) shares one
in-memory instance across all connections in the same process.

BCRYPT_ROUNDS is lowered before any auth import so hashing in fixtures is
fast; verification cost follows the stored hash, so nothing else changes.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# Must be set before core.config.get_settings() is first called.
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app, install_services
from auth.passwords import hash_password
from auth.sessions import SessionStore
from auth.store import UserStore

# Username -> (password, first, last, student, grade)
CAST = {
    "alice": ("correct-pw", "Alice", "Adams", True, "11A"),
    "bob": ("bob-pw", "Bob", "Brown", True, "11B"),
    "carol": ("carol-pw", "Carol", "Clark", True, "10A"),
    "dima": ("dima-pw", "Dima", "Dorn", True, "1A"),
    "tina": ("teacher-pw", "Tina", "Turner", False, None),
    "tom": ("tom-pw", "Tom", "Taylor", False, None),
}


def make_user_store(store_cls: type[UserStore] = UserStore) -> UserStore:
    """Create a UserStore on a uniquely named shared-memory SQLite database."""
    url = f"sqlite:///file:test_users_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    return store_cls(db_url=url)


def seed_users(store: UserStore) -> dict[str, str]:
    """Insert CAST into store and return username -> user id."""
    ids = {}
    for username, (password, first, last, student, grade) in CAST.items():
        ids[username] = store.create_user(
            username,
            hash_password(password),
            first_name=first,
            last_name=last,
            student=student,
            grade=grade,
        )
    return ids


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = make_user_store()
    seed_users(store)
    yield store
    store.close()


@pytest.fixture
def sessions() -> SessionStore:
    return SessionStore()


def _patch_lifespan(users: UserStore, sessions: SessionStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the test stores into app.state through the same install_services()
    the production lifespan uses.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        install_services(app, users, sessions)
        yield
        sessions.clear()

    return test_lifespan


@pytest.fixture
def api_client(user_store: UserStore, sessions: SessionStore) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app, backed by the per-test stores."""
    app.router.lifespan_context = _patch_lifespan(user_store, sessions)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture
def store_factory() -> Generator:
    """Yield a callable building extra stores (empty unless seed=True); all are closed afterwards."""
    created: list[UserStore] = []

    def build(store_cls: type[UserStore] = UserStore, seed: bool = False) -> UserStore:
        store = make_user_store(store_cls)
        if seed:
            seed_users(store)
        created.append(store)
        return store

    yield build
    for store in created:
        store.close()
