"""Shared pytest fixtures for the threading test suite."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator

import pytest

from helpdesk.domain.types import Scope
from helpdesk.threads.resolver import ThreadResolver
from helpdesk.threads.schema import init_conversation_tables
from helpdesk.threads.store import ConversationStore


@pytest.fixture
def scope() -> Scope:
    """The mailbox most tests resolve in."""
    return Scope(user_id="user-1", store_id="store-1")


@pytest.fixture
def other_scope() -> Scope:
    """A second mailbox of a different tenant."""
    return Scope(user_id="user-2", store_id="store-2")


@pytest.fixture
def conn() -> Iterator[sqlite3.Connection]:
    """In-memory SQLite connection with the conversation tables initialized."""
    connection = sqlite3.connect(":memory:", check_same_thread=False)
    init_conversation_tables(connection)
    yield connection
    connection.close()


@pytest.fixture
def store(conn: sqlite3.Connection) -> ConversationStore:
    """ConversationStore backed by the in-memory connection."""
    return ConversationStore(conn)


@pytest.fixture
def resolver(store: ConversationStore) -> ThreadResolver:
    """Resolver with default settings over the in-memory store."""
    return ThreadResolver(store)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
