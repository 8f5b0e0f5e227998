"""SQLite schema for the conversation store.

Provides the connection factory and the DDL for the ``messages``,
``thread_roots`` and ``resolution_audit`` tables.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path


def open_conversation_db(db_path: Path | str, timeout: float = 10.0) -> sqlite3.Connection:
    """Open the conversation database with WAL mode enabled.

    The connection may be shared across threads; :class:`ConversationStore`
    serializes access to it.

    Args:
        db_path: Path to the SQLite database file, or ``":memory:"``.
        timeout: Seconds to wait on a locked database before failing.

    Returns:
        An open sqlite3.Connection with the tables created.
    """
    conn = sqlite3.connect(str(db_path), timeout=timeout, check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL")
    init_conversation_tables(conn)
    return conn


def init_conversation_tables(conn: sqlite3.Connection) -> None:
    """Create the conversation tables and indexes if they do not exist.

    ``messages`` holds one row per ingested message.  ``message_id_norm`` is
    the bracketed Message-ID used for every lookup; the raw headers are kept
    as received.  The ``(provider_message_id, user_id)`` unique constraint
    backs redelivery de-duplication.

    ``thread_roots`` maps the Message-ID of a conversation's first message to
    the thread allocated for it.  Its primary key makes thread allocation a
    conflict-safe upsert.

    ``resolution_audit`` records how each stored message was threaded: the
    deciding method and the strategies tried before it (a JSON list).  At
    most one row per ``(provider_message_id, user_id)``.

    Args:
        conn: An open sqlite3.Connection.
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS messages (
            id TEXT PRIMARY KEY,
            provider_message_id TEXT NOT NULL,
            thread_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            store_id TEXT NOT NULL,
            subject TEXT NOT NULL DEFAULT 'No Subject',
            subject_norm TEXT NOT NULL DEFAULT '',
            from_address TEXT NOT NULL DEFAULT '',
            to_addresses TEXT NOT NULL DEFAULT '',
            occurred_at TEXT NOT NULL,
            message_id_header TEXT,
            message_id_norm TEXT,
            in_reply_to_header TEXT,
            references_header TEXT,
            thread_index_header TEXT,
            provider_conversation_id TEXT,
            assigned_to TEXT,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
            UNIQUE (provider_message_id, user_id)
        )
    """)

    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_messages_message_id "
        "ON messages (user_id, store_id, message_id_norm)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_messages_conversation "
        "ON messages (user_id, store_id, provider_conversation_id)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_messages_thread_index "
        "ON messages (user_id, store_id, thread_index_header)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_messages_thread "
        "ON messages (user_id, store_id, thread_id, occurred_at)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_messages_subject "
        "ON messages (user_id, store_id, subject_norm)"
    )

    conn.execute("""
        CREATE TABLE IF NOT EXISTS thread_roots (
            user_id TEXT NOT NULL,
            store_id TEXT NOT NULL,
            message_id_norm TEXT NOT NULL,
            thread_id TEXT NOT NULL,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
            PRIMARY KEY (user_id, store_id, message_id_norm)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS resolution_audit (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
            provider_message_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            store_id TEXT NOT NULL,
            message_id_norm TEXT,
            thread_id TEXT NOT NULL,
            method TEXT NOT NULL,
            is_new_thread INTEGER NOT NULL DEFAULT 0,
            matched_message_id TEXT,
            attempted TEXT NOT NULL DEFAULT '[]',
            UNIQUE (provider_message_id, user_id)
        )
    """)
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_resolution_audit_thread "
        "ON resolution_audit (user_id, store_id, thread_id)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_resolution_audit_method "
        "ON resolution_audit (method)"
    )

    conn.commit()
