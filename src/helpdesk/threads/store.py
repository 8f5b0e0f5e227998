"""SQLite-backed conversation store used by the thread resolver.

Accepts a sqlite3.Connection, uses parameterized queries exclusively, and
commits synchronously after writes.  Every lookup is qualified by the
``(user_id, store_id)`` scope, so correlation can never cross tenants.

All ``sqlite3`` failures surface as :class:`StoreError`.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager, suppress
from datetime import UTC, datetime
from typing import Any

from helpdesk.domain.errors import StoreError
from helpdesk.domain.types import Scope, ThreadingMethod
from helpdesk.email.normalize import normalize_message_id, normalize_subject
from helpdesk.threads.models import MessageRecord, ResolutionAuditEntry, as_utc
from helpdesk.threads.thread_index import compact_thread_index

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

# Most recent first; insertion order breaks ties between equal dates.
_RECENT_FIRST = "ORDER BY occurred_at DESC, rowid DESC"


def format_timestamp(value: datetime) -> str:
    """Render *value* as a sortable UTC timestamp string."""
    return as_utc(value).strftime(_TS_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse a timestamp written by :func:`format_timestamp`."""
    return datetime.strptime(value, _TS_FORMAT).replace(tzinfo=UTC)


class ConversationStore:
    """Read messages for correlation and allocate thread roots atomically.

    A single connection may be shared by several worker threads; every
    operation holds an internal lock for its duration.  Several stores
    (each with its own connection) may also share one database file, in
    which case SQLite's write lock and the ``thread_roots`` primary key keep
    thread allocation race-free.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialize with an open database connection.

        Args:
            conn: An open sqlite3.Connection whose database already has the
                  conversation tables (see ``init_conversation_tables``).
        """
        self._conn = conn
        self._lock = threading.Lock()

    @contextmanager
    def _guard(self, operation: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
            except sqlite3.Error as exc:
                with suppress(sqlite3.Error):
                    if self._conn.in_transaction:
                        self._conn.rollback()
                raise StoreError(operation, str(exc)) from exc

    def _select(
        self, operation: str, query: str, params: Sequence[Any]
    ) -> list[sqlite3.Row]:
        with self._guard(operation) as conn:
            cursor = conn.cursor()
            cursor.row_factory = sqlite3.Row
            cursor.execute(query, params)
            return cursor.fetchall()

    # ------------------------------------------------------------------
    # Correlation lookups (read-only)
    # ------------------------------------------------------------------

    def find_by_message_ids(
        self, message_ids: Sequence[str], scope: Scope
    ) -> list[MessageRecord]:
        """Messages whose own Message-ID is one of *message_ids*, newest first.

        Args:
            message_ids: Message-IDs in any bracket form.
            scope: The tenant/mailbox scope to search.

        Returns:
            Matching messages, most recently dated first.
        """
        normalized = sorted({m for m in map(normalize_message_id, message_ids) if m})
        if not normalized:
            return []
        placeholders = ", ".join("?" for _ in normalized)
        rows = self._select(
            "find_by_message_ids",
            f"SELECT * FROM messages WHERE user_id = ? AND store_id = ? "
            f"AND message_id_norm IN ({placeholders}) {_RECENT_FIRST}",
            [scope.user_id, scope.store_id, *normalized],
        )
        return [_row_to_record(row) for row in rows]

    def find_by_conversation_id(
        self, conversation_id: str, scope: Scope
    ) -> list[MessageRecord]:
        """Messages sharing a provider conversation id, newest first."""
        rows = self._select(
            "find_by_conversation_id",
            "SELECT * FROM messages WHERE user_id = ? AND store_id = ? "
            f"AND provider_conversation_id = ? {_RECENT_FIRST}",
            [scope.user_id, scope.store_id, conversation_id],
        )
        return [_row_to_record(row) for row in rows]

    def find_by_thread_index_prefix(self, prefix: str, scope: Scope) -> list[MessageRecord]:
        """Messages whose stored Thread-Index starts with *prefix*, newest first."""
        if not prefix:
            return []
        rows = self._select(
            "find_by_thread_index_prefix",
            "SELECT * FROM messages WHERE user_id = ? AND store_id = ? "
            "AND thread_index_header IS NOT NULL "
            f"AND substr(thread_index_header, 1, ?) = ? {_RECENT_FIRST}",
            [scope.user_id, scope.store_id, len(prefix), prefix],
        )
        return [_row_to_record(row) for row in rows]

    def find_by_subject(
        self,
        subject: str,
        scope: Scope,
        *,
        since: datetime,
        until: datetime,
    ) -> list[MessageRecord]:
        """Messages with the same normalized subject dated in ``[since, until]``."""
        subject_norm = normalize_subject(subject).lower()
        if not subject_norm:
            return []
        rows = self._select(
            "find_by_subject",
            "SELECT * FROM messages WHERE user_id = ? AND store_id = ? "
            "AND subject_norm = ? AND occurred_at >= ? AND occurred_at <= ? "
            f"{_RECENT_FIRST}",
            [
                scope.user_id,
                scope.store_id,
                subject_norm,
                format_timestamp(since),
                format_timestamp(until),
            ],
        )
        return [_row_to_record(row) for row in rows]

    def latest_assignee(self, thread_id: str, scope: Scope) -> str | None:
        """Assignee of the most recently dated assigned message in a thread.

        Returns:
            The assignee, or ``None`` when no message in the thread is
            assigned.
        """
        rows = self._select(
            "latest_assignee",
            "SELECT assigned_to FROM messages WHERE user_id = ? AND store_id = ? "
            f"AND thread_id = ? AND assigned_to IS NOT NULL {_RECENT_FIRST} LIMIT 1",
            [scope.user_id, scope.store_id, thread_id],
        )
        return rows[0]["assigned_to"] if rows else None

    # ------------------------------------------------------------------
    # Thread allocation (the only write the resolver performs)
    # ------------------------------------------------------------------

    def find_or_create_thread_root(
        self, scope: Scope, message_id: str, candidate_thread_id: str
    ) -> tuple[str, bool]:
        """Atomically return the thread rooted at *message_id*, creating it if new.

        Uses ``INSERT OR IGNORE`` against the ``(user_id, store_id,
        message_id_norm)`` primary key, then reads back whichever row won,
        inside one transaction.

        Args:
            scope: The tenant/mailbox scope.
            message_id: Message-ID of the conversation's root message.
            candidate_thread_id: Thread id to use if no root exists yet.

        Returns:
            ``(thread_id, created)`` where ``created`` is ``True`` only for
            the caller whose candidate was stored.
        """
        message_id_norm = normalize_message_id(message_id)
        if message_id_norm is None:
            raise ValueError("thread roots need a Message-ID")

        with self._guard("find_or_create_thread_root") as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO thread_roots "
                "(user_id, store_id, message_id_norm, thread_id) VALUES (?, ?, ?, ?)",
                (scope.user_id, scope.store_id, message_id_norm, candidate_thread_id),
            )
            created = cursor.rowcount == 1
            row = conn.execute(
                "SELECT thread_id FROM thread_roots "
                "WHERE user_id = ? AND store_id = ? AND message_id_norm = ?",
                (scope.user_id, scope.store_id, message_id_norm),
            ).fetchone()
            conn.commit()

        if row is None:
            raise StoreError("find_or_create_thread_root", "thread root vanished after upsert")
        return row[0], created

    # ------------------------------------------------------------------
    # Message rows (written by the ingestion caller)
    # ------------------------------------------------------------------

    def insert_message(self, record: MessageRecord) -> bool:
        """Insert a message row unless ``(provider_message_id, user_id)`` exists.

        Returns:
            ``True`` if the row was inserted, ``False`` for a duplicate.
        """
        # Stored unfolded so prefix lookups compare like with like.
        thread_index = (
            compact_thread_index(record.thread_index_header)
            if record.thread_index_header
            else None
        )
        with self._guard("insert_message") as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO messages (
                    id, provider_message_id, thread_id, user_id, store_id,
                    subject, subject_norm, from_address, to_addresses, occurred_at,
                    message_id_header, message_id_norm, in_reply_to_header,
                    references_header, thread_index_header,
                    provider_conversation_id, assigned_to
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.provider_message_id,
                    record.thread_id,
                    record.scope.user_id,
                    record.scope.store_id,
                    record.subject,
                    normalize_subject(record.subject).lower(),
                    record.from_address,
                    record.to_addresses,
                    format_timestamp(record.occurred_at),
                    record.message_id_header,
                    normalize_message_id(record.message_id_header),
                    record.in_reply_to_header,
                    record.references_header,
                    thread_index,
                    record.provider_conversation_id,
                    record.assigned_to,
                ),
            )
            conn.commit()
            return cursor.rowcount == 1

    def message_exists(self, provider_message_id: str, user_id: str) -> bool:
        """Whether a message with this provider id was already stored for the user."""
        rows = self._select(
            "message_exists",
            "SELECT 1 FROM messages WHERE provider_message_id = ? AND user_id = ? LIMIT 1",
            [provider_message_id, user_id],
        )
        return bool(rows)

    def get_message(self, provider_message_id: str, user_id: str) -> MessageRecord | None:
        """Load a message by its ``(provider_message_id, user_id)`` key."""
        rows = self._select(
            "get_message",
            "SELECT * FROM messages WHERE provider_message_id = ? AND user_id = ?",
            [provider_message_id, user_id],
        )
        return _row_to_record(rows[0]) if rows else None

    def assign(self, message_id: str, assignee: str | None) -> None:
        """Set or clear the assignee of a message (by internal id)."""
        with self._guard("assign") as conn:
            conn.execute(
                "UPDATE messages SET assigned_to = ? WHERE id = ?",
                (assignee, message_id),
            )
            conn.commit()

    def list_thread_messages(self, thread_id: str, scope: Scope) -> list[MessageRecord]:
        """All messages of a thread in chronological order."""
        rows = self._select(
            "list_thread_messages",
            "SELECT * FROM messages WHERE user_id = ? AND store_id = ? AND thread_id = ? "
            "ORDER BY occurred_at ASC, rowid ASC",
            [scope.user_id, scope.store_id, thread_id],
        )
        return [_row_to_record(row) for row in rows]

    # ------------------------------------------------------------------
    # Resolution audit
    # ------------------------------------------------------------------

    def record_resolution(self, entry: ResolutionAuditEntry) -> int:
        """Persist one threading decision.

        A second entry for the same ``(provider_message_id, user_id)`` is
        ignored, so redelivery never rewrites the first decision.

        Returns:
            The row id of the inserted entry, or 0 when it was ignored.
        """
        with self._guard("record_resolution") as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO resolution_audit (
                    provider_message_id, user_id, store_id, message_id_norm,
                    thread_id, method, is_new_thread, matched_message_id, attempted
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.provider_message_id,
                    entry.scope.user_id,
                    entry.scope.store_id,
                    normalize_message_id(entry.message_id),
                    entry.thread_id,
                    entry.method.value,
                    int(entry.is_new_thread),
                    entry.matched_message_id,
                    json.dumps([m.value for m in entry.attempted]),
                ),
            )
            conn.commit()
            if cursor.rowcount != 1:
                return 0
            return cursor.lastrowid or 0

    def resolution_audit(
        self,
        scope: Scope,
        *,
        thread_id: str | None = None,
        provider_message_id: str | None = None,
        method: ThreadingMethod | None = None,
        limit: int = 50,
    ) -> list[ResolutionAuditEntry]:
        """Query recorded threading decisions within *scope*, newest first.

        Args:
            scope: The tenant/mailbox scope to search.
            thread_id: Only decisions that resolved to this thread.
            provider_message_id: Only the decision for this message.
            method: Only decisions made by this strategy.
            limit: Maximum number of entries to return.
        """
        conditions = ["user_id = ?", "store_id = ?"]
        params: list[Any] = [scope.user_id, scope.store_id]

        if thread_id is not None:
            conditions.append("thread_id = ?")
            params.append(thread_id)
        if provider_message_id is not None:
            conditions.append("provider_message_id = ?")
            params.append(provider_message_id)
        if method is not None:
            conditions.append("method = ?")
            params.append(method.value)

        params.append(limit)
        rows = self._select(
            "resolution_audit",
            f"SELECT * FROM resolution_audit WHERE {' AND '.join(conditions)} "
            "ORDER BY id DESC LIMIT ?",
            params,
        )
        return [_row_to_audit_entry(row) for row in rows]


def _row_to_audit_entry(row: sqlite3.Row) -> ResolutionAuditEntry:
    return ResolutionAuditEntry(
        provider_message_id=row["provider_message_id"],
        scope=Scope(user_id=row["user_id"], store_id=row["store_id"]),
        thread_id=row["thread_id"],
        method=ThreadingMethod(row["method"]),
        is_new_thread=bool(row["is_new_thread"]),
        message_id=row["message_id_norm"],
        matched_message_id=row["matched_message_id"],
        attempted=tuple(ThreadingMethod(m) for m in json.loads(row["attempted"])),
        timestamp=datetime.fromisoformat(row["timestamp"]),
    )


def _row_to_record(row: sqlite3.Row) -> MessageRecord:
    return MessageRecord(
        id=row["id"],
        provider_message_id=row["provider_message_id"],
        thread_id=row["thread_id"],
        scope=Scope(user_id=row["user_id"], store_id=row["store_id"]),
        subject=row["subject"],
        from_address=row["from_address"],
        to_addresses=row["to_addresses"],
        occurred_at=parse_timestamp(row["occurred_at"]),
        message_id_header=row["message_id_header"],
        in_reply_to_header=row["in_reply_to_header"],
        references_header=row["references_header"],
        thread_index_header=row["thread_index_header"],
        provider_conversation_id=row["provider_conversation_id"],
        assigned_to=row["assigned_to"],
    )
