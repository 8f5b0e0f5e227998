"""Universal thread resolution for inbound messages.

Maps one inbound message to a thread id by trying correlation strategies
in a fixed order, first match wins:

1. ``In-Reply-To`` names a stored message's Message-ID
2. Any Message-ID of the ``References`` chain names a stored message
3. A stored message shares the provider's conversation id
4. A stored message shares a long enough Thread-Index prefix
5. (opt-in) Same normalized subject, overlapping participants, nearby date

When nothing matches, a new thread is allocated through an atomic
find-or-create keyed by the message's own Message-ID, so concurrent
deliveries of the same root message agree on one thread id.

Every lookup is scoped to ``(user_id, store_id)``.  When several stored
messages match at one step, the most recently dated wins.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Callable
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog

from helpdesk.domain.errors import StoreError, ThreadResolutionError
from helpdesk.domain.types import Scope, ThreadingMethod
from helpdesk.email.normalize import normalize_message_id, normalize_subject, parse_references
from helpdesk.threads.models import (
    DEFAULT_SUBJECT,
    MessageRecord,
    ThreadResolution,
    ThreadResolutionRequest,
)
from helpdesk.threads.store import ConversationStore
from helpdesk.threads.thread_index import (
    CONVERSATION_HEADER_BYTES,
    lookup_prefix,
    shared_prefix_length,
)

if TYPE_CHECKING:
    from helpdesk.config import Settings

logger = structlog.get_logger()

_ADDRESS_SPLIT_RE = re.compile(r"[,;\s]+")

Strategy = Callable[[ThreadResolutionRequest], MessageRecord | None]


def new_thread_id() -> str:
    """Allocate a fresh, globally unique thread id."""
    return f"thread-{uuid.uuid4()}"


def _participants(*fields: str) -> set[str]:
    addresses: set[str] = set()
    for value in fields:
        for token in _ADDRESS_SPLIT_RE.split(value or ""):
            token = token.strip().strip("<>").lower()
            if "@" in token:
                addresses.add(token)
    return addresses


class ThreadResolver:
    """Resolve inbound messages to thread ids against a ``ConversationStore``.

    Args:
        store: The scope-aware conversation store.
        thread_index_min_prefix_bytes: Decoded Thread-Index bytes two
            messages must share to correlate.  The default is the 22-byte
            Exchange conversation header, so only indexes of one
            conversation ever match.
        subject_fallback: Enable the subject + participants strategy.
        subject_window_days: Date window of the subject strategy.
        thread_id_factory: Produces ids for new threads.
    """

    def __init__(
        self,
        store: ConversationStore,
        *,
        thread_index_min_prefix_bytes: int = CONVERSATION_HEADER_BYTES,
        subject_fallback: bool = False,
        subject_window_days: int = 30,
        thread_id_factory: Callable[[], str] = new_thread_id,
    ) -> None:
        self._store = store
        self._min_prefix_bytes = thread_index_min_prefix_bytes
        self._subject_window = timedelta(days=subject_window_days)
        self._new_thread_id = thread_id_factory

        self._strategies: list[tuple[ThreadingMethod, Strategy]] = [
            (ThreadingMethod.IN_REPLY_TO, self._match_in_reply_to),
            (ThreadingMethod.REFERENCES, self._match_references),
            (ThreadingMethod.PROVIDER_CONVERSATION, self._match_conversation_id),
            (ThreadingMethod.THREAD_INDEX, self._match_thread_index),
        ]
        if subject_fallback:
            self._strategies.append(
                (ThreadingMethod.SUBJECT_PARTICIPANTS, self._match_subject_participants)
            )

    @classmethod
    def from_settings(cls, store: ConversationStore, settings: Settings) -> ThreadResolver:
        """Build a resolver configured from application ``Settings``."""
        return cls(
            store,
            thread_index_min_prefix_bytes=settings.thread_index_min_prefix_bytes,
            subject_fallback=settings.subject_fallback_enabled,
            subject_window_days=settings.subject_window_days,
        )

    def resolve(self, request: ThreadResolutionRequest) -> ThreadResolution:
        """Return the thread *request* belongs to, allocating one if needed.

        Args:
            request: The inbound message's threading context.

        Returns:
            The resolved thread id, how it was found, and the assignee
            inherited from the thread (if any).

        Raises:
            ThreadResolutionError: The conversation store failed during
                matching or allocation.  No thread id is guessed.
        """
        message_id = normalize_message_id(request.headers.message_id)
        log = logger.bind(
            message_id=message_id,
            user_id=request.scope.user_id,
            store_id=request.scope.store_id,
        )

        attempted: list[ThreadingMethod] = []
        try:
            resolution = self._correlate(request, attempted)
            if resolution is None:
                resolution = self._allocate(request, message_id, tuple(attempted))
        except StoreError as exc:
            log.error("thread_resolution_failed", operation=exc.operation, error=str(exc))
            raise ThreadResolutionError(message_id, str(exc)) from exc

        assignee = self._inherited_assignee(resolution.thread_id, request.scope)
        resolution = resolution.model_copy(update={"inherited_assignee": assignee})

        log.info(
            "thread_resolved",
            thread_id=resolution.thread_id,
            method=resolution.method.value,
            is_new_thread=resolution.is_new_thread,
            attempted=[m.value for m in resolution.attempted],
            inherited_assignee=assignee,
        )
        return resolution

    # ------------------------------------------------------------------
    # Correlation
    # ------------------------------------------------------------------

    def _correlate(
        self, request: ThreadResolutionRequest, attempted: list[ThreadingMethod]
    ) -> ThreadResolution | None:
        for method, strategy in self._strategies:
            match = strategy(request)
            if match is not None:
                return ThreadResolution(
                    thread_id=match.thread_id,
                    method=method,
                    matched_message_id=match.id,
                    attempted=tuple(attempted),
                )
            attempted.append(method)
        return None

    def _match_in_reply_to(self, request: ThreadResolutionRequest) -> MessageRecord | None:
        in_reply_to = normalize_message_id(request.headers.in_reply_to)
        if in_reply_to is None:
            return None
        matches = self._store.find_by_message_ids([in_reply_to], request.scope)
        return matches[0] if matches else None

    def _match_references(self, request: ThreadResolutionRequest) -> MessageRecord | None:
        raw = request.headers.references
        if raw is None:
            return None
        reference_ids = parse_references(raw)
        if not reference_ids:
            logger.warning("references_unparsable", references=raw[:200])
            return None
        matches = self._store.find_by_message_ids(reference_ids, request.scope)
        return matches[0] if matches else None

    def _match_conversation_id(self, request: ThreadResolutionRequest) -> MessageRecord | None:
        if request.provider_conversation_id is None:
            return None
        matches = self._store.find_by_conversation_id(
            request.provider_conversation_id, request.scope
        )
        return matches[0] if matches else None

    def _match_thread_index(self, request: ThreadResolutionRequest) -> MessageRecord | None:
        thread_index = request.headers.thread_index
        if thread_index is None:
            return None
        prefix = lookup_prefix(thread_index, self._min_prefix_bytes)
        if prefix is None:
            return None

        best: MessageRecord | None = None
        best_length = -1
        # Candidates arrive newest first, so only a strictly longer shared
        # prefix displaces the current best.
        for candidate in self._store.find_by_thread_index_prefix(prefix, request.scope):
            if candidate.thread_index_header is None:
                continue
            length = shared_prefix_length(
                candidate.thread_index_header, thread_index, self._min_prefix_bytes
            )
            if length is not None and length > best_length:
                best, best_length = candidate, length
        return best

    def _match_subject_participants(
        self, request: ThreadResolutionRequest
    ) -> MessageRecord | None:
        topic = request.headers.thread_topic or request.subject
        subject = normalize_subject(topic)
        if len(subject) <= 2 or subject.lower() == DEFAULT_SUBJECT.lower():
            return None

        participants = _participants(request.from_address, request.to_addresses)
        if not participants:
            return None

        candidates = self._store.find_by_subject(
            subject,
            request.scope,
            since=request.occurred_at - self._subject_window,
            until=request.occurred_at + self._subject_window,
        )
        for candidate in candidates:
            if participants & _participants(candidate.from_address, candidate.to_addresses):
                return candidate
        return None

    # ------------------------------------------------------------------
    # Allocation and inheritance
    # ------------------------------------------------------------------

    def _allocate(
        self,
        request: ThreadResolutionRequest,
        message_id: str | None,
        attempted: tuple[ThreadingMethod, ...],
    ) -> ThreadResolution:
        candidate = self._new_thread_id()
        if message_id is None:
            # Nothing to key the find-or-create on; redelivery of such a
            # message cannot be told apart from a new one here.
            logger.warning(
                "thread_allocated_without_message_id",
                thread_id=candidate,
                user_id=request.scope.user_id,
                store_id=request.scope.store_id,
            )
            return ThreadResolution(
                thread_id=candidate,
                method=ThreadingMethod.NEW_THREAD,
                is_new_thread=True,
                attempted=attempted,
            )

        thread_id, created = self._store.find_or_create_thread_root(
            request.scope, message_id, candidate
        )
        return ThreadResolution(
            thread_id=thread_id,
            method=ThreadingMethod.NEW_THREAD,
            is_new_thread=created,
            attempted=attempted,
        )

    def _inherited_assignee(self, thread_id: str, scope: Scope) -> str | None:
        try:
            return self._store.latest_assignee(thread_id, scope)
        except StoreError as exc:
            logger.warning(
                "assignee_inheritance_failed",
                thread_id=thread_id,
                user_id=scope.user_id,
                store_id=scope.store_id,
                error=str(exc),
            )
            return None
