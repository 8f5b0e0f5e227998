"""Inbound message ingestion: de-duplicate, extract, resolve, persist.

This is the caller side of the threading core, shared by the webhook and
polling-sync paths:

1. Skip messages already stored under ``(provider_message_id, user_id)``
2. Extract threading headers from the provider message
3. Resolve the thread in a worker thread, bounded by a timeout and retried
4. Persist the message row with the thread id and inherited assignee
5. Record the threading decision in the resolution audit

A resolution that still fails after retries propagates
:class:`ThreadResolutionError`; the message is then picked up again by the
next webhook redelivery or sync pass instead of being stored in a guessed
thread.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, ConfigDict

from helpdesk.domain.errors import StoreError, ThreadResolutionError
from helpdesk.domain.types import Scope, ThreadingMethod
from helpdesk.email.headers import HeaderExtractor
from helpdesk.email.models import InboundMessage, ThreadingHeaders
from helpdesk.resilience.retry import resilient_resolution
from helpdesk.threads.models import (
    MessageRecord,
    ResolutionAuditEntry,
    ThreadResolution,
    ThreadResolutionRequest,
)
from helpdesk.threads.resolver import ThreadResolver
from helpdesk.threads.store import ConversationStore

if TYPE_CHECKING:
    from helpdesk.config import Settings

logger = structlog.get_logger()


class IngestResult(BaseModel):
    """Outcome of ingesting one provider message."""

    model_config = ConfigDict(frozen=True)

    message_id: str  # internal row id
    thread_id: str
    duplicate: bool = False
    method: ThreadingMethod | None = None  # None for duplicates
    assigned_to: str | None = None


def build_resolution_request(
    message: InboundMessage,
    headers: ThreadingHeaders,
    scope: Scope,
) -> ThreadResolutionRequest:
    """Assemble the resolver input for one provider message."""
    return ThreadResolutionRequest(
        headers=headers,
        subject=message.subject,
        from_address=message.from_address,
        to_addresses=",".join(message.to_addresses),
        occurred_at=message.received_at or datetime.now(tz=UTC),
        scope=scope,
        provider_conversation_id=message.conversation_id,
    )


class MessageIngestor:
    """Store inbound provider messages in their resolved threads.

    Args:
        store: The conversation store.
        resolver: The thread resolver (normally over the same store).
        extractor: Header extractor; defaults to the standard source order.
        timeout_seconds: Bound on a single resolution attempt.  A timeout
            counts as a persistence failure.
        max_attempts: Resolution attempts before giving up.
        retry_wait_seconds: Initial backoff between attempts.
    """

    def __init__(
        self,
        store: ConversationStore,
        resolver: ThreadResolver,
        extractor: HeaderExtractor | None = None,
        *,
        timeout_seconds: float = 10.0,
        max_attempts: int = 3,
        retry_wait_seconds: float = 1.0,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._extractor = extractor or HeaderExtractor()
        self._timeout = timeout_seconds
        self._max_attempts = max_attempts
        self._retry_wait = retry_wait_seconds

    @classmethod
    def from_settings(cls, store: ConversationStore, settings: Settings) -> MessageIngestor:
        """Build an ingestor and its resolver from application ``Settings``."""
        return cls(
            store,
            ThreadResolver.from_settings(store, settings),
            timeout_seconds=settings.resolution_timeout_seconds,
            max_attempts=settings.resolution_max_attempts,
        )

    async def ingest(self, message: InboundMessage, scope: Scope) -> IngestResult:
        """Ingest one provider message into its thread.

        Args:
            message: The provider message.
            scope: The mailbox the message was delivered to.

        Returns:
            The stored row id, its thread, and whether it was a duplicate.

        Raises:
            ThreadResolutionError: Resolution failed on every attempt.
            StoreError: The de-duplication check or the insert failed.
        """
        log = logger.bind(
            provider_message_id=message.provider_message_id,
            user_id=scope.user_id,
            store_id=scope.store_id,
        )

        existing = await asyncio.to_thread(
            self._store.get_message, message.provider_message_id, scope.user_id
        )
        if existing is not None:
            log.info("message_already_ingested", thread_id=existing.thread_id)
            return _duplicate_result(existing)

        headers = self._extractor.extract(
            message.headers,
            message.html_body,
            fallback_message_id=message.internet_message_id,
        )
        request = build_resolution_request(message, headers, scope)
        resolution = await self._resolve(request)

        record = MessageRecord(
            id=str(uuid.uuid4()),
            provider_message_id=message.provider_message_id,
            thread_id=resolution.thread_id,
            scope=scope,
            subject=request.subject,
            from_address=request.from_address,
            to_addresses=request.to_addresses,
            occurred_at=request.occurred_at,
            message_id_header=headers.message_id,
            in_reply_to_header=headers.in_reply_to,
            references_header=headers.references,
            thread_index_header=headers.thread_index,
            provider_conversation_id=request.provider_conversation_id,
            assigned_to=resolution.inherited_assignee,
        )
        inserted = await asyncio.to_thread(self._store.insert_message, record)
        if not inserted:
            # A concurrent delivery of the same message won the insert.
            winner = await asyncio.to_thread(
                self._store.get_message, message.provider_message_id, scope.user_id
            )
            if winner is not None:
                log.info("message_ingested_concurrently", thread_id=winner.thread_id)
                return _duplicate_result(winner)

        await self._record_audit(message, scope, headers, resolution)

        log.info(
            "message_ingested",
            message_id=record.id,
            thread_id=record.thread_id,
            method=resolution.method.value,
            assigned_to=record.assigned_to,
        )
        return IngestResult(
            message_id=record.id,
            thread_id=record.thread_id,
            method=resolution.method,
            assigned_to=record.assigned_to,
        )

    async def _resolve(self, request: ThreadResolutionRequest) -> ThreadResolution:
        message_id = request.headers.message_id

        @resilient_resolution(
            "thread_resolution",
            max_attempts=self._max_attempts,
            wait_initial=self._retry_wait,
        )
        async def attempt() -> ThreadResolution:
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(self._resolver.resolve, request),
                    timeout=self._timeout,
                )
            except TimeoutError as exc:
                raise ThreadResolutionError(
                    message_id, f"timed out after {self._timeout}s"
                ) from exc

        return await attempt()

    async def _record_audit(
        self,
        message: InboundMessage,
        scope: Scope,
        headers: ThreadingHeaders,
        resolution: ThreadResolution,
    ) -> None:
        """Persist the threading decision; the message row is already stored."""
        entry = ResolutionAuditEntry(
            provider_message_id=message.provider_message_id,
            scope=scope,
            thread_id=resolution.thread_id,
            method=resolution.method,
            is_new_thread=resolution.is_new_thread,
            message_id=headers.message_id,
            matched_message_id=resolution.matched_message_id,
            attempted=resolution.attempted,
        )
        try:
            await asyncio.to_thread(self._store.record_resolution, entry)
        except StoreError as exc:
            logger.warning(
                "resolution_audit_failed",
                provider_message_id=message.provider_message_id,
                thread_id=resolution.thread_id,
                error=str(exc),
            )


def _duplicate_result(record: MessageRecord) -> IngestResult:
    return IngestResult(
        message_id=record.id,
        thread_id=record.thread_id,
        duplicate=True,
        assigned_to=record.assigned_to,
    )
