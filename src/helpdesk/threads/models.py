"""Pydantic v2 models for thread resolution and persisted messages."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from helpdesk.domain.types import Scope, ThreadingMethod
from helpdesk.email.models import ThreadingHeaders

DEFAULT_SUBJECT = "No Subject"


def as_utc(value: datetime) -> datetime:
    """Return *value* in UTC, treating naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class ThreadResolutionRequest(BaseModel):
    """Input to the resolver: one inbound message's threading context."""

    model_config = ConfigDict(frozen=True)

    headers: ThreadingHeaders = Field(default_factory=ThreadingHeaders)
    subject: str = DEFAULT_SUBJECT
    from_address: str = ""
    to_addresses: str = ""  # comma-separated
    occurred_at: datetime
    scope: Scope
    provider_conversation_id: str | None = None

    @field_validator("subject", mode="before")
    @classmethod
    def _default_subject(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_SUBJECT
        return value

    @field_validator("provider_conversation_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("occurred_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class ThreadResolution(BaseModel):
    """Outcome of resolving one message.

    ``inherited_assignee`` is a hint for the caller to stamp on the new
    message row; the resolver never writes it.
    """

    model_config = ConfigDict(frozen=True)

    thread_id: str
    method: ThreadingMethod
    is_new_thread: bool = False
    matched_message_id: str | None = None  # internal id of the matched ancestor
    inherited_assignee: str | None = None
    # Strategies tried without a match before ``method`` decided.
    attempted: tuple[ThreadingMethod, ...] = ()


class ResolutionAuditEntry(BaseModel):
    """One persisted threading decision, written after the message row."""

    model_config = ConfigDict(frozen=True)

    provider_message_id: str
    scope: Scope
    thread_id: str
    method: ThreadingMethod
    is_new_thread: bool = False
    message_id: str | None = None
    matched_message_id: str | None = None
    attempted: tuple[ThreadingMethod, ...] = ()
    timestamp: datetime | None = None


class MessageRecord(BaseModel):
    """A message row in the conversation store."""

    model_config = ConfigDict(frozen=True)

    id: str
    provider_message_id: str
    thread_id: str
    scope: Scope
    subject: str = DEFAULT_SUBJECT
    from_address: str = ""
    to_addresses: str = ""
    occurred_at: datetime
    message_id_header: str | None = None
    in_reply_to_header: str | None = None
    references_header: str | None = None
    thread_index_header: str | None = None
    provider_conversation_id: str | None = None
    assigned_to: str | None = None

    @field_validator("occurred_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)
