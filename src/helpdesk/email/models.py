"""Pydantic v2 models for the email domain.

Provides frozen (immutable) models for the threading headers of a single
message and for the raw provider message handed over by the webhook and
sync handlers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class ThreadingHeaders(BaseModel):
    """Normalized threading headers of one message.

    Every field is optional.  Blank strings are stored as ``None`` so that
    "empty" and "absent" can never be told apart downstream.
    """

    model_config = ConfigDict(frozen=True)

    message_id: str | None = None  # RFC 2822 Message-ID, brackets as found
    in_reply_to: str | None = None
    references: str | None = None  # raw, space-separated, not deduplicated
    thread_index: str | None = None  # Exchange Thread-Index (base64)
    thread_topic: str | None = None

    @field_validator(
        "message_id", "in_reply_to", "references", "thread_index", "thread_topic",
        mode="before",
    )
    @classmethod
    def _normalize_blank(cls, value: Any) -> Any:
        return _blank_to_none(value)


class ProviderHeader(BaseModel):
    """A single ``{name, value}`` header as exposed by Graph or Gmail."""

    model_config = ConfigDict(frozen=True)

    name: str
    value: str


class InboundMessage(BaseModel):
    """A provider message as delivered by a webhook or a sync pass.

    ``conversation_id`` is the provider's own grouping hint (Graph
    ``conversationId``); ``internet_message_id`` is the provider property
    holding the Message-ID when the header list omits it.
    """

    model_config = ConfigDict(frozen=True)

    provider_message_id: str
    subject: str | None = None
    from_address: str = ""
    to_addresses: list[str] = Field(default_factory=list)
    received_at: datetime | None = None
    html_body: str = ""
    headers: list[ProviderHeader] = Field(default_factory=list)
    conversation_id: str | None = None
    internet_message_id: str | None = None

    @field_validator("conversation_id", "internet_message_id", "subject", mode="before")
    @classmethod
    def _normalize_blank(cls, value: Any) -> Any:
        return _blank_to_none(value)
