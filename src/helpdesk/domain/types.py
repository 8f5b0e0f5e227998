"""Domain enumerations and value types for conversation threading."""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator


class ThreadingMethod(StrEnum):
    """How a message was attached to its thread."""

    IN_REPLY_TO = "in_reply_to"
    REFERENCES = "references"
    PROVIDER_CONVERSATION = "provider_conversation"
    THREAD_INDEX = "thread_index"
    SUBJECT_PARTICIPANTS = "subject_participants"
    NEW_THREAD = "new_thread"


class Scope(BaseModel):
    """Tenant/mailbox boundary.  Correlation never crosses it."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    store_id: str

    @field_validator("user_id", "store_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("scope identifiers must not be blank")
        return value
