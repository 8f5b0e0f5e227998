"""Domain-specific exception classes for conversation threading."""

from __future__ import annotations


class HelpdeskError(Exception):
    """Base class for all domain errors in the threading core."""


class StoreError(HelpdeskError):
    """Raised when the conversation store cannot be read or written.

    Attributes:
        operation: Name of the store operation that failed.
    """

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        super().__init__(f"Conversation store operation '{operation}' failed: {detail}")


class ThreadResolutionError(HelpdeskError):
    """Raised when a message cannot be assigned to a thread.

    The caller must retry the whole message later rather than fall back to
    a guessed thread id.

    Attributes:
        message_id: The Message-ID header of the message being resolved,
            if it had one.
    """

    def __init__(self, message_id: str | None, reason: str) -> None:
        self.message_id = message_id
        super().__init__(
            f"Could not resolve thread for message {message_id or '<no Message-ID>'}: {reason}"
        )


class HeaderParseError(HelpdeskError):
    """Raised by a header source when its input is malformed.

    Always recovered inside the extractor: the affected fields are treated
    as absent.
    """
