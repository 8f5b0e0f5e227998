"""Domain types and errors for the threading core."""

from helpdesk.domain.errors import (
    HeaderParseError,
    HelpdeskError,
    StoreError,
    ThreadResolutionError,
)
from helpdesk.domain.types import Scope, ThreadingMethod

__all__ = [
    "HeaderParseError",
    "HelpdeskError",
    "Scope",
    "StoreError",
    "ThreadResolutionError",
    "ThreadingMethod",
]
