"""Observability helpers: structured logging configuration."""

from helpdesk.observability.logging import configure_logging

__all__ = ["configure_logging"]
