"""Resilience infrastructure for thread resolution."""

from helpdesk.resilience.retry import resilient_resolution

__all__ = ["resilient_resolution"]
