"""Observability utilities for the coaching evaluation services."""
from .logger import log_event
from .tracing import span

__all__ = ["log_event", "span"]
