"""Error taxonomy shared by the scoring engine, template store and session lifecycle."""
from __future__ import annotations

from typing import Dict, List, Sequence


class EvaluationError(Exception):
    """Base class for evaluation failures surfaced to callers."""


class ValidationError(EvaluationError):
    """One or more submitted values violate their criterion's config.

    ``errors`` holds one ``{"criteria_id": ..., "message": ...}`` entry per
    rejected item so batch callers can report every failure at once.
    """

    def __init__(self, message: str, errors: Sequence[Dict[str, str]] | None = None) -> None:
        super().__init__(message)
        self.errors: List[Dict[str, str]] = list(errors or [])


class StateError(EvaluationError):
    """The operation is not legal in the session's (or template's) current state."""


class PreconditionError(EvaluationError):
    """Completion attempted while required criteria remain unscored."""

    def __init__(self, message: str, missing_ids: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.missing_ids: List[str] = list(missing_ids)


class ConflictError(EvaluationError):
    """A concurrent writer already changed the session or template."""


class ConfigIntegrityError(EvaluationError):
    """Scores and the bound snapshot disagree about which criteria exist."""


__all__ = [
    "EvaluationError",
    "ValidationError",
    "StateError",
    "PreconditionError",
    "ConflictError",
    "ConfigIntegrityError",
]
