"""Exceptions surfaced by the assessment engine and its collaborators."""
from __future__ import annotations


class InvalidOutcome(ValueError):
    """Outcome rejected before any state was touched."""


class CollaboratorError(RuntimeError):
    """Store, generator or evaluator failed; the turn may be retried."""

    retryable = True

    def __init__(self, message: str, *, source: str = "unknown"):
        super().__init__(message)
        self.source = source


class SessionNotFound(KeyError):
    pass


class QuestionMismatch(ValueError):
    """Answer submitted for a question that is not the current one."""
