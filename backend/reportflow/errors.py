"""Workflow error taxonomy.

Every error carries the stage (or flag) key it concerns. None of them
leaves the artifact store half-written: mutating paths write only after a
confirmed success.
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for errors raised by the workflow core."""

    def __init__(
        self,
        message: str,
        stage: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize WorkflowError.

        Args:
            message: Error message
            stage: Stage or processing-flag key the error concerns
            cause: Original exception
        """
        self.stage = stage
        self.cause = cause
        self.message = message
        super().__init__(message)


class CatalogError(ValueError):
    """Raised when a stage catalog is malformed."""


class UnknownStageError(WorkflowError, KeyError):
    """Raised when a stage key is not part of the catalog."""

    def __str__(self) -> str:
        return self.message


class NotReadyError(WorkflowError):
    """The target stage's prerequisite is not complete yet."""


class AlreadyInProgressError(WorkflowError):
    """The target key already has an outstanding execution."""


class ExecutorFailure(WorkflowError):
    """The stage executor raised; the message is preserved verbatim."""


class InvalidManualContentError(WorkflowError):
    """Manual submission with empty or blank content."""
