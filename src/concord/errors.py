"""Concord error hierarchy."""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCategory(StrEnum):
    """Category of error for classification and handling."""

    CONFIGURATION = "configuration"
    EXECUTION = "execution"
    TIMEOUT = "timeout"
    PARSE = "parse"
    PARTICIPANTS = "participants"
    PRECONDITION = "precondition"
    INTERNAL = "internal"


class DebateError(Exception):
    """Base error for all concord exceptions."""

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        phase: str | None = None,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.phase = phase
        self.retryable = retryable
        self.details: dict[str, Any] = details or {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self)!r}, category={self.category!r})"

    def to_payload(self) -> dict[str, Any]:
        """Structured failure payload for the tool surface."""
        return {
            "error": str(self),
            "category": str(self.category),
            "phase": self.phase,
            "details": dict(self.details),
        }


class ConfigurationError(DebateError):
    """Invalid or missing configuration, or an invalid request."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.CONFIGURATION, retryable=False, **kwargs)


class WorkerExecutionError(DebateError):
    """A worker process could not be spawned or failed at the OS level."""

    def __init__(
        self,
        message: str,
        *,
        worker_id: str,
        retryable: bool = False,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, category=ErrorCategory.EXECUTION, retryable=retryable, **kwargs)
        self.worker_id = worker_id


class WorkerTimeoutError(DebateError):
    """A worker process did not exit within its timeout."""

    def __init__(self, worker_id: str, timeout: float, **kwargs: Any) -> None:
        super().__init__(
            f"Agent {worker_id} timed out after {timeout:g} seconds",
            category=ErrorCategory.TIMEOUT,
            retryable=True,
            **kwargs,
        )
        self.worker_id = worker_id
        self.timeout = timeout


class ParseError(DebateError):
    """Unreadable structured input (configuration files only)."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.PARSE, retryable=False, **kwargs)


class InsufficientParticipantsError(DebateError):
    """Too few workers produced usable output in a phase."""

    def __init__(self, message: str, *, phase: str, **kwargs: Any) -> None:
        super().__init__(
            message,
            category=ErrorCategory.PARTICIPANTS,
            phase=phase,
            retryable=False,
            **kwargs,
        )


class PreconditionError(DebateError):
    """The run's input does not satisfy the mode's requirements."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.PRECONDITION, retryable=False, **kwargs)
