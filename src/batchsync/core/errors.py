"""
Structured error types for batchsync.

Every error raised by the library derives from ``SyncError`` and carries a
category, a structured context and an optional chained cause, so the run log
and alert sinks can render it without losing detail.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                         SyncError                            │
        │            (category, context, cause, to_dict)               │
        ├─────────────────────────────────────────────────────────────┤
        │                                                              │
        │  ConfigurationError        OverlapError     StepError        │
        │  (CONFIG)                  (CONCURRENCY)    (STEP)           │
        │       │                                        │             │
        │  InvalidSyncNameError                   UnexpectedStepError  │
        │  StepTypeError                                               │
        │  UnknownStepError          DeliveryError                     │
        │  MissingDependencyError    (DELIVERY)                        │
        │  DependencyOrderError                                        │
        └─────────────────────────────────────────────────────────────┘

Configuration errors and overlap errors are fatal for the invocation and are
raised before any step runs. ``UnexpectedStepError`` wraps whatever a step
raised that was not a stop signal; the run loop logs it and aborts.
``DeliveryError`` never reaches the run: it travels inside a failed
``DeliveryResult``.

Examples:
    >>> error = MissingDependencyError("import_orders", "import_users")
    >>> error.category
    <ErrorCategory.CONFIG: 'CONFIG'>
    >>> error.to_dict()["context"]["step"]
    'import_orders'

Tags:
    error-handling, exception-hierarchy, error-context, batchsync
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for classification in logs and alerts."""

    CONFIG = "CONFIG"  # Invalid name, step list or dependency graph
    CONCURRENCY = "CONCURRENCY"  # Another run holds the lock
    STEP = "STEP"  # Failure raised from step business logic
    DELIVERY = "DELIVERY"  # Alert sink could not deliver
    INTERNAL = "INTERNAL"  # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        sync: Name of the sync the error belongs to
        step: Identifier of the step involved
        run_id: Run identifier (the log file stem)
        metadata: Additional key-value pairs
    """

    sync: str | None = None
    step: str | None = None
    run_id: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["sync", "step", "run_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class SyncError(Exception):
    """
    Base exception for all batchsync errors.

    Subclasses set ``default_category``; callers may override it per
    instance. ``with_context`` adds metadata fluently and returns the error
    so it can be raised in the same expression.

    Examples:
        >>> raise SyncError("boom").with_context(sync="nightly", attempt=2)
        Traceback (most recent call last):
        ...
        SyncError: boom
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SyncError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigurationError(SyncError):
    """
    The run is misconfigured.

    Raised before any step executes and never retried: the sync definition
    has to be fixed.
    """

    default_category = ErrorCategory.CONFIG


class InvalidSyncNameError(ConfigurationError):
    """Sync name contains characters outside ``[A-Za-z0-9_-]``."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"Invalid sync name {name!r}: only letters, digits, '_' and '-' are allowed",
            context=ErrorContext(sync=name or None),
        )


class StepTypeError(ConfigurationError):
    """An element of the step list is not a step, or could not be built into one."""

    def __init__(self, value: Any, *, cause: BaseException | None = None):
        self.value = value
        if cause is None:
            message = f"{value!r} is not a step"
        else:
            message = f"Could not build a step from {value!r}: {type(cause).__name__}: {cause}"
        super().__init__(message, cause=cause)


class UnknownStepError(ConfigurationError):
    """A string identifier is not registered in the step registry."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(
            f"Unknown step identifier {identifier!r}",
            context=ErrorContext(step=identifier),
        )


class MissingDependencyError(ConfigurationError):
    """A step depends on an identifier that is not part of the run."""

    def __init__(self, step: str, dependency: str):
        self.step = step
        self.dependency = dependency
        super().__init__(
            f"Step {step!r} depends on {dependency!r}, which is not in the step list",
            context=ErrorContext(step=step, metadata={"dependency": dependency}),
        )


class DependencyOrderError(ConfigurationError):
    """A dependency is placed at the same or a later position than its dependent."""

    def __init__(self, step: str, dependency: str, step_index: int, dependency_index: int):
        self.step = step
        self.dependency = dependency
        super().__init__(
            f"Step {step!r} (position {step_index}) must come after its dependency "
            f"{dependency!r} (position {dependency_index})",
            context=ErrorContext(
                step=step,
                metadata={
                    "dependency": dependency,
                    "step_index": step_index,
                    "dependency_index": dependency_index,
                },
            ),
        )


# =============================================================================
# CONCURRENCY ERRORS
# =============================================================================


class OverlapError(SyncError):
    """Another run of the same sync holds the lock marker."""

    default_category = ErrorCategory.CONCURRENCY

    def __init__(self, sync: str, lock_path: str):
        self.lock_path = lock_path
        super().__init__(
            f"Sync {sync!r} is already in process (lock file {lock_path} exists)",
            context=ErrorContext(sync=sync, metadata={"lock_file": lock_path}),
        )


# =============================================================================
# STEP ERRORS
# =============================================================================


class StepError(SyncError):
    """Failure originating from step business logic."""

    default_category = ErrorCategory.STEP


class UnexpectedStepError(StepError):
    """
    A step raised something other than a stop signal.

    ``location`` holds the file and line where the original exception was
    raised, taken from the innermost traceback frame.
    """

    def __init__(self, step: str, cause: BaseException):
        self.step = step
        self.location = _innermost_frame(cause)
        super().__init__(
            f"Step {step!r} failed: {type(cause).__name__}: {cause}",
            context=ErrorContext(step=step),
            cause=cause,
        )

    def diagnostics(self) -> dict[str, Any]:
        """Exception type, message and location for the run log."""
        file, line = self.location
        return {
            "exception": type(self.cause).__name__,
            "message": str(self.cause),
            "file": file,
            "line": line,
        }


def _innermost_frame(exc: BaseException) -> tuple[str | None, int | None]:
    tb = exc.__traceback__
    if tb is None:
        return None, None
    while tb.tb_next is not None:
        tb = tb.tb_next
    return tb.tb_frame.f_code.co_filename, tb.tb_lineno


# =============================================================================
# DELIVERY ERRORS
# =============================================================================


class DeliveryError(SyncError):
    """An alert sink failed to deliver an event."""

    default_category = ErrorCategory.DELIVERY


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SyncError",
    # Config
    "ConfigurationError",
    "InvalidSyncNameError",
    "StepTypeError",
    "UnknownStepError",
    "MissingDependencyError",
    "DependencyOrderError",
    # Concurrency
    "OverlapError",
    # Step
    "StepError",
    "UnexpectedStepError",
    # Delivery
    "DeliveryError",
]
