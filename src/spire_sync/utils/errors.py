"""
Error handling framework for spire-sync.

This module provides the error taxonomy shared by every component:
- Hierarchical exception classes with stable codes
- Error context preservation
- Retryability hints for the UI layer
- Structured error payloads
"""

from typing import Optional, Dict, Any, List, Type, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from contextlib import contextmanager
import asyncio
import functools
import traceback

from .logging import get_logger


logger = get_logger("spire-sync.errors")


class ErrorSeverity(Enum):
    """Error severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    STORAGE = "storage"
    CONFLICT = "conflict"
    NETWORK = "network"
    HISTORY = "history"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Context information for an error."""
    timestamp: datetime = field(default_factory=datetime.utcnow)
    user_id: Optional[str] = None
    campaign_id: Optional[str] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None


@dataclass
class ErrorInfo:
    """Structured error information."""
    code: str
    message: str
    severity: ErrorSeverity
    category: ErrorCategory
    context: ErrorContext
    cause: Optional[Exception] = None
    suggestions: List[str] = field(default_factory=list)
    is_retryable: bool = False


class SpireSyncError(Exception):
    """Base exception for all spire-sync errors."""

    code: str = "SPIRE_SYNC_ERROR"
    default_message: str = "An error occurred in spire-sync"
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.UNKNOWN
    is_retryable: bool = False

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        **kwargs
    ):
        """Initialize error."""
        self.message = message or self.default_message
        self.context = context or ErrorContext()
        self.cause = cause
        self.kwargs = kwargs

        if not self.context.stack_trace and cause is not None:
            self.context.stack_trace = "".join(
                traceback.format_exception(type(cause), cause, cause.__traceback__)
            )

        super().__init__(self.message)

    def to_info(self) -> ErrorInfo:
        """Convert to structured error info."""
        return ErrorInfo(
            code=self.code,
            message=self.message,
            severity=self.severity,
            category=self.category,
            context=self.context,
            cause=self.cause,
            suggestions=self.get_suggestions(),
            is_retryable=self.is_retryable
        )

    def get_suggestions(self) -> List[str]:
        """Get error resolution suggestions."""
        return []

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        info = self.to_info()
        return {
            "error": {
                "code": info.code,
                "message": info.message,
                "severity": info.severity.value,
                "category": info.category.value,
                "is_retryable": info.is_retryable,
                "suggestions": info.suggestions,
                "context": {
                    "timestamp": info.context.timestamp.isoformat(),
                    "user_id": info.context.user_id,
                    "campaign_id": info.context.campaign_id,
                    "component": info.context.component,
                    "operation": info.context.operation,
                    "metadata": info.context.metadata
                }
            }
        }


# Configuration Errors

class ConfigurationError(SpireSyncError):
    """Configuration errors."""
    code = "CONFIG_ERROR"
    default_message = "Configuration error"
    category = ErrorCategory.CONFIGURATION

    def get_suggestions(self) -> List[str]:
        return [
            "Check your configuration file syntax",
            "Verify SPIRE_* environment variables"
        ]


class ValidationError(SpireSyncError):
    """Input validation errors."""
    code = "VALIDATION_ERROR"
    default_message = "Validation error"
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.WARNING

    def __init__(self, field: str, value: Any, constraint: str, **kwargs):
        self.field = field
        self.value = value
        self.constraint = constraint
        message = f"Validation failed for field '{field}': {constraint}"
        super().__init__(message, **kwargs)


# Storage Errors

class StorageError(SpireSyncError):
    """Durable storage errors."""
    code = "STORAGE_ERROR"
    default_message = "Durable storage error"
    category = ErrorCategory.STORAGE


class StorageWriteFailure(StorageError):
    """Serialization failed or the medium refused the write (quota, disk full).

    Not retried automatically; the UI offers a manual retry. The revision
    is never advanced when this is raised.
    """
    code = "STORAGE_WRITE_FAILURE"
    default_message = "Failed to write campaigns to durable storage"
    is_retryable = True

    def get_suggestions(self) -> List[str]:
        return [
            "Free some disk space and retry the save",
            "Export the campaign as a precaution"
        ]


class StorageUnavailable(StorageError):
    """The durable medium cannot be reached right now (locked, unopenable)."""
    code = "STORAGE_UNAVAILABLE"
    default_message = "Durable storage is not reachable"
    severity = ErrorSeverity.WARNING
    is_retryable = True


class CampaignNotFound(StorageError):
    """No committed campaign set exists for the user."""
    code = "CAMPAIGN_NOT_FOUND"
    default_message = "No campaigns stored for this user"
    severity = ErrorSeverity.INFO

    def __init__(self, user_id: str, **kwargs):
        self.user_id = user_id
        super().__init__(f"No campaigns stored for user '{user_id}'", **kwargs)


class StaleRevision(StorageError):
    """A conditional write found a different committed revision."""
    code = "STALE_REVISION"
    default_message = "Durable revision changed since it was last read"
    category = ErrorCategory.CONFLICT
    severity = ErrorSeverity.WARNING

    def __init__(self, expected: Optional[str], actual: Optional[str], **kwargs):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Expected revision {expected!r} but durable revision is {actual!r}",
            **kwargs
        )


# Conflict Errors

class QueueFlushRejected(SpireSyncError):
    """A queued write was based on a revision that is no longer current."""
    code = "QUEUE_FLUSH_REJECTED"
    default_message = "Queued changes are based on an outdated revision"
    category = ErrorCategory.CONFLICT
    severity = ErrorSeverity.WARNING

    def __init__(self, base_revision: Optional[str], current_revision: Optional[str], **kwargs):
        self.base_revision = base_revision
        self.current_revision = current_revision
        super().__init__(
            f"Pending write based on {base_revision!r} but durable revision is {current_revision!r}",
            **kwargs
        )

    def get_suggestions(self) -> List[str]:
        return [
            "Reload the latest campaign to take the other writer's changes",
            "Force overwrite to keep your local changes"
        ]


# Network Errors

class TransportError(SpireSyncError):
    """Notification transport errors."""
    code = "TRANSPORT_ERROR"
    default_message = "Transport error occurred"
    category = ErrorCategory.NETWORK
    severity = ErrorSeverity.WARNING
    is_retryable = True


class TransportUnavailable(TransportError):
    """The remote notification transport could not be initialised."""
    code = "TRANSPORT_UNAVAILABLE"
    default_message = "Remote transport unavailable"


# History Errors

class HistoryError(SpireSyncError):
    """Undo/redo history errors."""
    code = "HISTORY_ERROR"
    default_message = "History error"
    category = ErrorCategory.HISTORY
    severity = ErrorSeverity.INFO


class EmptyHistory(HistoryError):
    """Undo or redo requested on an empty stack."""
    code = "EMPTY_HISTORY"
    default_message = "Nothing to undo or redo"


class SnapshotCorrupt(HistoryError):
    """A snapshot could not be decoded or validated."""
    code = "SNAPSHOT_CORRUPT"
    default_message = "Snapshot is malformed"
    severity = ErrorSeverity.WARNING


# Error Handler Decorator

def handle_errors(
    *error_classes: Type[Exception],
    fallback: Optional[Callable] = None,
    reraise: bool = True,
    log_level: ErrorSeverity = ErrorSeverity.ERROR
):
    """
    Decorator for handling errors in functions.

    Args:
        error_classes: Exception classes to catch
        fallback: Fallback function to call on error
        reraise: Whether to reraise the exception
        log_level: Logging level for errors
    """
    def decorator(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except error_classes as e:
                getattr(logger, log_level.value)(
                    f"error_in_{func.__name__}",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True
                )

                if fallback:
                    if asyncio.iscoroutinefunction(fallback):
                        return await fallback(*args, **kwargs)
                    return fallback(*args, **kwargs)

                if reraise:
                    raise

                return None

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except error_classes as e:
                getattr(logger, log_level.value)(
                    f"error_in_{func.__name__}",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True
                )

                if fallback:
                    return fallback(*args, **kwargs)

                if reraise:
                    raise

                return None

        return async_wrapper if asyncio.iscoroutinefunction(func) else sync_wrapper

    return decorator


# Error Context Manager

@contextmanager
def error_context(
    component: str,
    operation: str,
    reraise: bool = True,
    **metadata
):
    """
    Context manager for error handling with context.

    Library errors get their context filled in; anything else is wrapped
    in a SpireSyncError.

    Args:
        component: Component name
        operation: Operation name
        reraise: Whether to reraise exceptions
        **metadata: Additional context metadata
    """
    context = ErrorContext(
        component=component,
        operation=operation,
        metadata=metadata
    )

    try:
        yield context
    except SpireSyncError as e:
        e.context.component = e.context.component or component
        e.context.operation = e.context.operation or operation
        e.context.metadata.update(metadata)
        logger.debug(
            "spire_error_in_context",
            code=e.code,
            component=component,
            operation=operation
        )
        if reraise:
            raise
    except Exception as e:
        wrapped = SpireSyncError(
            message=str(e),
            context=context,
            cause=e
        )
        logger.error(
            "unexpected_error_in_context",
            error=wrapped.to_dict(),
            exc_info=True
        )
        if reraise:
            raise wrapped from e


# Export public API
__all__ = [
    'SpireSyncError',
    'ErrorContext',
    'ErrorInfo',
    'ErrorSeverity',
    'ErrorCategory',
    'ConfigurationError',
    'ValidationError',
    'StorageError',
    'StorageWriteFailure',
    'StorageUnavailable',
    'CampaignNotFound',
    'StaleRevision',
    'QueueFlushRejected',
    'TransportError',
    'TransportUnavailable',
    'HistoryError',
    'EmptyHistory',
    'SnapshotCorrupt',
    'handle_errors',
    'error_context',
]
