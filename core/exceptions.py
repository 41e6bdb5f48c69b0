"""
Custom exceptions for SAP extraction with structured error context.

This module provides the exception hierarchy used by the partition planner,
the split readers and the source adapters. Each exception includes context
information for debugging and monitoring, and remote failures carry the
taxonomy kind assigned by the error classifier.

Exception Hierarchy:
    ETLException (base)
    ├── ExtractionError
    │   ├── CallerInputError
    │   │   └── NoRecordsToExtractError
    │   ├── CapacityExhaustedError
    │   │   ├── NoWorkProcessesAvailableError
    │   │   └── NoMemoryAvailableError
    │   └── RemoteError
    │       ├── RemoteUnauthorizedError
    │       ├── RemoteNotFoundError
    │       ├── InvalidFilterError
    │       ├── QuotaExceededError
    │       ├── ProtocolVersionMismatchError
    │       ├── TransportFailure
    │       └── UnknownRemoteError
    ├── ReaderStateError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone
import enum


class RemoteErrorKind(str, enum.Enum):
    """Classification assigned to every remote failure"""
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    INVALID_FILTER = "invalid_filter"
    QUOTA_EXCEEDED = "quota_exceeded"
    PROTOCOL_VERSION_MISMATCH = "protocol_version_mismatch"
    TRANSPORT = "transport"
    UNKNOWN = "unknown"


class TransportReason(str, enum.Enum):
    """Sub-reason of a transport level failure"""
    TIMEOUT = "timeout"
    HOST_RESOLUTION = "host_resolution"
    IO = "io"


class ETLException(Exception):
    """
    Base exception for all extraction-related errors.

    Attributes:
        message: Human-readable error message, safe to show to end users
        context: Additional context information (source, skip, top, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(ETLException):
    """
    Mixin for errors the surrounding system may retry later.

    The connectors never retry these themselves. Use this for:
    - Saturated SAP work processes or memory
    - Network timeouts and unreachable hosts
    - Quota exhaustion (HTTP 429, DATA_BUFFER_EXCEEDED)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        **kwargs
    ):
        super().__init__(message, context, original_exception, **kwargs)
        self.max_retries = max_retries
        self.retry_delay = retry_delay


class NonRetryableError(ETLException):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures
    - Unknown service, entity, table or data source
    - Invalid filter options or extraction ranges
    - Unsupported protocol versions
    """
    pass


# ============================================================================
# Extraction Errors
# ============================================================================

class ExtractionError(ETLException):
    """Base exception for data extraction failures."""
    pass


class CallerInputError(NonRetryableError, ExtractionError):
    """
    Exception raised when request parameters cannot produce an extraction.

    Context should include the offending parameters, e.g.:
        - available_record_count
        - fetch_row_count
        - skip_row_count
    """
    pass


class NoRecordsToExtractError(CallerInputError):
    """The skip/fetch window leaves nothing to extract."""
    pass


class CapacityExhaustedError(RetryableError, ExtractionError):
    """
    Exception raised when the SAP system has no capacity for the extraction.

    This is fatal for the current attempt. Operators should retry once
    the system is less busy.
    """
    pass


class NoWorkProcessesAvailableError(CapacityExhaustedError):
    """Not enough free dialog work processes to run even one split."""
    pass


class NoMemoryAvailableError(CapacityExhaustedError):
    """The work-process memory ceiling cannot hold a single unit."""
    pass


class ReaderStateError(ETLException):
    """A split reader operation was called out of sequence."""
    pass


# ============================================================================
# Remote Errors
# ============================================================================

class RemoteError(ExtractionError):
    """
    Base exception for classified failures of the remote SAP system.

    Attributes:
        kind: Taxonomy kind of the failure
        remote_code: Code reported by SAP (HTTP status, ABAP exception key, ...)
        field: Configuration field the user should correct, when known
    """

    kind: RemoteErrorKind = RemoteErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        remote_code: Optional[str] = None,
        field: Optional[str] = None
    ):
        super().__init__(message, context, original_exception)
        self.remote_code = remote_code
        self.field = field
        self.context["kind"] = self.kind.value
        if remote_code is not None:
            self.context["remote_code"] = remote_code
        if field:
            self.context["field"] = field


class RemoteUnauthorizedError(NonRetryableError, RemoteError):
    """Credentials rejected or missing authorization on the SAP object."""
    kind = RemoteErrorKind.UNAUTHORIZED


class RemoteNotFoundError(NonRetryableError, RemoteError):
    """Service, entity, table or data source does not exist."""
    kind = RemoteErrorKind.NOT_FOUND


class InvalidFilterError(RemoteError, CallerInputError):
    """SAP rejected the filter or query options."""
    kind = RemoteErrorKind.INVALID_FILTER


class QuotaExceededError(RetryableError, RemoteError):
    """SAP refused the call because a buffer or rate quota was exceeded."""
    kind = RemoteErrorKind.QUOTA_EXCEEDED


class ProtocolVersionMismatchError(NonRetryableError, RemoteError):
    """The data service version header is missing or unsupported."""
    kind = RemoteErrorKind.PROTOCOL_VERSION_MISMATCH


class TransportFailure(RetryableError, RemoteError):
    """
    Connection level failure (timeout, DNS, socket I/O).

    Attributes:
        reason: Distinguishes timeouts, host resolution and generic I/O
    """

    kind = RemoteErrorKind.TRANSPORT

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        reason: TransportReason = TransportReason.IO,
        **kwargs
    ):
        super().__init__(message, context, original_exception, **kwargs)
        self.reason = reason
        self.context["reason"] = reason.value


class UnknownRemoteError(NonRetryableError, RemoteError):
    """Remote failure that matches no other classification."""
    kind = RemoteErrorKind.UNKNOWN


REMOTE_ERROR_TYPES = {
    RemoteErrorKind.UNAUTHORIZED: RemoteUnauthorizedError,
    RemoteErrorKind.NOT_FOUND: RemoteNotFoundError,
    RemoteErrorKind.INVALID_FILTER: InvalidFilterError,
    RemoteErrorKind.QUOTA_EXCEEDED: QuotaExceededError,
    RemoteErrorKind.PROTOCOL_VERSION_MISMATCH: ProtocolVersionMismatchError,
    RemoteErrorKind.TRANSPORT: TransportFailure,
    RemoteErrorKind.UNKNOWN: UnknownRemoteError,
}
