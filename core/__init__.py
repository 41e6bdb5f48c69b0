"""
Core utilities and configuration for the SAP extraction connectors.

This package provides foundational components used by every connector:

Modules:
    config: Connector configuration and environment variable management
    exceptions: Custom exception hierarchy and remote error taxonomy
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.exceptions import NoRecordsToExtractError, TransportFailure
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()
"""

from core.config import settings
from core.logging import setup_logging
from core.exceptions import (
    ETLException,
    ExtractionError,
    CallerInputError,
    NoRecordsToExtractError,
    CapacityExhaustedError,
    NoWorkProcessesAvailableError,
    NoMemoryAvailableError,
    ReaderStateError,
    RetryableError,
    NonRetryableError,
    RemoteError,
    RemoteErrorKind,
    RemoteUnauthorizedError,
    RemoteNotFoundError,
    InvalidFilterError,
    QuotaExceededError,
    ProtocolVersionMismatchError,
    TransportFailure,
    TransportReason,
    UnknownRemoteError,
)

__all__ = [
    "settings",
    "setup_logging",
    # Exceptions
    "ETLException",
    "ExtractionError",
    "CallerInputError",
    "NoRecordsToExtractError",
    "CapacityExhaustedError",
    "NoWorkProcessesAvailableError",
    "NoMemoryAvailableError",
    "ReaderStateError",
    "RetryableError",
    "NonRetryableError",
    "RemoteError",
    "RemoteErrorKind",
    "RemoteUnauthorizedError",
    "RemoteNotFoundError",
    "InvalidFilterError",
    "QuotaExceededError",
    "ProtocolVersionMismatchError",
    "TransportFailure",
    "TransportReason",
    "UnknownRemoteError",
]
