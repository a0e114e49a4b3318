"""Custom exceptions for acctflow.

Every fatal condition of a run is raised as an AcctFlowError subclass
carrying the offending value and stage in its details. Malformed input
lines are not errors and never raise.
"""

from typing import Any


class AcctFlowError(Exception):
    """Base exception for all acctflow errors."""

    error_code: str = "INTERNAL_ERROR"
    message: str = "An internal error occurred"

    def __init__(
        self,
        message: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize exception with optional details.

        Args:
            message: Human-readable error message.
            details: Additional error details for debugging.
            cause: Original exception that caused this error.
        """
        self.message = message or self.message
        self.details = details or {}
        self.cause = cause
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result


# Configuration errors
class ConfigurationError(AcctFlowError):
    """Configuration error."""

    error_code = "CONFIGURATION_ERROR"
    message = "Service configuration error"


class LookupTableError(ConfigurationError):
    """A configured lookup source could not be fetched or parsed."""

    error_code = "LOOKUP_TABLE_ERROR"
    message = "Lookup table source is malformed or unavailable"


# Data errors
class ClassificationError(AcctFlowError):
    """Record cannot be classified."""

    error_code = "CLASSIFICATION_ERROR"
    message = "Flow record cannot be classified"


# Storage errors
class StorageError(AcctFlowError):
    """Storage operation failed."""

    error_code = "STORAGE_ERROR"
    message = "Storage operation failed"


class SchemaError(StorageError):
    """Schema provisioning failed."""

    error_code = "SCHEMA_ERROR"
    message = "Destination schema provisioning failed"


class RecordEncodingError(StorageError):
    """Record does not fit the destination column types."""

    error_code = "RECORD_ENCODING_ERROR"
    message = "Flow record cannot be encoded for storage"


# Pipeline control flow
class QueueClosedError(AcctFlowError):
    """Queue is closed for writing or fully drained."""

    error_code = "QUEUE_CLOSED"
    message = "Queue is closed"
