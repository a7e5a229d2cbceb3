# sarah_booking/core/errors.py
"""
Error taxonomy for the booking flow.

Components raise these; only the orchestrator and the routes decide how a
failure is phrased to the caller.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from sarah_booking.core.logging import get_logger

logger = get_logger(__name__)


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class BookingError(Exception):
    """Base class for every error the booking flow raises on purpose."""


class InvalidPhoneError(BookingError):
    def __init__(self, raw: Optional[str] = None):
        self.raw = raw
        super().__init__("Phone number must contain exactly 10 digits.")


class DuplicateBookingError(BookingError):
    def __init__(self, reason: str = "recent_job", job_id: Optional[int] = None):
        self.reason = reason
        self.job_id = job_id
        super().__init__(f"Duplicate booking suppressed ({reason})")


class ExternalApiError(BookingError):
    """Non-2xx or transport failure talking to the field-service platform."""

    def __init__(self, message: str, *, status: Optional[int] = None,
                 body: Optional[str] = None, endpoint: Optional[str] = None):
        self.status = status
        self.body = body
        self.endpoint = endpoint
        super().__init__(message)


class ExtractionError(BookingError):
    """Transcript extraction failed or produced something unusable."""


class BookingFailedError(BookingError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


def log_error(error: Exception, context: Optional[dict[str, Any]] = None,
              severity: ErrorSeverity = ErrorSeverity.MEDIUM) -> None:
    """Log an error with its operator-facing detail."""
    fields: dict[str, Any] = dict(context or {})
    fields["error"] = str(error)
    fields["error_type"] = type(error).__name__
    fields["severity"] = severity.value
    if isinstance(error, ExternalApiError):
        fields["status"] = error.status
        fields["endpoint"] = error.endpoint
        fields["body"] = error.body

    if severity == ErrorSeverity.HIGH:
        logger.error("error_logged", **fields)
    else:
        logger.warning("error_logged", **fields)
