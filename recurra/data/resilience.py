"""Error classification for background jobs.

Decides whether a failure inside a job should be retried by the scheduler
or reported as a permanent failure.
"""

import asyncio
import logging
from enum import Enum

from recurra.data.repository import (
    AggregateUpdateError,
    DataIntegrityError,
    StoreUnavailableError,
)
from recurra.domain.models import JobResult
from recurra.domain.periods import InvalidIntervalError

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Classification of job errors for retry decisions."""

    TRANSIENT = "transient"  # Locked database, I/O - safe to retry
    PERMANENT = "permanent"  # Malformed data - retrying cannot help


# Error types that are transient (safe to retry)
TRANSIENT_ERROR_TYPES = (
    "ConnectionRefusedError",
    "ConnectionResetError",
    "TimeoutError",
    "OSError",
    "OperationalError",
    "StoreUnavailableError",
    "AggregateUpdateError",
)

# sqlite error messages indicating transient issues
TRANSIENT_ERROR_MESSAGES = (
    "database is locked",
    "database table is locked",
    "disk i/o error",
    "unable to open database",
    "cannot operate on a closed database",
    "not connected",
    "timeout",
    "busy",
)

# Error messages indicating permanent failures
PERMANENT_ERROR_MESSAGES = (
    "malformed",
    "syntax error",
    "no such table",
    "no such column",
    "file is not a database",
    "invalid",
)


def classify_error(exception: BaseException) -> ErrorCategory:
    """Classify an exception to determine retry behavior.

    Args:
        exception: The exception to classify

    Returns:
        ErrorCategory indicating whether to retry or fail
    """
    # Known types first: the message checks below are heuristics
    if isinstance(exception, (DataIntegrityError, InvalidIntervalError)):
        return ErrorCategory.PERMANENT
    if isinstance(exception, (StoreUnavailableError, AggregateUpdateError, asyncio.CancelledError)):
        return ErrorCategory.TRANSIENT

    error_type = type(exception).__name__
    error_msg = str(exception).lower()

    # Schema problems surface as OperationalError too, so check them first
    for indicator in PERMANENT_ERROR_MESSAGES:
        if indicator in error_msg:
            return ErrorCategory.PERMANENT

    for transient_type in TRANSIENT_ERROR_TYPES:
        if transient_type in error_type:
            return ErrorCategory.TRANSIENT

    for indicator in TRANSIENT_ERROR_MESSAGES:
        if indicator in error_msg:
            return ErrorCategory.TRANSIENT

    # Default: assume transient for unknown errors (safer to retry)
    # But log it so we can add explicit handling
    logger.warning(f"Unknown error type {error_type}: {exception}")
    return ErrorCategory.TRANSIENT


def job_result_for(exception: BaseException) -> JobResult:
    """Map an exception raised by a job to the scheduler result."""
    if classify_error(exception) == ErrorCategory.PERMANENT:
        return JobResult.FAILURE
    return JobResult.RETRY
