import enum
import json
from concurrent.futures import TimeoutError as FutureTimeoutError

from memorykeeper.core.errors import (
    FatalJobError,
    HandlerError,
    RetryableJobError,
    StoreUnavailable,
)


class Outcome(str, enum.Enum):
    retryable = "retryable"
    fatal = "fatal"


# checked in order, first match wins
FATAL_TYPES = (
    FatalJobError,
    json.JSONDecodeError,  # malformed payload
    KeyError,
    ValueError,
    TypeError,
    FileNotFoundError,
    PermissionError,
)

RETRYABLE_TYPES = (
    RetryableJobError,
    StoreUnavailable,
    TimeoutError,
    FutureTimeoutError,
    ConnectionError,
)

FATAL_MESSAGE_MARKERS = ("not found", "invalid")


def classify(error: BaseException) -> Outcome:
    """Map a handler failure to retryable or fatal.

    Errors that match neither table are fatal so an unexpected error shape
    cannot keep a job cycling forever.
    """
    if isinstance(error, HandlerError):
        error = error.cause

    # handlers that pick a bucket explicitly are trusted over the heuristics
    if isinstance(error, RetryableJobError):
        return Outcome.retryable
    if isinstance(error, FATAL_TYPES):
        return Outcome.fatal
    if isinstance(error, RETRYABLE_TYPES):
        return Outcome.retryable

    # message text never overrides the transient types above
    message = str(error).lower()
    if any(marker in message for marker in FATAL_MESSAGE_MARKERS):
        return Outcome.fatal
    if isinstance(error, OSError):
        return Outcome.retryable

    return Outcome.fatal
