"""Error taxonomy for the deferred-work core.

Handlers raise `FatalJobError` / `RetryableJobError` subclasses when they know
which bucket a failure belongs to; anything else is left to the retry
classifier.
"""


class StoreUnavailable(Exception):
    """The job store or the durable rate limit store could not be reached."""


class JobError(Exception):
    """Base class for failures raised by job handlers."""


class FatalJobError(JobError):
    """Retrying cannot change the outcome."""


class EntityNotFound(FatalJobError):
    pass


class QuotaExceeded(FatalJobError):
    pass


class InvalidPayload(FatalJobError):
    pass


class UnknownKind(FatalJobError):
    def __init__(self, kind: str):
        super().__init__(f"unknown kind: {kind}")
        self.kind = kind


class RetryableJobError(JobError):
    """Transient failure, eligible for another attempt."""


class HandlerTimeout(RetryableJobError, TimeoutError):
    def __init__(self, kind: str, timeout: float):
        super().__init__(f"handler for {kind!r} timed out after {timeout:g}s")
        self.kind = kind
        self.timeout = timeout


class HandlerError(JobError):
    """Wraps whatever a kind-specific handler raised."""

    def __init__(self, kind: str, job_id: int, cause: BaseException):
        super().__init__(f"{type(cause).__name__}: {cause}")
        self.kind = kind
        self.job_id = job_id
        self.cause = cause


class RetryBudgetExhausted(JobError):
    """A retryable failure that is terminal because attempts hit max_attempts."""

    def __init__(self, error: BaseException, attempts: int):
        super().__init__(f"retry budget exhausted after {attempts} attempts: {error}")
        self.error = error
        self.attempts = attempts
