import logging
import random
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError

from memorykeeper.core.config import (
    BACKOFF_BASE_SECONDS,
    BACKOFF_JITTER,
    BACKOFF_MAX_SECONDS,
    HANDLER_TIMEOUT_SECONDS,
    JOB_BATCH_SIZE,
    SCHEDULER_CONCURRENCY,
)
from memorykeeper.core.database import SessionLocal
from memorykeeper.core.errors import HandlerError, HandlerTimeout, RetryBudgetExhausted, UnknownKind
from memorykeeper.schemas.job_schema import SchedulerPassResult
from memorykeeper.services.handlers import registry as default_registry
from memorykeeper.services.job_service import claim_due_batch, record_failed, record_retry, record_success
from memorykeeper.services.retry_classifier import Outcome, classify

log = logging.getLogger("jobs.scheduler")

SUCCEEDED = "succeeded"
RETRIED = "retried"
FAILED = "failed"
STALE = "stale"  # lease lost to another pass, nothing written


def compute_backoff(attempts: int, base: float = BACKOFF_BASE_SECONDS, cap: float = BACKOFF_MAX_SECONDS,
                    jitter: float = BACKOFF_JITTER, rng=random) -> float:
    """Seconds to wait before the next attempt, `attempts` being the count made so far."""
    delay = min(base * 2 ** max(attempts - 1, 0), cap)
    if jitter:
        delay *= rng.uniform(1 - jitter, 1 + jitter)
    return max(min(delay, cap), 0.001)


def _invoke(handler, kind: str, payload, timeout: float | None):
    if not timeout:
        return handler(payload)

    # the worker thread cannot be killed; on timeout it is abandoned and the
    # job's lease keeps other passes away until it expires
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"handler-{kind}")
    future = pool.submit(handler, payload)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        if future.done():
            raise
        raise HandlerTimeout(kind, timeout) from None
    finally:
        pool.shutdown(wait=False)


def _record_failure(job, error: Exception, session_factory, now) -> str:
    extra = {"job_id": job.id, "kind": job.kind}
    lease = job.leased_until
    outcome = classify(error)

    with session_factory() as db:
        if outcome is Outcome.fatal:
            if not record_failed(db, job.id, str(error), lease=lease):
                return STALE
            log.error("job failed: %s", error, extra={**extra, "event": "job_failed"})
            return FAILED

        attempts = job.attempts + 1
        if attempts >= job.max_attempts:
            exhausted = RetryBudgetExhausted(error, attempts)
            if not record_failed(db, job.id, str(exhausted), lease=lease):
                return STALE
            log.error(str(exhausted), extra={**extra, "event": "job_retry_exhausted"})
            return FAILED

        delay = compute_backoff(attempts)
        if not record_retry(db, job.id, str(error), delay, now=now, lease=lease):
            return STALE
        log.warning(
            "job failed, retry %d/%d scheduled in %.1fs: %s", attempts, job.max_attempts, delay, error,
            extra={**extra, "event": "job_retry_scheduled"},
        )
        return RETRIED


def process_job(job, registry=None, session_factory=SessionLocal,
                handler_timeout: float | None = HANDLER_TIMEOUT_SECONDS, now=None) -> str:
    """Run one claimed job and write its next state. Handler errors never escape."""
    registry = default_registry if registry is None else registry
    log.info("job claimed", extra={"job_id": job.id, "kind": job.kind, "event": "job_claimed"})

    try:
        handler = registry.get(job.kind)
    except UnknownKind as e:
        return _record_failure(job, e, session_factory, now)

    try:
        _invoke(handler, job.kind, job.payload, handler_timeout)
    except Exception as e:
        return _record_failure(job, HandlerError(job.kind, job.id, e), session_factory, now)

    with session_factory() as db:
        if not record_success(db, job.id, lease=job.leased_until):
            return STALE
    log.info("job succeeded", extra={"job_id": job.id, "kind": job.kind, "event": "job_succeeded"})
    return SUCCEEDED


def run_scheduler_pass(registry=None, session_factory=SessionLocal, batch_size: int = JOB_BATCH_SIZE,
                       concurrency: int = SCHEDULER_CONCURRENCY,
                       handler_timeout: float | None = HANDLER_TIMEOUT_SECONDS, now=None) -> SchedulerPassResult:
    """One scheduler pass: claim due jobs, run them, record the outcomes.

    StoreUnavailable propagates so the periodic trigger can try again on its
    next tick.
    """
    with session_factory() as db:
        batch = claim_due_batch(db, batch_size, now=now)

    result = SchedulerPassResult(claimed=len(batch))
    if not batch:
        return result

    def run(job):
        return process_job(job, registry, session_factory, handler_timeout, now)

    if concurrency <= 1:
        outcomes = [run(job) for job in batch]
    else:
        with ThreadPoolExecutor(max_workers=min(concurrency, len(batch)), thread_name_prefix="scheduler") as pool:
            outcomes = list(pool.map(run, batch))

    for outcome in outcomes:
        setattr(result, outcome, getattr(result, outcome) + 1)

    log.info(
        "scheduler pass finished: claimed=%d succeeded=%d retried=%d failed=%d stale=%d",
        result.claimed, result.succeeded, result.retried, result.failed, result.stale,
        extra={"event": "scheduler_pass"},
    )
    return result
