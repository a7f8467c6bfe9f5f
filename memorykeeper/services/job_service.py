import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, List

from sqlalchemy import and_, asc, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from memorykeeper.core.config import JOB_LEASE_SECONDS, JOB_MAX_ATTEMPTS
from memorykeeper.core.errors import StoreUnavailable
from memorykeeper.core.utils import utcnow
from memorykeeper.models.job_model import Job, JobStatus
from memorykeeper.services.handlers import OBJECT_DELETE, TRANSCRIBE, registry as default_registry

log = logging.getLogger("jobs.store")

MAX_ERROR_LENGTH = 1000


@contextmanager
def store_guard(db: Session):
    """Roll back and surface any database failure as StoreUnavailable."""
    try:
        yield
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreUnavailable(str(e)) from e


def _due(now: datetime):
    return and_(
        Job.status == JobStatus.pending.value,
        or_(Job.next_run_at.is_(None), Job.next_run_at <= now),
        or_(Job.leased_until.is_(None), Job.leased_until < now),
    )


def _clip(error: str) -> str:
    return error[:MAX_ERROR_LENGTH]


def resolve_max_attempts(kind: str, max_attempts: int | None = None, registry=None) -> int:
    """Explicit value, else the default registered with the kind's handler, else config."""
    if max_attempts is None:
        registry = default_registry if registry is None else registry
        max_attempts = registry.max_attempts_for(kind)
    if max_attempts is None:
        max_attempts = JOB_MAX_ATTEMPTS
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
    return max_attempts


def enqueue(db: Session, kind: str, payload: Dict[str, Any] | None = None, max_attempts: int | None = None,
            registry=None) -> int:
    new_job = Job(
        kind=kind,
        payload=payload or {},
        status=JobStatus.pending.value,
        attempts=0,
        max_attempts=resolve_max_attempts(kind, max_attempts, registry),
        next_run_at=None,
    )
    with store_guard(db):
        db.add(new_job)
        db.commit()
        db.refresh(new_job)
    log.info("job enqueued", extra={"job_id": new_job.id, "kind": kind, "event": "job_enqueued"})
    return new_job.id


def schedule_object_delete(db: Session, key: str) -> int:
    return enqueue(db, OBJECT_DELETE, {"key": key})


def schedule_transcription(db: Session, key: str, photo_id: str) -> int:
    return enqueue(db, TRANSCRIBE, {"key": key, "photo_id": photo_id})


def get_job_by_id(db: Session, job_id: int):
    with store_guard(db):
        return db.query(Job).filter(Job.id == job_id).first()


def claim_due_batch(db: Session, limit: int, lease_seconds: int = JOB_LEASE_SECONDS, now: datetime | None = None) -> List[Job]:
    """Lease up to `limit` due jobs, oldest first.

    Each candidate is leased with a conditional update; a row another pass
    leased in the meantime is skipped, so only rows this call actually
    updated are returned.
    """
    now = now or utcnow()
    leased_until = now + timedelta(seconds=lease_seconds)

    with store_guard(db):
        candidates = (
            db.query(Job.id)
            .filter(_due(now))
            .order_by(asc(Job.created_at), asc(Job.id))
            .limit(limit)
            .all()
        )

        claimed_ids = []
        for (job_id,) in candidates:
            updated = (
                db.query(Job)
                .filter(Job.id == job_id, _due(now))
                .update({Job.leased_until: leased_until}, synchronize_session=False)
            )
            if updated == 1:
                claimed_ids.append(job_id)
        db.commit()

        if not claimed_ids:
            return []

        return (
            db.query(Job)
            .filter(Job.id.in_(claimed_ids))
            .order_by(asc(Job.created_at), asc(Job.id))
            .all()
        )


def _finalize(db: Session, job_id: int, lease: datetime | None, values: Dict[Any, Any]) -> bool:
    """Write a claimed job's next state.

    Only a pending job still holding `lease` is touched; a pass whose lease
    expired and was taken over by another pass writes nothing.
    """
    values[Job.attempts] = Job.attempts + 1
    values[Job.leased_until] = None

    criteria = [Job.id == job_id, Job.status == JobStatus.pending.value]
    if lease is not None:
        criteria.append(Job.leased_until == lease)

    with store_guard(db):
        updated = db.query(Job).filter(*criteria).update(values, synchronize_session=False)
        db.commit()
    if updated != 1:
        log.warning("job state not written: finalized, re-leased or removed", extra={"job_id": job_id, "event": "job_write_skipped"})
    return updated == 1


def record_retry(db: Session, job_id: int, error: str, backoff_delay: float, now: datetime | None = None,
                 lease: datetime | None = None) -> bool:
    now = now or utcnow()
    return _finalize(db, job_id, lease, {
        Job.status: JobStatus.pending.value,
        Job.next_run_at: now + timedelta(seconds=backoff_delay),
        Job.last_error: _clip(error),
    })


def record_failed(db: Session, job_id: int, error: str, lease: datetime | None = None) -> bool:
    return _finalize(db, job_id, lease, {
        Job.status: JobStatus.failed.value,
        Job.next_run_at: None,
        Job.last_error: _clip(error),
    })


def record_success(db: Session, job_id: int, lease: datetime | None = None) -> bool:
    return _finalize(db, job_id, lease, {
        Job.status: JobStatus.done.value,
        Job.next_run_at: None,
        Job.last_error: None,
    })
