from sqlalchemy.orm import Session
from sqlalchemy import func
from memorykeeper.models.job_model import Job, JobStatus
from memorykeeper.services.job_service import store_guard


def list_jobs(db: Session, status: str | None = None, kind: str | None = None, limit: int = 50, offset: int = 0):
    """Newest first, optionally filtered by status and kind"""
    query = db.query(Job)
    if status:
        query = query.filter(Job.status == status)
    if kind:
        query = query.filter(Job.kind == kind)
    with store_guard(db):
        return query.order_by(Job.created_at.desc(), Job.id.desc()).offset(offset).limit(limit).all()


def get_job_stats(db: Session):
    """Job counts grouped by status and kind"""
    with store_guard(db):
        rows = (
            db.query(Job.status, Job.kind, func.count(Job.id))
            .group_by(Job.status, Job.kind)
            .order_by(Job.status, Job.kind)
            .all()
        )

    totals = {s.value: 0 for s in JobStatus}
    by_kind = []
    for status, kind, count in rows:
        totals[status] = totals.get(status, 0) + count
        by_kind.append({"status": status, "kind": kind, "count": count})

    return {"totals": totals, "by_kind": by_kind}

