import hmac

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from memorykeeper.core import config
from memorykeeper.core.database import get_db, get_session_factory
from memorykeeper.schemas.job_schema import (
    EnqueueJobRequest,
    JobDetailResponse,
    JobListResponse,
    JobStatsResponse,
    SchedulerPassResult,
)
from memorykeeper.services.dashboard_service import get_job_stats, list_jobs
from memorykeeper.services.job_service import enqueue, get_job_by_id
from memorykeeper.services.rate_limiter import rate_limit
from memorykeeper.services.scheduler import run_scheduler_pass

router = APIRouter(prefix="/jobs", tags=["Jobs"]) # grouping endpoints in jobs section


def require_admin(x_admin_token: str | None = Header(default=None)) -> None:
    # no configured token means the operational endpoints stay closed
    if not config.ADMIN_TOKEN or not x_admin_token or not hmac.compare_digest(x_admin_token, config.ADMIN_TOKEN):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden: Admins only")


@router.post("", response_model=JobDetailResponse, status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(rate_limit("upload"))])
def submit_job(request: EnqueueJobRequest, db: Session = Depends(get_db)):
    job_id = enqueue(db, request.kind, request.payload, max_attempts=request.max_attempts)
    return JobDetailResponse.model_validate(get_job_by_id(db, job_id))


@router.get("", response_model=JobListResponse, dependencies=[Depends(require_admin)])
def jobs_list(
    status: str | None = None,
    kind: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    jobs = list_jobs(db, status=status, kind=kind, limit=limit, offset=offset)
    return JobListResponse(
        jobs=[JobDetailResponse.model_validate(job) for job in jobs], # ORM objects -> pydantic for the json response
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=JobStatsResponse, dependencies=[Depends(require_admin)])
def jobs_stats(db: Session = Depends(get_db)):
    """Counts by status, and by (status, kind)"""
    return JobStatsResponse(**get_job_stats(db))


@router.post("/run", response_model=SchedulerPassResult, dependencies=[Depends(require_admin)])
def run_pass(session_factory=Depends(get_session_factory)):
    """Run one scheduler pass now, for cron-style triggers that call over HTTP"""
    return run_scheduler_pass(session_factory=session_factory)


@router.get("/{job_id}", response_model=JobDetailResponse, dependencies=[Depends(require_admin)])
def job_status(job_id: int, db: Session = Depends(get_db)):
    job = get_job_by_id(db, job_id)
    if not job:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return JobDetailResponse.model_validate(job)
