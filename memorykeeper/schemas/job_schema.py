from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Any, Dict, List


class EnqueueJobRequest(BaseModel):
    kind: str = Field(min_length=1, max_length=64)
    payload: Dict[str, Any] = Field(default_factory=dict)
    max_attempts: int | None = Field(default=None, ge=1, le=20)


class JobDetailResponse(BaseModel):
    id: int
    kind: str
    payload: Dict[str, Any]
    status: str
    attempts: int
    max_attempts: int
    next_run_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class JobListResponse(BaseModel):
    jobs: List[JobDetailResponse]
    limit: int
    offset: int


class JobStatsEntry(BaseModel):
    status: str
    kind: str
    count: int


class JobStatsResponse(BaseModel):
    totals: Dict[str, int]
    by_kind: List[JobStatsEntry]


class SchedulerPassResult(BaseModel):
    claimed: int = 0
    succeeded: int = 0
    retried: int = 0
    failed: int = 0
    stale: int = 0
