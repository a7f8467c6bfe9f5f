import enum

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text

from memorykeeper.core.config import JOB_MAX_ATTEMPTS
from memorykeeper.core.database import Base
from memorykeeper.core.utils import utcnow


class JobStatus(str, enum.Enum):
    pending = "pending"
    done = "done"
    failed = "failed"


class Job(Base):
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    kind = Column(String(64), index=True, nullable=False)
    payload = Column(JSON, nullable=False, default=dict)

    status = Column(String(20), default=JobStatus.pending.value, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=JOB_MAX_ATTEMPTS, nullable=False)
    next_run_at = Column(DateTime, nullable=True) # null means eligible now
    leased_until = Column(DateTime, nullable=True) # set while a scheduler pass owns the job
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_jobs_status_next_run", "status", "next_run_at"),
        Index("idx_jobs_created", "created_at"),
    )
