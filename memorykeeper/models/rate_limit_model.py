from sqlalchemy import Column, DateTime, Integer, String

from memorykeeper.core.database import Base


class RateLimitCounter(Base):
    __tablename__ = "rate_limits"

    key = Column(String(255), primary_key=True) # "<route>:<subject>"
    window_start = Column(DateTime, nullable=False)
    count = Column(Integer, nullable=False, default=0)
