from datetime import datetime

from pydantic import BaseModel


class AdmissionResult(BaseModel):
    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime
