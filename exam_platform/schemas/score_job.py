from pydantic import BaseModel
from typing import Optional

from exam_platform.core.constants import ScoreJobStateEnum

class ScoreJob(BaseModel):
    job_id: str
    attempt_id: int
    state: ScoreJobStateEnum
    attempts_made: int = 0
    last_error: Optional[str] = None
    enqueued_at: Optional[float] = None

class JobHandle(BaseModel):
    job_id: str
    attempt_id: int
    state: ScoreJobStateEnum
    created: bool
