from pydantic import BaseModel, ConfigDict
from typing import Optional, List
from datetime import datetime

from exam_platform.core.constants import ExamAttemptStatusEnum, ScoreStateEnum
from exam_platform.schemas.question import PublicQuestion
from exam_platform.schemas.student_answer import SavedAnswer

class ExamAttemptBase(BaseModel):
    user_id: int
    exam_id: int
    started_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    status: ExamAttemptStatusEnum = ExamAttemptStatusEnum.IN_PROGRESS
    score: Optional[float] = None

class ExamAttemptCreate(BaseModel):
    user_id: int
    exam_id: int
    started_at: datetime

class ExamAttempt(ExamAttemptBase):
    id: int

    model_config = ConfigDict(from_attributes=True)

class LoadedAttempt(BaseModel):
    attempt_id: int
    exam_id: int
    remaining_seconds: int
    questions: List[PublicQuestion]
    saved_answers: List[SavedAnswer]

class SubmitResult(BaseModel):
    attempt_id: int
    status: ExamAttemptStatusEnum
    already_submitted: bool
    score_job_id: Optional[str] = None

class SubmitConfirmation(BaseModel):
    attempt_id: int
    status: ExamAttemptStatusEnum
    already_submitted: bool
    score_pending: bool

class AttemptScore(BaseModel):
    attempt_id: int
    status: ExamAttemptStatusEnum
    score_state: ScoreStateEnum
    score: Optional[float] = None
    submitted_at: Optional[datetime] = None
