from pydantic import BaseModel
from typing import Dict, FrozenSet, Optional

class AnswerSnapshot(BaseModel):
    question_id: int
    selected_option_ids: Optional[FrozenSet[int]] = None
    numerical_answer: Optional[float] = None

class ScoreResult(BaseModel):
    per_question_marks: Dict[int, float]
    total: float

class ScoreJobResult(BaseModel):
    attempt_id: int
    score: Optional[float] = None
    already_scored: bool = False
