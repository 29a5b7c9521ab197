from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from typing import Optional, List

class AnswerPayload(BaseModel):
    """Exactly one of the two shapes; an empty selection means unattempted."""
    selected_option_ids: Optional[List[int]] = None
    numerical_answer: Optional[float] = None

    @field_validator("selected_option_ids")
    @classmethod
    def _dedupe(cls, value):
        if value is None:
            return value
        return sorted(set(value))

    @model_validator(mode="after")
    def _one_shape(self):
        if (self.selected_option_ids is None) == (self.numerical_answer is None):
            raise ValueError("Provide exactly one of selected_option_ids or numerical_answer")
        return self

class StudentAnswerBase(BaseModel):
    exam_attempt_id: int
    question_id: int
    selected_option_ids: Optional[List[int]] = None
    numerical_answer: Optional[float] = None

class StudentAnswerCreate(StudentAnswerBase):
    pass

class StudentAnswerUpdate(BaseModel):
    selected_option_ids: Optional[List[int]] = None
    numerical_answer: Optional[float] = None

class SavedAnswer(BaseModel):
    question_id: int
    selected_option_ids: Optional[List[int]] = None
    numerical_answer: Optional[float] = None

    model_config = ConfigDict(from_attributes=True)
