from pydantic import BaseModel, ConfigDict, model_validator
from typing import Optional, List

from exam_platform.core.constants import QuestionTypeEnum

class OptionSnapshot(BaseModel):
    id: int
    text: str
    is_correct: bool = False

class QuestionSnapshot(BaseModel):
    """Read-only view of a question as placed in one exam, marks included."""
    id: int
    statement: str
    question_type: QuestionTypeEnum
    marks: float
    negative_marks: float = 0.0
    options: List[OptionSnapshot] = []
    numerical_value: Optional[float] = None
    numerical_tolerance: float = 0.0

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_shape(self):
        if self.question_type == QuestionTypeEnum.NUMERICAL and self.numerical_value is None:
            raise ValueError(f"Numerical question {self.id} has no target value")
        if self.marks < 0 or self.negative_marks < 0 or self.numerical_tolerance < 0:
            raise ValueError(f"Question {self.id} has negative marks or tolerance")
        return self

    @property
    def correct_option_ids(self) -> frozenset:
        return frozenset(o.id for o in self.options if o.is_correct)

class PublicOption(BaseModel):
    id: int
    text: str

    model_config = ConfigDict(from_attributes=True)

class PublicQuestion(BaseModel):
    """Question as shown to a student during an attempt; no correctness data."""
    id: int
    statement: str
    question_type: QuestionTypeEnum
    marks: float
    negative_marks: float
    options: List[PublicOption] = []

    @classmethod
    def from_snapshot(cls, snapshot: QuestionSnapshot) -> "PublicQuestion":
        return cls(
            id=snapshot.id,
            statement=snapshot.statement,
            question_type=snapshot.question_type,
            marks=snapshot.marks,
            negative_marks=snapshot.negative_marks,
            options=[PublicOption(id=o.id, text=o.text) for o in snapshot.options],
        )
