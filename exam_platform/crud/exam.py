from pydantic import BaseModel
from sqlalchemy.orm import Session, selectinload
from typing import List, Optional

from exam_platform.crud.base import CRUDBase
from exam_platform.models.exam import Exam, ExamQuestion
from exam_platform.models.question import Question
from exam_platform.schemas.question import OptionSnapshot, QuestionSnapshot

class CRUDExam(CRUDBase[Exam, BaseModel, BaseModel]):
    """Read side of the exam catalogue; authoring lives elsewhere."""

    def get_exam_question(self, db: Session, exam_id: int, question_id: int) -> Optional[ExamQuestion]:
        return (
            db.query(ExamQuestion)
            .filter(ExamQuestion.exam_id == exam_id)
            .filter(ExamQuestion.question_id == question_id)
            .first()
        )

    def get_questions_for_exam(self, db: Session, exam_id: int) -> List[QuestionSnapshot]:
        placements = (
            db.query(ExamQuestion)
            .options(
                selectinload(ExamQuestion.question).selectinload(Question.options),
                selectinload(ExamQuestion.question).selectinload(Question.numerical_answer),
            )
            .filter(ExamQuestion.exam_id == exam_id)
            .order_by(ExamQuestion.question_order)
            .all()
        )
        return [self.to_snapshot(p) for p in placements]

    @staticmethod
    def to_snapshot(placement: ExamQuestion) -> QuestionSnapshot:
        question = placement.question
        numerical = question.numerical_answer
        marks = placement.marks
        if marks is None:
            marks = question.marks
        negative_marks = placement.negative_marks
        if negative_marks is None:
            negative_marks = question.negative_marks or 0.0
        return QuestionSnapshot(
            id=question.id,
            statement=question.statement,
            question_type=question.question_type,
            marks=marks,
            negative_marks=negative_marks,
            options=[OptionSnapshot(id=o.id, text=o.text, is_correct=o.is_correct) for o in question.options],
            numerical_value=numerical.value if numerical else None,
            numerical_tolerance=numerical.tolerance if numerical else 0.0,
        )


exam = CRUDExam(Exam)
