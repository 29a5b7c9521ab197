from sqlalchemy.orm import Session
from typing import List, Optional

from exam_platform.crud.base import CRUDBase
from exam_platform.models.student_answer import StudentAnswer
from exam_platform.schemas.student_answer import StudentAnswerCreate, StudentAnswerUpdate

class CRUDStudentAnswer(CRUDBase[StudentAnswer, StudentAnswerCreate, StudentAnswerUpdate]):

    def get_by_attempt_and_question(self, db: Session, exam_attempt_id: int,
                                    question_id: int) -> Optional[StudentAnswer]:
        return (
            db.query(StudentAnswer)
            .filter(StudentAnswer.exam_attempt_id == exam_attempt_id)
            .filter(StudentAnswer.question_id == question_id)
            .first()
        )

    def get_all_by_attempt(self, db: Session, exam_attempt_id: int) -> List[StudentAnswer]:
        return (
            db.query(StudentAnswer)
            .filter(StudentAnswer.exam_attempt_id == exam_attempt_id)
            .order_by(StudentAnswer.question_id)
            .all()
        )


student_answer = CRUDStudentAnswer(StudentAnswer)
