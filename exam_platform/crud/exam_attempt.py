from datetime import datetime
from typing import List, Optional

from sqlalchemy import text, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, selectinload

from exam_platform.core.constants import ExamAttemptStatusEnum
from exam_platform.core.exceptions import ContentionError
from exam_platform.crud.base import CRUDBase
from exam_platform.models.exam_attempt import ExamAttempt
from exam_platform.schemas.exam_attempt import ExamAttemptCreate

class CRUDExamAttempt(CRUDBase[ExamAttempt, ExamAttemptCreate, ExamAttemptCreate]):

    def lock_for_update(self, db: Session, id: int, lock_timeout_ms: Optional[int] = None) -> Optional[ExamAttempt]:
        """SELECT ... FOR UPDATE on one attempt row inside the caller's transaction.

        On PostgreSQL the wait is bounded by a transaction-local lock_timeout;
        running out of it raises ContentionError instead of hanging.
        """
        try:
            if lock_timeout_ms and db.get_bind().dialect.name == "postgresql":
                db.execute(text(f"SET LOCAL lock_timeout = {int(lock_timeout_ms)}"))
            return (
                db.query(ExamAttempt)
                .filter(ExamAttempt.id == id)
                .populate_existing()
                .with_for_update()
                .first()
            )
        except OperationalError as e:
            raise ContentionError(f"Could not lock attempt {id}: {e.orig}", attempt_id=id) from e

    def mark_terminal(self, db: Session, id: int, status: ExamAttemptStatusEnum, submitted_at: datetime) -> bool:
        """Compare-and-set IN_PROGRESS -> status. False means another actor already moved it."""
        try:
            result = db.execute(
                update(ExamAttempt)
                .where(ExamAttempt.id == id, ExamAttempt.status == ExamAttemptStatusEnum.IN_PROGRESS)
                .values(status=status, submitted_at=submitted_at)
                .execution_options(synchronize_session=False)
            )
        except OperationalError as e:
            raise ContentionError(f"Could not update attempt {id}: {e.orig}", attempt_id=id) from e
        return result.rowcount == 1

    def set_score(self, db: Session, id: int, score: float) -> bool:
        try:
            result = db.execute(
                update(ExamAttempt)
                .where(
                    ExamAttempt.id == id,
                    ExamAttempt.score.is_(None),
                    ExamAttempt.status != ExamAttemptStatusEnum.IN_PROGRESS,
                )
                .values(score=score)
                .execution_options(synchronize_session=False)
            )
        except OperationalError as e:
            raise ContentionError(f"Could not store score for attempt {id}: {e.orig}", attempt_id=id) from e
        return result.rowcount == 1

    def get_by_user_and_exam(self, db: Session, user_id: int, exam_id: int) -> Optional[ExamAttempt]:
        return (
            db.query(ExamAttempt)
            .filter(ExamAttempt.user_id == user_id)
            .filter(ExamAttempt.exam_id == exam_id)
            .first()
        )

    def get_in_progress_with_exam(self, db: Session) -> List[ExamAttempt]:
        return (
            db.query(ExamAttempt)
            .options(selectinload(ExamAttempt.exam))
            .filter(ExamAttempt.status == ExamAttemptStatusEnum.IN_PROGRESS)
            .order_by(ExamAttempt.started_at)
            .all()
        )

    def get_unscored_terminal(self, db: Session, submitted_before: datetime) -> List[ExamAttempt]:
        return (
            db.query(ExamAttempt)
            .filter(
                ExamAttempt.status != ExamAttemptStatusEnum.IN_PROGRESS,
                ExamAttempt.score.is_(None),
                ExamAttempt.submitted_at < submitted_before,
            )
            .order_by(ExamAttempt.submitted_at)
            .all()
        )


exam_attempt = CRUDExamAttempt(ExamAttempt)
