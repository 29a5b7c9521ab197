import logging
from datetime import datetime
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from exam_platform.core.constants import (
    ExamAttemptStatusEnum,
    ExamStateEnum,
    QuestionTypeEnum,
    ScoreStateEnum,
)
from exam_platform.core.exceptions import AlreadyTerminalError
from exam_platform.crud.exam import exam as crud_exam
from exam_platform.crud.exam_attempt import exam_attempt as crud_exam_attempt
from exam_platform.crud.student_answer import student_answer as crud_student_answer
from exam_platform.models.exam_attempt import ExamAttempt
from exam_platform.schemas.exam_attempt import (
    AttemptScore,
    ExamAttemptCreate,
    LoadedAttempt,
    SubmitConfirmation,
)
from exam_platform.schemas.question import PublicQuestion, QuestionSnapshot
from exam_platform.schemas.student_answer import AnswerPayload, SavedAnswer, StudentAnswerCreate
from exam_platform.services.submission import SubmissionCoordinator
from exam_platform.services.time_window import as_utc, is_expired, remaining_seconds, utcnow

logger = logging.getLogger(__name__)

TIME_OVER_DETAIL = "Time over. Exam auto-submitted."


class ExamAttemptService:

    def _get_exam_or_404(self, db: Session, exam_id: int):
        exam = crud_exam.get(db, id=exam_id)
        if not exam:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exam not found.")
        return exam

    def _require_ownership(self, attempt: ExamAttempt, user_id: int):
        if attempt.user_id != user_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You can only access your own exam attempts."
            )

    def _auto_submit_and_reject(self, db: Session, attempt_id: int, coordinator: SubmissionCoordinator):
        # Release our own read/lock before the coordinator takes the row lock.
        db.rollback()
        coordinator.submit(attempt_id, ExamAttemptStatusEnum.AUTO_SUBMITTED)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=TIME_OVER_DETAIL)

    def _validate_payload(self, question: QuestionSnapshot, payload: AnswerPayload):
        if question.question_type == QuestionTypeEnum.NUMERICAL:
            if payload.numerical_answer is None:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Numerical answer is required for this question."
                )
            return

        if payload.selected_option_ids is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="selected_option_ids is required for this question."
            )
        if question.question_type == QuestionTypeEnum.SINGLE_CORRECT and len(payload.selected_option_ids) > 1:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Only one option can be selected for a single-correct question."
            )
        valid_ids = {o.id for o in question.options}
        unknown = [i for i in payload.selected_option_ids if i not in valid_ids]
        if unknown:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Option id(s) {unknown} do not belong to question {question.id}."
            )

    def start_attempt(self, db: Session, exam_id: int, user_id: int, now: Optional[datetime] = None) -> ExamAttempt:
        now = as_utc(now) if now else utcnow()
        exam = self._get_exam_or_404(db, exam_id)

        if exam.state != ExamStateEnum.PUBLISHED:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Exam not available.")
        if now < as_utc(exam.start_time) or now > as_utc(exam.end_time):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Exam not active.")

        if crud_exam_attempt.get_by_user_and_exam(db, user_id=user_id, exam_id=exam_id):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Exam already started.")

        try:
            attempt = crud_exam_attempt.create(
                db, obj_in=ExamAttemptCreate(user_id=user_id, exam_id=exam_id, started_at=now)
            )
        except IntegrityError:
            # A concurrent start for the same (exam, user) won the unique constraint.
            db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Exam already started.")

        logger.info(f"User {user_id} started exam {exam_id} (attempt {attempt.id})")
        return attempt

    def load_attempt(self, db: Session, exam_id: int, user_id: int,
                     coordinator: SubmissionCoordinator, now: Optional[datetime] = None) -> LoadedAttempt:
        now = as_utc(now) if now else utcnow()
        attempt = crud_exam_attempt.get_by_user_and_exam(db, user_id=user_id, exam_id=exam_id)
        if not attempt or attempt.status != ExamAttemptStatusEnum.IN_PROGRESS:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No active attempt.")

        exam = self._get_exam_or_404(db, exam_id)
        if is_expired(exam, attempt, now):
            self._auto_submit_and_reject(db, attempt.id, coordinator)

        questions = crud_exam.get_questions_for_exam(db, exam_id=exam_id)
        answers = crud_student_answer.get_all_by_attempt(db, exam_attempt_id=attempt.id)
        return LoadedAttempt(
            attempt_id=attempt.id,
            exam_id=exam_id,
            remaining_seconds=remaining_seconds(exam, attempt, now),
            questions=[PublicQuestion.from_snapshot(q) for q in questions],
            saved_answers=[SavedAnswer.model_validate(a) for a in answers],
        )

    def save_answer(self, db: Session, attempt_id: int, question_id: int, payload: AnswerPayload,
                    user_id: int, coordinator: SubmissionCoordinator, now: Optional[datetime] = None) -> SavedAnswer:
        now = as_utc(now) if now else utcnow()
        attempt = crud_exam_attempt.lock_for_update(db, attempt_id, coordinator.lock_timeout_ms)
        if not attempt:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exam attempt not found.")
        self._require_ownership(attempt, user_id)

        if attempt.status != ExamAttemptStatusEnum.IN_PROGRESS:
            raise AlreadyTerminalError(
                f"Attempt {attempt_id} is {attempt.status.value}; answers can no longer be changed.",
                attempt_id=attempt_id,
            )

        exam = self._get_exam_or_404(db, attempt.exam_id)
        if is_expired(exam, attempt, now):
            self._auto_submit_and_reject(db, attempt_id, coordinator)

        placement = crud_exam.get_exam_question(db, exam_id=attempt.exam_id, question_id=question_id)
        if not placement:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Question not found in this exam.")
        question = crud_exam.to_snapshot(placement)
        self._validate_payload(question, payload)

        shape = {
            "selected_option_ids": payload.selected_option_ids,
            "numerical_answer": payload.numerical_answer,
        }
        existing = crud_student_answer.get_by_attempt_and_question(
            db, exam_attempt_id=attempt_id, question_id=question_id
        )
        if existing:
            answer = crud_student_answer.update(db, db_obj=existing, obj_in=shape, commit=False)
        else:
            answer = crud_student_answer.create(
                db,
                obj_in=StudentAnswerCreate(exam_attempt_id=attempt_id, question_id=question_id, **shape),
                commit=False,
            )
        db.commit()
        return SavedAnswer.model_validate(answer)

    def submit_exam(self, db: Session, exam_id: int, user_id: int,
                    coordinator: SubmissionCoordinator, now: Optional[datetime] = None) -> SubmitConfirmation:
        now = as_utc(now) if now else utcnow()
        attempt = crud_exam_attempt.get_by_user_and_exam(db, user_id=user_id, exam_id=exam_id)
        if not attempt:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No attempt found for this exam.")

        exam = self._get_exam_or_404(db, exam_id)
        submit_kind = ExamAttemptStatusEnum.SUBMITTED
        if is_expired(exam, attempt, now):
            submit_kind = ExamAttemptStatusEnum.AUTO_SUBMITTED
        attempt_id = attempt.id
        db.rollback()

        result = coordinator.submit(attempt_id, submit_kind)
        db.expire_all()
        refreshed = crud_exam_attempt.get(db, id=attempt_id)
        return SubmitConfirmation(
            attempt_id=attempt_id,
            status=result.status,
            already_submitted=result.already_submitted,
            score_pending=refreshed.score is None,
        )

    def get_score(self, db: Session, attempt_id: int, user_id: int) -> AttemptScore:
        attempt = crud_exam_attempt.get(db, id=attempt_id)
        if not attempt:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exam attempt not found.")
        self._require_ownership(attempt, user_id)

        if attempt.status == ExamAttemptStatusEnum.IN_PROGRESS:
            score_state = ScoreStateEnum.IN_PROGRESS
        elif attempt.score is None:
            score_state = ScoreStateEnum.PENDING
        else:
            score_state = ScoreStateEnum.SCORED

        return AttemptScore(
            attempt_id=attempt.id,
            status=attempt.status,
            score_state=score_state,
            score=attempt.score,
            submitted_at=attempt.submitted_at,
        )


exam_attempt_service = ExamAttemptService()
