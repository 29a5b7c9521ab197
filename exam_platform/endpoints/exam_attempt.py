from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from exam_platform.schemas.exam_attempt import AttemptScore, ExamAttempt, LoadedAttempt, SubmitConfirmation
from exam_platform.schemas.response import APIResponse
from exam_platform.schemas.student_answer import AnswerPayload, SavedAnswer
from exam_platform.services.exam_attempt import exam_attempt_service
from exam_platform.services.submission import SubmissionCoordinator
from exam_platform.utils import deps

router = APIRouter()

# Plain def handlers: they block on row locks, so they run in the threadpool.

@router.post("/{exam_id}/attempts", response_model=APIResponse[ExamAttempt], status_code=status.HTTP_201_CREATED)
def start_attempt(
    *,
    db: Session = Depends(deps.get_db),
    exam_id: int,
    user_id: int = Depends(deps.get_current_user_id)
):
    attempt = exam_attempt_service.start_attempt(db, exam_id=exam_id, user_id=user_id)
    return APIResponse(message="Exam started", data=ExamAttempt.model_validate(attempt))


@router.get("/{exam_id}/attempt", response_model=APIResponse[LoadedAttempt])
def load_attempt(
    *,
    db: Session = Depends(deps.get_db),
    exam_id: int,
    user_id: int = Depends(deps.get_current_user_id),
    coordinator: SubmissionCoordinator = Depends(deps.get_submission_coordinator)
):
    loaded = exam_attempt_service.load_attempt(db, exam_id=exam_id, user_id=user_id, coordinator=coordinator)
    return APIResponse(message="Exam loaded", data=loaded)


@router.put("/attempts/{attempt_id}/answers/{question_id}", response_model=APIResponse[SavedAnswer])
def save_answer(
    *,
    db: Session = Depends(deps.get_db),
    attempt_id: int,
    question_id: int,
    payload: AnswerPayload,
    user_id: int = Depends(deps.get_current_user_id),
    coordinator: SubmissionCoordinator = Depends(deps.get_submission_coordinator)
):
    saved = exam_attempt_service.save_answer(
        db,
        attempt_id=attempt_id,
        question_id=question_id,
        payload=payload,
        user_id=user_id,
        coordinator=coordinator,
    )
    return APIResponse(message="Answer saved", data=saved)


@router.post("/{exam_id}/submit", response_model=APIResponse[SubmitConfirmation])
def submit_exam(
    *,
    db: Session = Depends(deps.get_db),
    exam_id: int,
    user_id: int = Depends(deps.get_current_user_id),
    coordinator: SubmissionCoordinator = Depends(deps.get_submission_coordinator)
):
    confirmation = exam_attempt_service.submit_exam(db, exam_id=exam_id, user_id=user_id, coordinator=coordinator)
    message = "Exam already submitted" if confirmation.already_submitted else "Exam submitted successfully"
    return APIResponse(message=message, data=confirmation)


@router.get("/attempts/{attempt_id}/score", response_model=APIResponse[AttemptScore])
def get_score(
    *,
    db: Session = Depends(deps.get_db),
    attempt_id: int,
    user_id: int = Depends(deps.get_current_user_id)
):
    score = exam_attempt_service.get_score(db, attempt_id=attempt_id, user_id=user_id)
    return APIResponse(message="Score retrieved", data=score)
