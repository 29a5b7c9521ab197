"""IN_PROGRESS -> SUBMITTED | AUTO_SUBMITTED, exactly once per attempt.

Three actors race for the same transition: the student's submit, the
auto-submit sweeper and the deadline check made while answers are saved. All
of them call ``SubmissionCoordinator.submit``. The attempt row is locked for
the duration of the transaction and the write itself is a guarded update, so
the first committer wins and everybody else observes ``already_submitted``.

The score job is enqueued only after commit. A queue outage therefore never
undoes a submission; the sweeper's reconcile pass re-enqueues later.
"""
import logging
from typing import Callable, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from exam_platform.core.constants import ExamAttemptStatusEnum, TERMINAL_ATTEMPT_STATUSES
from exam_platform.core.exceptions import ContentionError, NotFoundError, TransientInfraError
from exam_platform.core.queue import ScoreJobQueue
from exam_platform.crud.exam_attempt import exam_attempt as crud_exam_attempt
from exam_platform.schemas.exam_attempt import SubmitResult
from exam_platform.services.time_window import utcnow

logger = logging.getLogger(__name__)


class SubmissionCoordinator:

    def __init__(
        self,
        session_factory: Callable[[], Session],
        score_queue: ScoreJobQueue,
        lock_timeout_ms: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.score_queue = score_queue
        self.lock_timeout_ms = lock_timeout_ms

    def submit(self, attempt_id: int, submit_kind: ExamAttemptStatusEnum) -> SubmitResult:
        if submit_kind not in TERMINAL_ATTEMPT_STATUSES:
            raise ValueError(f"submit_kind must be a terminal status, got {submit_kind}")

        db = self.session_factory()
        try:
            attempt = crud_exam_attempt.lock_for_update(db, attempt_id, self.lock_timeout_ms)
            if attempt is None:
                raise NotFoundError(f"Exam attempt {attempt_id} not found", attempt_id=attempt_id)

            if attempt.status != ExamAttemptStatusEnum.IN_PROGRESS:
                current_status = attempt.status
                db.rollback()
                logger.info(f"Attempt {attempt_id} already {current_status.value}; {submit_kind.value} is a no-op")
                return SubmitResult(attempt_id=attempt_id, status=current_status, already_submitted=True)

            if not crud_exam_attempt.mark_terminal(db, attempt_id, submit_kind, utcnow()):
                db.rollback()
                db.expire_all()
                current = crud_exam_attempt.get(db, attempt_id)
                logger.info(f"Attempt {attempt_id} was closed concurrently; {submit_kind.value} is a no-op")
                return SubmitResult(attempt_id=attempt_id, status=current.status, already_submitted=True)

            try:
                db.commit()
            except OperationalError as e:
                raise ContentionError(f"Could not commit submission of attempt {attempt_id}: {e.orig}",
                                      attempt_id=attempt_id) from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(f"Attempt {attempt_id} moved to {submit_kind.value}")
        return SubmitResult(
            attempt_id=attempt_id,
            status=submit_kind,
            already_submitted=False,
            score_job_id=self._enqueue_score_job(attempt_id),
        )

    def _enqueue_score_job(self, attempt_id: int) -> Optional[str]:
        try:
            return self.score_queue.enqueue(attempt_id).job_id
        except TransientInfraError as e:
            logger.warning(f"Attempt {attempt_id} submitted but score job was not enqueued: {e}")
            return None
