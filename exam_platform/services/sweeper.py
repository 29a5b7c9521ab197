import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from exam_platform.core.constants import ExamAttemptStatusEnum
from exam_platform.core.queue import ScoreJobQueue
from exam_platform.crud.exam_attempt import exam_attempt as crud_exam_attempt
from exam_platform.services.submission import SubmissionCoordinator
from exam_platform.services.time_window import as_utc, hard_end_time, utcnow

logger = logging.getLogger(__name__)


class SweepReport(BaseModel):
    checked: int = 0
    auto_submitted: int = 0
    already_submitted: int = 0
    failed: int = 0
    requeued: int = 0
    recovered: int = 0


class AutoSubmitSweeper:
    """Closes every attempt whose hard end time has passed and re-enqueues
    scoring for terminal attempts that never got a score. Score jobs held past
    the queue's visibility timeout are handed back to waiting.

    Each attempt is handled on its own: a failure is logged and the sweep moves
    on. Overlapping sweeps are harmless because the coordinator turns a second
    submit into a no-op.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        coordinator: SubmissionCoordinator,
        score_queue: ScoreJobQueue,
        reconcile_after_seconds: int = 300,
    ):
        self.session_factory = session_factory
        self.coordinator = coordinator
        self.score_queue = score_queue
        self.reconcile_after = timedelta(seconds=reconcile_after_seconds)

    def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        now = as_utc(now) if now else utcnow()
        report = SweepReport()
        self._auto_submit_overdue(now, report)
        self._requeue_unscored(now, report)
        self._recover_expired_jobs(report)
        if report.auto_submitted or report.failed or report.requeued or report.recovered:
            logger.info(
                f"Auto-submit sweep: checked={report.checked} auto_submitted={report.auto_submitted} "
                f"already_submitted={report.already_submitted} failed={report.failed} requeued={report.requeued} "
                f"recovered={report.recovered}"
            )
        return report

    def _auto_submit_overdue(self, now: datetime, report: SweepReport):
        db = self.session_factory()
        try:
            in_progress = crud_exam_attempt.get_in_progress_with_exam(db)
            report.checked = len(in_progress)
            overdue = [a.id for a in in_progress if now > hard_end_time(a.exam, a)]
        finally:
            db.close()

        for attempt_id in overdue:
            try:
                result = self.coordinator.submit(attempt_id, ExamAttemptStatusEnum.AUTO_SUBMITTED)
            except Exception as e:
                report.failed += 1
                logger.error(f"Failed to auto-submit attempt {attempt_id}: {e}", exc_info=True)
                continue
            if result.already_submitted:
                report.already_submitted += 1
            else:
                report.auto_submitted += 1
                logger.info(f"Auto-submitted attempt {attempt_id}")

    def _requeue_unscored(self, now: datetime, report: SweepReport):
        db = self.session_factory()
        try:
            unscored = [a.id for a in crud_exam_attempt.get_unscored_terminal(db, submitted_before=now - self.reconcile_after)]
        finally:
            db.close()

        for attempt_id in unscored:
            try:
                handle = self.score_queue.enqueue(attempt_id)
            except Exception as e:
                report.failed += 1
                logger.error(f"Failed to re-enqueue score job for attempt {attempt_id}: {e}", exc_info=True)
                continue
            if handle.created:
                report.requeued += 1

    def _recover_expired_jobs(self, report: SweepReport):
        try:
            report.recovered = self.score_queue.recover_expired()
        except Exception as e:
            report.failed += 1
            logger.error(f"Failed to recover expired score jobs: {e}", exc_info=True)
