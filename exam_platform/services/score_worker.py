"""Consumes score jobs: lock the attempt, mark it, persist, exactly once in effect.

Delivery is at-least-once, so ``score_attempt`` short-circuits when the
attempt already carries a score; a duplicate delivery or a retry racing a
successful run then commits nothing.
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from sqlalchemy.orm import Session

from exam_platform.core.constants import ExamAttemptStatusEnum
from exam_platform.core.exceptions import (
    ExamPlatformError,
    InvalidAttemptStateError,
    NotFoundError,
    TransientInfraError,
)
from exam_platform.core.queue import ScoreJobQueue
from exam_platform.crud.exam import exam as crud_exam
from exam_platform.crud.exam_attempt import exam_attempt as crud_exam_attempt
from exam_platform.crud.student_answer import student_answer as crud_student_answer
from exam_platform.schemas.score_job import ScoreJob
from exam_platform.schemas.scoring import AnswerSnapshot, ScoreJobResult
from exam_platform.services import scoring

logger = logging.getLogger(__name__)


def score_attempt(db: Session, attempt_id: int, lock_timeout_ms: Optional[int] = None) -> ScoreJobResult:
    """Score one attempt inside a single transaction. Commits or rolls back ``db``."""
    try:
        attempt = crud_exam_attempt.lock_for_update(db, attempt_id, lock_timeout_ms)
        if attempt is None:
            raise NotFoundError(f"Exam attempt {attempt_id} not found", attempt_id=attempt_id)

        if attempt.score is not None:
            existing = attempt.score
            db.rollback()
            logger.info(f"Score already calculated for attempt {attempt_id}")
            return ScoreJobResult(attempt_id=attempt_id, score=existing, already_scored=True)

        if attempt.status == ExamAttemptStatusEnum.IN_PROGRESS:
            raise InvalidAttemptStateError(
                f"Attempt {attempt_id} is still in progress and cannot be scored", attempt_id=attempt_id
            )

        questions = crud_exam.get_questions_for_exam(db, exam_id=attempt.exam_id)
        answers = crud_student_answer.get_all_by_attempt(db, exam_attempt_id=attempt_id)
        result = scoring.score(
            questions,
            [
                AnswerSnapshot(
                    question_id=a.question_id,
                    selected_option_ids=frozenset(a.selected_option_ids) if a.selected_option_ids is not None else None,
                    numerical_answer=a.numerical_answer,
                )
                for a in answers
            ],
        )

        for answer in answers:
            answer.marks_obtained = result.per_question_marks[answer.question_id]
        db.flush()

        if not crud_exam_attempt.set_score(db, attempt_id, result.total):
            db.rollback()
            logger.info(f"Attempt {attempt_id} was scored concurrently; discarding duplicate result")
            return ScoreJobResult(attempt_id=attempt_id, already_scored=True)

        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Score calculated for attempt {attempt_id}: {result.total}")
    return ScoreJobResult(attempt_id=attempt_id, score=result.total)


def is_retryable(error: Exception) -> bool:
    if isinstance(error, ExamPlatformError):
        return error.retryable
    # Database hiccups and anything unforeseen get the bounded retry budget
    return True


class ScoreWorkerPool:
    """Fixed-size pool of score workers fed by a single dispatcher thread.

    The dispatcher claims a job only when a worker slot is free, so at most
    ``concurrency`` jobs are in flight. ``stop`` stops claiming and waits for
    the in-flight jobs to finish.
    """

    def __init__(
        self,
        queue: ScoreJobQueue,
        session_factory: Callable[[], Session],
        concurrency: int = 3,
        poll_timeout: float = 1.0,
        lock_timeout_ms: Optional[int] = None,
    ):
        self.queue = queue
        self.session_factory = session_factory
        self.concurrency = concurrency
        self.poll_timeout = poll_timeout
        self.lock_timeout_ms = lock_timeout_ms
        self._slots = threading.BoundedSemaphore(concurrency)
        self._stopping = threading.Event()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._dispatcher: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._dispatcher is not None and self._dispatcher.is_alive()

    def start(self):
        if self.running:
            return
        self.queue.recover_stalled()
        self._stopping.clear()
        self._executor = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="score-worker")
        self._dispatcher = threading.Thread(target=self._dispatch_loop, name="score-dispatcher", daemon=True)
        self._dispatcher.start()
        logger.info(f"Score worker pool started with concurrency {self.concurrency}")

    def stop(self, wait: bool = True):
        self._stopping.set()
        if self._dispatcher is not None:
            self._dispatcher.join()
            self._dispatcher = None
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
        logger.info("Score worker pool stopped")

    def submit(self, job: ScoreJob) -> Future:
        if self._executor is None:
            raise RuntimeError("Score worker pool is not running")
        return self._executor.submit(self.run_job, job)

    def _dispatch_loop(self):
        while not self._stopping.is_set():
            if not self._slots.acquire(timeout=self.poll_timeout):
                continue
            try:
                job = self.queue.claim(timeout=self.poll_timeout)
            except TransientInfraError as e:
                self._slots.release()
                logger.warning(f"Score queue unavailable, backing off: {e}")
                self._stopping.wait(self.poll_timeout)
                continue
            if job is None:
                self._slots.release()
                continue
            future = self.submit(job)
            future.add_done_callback(self._job_done)

    def _job_done(self, future: Future):
        self._slots.release()
        error = future.exception()
        if error is not None:
            logger.error(f"Score worker crashed: {error}", exc_info=error)

    def process_next(self, timeout: float = 0) -> Optional[ScoreJobResult]:
        """Claim one job and run it on the calling thread."""
        job = self.queue.claim(timeout=timeout)
        if job is None:
            return None
        return self.run_job(job)

    def run_job(self, job: ScoreJob) -> Optional[ScoreJobResult]:
        db = self.session_factory()
        try:
            result = score_attempt(db, job.attempt_id, self.lock_timeout_ms)
        except Exception as e:
            self._handle_failure(job, e)
            return None
        finally:
            db.close()

        try:
            self.queue.ack(job)
        except TransientInfraError as e:
            # The score is committed; the job is redelivered after the visibility timeout and short-circuits.
            logger.error(f"Could not ack score job {job.job_id}: {e}")
        logger.info(f"Score job {job.job_id} completed for attempt {result.attempt_id} with score {result.score}")
        return result

    def _handle_failure(self, job: ScoreJob, error: Exception):
        try:
            self.queue.retry_or_fail(job, error, retryable=is_retryable(error))
        except TransientInfraError as e:
            # The job stays active until the sweeper recovers it after the visibility timeout.
            logger.error(f"Could not record failure of score job {job.job_id}: {e}")
