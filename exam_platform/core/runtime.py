import logging
import os
from typing import Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.orm import Session

from exam_platform.core.queue import ScoreJobQueue, create_score_queue
from exam_platform.core.scheduler import start_scheduler, stop_scheduler
from exam_platform.services.score_worker import ScoreWorkerPool
from exam_platform.services.submission import SubmissionCoordinator
from exam_platform.services.sweeper import AutoSubmitSweeper

logger = logging.getLogger(__name__)


class ExamRuntime:
    """Owns the score queue, worker pool, coordinator, sweeper and scheduler.

    Built once per process at startup and torn down at shutdown; components
    receive their collaborators here instead of reaching for globals.
    """

    def __init__(self, settings, session_factory: Callable[[], Session], score_queue: ScoreJobQueue = None):
        self.settings = settings
        self.score_queue = score_queue or create_score_queue(settings)
        self.coordinator = SubmissionCoordinator(
            session_factory,
            self.score_queue,
            lock_timeout_ms=settings.ATTEMPT_LOCK_TIMEOUT_MS,
        )
        self.worker_pool = ScoreWorkerPool(
            self.score_queue,
            session_factory,
            concurrency=settings.SCORE_WORKER_CONCURRENCY,
            lock_timeout_ms=settings.ATTEMPT_LOCK_TIMEOUT_MS,
        )
        self.sweeper = AutoSubmitSweeper(
            session_factory,
            self.coordinator,
            self.score_queue,
            reconcile_after_seconds=settings.SCORE_RECONCILE_AFTER_SECONDS,
        )
        self.scheduler = AsyncIOScheduler()

    def start(self):
        if os.getenv("TESTING") == "true":
            logger.info("Score worker pool disabled in test environment")
        else:
            self.worker_pool.start()
        start_scheduler(self.scheduler, self.sweeper, self.settings.AUTO_SUBMIT_INTERVAL_SECONDS)

    def shutdown(self):
        stop_scheduler(self.scheduler)
        if self.worker_pool.running:
            self.worker_pool.stop(wait=True)
        self.score_queue.close()
