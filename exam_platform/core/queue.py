"""Durable at-least-once job queue for score calculation.

Two backends share one contract: ``RedisQueueBackend`` for deployments and
``MemoryQueueBackend`` for a single process (development, tests). The job id
is the attempt id, so enqueueing an attempt that already has a live or failed
job hands back the existing job instead of creating a second one. Completed
jobs are removed; failed jobs are kept until an operator retries them.

A claimed job that is neither acked, retried nor failed within the visibility
timeout (crashed worker, lost bookkeeping write) is moved back to waiting by
``recover_stalled``. Scoring is idempotent, so a second delivery is harmless.
"""
import json
import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Tuple

import redis
from redis.exceptions import RedisError

from exam_platform.core.constants import ScoreJobStateEnum
from exam_platform.core.exceptions import PermanentScoringError, TransientInfraError
from exam_platform.schemas.score_job import JobHandle, ScoreJob

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class QueueBackend(ABC):
    @abstractmethod
    def enqueue(self, job_id: str, attempt_id: int) -> Tuple[ScoreJob, bool]:
        """Returns the job and whether it was newly created."""

    @abstractmethod
    def claim(self, timeout: float) -> Optional[ScoreJob]:
        pass

    @abstractmethod
    def ack(self, job: ScoreJob) -> None:
        pass

    @abstractmethod
    def retry(self, job: ScoreJob, error: str, delay: float) -> None:
        pass

    @abstractmethod
    def fail(self, job: ScoreJob, error: str) -> None:
        pass

    @abstractmethod
    def recover_stalled(self, older_than: Optional[float] = None) -> int:
        """Move active jobs back to waiting; only those claimed more than
        ``older_than`` seconds ago when it is given."""

    @abstractmethod
    def failed_jobs(self) -> List[ScoreJob]:
        pass

    @abstractmethod
    def retry_failed(self, job_id: str) -> bool:
        pass

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[ScoreJob]:
        pass

    def close(self) -> None:
        pass


class MemoryQueueBackend(QueueBackend):
    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._jobs: Dict[str, ScoreJob] = {}
        self._waiting: Deque[str] = deque()
        self._active: Dict[str, float] = {}
        self._delayed: Dict[str, float] = {}
        self._failed: Dict[str, float] = {}
        self._cond = threading.Condition()

    def _promote_due(self):
        now = self._clock()
        for job_id, ready_at in sorted(self._delayed.items(), key=lambda item: item[1]):
            if ready_at <= now:
                del self._delayed[job_id]
                self._jobs[job_id].state = ScoreJobStateEnum.WAITING
                self._waiting.append(job_id)

    def enqueue(self, job_id: str, attempt_id: int) -> Tuple[ScoreJob, bool]:
        with self._cond:
            existing = self._jobs.get(job_id)
            if existing:
                return existing.model_copy(), False
            job = ScoreJob(
                job_id=job_id,
                attempt_id=attempt_id,
                state=ScoreJobStateEnum.WAITING,
                enqueued_at=self._clock(),
            )
            self._jobs[job_id] = job
            self._waiting.append(job_id)
            self._cond.notify()
            return job.model_copy(), True

    def claim(self, timeout: float) -> Optional[ScoreJob]:
        deadline = time.monotonic() + max(timeout, 0)
        with self._cond:
            while True:
                self._promote_due()
                if self._waiting:
                    job_id = self._waiting.popleft()
                    self._active[job_id] = self._clock()
                    job = self._jobs[job_id]
                    job.state = ScoreJobStateEnum.ACTIVE
                    return job.model_copy()
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                # Delayed jobs become due without a notify, so wake up periodically.
                self._cond.wait(min(remaining, 0.05))

    def ack(self, job: ScoreJob) -> None:
        with self._cond:
            # A job recovered to waiting after its visibility timeout is left for redelivery.
            if self._active.pop(job.job_id, None) is not None:
                self._jobs.pop(job.job_id, None)

    def _settle(self, job: ScoreJob, state: ScoreJobStateEnum, error: str) -> Optional[ScoreJob]:
        if self._active.pop(job.job_id, None) is None:
            return None
        stored = self._jobs[job.job_id]
        stored.state = state
        stored.attempts_made = job.attempts_made
        stored.last_error = error
        return stored

    def retry(self, job: ScoreJob, error: str, delay: float) -> None:
        with self._cond:
            if self._settle(job, ScoreJobStateEnum.DELAYED, error):
                self._delayed[job.job_id] = self._clock() + delay
                self._cond.notify()

    def fail(self, job: ScoreJob, error: str) -> None:
        with self._cond:
            if self._settle(job, ScoreJobStateEnum.FAILED, error):
                self._failed[job.job_id] = self._clock()

    def recover_stalled(self, older_than: Optional[float] = None) -> int:
        with self._cond:
            cutoff = None if older_than is None else self._clock() - older_than
            stalled = [
                job_id for job_id, claimed_at in self._active.items()
                if cutoff is None or claimed_at <= cutoff
            ]
            for job_id in stalled:
                del self._active[job_id]
                self._jobs[job_id].state = ScoreJobStateEnum.WAITING
                self._waiting.append(job_id)
            if stalled:
                self._cond.notify_all()
            return len(stalled)

    def failed_jobs(self) -> List[ScoreJob]:
        with self._cond:
            ordered = sorted(self._failed.items(), key=lambda item: item[1])
            return [self._jobs[job_id].model_copy() for job_id, _ in ordered]

    def retry_failed(self, job_id: str) -> bool:
        with self._cond:
            if self._failed.pop(job_id, None) is None:
                return False
            job = self._jobs[job_id]
            job.state = ScoreJobStateEnum.WAITING
            job.attempts_made = 0
            self._waiting.append(job_id)
            self._cond.notify()
            return True

    def get_job(self, job_id: str) -> Optional[ScoreJob]:
        with self._cond:
            job = self._jobs.get(job_id)
            return job.model_copy() if job else None


class RedisQueueBackend(QueueBackend):
    """Reliable-list queue: BRPOPLPUSH moves a job into the active list, so a
    crashed worker leaves it there for ``recover_stalled`` instead of losing it.
    """

    def __init__(self, redis_url: str, name: str, clock: Clock = time.time, client=None):
        self.r = client or redis.from_url(redis_url, decode_responses=True)
        self._clock = clock
        self.waiting = f"{name}:waiting"
        self.active = f"{name}:active"
        self.delayed = f"{name}:delayed"
        self.failed = f"{name}:failed"
        self._job_prefix = f"{name}:job:"

    def _job_key(self, job_id: str) -> str:
        return f"{self._job_prefix}{job_id}"

    def _load(self, job_id: str) -> Optional[ScoreJob]:
        raw = self.r.hgetall(self._job_key(job_id))
        if not raw:
            return None
        data = json.loads(raw.get("data") or "{}")
        return ScoreJob(
            job_id=job_id,
            attempt_id=int(data.get("attempt_id", job_id)),
            state=ScoreJobStateEnum(raw.get("state", ScoreJobStateEnum.WAITING.value)),
            attempts_made=int(raw.get("attempts_made") or 0),
            last_error=raw.get("last_error") or None,
            enqueued_at=float(raw["enqueued_at"]) if raw.get("enqueued_at") else None,
        )

    def _promote_due(self):
        for job_id in self.r.zrangebyscore(self.delayed, "-inf", self._clock()):
            # zrem decides which consumer moves the job when several race here
            if self.r.zrem(self.delayed, job_id):
                pipe = self.r.pipeline()
                pipe.hset(self._job_key(job_id), "state", ScoreJobStateEnum.WAITING.value)
                pipe.lpush(self.waiting, job_id)
                pipe.execute()

    def enqueue(self, job_id: str, attempt_id: int) -> Tuple[ScoreJob, bool]:
        key = self._job_key(job_id)
        try:
            if not self.r.hsetnx(key, "state", ScoreJobStateEnum.WAITING.value):
                existing = self._load(job_id)
                if existing:
                    return existing, False
            now = self._clock()
            pipe = self.r.pipeline()
            pipe.hset(key, mapping={
                "data": json.dumps({"attempt_id": attempt_id}),
                "attempts_made": 0,
                "enqueued_at": now,
                "last_error": "",
            })
            pipe.lpush(self.waiting, job_id)
            pipe.execute()
        except RedisError as e:
            raise TransientInfraError(f"Failed to enqueue job {job_id}: {e}", attempt_id=attempt_id) from e
        return ScoreJob(job_id=job_id, attempt_id=attempt_id, state=ScoreJobStateEnum.WAITING, enqueued_at=now), True

    def claim(self, timeout: float) -> Optional[ScoreJob]:
        try:
            self._promote_due()
            if timeout <= 0:
                job_id = self.r.rpoplpush(self.waiting, self.active)
            else:
                # BRPOPLPUSH treats 0 as "block forever"; keep the wait bounded
                job_id = self.r.brpoplpush(self.waiting, self.active, timeout=max(1, math.ceil(timeout)))
            if job_id is None:
                return None
            self.r.hset(self._job_key(job_id), mapping={
                "state": ScoreJobStateEnum.ACTIVE.value,
                "claimed_at": self._clock(),
            })
            return self._load(job_id)
        except RedisError as e:
            raise TransientInfraError(f"Failed to claim score job: {e}") from e

    def ack(self, job: ScoreJob) -> None:
        try:
            # Only the holder of the active entry deletes the job; a recovered job stays queued.
            if self.r.lrem(self.active, 1, job.job_id):
                self.r.delete(self._job_key(job.job_id))
        except RedisError as e:
            raise TransientInfraError(f"Failed to ack job {job.job_id}: {e}", attempt_id=job.attempt_id) from e

    def retry(self, job: ScoreJob, error: str, delay: float) -> None:
        try:
            if not self.r.lrem(self.active, 1, job.job_id):
                return
            pipe = self.r.pipeline()
            pipe.hset(self._job_key(job.job_id), mapping={
                "state": ScoreJobStateEnum.DELAYED.value,
                "attempts_made": job.attempts_made,
                "last_error": error,
            })
            pipe.hdel(self._job_key(job.job_id), "claimed_at")
            pipe.zadd(self.delayed, {job.job_id: self._clock() + delay})
            pipe.execute()
        except RedisError as e:
            raise TransientInfraError(f"Failed to reschedule job {job.job_id}: {e}", attempt_id=job.attempt_id) from e

    def fail(self, job: ScoreJob, error: str) -> None:
        try:
            if not self.r.lrem(self.active, 1, job.job_id):
                return
            pipe = self.r.pipeline()
            pipe.hset(self._job_key(job.job_id), mapping={
                "state": ScoreJobStateEnum.FAILED.value,
                "attempts_made": job.attempts_made,
                "last_error": error,
            })
            pipe.hdel(self._job_key(job.job_id), "claimed_at")
            pipe.zadd(self.failed, {job.job_id: self._clock()})
            pipe.execute()
        except RedisError as e:
            raise TransientInfraError(f"Failed to mark job {job.job_id} failed: {e}", attempt_id=job.attempt_id) from e

    def _requeue_active(self, job_id: str) -> bool:
        if not self.r.lrem(self.active, 1, job_id):
            return False
        pipe = self.r.pipeline()
        pipe.hset(self._job_key(job_id), "state", ScoreJobStateEnum.WAITING.value)
        pipe.hdel(self._job_key(job_id), "claimed_at")
        pipe.lpush(self.waiting, job_id)
        pipe.execute()
        return True

    def recover_stalled(self, older_than: Optional[float] = None) -> int:
        try:
            if older_than is None:
                recovered = 0
                while True:
                    job_id = self.r.rpoplpush(self.active, self.waiting)
                    if job_id is None:
                        return recovered
                    self.r.hset(self._job_key(job_id), "state", ScoreJobStateEnum.WAITING.value)
                    self.r.hdel(self._job_key(job_id), "claimed_at")
                    recovered += 1

            now = self._clock()
            recovered = 0
            for job_id in self.r.lrange(self.active, 0, -1):
                key = self._job_key(job_id)
                claimed_at = self.r.hget(key, "claimed_at")
                if claimed_at is None:
                    # Claimed but not stamped yet (or the claimer died first); start its clock now.
                    self.r.hsetnx(key, "claimed_at", now)
                    continue
                if float(claimed_at) > now - older_than:
                    continue
                if self._requeue_active(job_id):
                    recovered += 1
            return recovered
        except RedisError as e:
            raise TransientInfraError(f"Failed to recover stalled score jobs: {e}") from e

    def failed_jobs(self) -> List[ScoreJob]:
        try:
            jobs = []
            for job_id in self.r.zrange(self.failed, 0, -1):
                job = self._load(job_id)
                if job:
                    jobs.append(job)
            return jobs
        except RedisError as e:
            raise TransientInfraError(f"Failed to list failed score jobs: {e}") from e

    def retry_failed(self, job_id: str) -> bool:
        try:
            if not self.r.zrem(self.failed, job_id):
                return False
            pipe = self.r.pipeline()
            pipe.hset(self._job_key(job_id), mapping={"state": ScoreJobStateEnum.WAITING.value, "attempts_made": 0})
            pipe.lpush(self.waiting, job_id)
            pipe.execute()
            return True
        except RedisError as e:
            raise TransientInfraError(f"Failed to retry job {job_id}: {e}") from e

    def get_job(self, job_id: str) -> Optional[ScoreJob]:
        try:
            return self._load(job_id)
        except RedisError as e:
            raise TransientInfraError(f"Failed to read job {job_id}: {e}") from e

    def close(self) -> None:
        try:
            self.r.close()
        except RedisError as e:
            logger.warning(f"Error closing score queue connection: {e}")


class ScoreJobQueue:
    """Score-job facade: one job per attempt, bounded retries with exponential backoff."""

    def __init__(self, backend: QueueBackend, max_attempts: int = 3, backoff_seconds: float = 1.0,
                 visibility_timeout: float = 300.0):
        self.backend = backend
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.visibility_timeout = visibility_timeout

    @staticmethod
    def job_id_for(attempt_id: int) -> str:
        return str(attempt_id)

    def enqueue(self, attempt_id: int) -> JobHandle:
        job, created = self.backend.enqueue(self.job_id_for(attempt_id), attempt_id)
        if created:
            logger.info(f"Score job {job.job_id} added for attempt {attempt_id}")
        else:
            logger.info(f"Score job {job.job_id} for attempt {attempt_id} already {job.state.value}")
        return JobHandle(job_id=job.job_id, attempt_id=attempt_id, state=job.state, created=created)

    def claim(self, timeout: float = 1.0) -> Optional[ScoreJob]:
        return self.backend.claim(timeout)

    def ack(self, job: ScoreJob) -> None:
        self.backend.ack(job)

    def backoff_delay(self, attempts_made: int) -> float:
        return self.backoff_seconds * (2 ** (attempts_made - 1))

    def retry_or_fail(self, job: ScoreJob, error: Exception, retryable: bool = True) -> ScoreJobStateEnum:
        """Reschedule after a failed run, or move the job to the failed set for good."""
        attempts_made = job.attempts_made + 1
        job = job.model_copy(update={"attempts_made": attempts_made})
        if retryable and attempts_made < self.max_attempts:
            delay = self.backoff_delay(attempts_made)
            self.backend.retry(job, str(error), delay)
            logger.warning(
                f"Score job {job.job_id} failed (attempt {attempts_made}/{self.max_attempts}), "
                f"retrying in {delay:.1f}s: {error}"
            )
            return ScoreJobStateEnum.DELAYED

        failure = PermanentScoringError(
            f"Score job {job.job_id} failed permanently after {attempts_made} attempt(s): {error}",
            attempt_id=job.attempt_id,
        )
        self.backend.fail(job, f"{failure.code}: {failure.message}")
        logger.error(failure.message, exc_info=error)
        return ScoreJobStateEnum.FAILED

    def failed_jobs(self) -> List[ScoreJob]:
        return self.backend.failed_jobs()

    def retry_failed(self, attempt_id: int) -> bool:
        retried = self.backend.retry_failed(self.job_id_for(attempt_id))
        if retried:
            logger.info(f"Failed score job for attempt {attempt_id} moved back to waiting")
        return retried

    def get_job(self, attempt_id: int) -> Optional[ScoreJob]:
        return self.backend.get_job(self.job_id_for(attempt_id))

    def recover_stalled(self) -> int:
        """Requeue every active job. Only safe while no worker holds a job (pool start)."""
        recovered = self.backend.recover_stalled()
        if recovered:
            logger.warning(f"Recovered {recovered} stalled score job(s)")
        return recovered

    def recover_expired(self) -> int:
        """Requeue active jobs claimed longer ago than the visibility timeout."""
        recovered = self.backend.recover_stalled(older_than=self.visibility_timeout)
        if recovered:
            logger.warning(
                f"Recovered {recovered} score job(s) held longer than {self.visibility_timeout:.0f}s"
            )
        return recovered

    def close(self) -> None:
        self.backend.close()


def create_score_queue(settings) -> ScoreJobQueue:
    if settings.REDIS_URL:
        logger.info("Initializing Redis score queue backend")
        backend = RedisQueueBackend(settings.REDIS_URL, settings.SCORE_QUEUE_NAME)
    else:
        logger.info("Using in-memory score queue backend")
        backend = MemoryQueueBackend()
    return ScoreJobQueue(
        backend,
        max_attempts=settings.SCORE_JOB_MAX_ATTEMPTS,
        backoff_seconds=settings.SCORE_JOB_BACKOFF_SECONDS,
        visibility_timeout=settings.SCORE_JOB_VISIBILITY_TIMEOUT_SECONDS,
    )
