import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from exam_platform.core.constants import ExamAttemptStatusEnum, ScoreJobStateEnum
from exam_platform.core.exceptions import ContentionError, NotFoundError, TransientInfraError
from exam_platform.crud.exam_attempt import exam_attempt as crud_exam_attempt
from exam_platform.services.submission import SubmissionCoordinator


def _reload(session_factory, attempt_id):
    db = session_factory()
    try:
        return crud_exam_attempt.get(db, attempt_id)
    finally:
        db.close()


def test_submit_moves_attempt_to_terminal_and_enqueues_scoring(
    coordinator, score_queue, session_factory, exam_factory, attempt_factory
):
    attempt = attempt_factory(exam_factory())

    result = coordinator.submit(attempt.id, ExamAttemptStatusEnum.SUBMITTED)

    assert result.already_submitted is False
    assert result.status == ExamAttemptStatusEnum.SUBMITTED
    assert result.score_job_id == str(attempt.id)
    stored = _reload(session_factory, attempt.id)
    assert stored.status == ExamAttemptStatusEnum.SUBMITTED
    assert stored.submitted_at is not None
    assert stored.score is None
    assert score_queue.get_job(attempt.id).state == ScoreJobStateEnum.WAITING


def test_second_submit_is_a_noop(coordinator, score_queue, session_factory, exam_factory, attempt_factory):
    attempt = attempt_factory(exam_factory())
    coordinator.submit(attempt.id, ExamAttemptStatusEnum.SUBMITTED)
    first_submitted_at = _reload(session_factory, attempt.id).submitted_at

    result = coordinator.submit(attempt.id, ExamAttemptStatusEnum.AUTO_SUBMITTED)

    assert result.already_submitted is True
    assert result.status == ExamAttemptStatusEnum.SUBMITTED
    assert result.score_job_id is None
    stored = _reload(session_factory, attempt.id)
    assert stored.status == ExamAttemptStatusEnum.SUBMITTED
    assert stored.submitted_at == first_submitted_at


def test_submit_unknown_attempt_raises_not_found(coordinator):
    with pytest.raises(NotFoundError):
        coordinator.submit(999, ExamAttemptStatusEnum.SUBMITTED)


def test_submit_kind_must_be_terminal(coordinator):
    with pytest.raises(ValueError):
        coordinator.submit(1, ExamAttemptStatusEnum.IN_PROGRESS)


def test_enqueue_failure_does_not_undo_submission(session_factory, score_queue, exam_factory, attempt_factory):
    attempt = attempt_factory(exam_factory())

    class UnavailableQueue:
        def enqueue(self, attempt_id):
            raise TransientInfraError("queue unreachable", attempt_id=attempt_id)

    coordinator = SubmissionCoordinator(session_factory, UnavailableQueue())
    result = coordinator.submit(attempt.id, ExamAttemptStatusEnum.SUBMITTED)

    assert result.already_submitted is False
    assert result.score_job_id is None
    assert _reload(session_factory, attempt.id).status == ExamAttemptStatusEnum.SUBMITTED


def _submit_with_retry(coordinator, attempt_id, kind, start_gate):
    start_gate.wait()
    while True:
        try:
            return coordinator.submit(attempt_id, kind)
        except ContentionError:
            time.sleep(0.01)


def test_concurrent_submits_transition_exactly_once(
    coordinator, score_queue, session_factory, exam_factory, attempt_factory
):
    attempt = attempt_factory(exam_factory())
    callers = 16
    start_gate = threading.Barrier(callers)
    kinds = [
        ExamAttemptStatusEnum.SUBMITTED if i % 2 else ExamAttemptStatusEnum.AUTO_SUBMITTED
        for i in range(callers)
    ]

    with ThreadPoolExecutor(max_workers=callers) as executor:
        futures = [
            executor.submit(_submit_with_retry, coordinator, attempt.id, kind, start_gate)
            for kind in kinds
        ]
        results = [f.result(timeout=60) for f in futures]

    winners = [r for r in results if not r.already_submitted]
    assert len(winners) == 1
    stored = _reload(session_factory, attempt.id)
    assert stored.status == winners[0].status
    assert all(r.status == stored.status for r in results)

    assert score_queue.claim(timeout=0).attempt_id == attempt.id
    assert score_queue.claim(timeout=0) is None
