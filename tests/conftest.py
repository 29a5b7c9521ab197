import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

os.environ["TESTING"] = "true"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_exam_platform.db")
os.environ.setdefault("LOG_DIR", os.path.join(os.path.dirname(__file__), "..", "test-logs"))

import pytest
from datetime import datetime, timedelta, timezone
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from exam_platform.core.config import settings
from exam_platform.core.constants import ExamAttemptStatusEnum, ExamStateEnum, QuestionTypeEnum
from exam_platform.core.database import Base
from exam_platform.core.queue import MemoryQueueBackend, ScoreJobQueue
from exam_platform.core.runtime import ExamRuntime
from exam_platform.models.exam import Exam, ExamQuestion
from exam_platform.models.exam_attempt import ExamAttempt
from exam_platform.models.question import NumericalAnswer, Option, Question
from exam_platform.services.score_worker import ScoreWorkerPool
from exam_platform.services.submission import SubmissionCoordinator
from exam_platform.services.sweeper import AutoSubmitSweeper
from exam_platform.utils import deps as deps_utils
import main

test_db_url = settings.TEST_DATABASE_URL or settings.DATABASE_URL


@pytest.fixture(scope="session")
def database_engine():
    if test_db_url.startswith("sqlite"):
        engine = create_engine(test_db_url, connect_args={"check_same_thread": False, "timeout": 30})
    else:
        engine = create_engine(test_db_url)
    yield engine
    engine.dispose()
    if test_db_url.startswith("sqlite:///./"):
        path = test_db_url.replace("sqlite:///./", "")
        if os.path.exists(path):
            os.remove(path)


@pytest.fixture(autouse=True)
def _reset_schema(database_engine):
    # Services commit on their own sessions, so every test starts from empty tables.
    Base.metadata.drop_all(bind=database_engine)
    Base.metadata.create_all(bind=database_engine)
    yield


@pytest.fixture
def session_factory(database_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=database_engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


@pytest.fixture
def score_queue():
    return ScoreJobQueue(MemoryQueueBackend(), max_attempts=3, backoff_seconds=0)


@pytest.fixture
def coordinator(session_factory, score_queue):
    return SubmissionCoordinator(session_factory, score_queue)


@pytest.fixture
def worker_pool(session_factory, score_queue):
    pool = ScoreWorkerPool(score_queue, session_factory, concurrency=2, poll_timeout=0.05)
    yield pool
    if pool.running:
        pool.stop(wait=True)


@pytest.fixture
def sweeper(session_factory, coordinator, score_queue):
    return AutoSubmitSweeper(session_factory, coordinator, score_queue, reconcile_after_seconds=300)


DEFAULT_QUESTIONS = [
    {
        "type": QuestionTypeEnum.SINGLE_CORRECT,
        "marks": 4,
        "negative_marks": 1,
        "options": [("Paris", False), ("Rome", True), ("Oslo", False)],
    },
    {
        "type": QuestionTypeEnum.MULTIPLE_CORRECT,
        "marks": 4,
        "negative_marks": 1,
        "options": [("2", True), ("4", False), ("5", True), ("9", False)],
    },
    {
        "type": QuestionTypeEnum.NUMERICAL,
        "marks": 4,
        "negative_marks": 1,
        "value": 9.81,
        "tolerance": 0.01,
    },
]


@pytest.fixture
def exam_factory(db_session):
    """Creates a published exam open from an hour ago for three hours, 60 minute duration."""
    def _exam_factory(questions=None, state=ExamStateEnum.PUBLISHED, start_time=None, end_time=None,
                      duration_minutes=60):
        now = datetime.now(timezone.utc)
        exam = Exam(
            title="Physics Midterm",
            start_time=start_time or now - timedelta(hours=1),
            end_time=end_time or now + timedelta(hours=2),
            duration_minutes=duration_minutes,
            state=state,
        )
        db_session.add(exam)
        db_session.flush()

        for order, definition in enumerate(DEFAULT_QUESTIONS if questions is None else questions, start=1):
            question = Question(
                statement=definition.get("statement", f"Question {order}"),
                question_type=definition["type"],
                marks=definition["marks"],
                negative_marks=definition.get("negative_marks", 0),
            )
            for option_order, (text, is_correct) in enumerate(definition.get("options", [])):
                question.options.append(Option(text=text, is_correct=is_correct, order=option_order))
            if definition["type"] == QuestionTypeEnum.NUMERICAL:
                question.numerical_answer = NumericalAnswer(value=definition["value"], tolerance=definition.get("tolerance", 0))
            db_session.add(question)
            db_session.flush()
            db_session.add(ExamQuestion(
                exam_id=exam.id,
                question_id=question.id,
                question_order=order,
                marks=definition.get("exam_marks"),
                negative_marks=definition.get("exam_negative_marks"),
            ))

        db_session.commit()
        db_session.refresh(exam)
        return exam
    return _exam_factory


@pytest.fixture
def attempt_factory(db_session):
    def _attempt_factory(exam, user_id=1, started_at=None, status=ExamAttemptStatusEnum.IN_PROGRESS,
                         submitted_at=None, score=None):
        attempt = ExamAttempt(
            exam_id=exam.id,
            user_id=user_id,
            started_at=started_at or datetime.now(timezone.utc),
            status=status,
            submitted_at=submitted_at,
            score=score,
        )
        db_session.add(attempt)
        db_session.commit()
        db_session.refresh(attempt)
        return attempt
    return _attempt_factory


@pytest.fixture
def runtime(session_factory, score_queue):
    return ExamRuntime(settings, session_factory, score_queue=score_queue)


@pytest.fixture
def client(session_factory, runtime):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    main.app.state.runtime = runtime
    main.app.dependency_overrides[deps_utils.get_db] = _get_db
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()
    main.app.state.runtime = None


@pytest.fixture
def auth_headers():
    def _auth_headers(user_id: int):
        token = jwt.encode({"user_id": user_id}, settings.SECRET_KEY, algorithm="HS256")
        return {"Authorization": f"Bearer {token}"}
    return _auth_headers
