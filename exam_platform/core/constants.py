from enum import Enum


class QuestionTypeEnum(str, Enum):
    SINGLE_CORRECT = "single_correct"
    MULTIPLE_CORRECT = "multiple_correct"
    NUMERICAL = "numerical"

class ExamStateEnum(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CLOSED = "closed"

class ExamAttemptStatusEnum(str, Enum):
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    AUTO_SUBMITTED = "auto_submitted"

TERMINAL_ATTEMPT_STATUSES = (
    ExamAttemptStatusEnum.SUBMITTED,
    ExamAttemptStatusEnum.AUTO_SUBMITTED,
)

class ScoreStateEnum(str, Enum):
    IN_PROGRESS = "in_progress"
    PENDING = "pending"
    SCORED = "scored"

class ScoreJobStateEnum(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    FAILED = "failed"
