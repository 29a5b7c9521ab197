"""Domain errors shared by the submission coordinator, the score worker and the sweeper.

``retryable`` tells the score worker whether the queue's retry policy applies.
"""
from typing import Optional


class ExamPlatformError(Exception):
    code = "EXAM_PLATFORM_ERROR"
    retryable = False

    def __init__(self, message: str, *, attempt_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.attempt_id = attempt_id


class ContentionError(ExamPlatformError):
    """The attempt row lock was not acquired within the bounded wait."""
    code = "CONTENTION"
    retryable = True


class AlreadyTerminalError(ExamPlatformError):
    code = "ATTEMPT_CLOSED"


class NotFoundError(ExamPlatformError):
    code = "NOT_FOUND"


class TransientInfraError(ExamPlatformError):
    code = "TRANSIENT_INFRA"
    retryable = True


class InvalidAttemptStateError(ExamPlatformError):
    code = "INVALID_ATTEMPT_STATE"


class PermanentScoringError(ExamPlatformError):
    code = "SCORING_FAILED"
