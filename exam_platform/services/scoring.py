"""Deterministic marking of an answer set against question snapshots.

Pure functions only: no database access, no clock. The score worker feeds
snapshots in and persists what comes out.

Rules per question type:

* SINGLE_CORRECT: exactly the correct option earns ``marks``; any other
  non-empty selection costs ``negative_marks``; no selection scores 0.
* MULTIPLE_CORRECT: the selection must equal the correct set exactly to earn
  ``marks``; every other selection scores 0 (no negative marking, no partial
  credit).
* NUMERICAL: within ``numerical_tolerance`` of the target earns ``marks``;
  otherwise ``negative_marks`` is deducted; no answer scores 0.

Negative marks only ever apply to attempted questions. The total is the plain
sum and is not clamped at zero.
"""
import math
from typing import Dict, Iterable, Optional, Sequence

from exam_platform.core.constants import QuestionTypeEnum
from exam_platform.core.exceptions import NotFoundError
from exam_platform.schemas.question import QuestionSnapshot
from exam_platform.schemas.scoring import AnswerSnapshot, ScoreResult


def _score_single_correct(question: QuestionSnapshot, answer: AnswerSnapshot) -> float:
    selected = answer.selected_option_ids or frozenset()
    if not selected:
        return 0.0
    if len(selected) == 1 and selected == question.correct_option_ids:
        return question.marks
    return -question.negative_marks


def _score_multiple_correct(question: QuestionSnapshot, answer: AnswerSnapshot) -> float:
    selected = answer.selected_option_ids or frozenset()
    if not selected:
        return 0.0
    return question.marks if selected == question.correct_option_ids else 0.0


def _within_tolerance(value: float, target: float, tolerance: float) -> bool:
    diff = abs(value - target)
    # isclose absorbs binary representation error exactly on the boundary
    return diff <= tolerance or math.isclose(diff, tolerance, rel_tol=1e-9, abs_tol=1e-12)


def _score_numerical(question: QuestionSnapshot, answer: AnswerSnapshot) -> float:
    if answer.numerical_answer is None:
        return 0.0
    if _within_tolerance(answer.numerical_answer, question.numerical_value, question.numerical_tolerance):
        return question.marks
    return -question.negative_marks


_SCORERS = {
    QuestionTypeEnum.SINGLE_CORRECT: _score_single_correct,
    QuestionTypeEnum.MULTIPLE_CORRECT: _score_multiple_correct,
    QuestionTypeEnum.NUMERICAL: _score_numerical,
}


def score_question(question: QuestionSnapshot, answer: Optional[AnswerSnapshot]) -> float:
    if answer is None:
        return 0.0
    return float(_SCORERS[question.question_type](question, answer))


def score(questions: Sequence[QuestionSnapshot], answers: Iterable[AnswerSnapshot]) -> ScoreResult:
    """Mark every question of the exam; unanswered questions contribute 0.

    Raises NotFoundError when an answer refers to a question that is not part
    of the snapshot set, since that can only mean the stored data is broken.
    """
    by_question: Dict[int, AnswerSnapshot] = {}
    question_ids = {q.id for q in questions}
    for answer in answers:
        if answer.question_id not in question_ids:
            raise NotFoundError(f"Answer refers to unknown question {answer.question_id}")
        by_question[answer.question_id] = answer

    per_question_marks = {q.id: score_question(q, by_question.get(q.id)) for q in questions}
    return ScoreResult(per_question_marks=per_question_marks, total=sum(per_question_marks.values()))
