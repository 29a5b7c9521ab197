from exam_platform.models.exam import Exam, ExamQuestion
from exam_platform.models.question import Question, Option, NumericalAnswer
from exam_platform.models.exam_attempt import ExamAttempt
from exam_platform.models.student_answer import StudentAnswer
