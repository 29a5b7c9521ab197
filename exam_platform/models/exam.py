from sqlalchemy import Column, Integer, String, DateTime, Enum, ForeignKey, Float, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from exam_platform.core.database import Base
from exam_platform.core.constants import ExamStateEnum

class Exam(Base):
    __tablename__ = "exams"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, index=True, nullable=False)
    description = Column(String, nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    state = Column(Enum(ExamStateEnum), nullable=False, default=ExamStateEnum.DRAFT)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    exam_questions = relationship(
        "ExamQuestion",
        back_populates="exam",
        cascade="all, delete-orphan",
        order_by="ExamQuestion.question_order",
    )
    attempts = relationship("ExamAttempt", back_populates="exam")


class ExamQuestion(Base):
    """Placement of a question inside an exam, with the marks it carries there."""
    __tablename__ = "exam_questions"
    __table_args__ = (UniqueConstraint("exam_id", "question_id", name="uq_exam_questions_exam_question"),)

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(Integer, ForeignKey("exams.id"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False)
    question_order = Column(Integer, nullable=False)
    marks = Column(Float, nullable=True) # Falls back to the question's own marks
    negative_marks = Column(Float, nullable=True) # Falls back to the question's own negative_marks

    exam = relationship("Exam", back_populates="exam_questions")
    question = relationship("Question")
