from sqlalchemy import Column, Integer, DateTime, ForeignKey, Float, JSON, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from exam_platform.core.database import Base

class StudentAnswer(Base):
    __tablename__ = "student_answers"
    __table_args__ = (UniqueConstraint("exam_attempt_id", "question_id", name="uq_student_answers_attempt_question"),)

    id = Column(Integer, primary_key=True, index=True)
    exam_attempt_id = Column(Integer, ForeignKey("exam_attempts.id"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False)
    selected_option_ids = Column(JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql"), nullable=True)
    numerical_answer = Column(Float, nullable=True)
    marks_obtained = Column(Float, nullable=True) # Written once by the score worker
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    exam_attempt = relationship("ExamAttempt", back_populates="answers")
    question = relationship("Question")
