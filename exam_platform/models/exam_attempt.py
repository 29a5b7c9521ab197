from sqlalchemy import Column, Integer, DateTime, ForeignKey, Float, Enum, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from exam_platform.core.database import Base
from exam_platform.core.constants import ExamAttemptStatusEnum

class ExamAttempt(Base):
    __tablename__ = "exam_attempts"
    __table_args__ = (UniqueConstraint("exam_id", "user_id", name="uq_exam_attempts_exam_user"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    exam_id = Column(Integer, ForeignKey("exams.id"), nullable=False, index=True)
    started_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(Enum(ExamAttemptStatusEnum), nullable=False, default=ExamAttemptStatusEnum.IN_PROGRESS, index=True)
    score = Column(Float, nullable=True) # None until the score worker has run
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    exam = relationship("Exam", back_populates="attempts")
    answers = relationship("StudentAnswer", back_populates="exam_attempt", cascade="all, delete-orphan")
