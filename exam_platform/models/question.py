from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum, Float, Boolean
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from exam_platform.core.database import Base
from exam_platform.core.constants import QuestionTypeEnum

class Question(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    statement = Column(String, nullable=False)
    question_type = Column(Enum(QuestionTypeEnum), nullable=False)
    marks = Column(Float, nullable=False, default=1)
    negative_marks = Column(Float, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    options = relationship("Option", back_populates="question", cascade="all, delete-orphan", order_by="Option.order")
    numerical_answer = relationship("NumericalAnswer", back_populates="question", uselist=False, cascade="all, delete-orphan")


class Option(Base):
    __tablename__ = "options"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False, index=True)
    text = Column(String, nullable=False)
    is_correct = Column(Boolean, nullable=False, default=False)
    order = Column(Integer, nullable=False, default=0)

    question = relationship("Question", back_populates="options")


class NumericalAnswer(Base):
    __tablename__ = "numerical_answers"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False, unique=True)
    value = Column(Float, nullable=False)
    tolerance = Column(Float, nullable=False, default=0)

    question = relationship("Question", back_populates="numerical_answer")
