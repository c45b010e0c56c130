from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Boolean, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from db import Base

QUESTION_TYPES = ("text", "single_choice", "multiple_choice", "rating", "boolean")
CHOICE_TYPES = ("single_choice", "multiple_choice")

class Survey(Base):
    __tablename__ = "surveys"
    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, index=True, nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    questions = relationship("Question", back_populates="survey", cascade="all, delete-orphan",
                             order_by="Question.order_index", passive_deletes=True)
    responses = relationship("Response", back_populates="survey", cascade="all, delete-orphan",
                             passive_deletes=True)

class Question(Base):
    __tablename__ = "questions"
    id = Column(Integer, primary_key=True, index=True)
    survey_id = Column(Integer, ForeignKey("surveys.id", ondelete="CASCADE"), index=True, nullable=False)
    order_index = Column(Integer, nullable=False, default=0)
    text = Column(Text, nullable=False)
    type = Column(String(50), nullable=False, default="text")
    is_required = Column(Boolean, nullable=False, default=False)
    options = Column(JSON, nullable=True)  # list[str], choice types only
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    survey = relationship("Survey", back_populates="questions")
    answers = relationship("Answer", back_populates="question", cascade="all, delete-orphan",
                           passive_deletes=True)

class Response(Base):
    __tablename__ = "responses"
    # NULL respondent_id (anonymous) never collides under this constraint
    __table_args__ = (UniqueConstraint("survey_id", "respondent_id", name="uq_response_survey_respondent"),)
    id = Column(Integer, primary_key=True, index=True)
    survey_id = Column(Integer, ForeignKey("surveys.id", ondelete="CASCADE"), index=True, nullable=False)
    respondent_id = Column(Integer, index=True, nullable=True)
    submitted_at = Column(DateTime(timezone=True), server_default=func.now())
    survey = relationship("Survey", back_populates="responses")
    answers = relationship("Answer", back_populates="response", cascade="all, delete-orphan",
                           order_by="Answer.id", passive_deletes=True)

class Answer(Base):
    __tablename__ = "answers"
    __table_args__ = (UniqueConstraint("response_id", "question_id", name="uq_answer_response_question"),)
    id = Column(Integer, primary_key=True, index=True)
    response_id = Column(Integer, ForeignKey("responses.id", ondelete="CASCADE"), index=True, nullable=False)
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), index=True, nullable=False)
    answer_text = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    response = relationship("Response", back_populates="answers")
    question = relationship("Question", back_populates="answers")
