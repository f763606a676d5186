from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Boolean, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from db import Base

# questionnaire lifecycle
NOT_STARTED = "NOT_STARTED"
IN_PROGRESS = "IN_PROGRESS"
COMPLETED = "COMPLETED"
STATUS_ORDER = (NOT_STARTED, IN_PROGRESS, COMPLETED)

# question types
OPEN_ENDED = "OPEN_ENDED"
SHORT_ANSWER = "SHORT_ANSWER"
FILE_UPLOAD = "FILE_UPLOAD"
QUESTION_TYPES = (OPEN_ENDED, SHORT_ANSWER, FILE_UPLOAD)

class Questionnaire(Base):
    __tablename__ = "questionnaires"
    id = Column(Integer, primary_key=True, index=True)
    session_token = Column(String(64), unique=True, index=True, nullable=False)
    title = Column(String(255), nullable=False)
    client_name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=NOT_STARTED)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
    questions = relationship("Question", back_populates="questionnaire", cascade="all, delete-orphan",
                             order_by="Question.display_order")
    responses = relationship("Response", back_populates="questionnaire", cascade="all, delete-orphan")

class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (UniqueConstraint("questionnaire_id", "display_order", name="uq_question_order"),)
    id = Column(Integer, primary_key=True, index=True)
    questionnaire_id = Column(Integer, ForeignKey("questionnaires.id", ondelete="CASCADE"), index=True, nullable=False)
    question_text = Column(Text, nullable=False)
    question_type = Column(String(20), nullable=False, default=OPEN_ENDED)
    is_required = Column(Boolean, nullable=False, default=True)
    display_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    questionnaire = relationship("Questionnaire", back_populates="questions")
    responses = relationship("Response", back_populates="question", cascade="all, delete-orphan")

class Response(Base):
    __tablename__ = "responses"
    __table_args__ = (UniqueConstraint("questionnaire_id", "question_id", name="uq_response_question"),)
    id = Column(Integer, primary_key=True, index=True)
    questionnaire_id = Column(Integer, ForeignKey("questionnaires.id", ondelete="CASCADE"), index=True, nullable=False)
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), index=True, nullable=False)
    response_text = Column(Text, nullable=True)
    file_urls = Column(Text, nullable=True)   # JSON list of URLs
    file_url = Column(Text, nullable=True)    # legacy single URL, mirrors file_urls[0]
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    questionnaire = relationship("Questionnaire", back_populates="responses")
    question = relationship("Question", back_populates="responses")
