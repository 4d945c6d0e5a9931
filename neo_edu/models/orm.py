import enum
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, Float, ForeignKey, Index, Integer,
    JSON, String, Text, Uuid, text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase): pass


class QuestionType(str, enum.Enum):
    MULTIPLE_CHOICE = "multiple-choice"
    TRUE_FALSE = "true-false"
    SHORT_ANSWER = "short-answer"


class Exam(Base):
    __tablename__ = "exams"
    __table_args__ = (
        CheckConstraint("passing_score BETWEEN 0 AND 100", name="ck_exam_passing_score"),
        CheckConstraint("max_attempts >= 1", name="ck_exam_max_attempts"),
        CheckConstraint("duration_minutes >= 1", name="ck_exam_duration"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    course_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, index=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    passing_score: Mapped[int] = mapped_column(Integer, nullable=False, default=70)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    shuffle_questions: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    questions: Mapped[List["ExamQuestion"]] = relationship(
        back_populates="exam", cascade="all, delete-orphan", order_by="ExamQuestion.order"
    )
    submissions: Mapped[List["ExamSubmission"]] = relationship(
        back_populates="exam", cascade="all, delete-orphan"
    )


class ExamQuestion(Base):
    __tablename__ = "exam_questions"
    __table_args__ = (
        Index("idx_eq_exam_order", "exam_id", "order"),
        CheckConstraint("points >= 1", name="ck_exam_question_points"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    exam_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False
    )
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    question_type: Mapped[str] = mapped_column(String(32), nullable=False)
    options: Mapped[Optional[List[str]]] = mapped_column(JSON)
    correct_answer: Mapped[str] = mapped_column(Text, nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    order: Mapped[int] = mapped_column("order", Integer, nullable=False, default=0)
    explanation: Mapped[Optional[str]] = mapped_column(Text)

    exam: Mapped["Exam"] = relationship(back_populates="questions")


class ExamSubmission(Base):
    __tablename__ = "exam_submissions"
    __table_args__ = (
        Index("idx_es_exam_user", "exam_id", "user_id"),
        # one live attempt per (exam, user)
        Index(
            "uq_es_live_attempt", "exam_id", "user_id", unique=True,
            postgresql_where=text("submitted_at IS NULL"),
            sqlite_where=text("submitted_at IS NULL"),
        ),
        CheckConstraint(
            "submitted_at IS NULL OR submitted_at >= started_at",
            name="ck_es_submitted_after_start",
        ),
        CheckConstraint("score IS NULL OR (score BETWEEN 0 AND 100)", name="ck_es_score"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    exam_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    answers: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    question_order: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    score: Mapped[Optional[int]] = mapped_column(Integer)
    earned_points: Mapped[Optional[float]] = mapped_column(Float)
    total_points: Mapped[Optional[int]] = mapped_column(Integer)
    passed: Mapped[Optional[bool]] = mapped_column(Boolean)
    is_late: Mapped[Optional[bool]] = mapped_column(Boolean)
    auto_submitted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    exam: Mapped["Exam"] = relationship(back_populates="submissions")

    @property
    def is_graded(self) -> bool:
        return self.submitted_at is not None
