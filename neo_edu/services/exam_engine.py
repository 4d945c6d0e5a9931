"""
Exam attempt lifecycle: start, fetch questions, submit and grade, look up results.

A submission moves ``in-progress -> graded`` exactly once. Races between
concurrent requests (possibly in different server processes) are settled in
the database: a partial unique index allows one live attempt per
(exam, user), and grading is a conditional ``UPDATE ... WHERE submitted_at
IS NULL`` that only one writer can win.
"""
import logging
import random
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from neo_edu.core.config import Settings
from neo_edu.core.errors import (
    AlreadyGradedError, AlreadyInProgressError, AttemptLimitError, ForbiddenError, NotFoundError,
)
from neo_edu.models.orm import Exam, ExamQuestion, ExamSubmission
from neo_edu.services.grading import grade_exam

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class EngineConfig:
    grace_seconds: int = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineConfig":
        return cls(grace_seconds=settings.EXAM_GRACE_SECONDS)


@dataclass
class SubmissionHandle:
    submission_id: uuid.UUID
    exam_id: uuid.UUID
    started_at: datetime
    deadline: datetime


@dataclass
class SanitizedQuestion:
    id: uuid.UUID
    question_text: str
    question_type: str
    options: Optional[List[str]]
    points: int
    order: int


@dataclass
class GradedResult:
    submission_id: uuid.UUID
    exam_id: uuid.UUID
    user_id: str
    score: int
    passed: bool
    earned_points: float
    total_points: int
    is_late: bool
    auto_submitted: bool
    started_at: datetime
    submitted_at: datetime

    @classmethod
    def from_submission(cls, sub: ExamSubmission) -> "GradedResult":
        return cls(
            submission_id=sub.id, exam_id=sub.exam_id, user_id=sub.user_id,
            score=sub.score, passed=sub.passed,
            earned_points=sub.earned_points or 0.0, total_points=sub.total_points or 0,
            is_late=bool(sub.is_late), auto_submitted=sub.auto_submitted,
            started_at=_as_utc(sub.started_at), submitted_at=_as_utc(sub.submitted_at),
        )


class ExamEngine:
    def __init__(
        self,
        db: Session,
        config: EngineConfig,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.config = config
        self.clock = clock
        self.rng = rng or random.Random()

    # ------------------------------------------------------------------ lookups

    def _published_exam(self, exam_id: uuid.UUID) -> Exam:
        exam = self.db.get(Exam, exam_id)
        if exam is None or not exam.is_published:
            raise NotFoundError("Exam not found or not available")
        return exam

    def _live_submission(self, exam_id: uuid.UUID, user_id: str) -> Optional[ExamSubmission]:
        return self.db.scalar(
            select(ExamSubmission).where(
                ExamSubmission.exam_id == exam_id,
                ExamSubmission.user_id == user_id,
                ExamSubmission.submitted_at.is_(None),
            )
        )

    def _owned_submission(self, submission_id: uuid.UUID, user_id: str) -> ExamSubmission:
        sub = self.db.get(ExamSubmission, submission_id)
        if sub is None:
            raise NotFoundError("Submission not found")
        if sub.user_id != user_id:
            raise ForbiddenError()
        return sub

    def completed_attempts(self, exam_id: uuid.UUID, user_id: str) -> int:
        return self.db.scalar(
            select(func.count()).select_from(ExamSubmission).where(
                ExamSubmission.exam_id == exam_id,
                ExamSubmission.user_id == user_id,
                ExamSubmission.submitted_at.is_not(None),
            )
        ) or 0

    def deadline_for(self, exam: Exam, started_at: datetime) -> datetime:
        return _as_utc(started_at) + timedelta(minutes=exam.duration_minutes)

    # --------------------------------------------------------------- operations

    def start(self, exam_id: uuid.UUID, user_id: str) -> SubmissionHandle:
        exam = self._published_exam(exam_id)
        if self._live_submission(exam_id, user_id) is not None:
            raise AlreadyInProgressError()
        if self.completed_attempts(exam_id, user_id) >= exam.max_attempts:
            raise AttemptLimitError(f"Maximum of {exam.max_attempts} attempt(s) reached for this exam")

        order = [str(q.id) for q in exam.questions]
        if exam.shuffle_questions:
            self.rng.shuffle(order)

        now = self.clock()
        sub = ExamSubmission(exam_id=exam.id, user_id=user_id, started_at=now, answers={}, question_order=order)
        self.db.add(sub)
        try:
            self.db.commit()
        except IntegrityError:
            # a concurrent start won the partial unique index
            self.db.rollback()
            raise AlreadyInProgressError()

        logger.info(f"Exam {exam_id} started by user {user_id} (submission {sub.id})")
        return SubmissionHandle(
            submission_id=sub.id, exam_id=exam.id, started_at=_as_utc(now), deadline=self.deadline_for(exam, now)
        )

    def get_questions(self, exam_id: uuid.UUID, user_id: Optional[str] = None) -> tuple[Exam, List[SanitizedQuestion]]:
        """Questions without their keys.

        A caller with a live attempt gets the order pinned when the attempt
        started. Otherwise a shuffled exam is permuted afresh on every call.
        """
        exam = self._published_exam(exam_id)
        questions = list(exam.questions)

        live = self._live_submission(exam_id, user_id) if user_id else None
        if live is not None and live.question_order:
            position = {qid: i for i, qid in enumerate(live.question_order)}
            # questions added after the attempt started go last, in authored order
            questions.sort(key=lambda q: position.get(str(q.id), len(position)))
        elif exam.shuffle_questions:
            self.rng.shuffle(questions)

        return exam, [
            SanitizedQuestion(
                id=q.id, question_text=q.question_text, question_type=q.question_type,
                options=list(q.options) if q.options else None, points=q.points, order=q.order,
            )
            for q in questions
        ]

    def save_answers(self, exam_id: uuid.UUID, user_id: str, answers: Mapping[str, Any]) -> int:
        """Store progress on the live attempt without grading it."""
        live = self._live_submission(exam_id, user_id)
        if live is None:
            raise NotFoundError("No attempt in progress for this exam")
        merged = {**(live.answers or {}), **{str(k): v for k, v in answers.items()}}
        result = self.db.execute(
            update(ExamSubmission)
            .where(ExamSubmission.id == live.id, ExamSubmission.submitted_at.is_(None))
            .values(answers=merged)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise AlreadyGradedError()
        self.db.commit()
        return len(merged)

    def submit(self, submission_id: uuid.UUID, user_id: str, answers: Mapping[str, Any]) -> GradedResult:
        sub = self._owned_submission(submission_id, user_id)
        if sub.is_graded:
            raise AlreadyGradedError()
        return self._grade(sub, answers, auto=False)

    def submit_for_exam(self, exam_id: uuid.UUID, user_id: str, answers: Mapping[str, Any]) -> GradedResult:
        live = self._live_submission(exam_id, user_id)
        if live is None:
            if self.completed_attempts(exam_id, user_id):
                raise AlreadyGradedError()
            raise NotFoundError("No attempt in progress for this exam")
        return self._grade(live, answers, auto=False)

    def get_result(self, submission_id: uuid.UUID, user_id: str) -> GradedResult:
        sub = self._owned_submission(submission_id, user_id)
        if not sub.is_graded:
            raise NotFoundError("Submission has not been graded yet")
        return GradedResult.from_submission(sub)

    def get_latest_result(self, exam_id: uuid.UUID, user_id: str) -> GradedResult:
        sub = self.db.scalar(
            select(ExamSubmission)
            .where(
                ExamSubmission.exam_id == exam_id,
                ExamSubmission.user_id == user_id,
                ExamSubmission.submitted_at.is_not(None),
            )
            .order_by(ExamSubmission.submitted_at.desc())
            .limit(1)
        )
        if sub is None:
            raise NotFoundError("No submission found for this exam")
        return GradedResult.from_submission(sub)

    def expire_stale(self, now: Optional[datetime] = None) -> int:
        """Auto-submit live attempts whose time limit plus grace has run out."""
        now = _as_utc(now or self.clock())
        grace = timedelta(seconds=self.config.grace_seconds)
        live = self.db.execute(
            select(ExamSubmission, Exam.duration_minutes)
            .join(Exam, Exam.id == ExamSubmission.exam_id)
            .where(ExamSubmission.submitted_at.is_(None))
        ).all()
        stale = [
            sub for sub, duration in live
            if _as_utc(sub.started_at) + timedelta(minutes=duration) + grace < now
        ]

        closed = 0
        for sub in stale:
            try:
                self._grade(sub, {}, auto=True, now=now)
                closed += 1
            except AlreadyGradedError:
                # submitted by the user while we were sweeping
                continue
        if closed:
            logger.info(f"Auto-submitted {closed} abandoned attempt(s)")
        return closed

    # ------------------------------------------------------------------ grading

    def _grade(self, sub: ExamSubmission, answers: Mapping[str, Any], auto: bool, now: Optional[datetime] = None) -> GradedResult:
        exam = sub.exam
        now = _as_utc(now or self.clock())
        started_at = _as_utc(sub.started_at)
        submitted_at = max(now, started_at)

        final_answers: Dict[str, Any] = {**(sub.answers or {}), **{str(k): v for k, v in answers.items()}}
        questions = self.db.scalars(select(ExamQuestion).where(ExamQuestion.exam_id == exam.id)).all()
        outcome = grade_exam(questions, final_answers, exam.passing_score)

        allowed = timedelta(minutes=exam.duration_minutes) + timedelta(seconds=self.config.grace_seconds)
        is_late = (submitted_at - started_at) > allowed

        result = self.db.execute(
            update(ExamSubmission)
            .where(ExamSubmission.id == sub.id, ExamSubmission.submitted_at.is_(None))
            .values(
                submitted_at=submitted_at,
                answers=final_answers,
                score=outcome.score,
                earned_points=outcome.earned_points,
                total_points=outcome.total_points,
                passed=outcome.passed,
                is_late=is_late,
                auto_submitted=auto,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise AlreadyGradedError()
        self.db.commit()

        if is_late and not auto:
            logger.warning(f"Late submission {sub.id} for exam {exam.id} by user {sub.user_id}")
        logger.info(f"Submission {sub.id} graded: score={outcome.score} passed={outcome.passed}")

        self.db.refresh(sub)
        return GradedResult.from_submission(sub)
