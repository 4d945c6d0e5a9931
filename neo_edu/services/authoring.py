import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from neo_edu.core.cache import PUBLIC_EXAMS_PATTERN, RedisCache, exam_key, public_exams_key
from neo_edu.core.errors import NotFoundError
from neo_edu.models.orm import Exam, ExamQuestion, ExamSubmission
from neo_edu.models.schemas import AdminExamRow, ExamCreate, ExamOut, ExamUpdate, QuestionIn

logger = logging.getLogger(__name__)

PUBLIC_LIST_TTL = 60
EXAM_DETAIL_TTL = 300

EXAM_FIELDS = (
    "title", "description", "course_id", "duration_minutes", "passing_score",
    "max_attempts", "shuffle_questions", "is_published",
)
NULLABLE_FIELDS = {"description", "course_id"}


def _question_count():
    return (
        select(func.count(ExamQuestion.id))
        .where(ExamQuestion.exam_id == Exam.id)
        .correlate(Exam)
        .scalar_subquery()
    )


def _submission_count():
    return (
        select(func.count(ExamSubmission.id))
        .where(ExamSubmission.exam_id == Exam.id)
        .correlate(Exam)
        .scalar_subquery()
    )


def _exam_dict(exam: Exam, **extra: Any) -> Dict[str, Any]:
    return ExamOut.model_validate(exam).model_copy(update=extra).model_dump(mode="json")


class ExamAuthoringService:
    """Exam catalogue reads (cached) and admin writes (which invalidate the cache)."""

    def __init__(self, db: Session, cache: RedisCache):
        self.db = db
        self.cache = cache

    # reads

    def list_published(self, course_id: Optional[uuid.UUID], page: int, limit: int) -> List[Dict[str, Any]]:
        def fetch():
            stmt = select(Exam, _question_count()).where(Exam.is_published.is_(True))
            if course_id:
                stmt = stmt.where(Exam.course_id == course_id)
            stmt = stmt.order_by(Exam.created_at.desc()).limit(limit).offset((page - 1) * limit)
            return [_exam_dict(e, question_count=n) for e, n in self.db.execute(stmt).all()]

        return self.cache.get_or_set(public_exams_key(course_id, page, limit), fetch, ttl=PUBLIC_LIST_TTL)

    def get_exam_detail(self, exam_id: uuid.UUID) -> Dict[str, Any]:
        def fetch():
            row = self.db.execute(
                select(Exam, _question_count()).where(Exam.id == exam_id, Exam.is_published.is_(True))
            ).first()
            return _exam_dict(row[0], question_count=row[1]) if row else None

        exam = self.cache.get_or_set(exam_key(exam_id), fetch, ttl=EXAM_DETAIL_TTL)
        if not exam:
            raise NotFoundError("Exam not found")
        return exam

    def list_admin(self, search: Optional[str], page: int, limit: int) -> tuple[List[AdminExamRow], int]:
        stmt = select(Exam, _question_count(), _submission_count())
        count_stmt = select(func.count(Exam.id))
        if search:
            like = f"%{search}%"
            cond = or_(Exam.title.ilike(like), Exam.description.ilike(like))
            stmt = stmt.where(cond)
            count_stmt = count_stmt.where(cond)
        stmt = stmt.order_by(Exam.created_at.desc()).limit(limit).offset((page - 1) * limit)
        rows = [
            AdminExamRow.model_validate(e).model_copy(update={"question_count": qn, "submission_count": sn})
            for e, qn, sn in self.db.execute(stmt).all()
        ]
        return rows, self.db.scalar(count_stmt) or 0

    def get_admin_exam(self, exam_id: uuid.UUID) -> Exam:
        exam = self.db.get(Exam, exam_id)
        if exam is None:
            raise NotFoundError("Exam not found")
        return exam

    # writes

    def _replace_questions(self, exam: Exam, questions: List[QuestionIn]) -> None:
        exam.questions.clear()
        for i, q in enumerate(questions):
            exam.questions.append(ExamQuestion(
                question_text=q.question_text,
                question_type=q.question_type,
                options=q.options,
                correct_answer=q.correct_answer,
                points=q.points,
                order=q.order if q.order is not None else i,
                explanation=q.explanation,
            ))

    def _invalidate(self, exam_id: uuid.UUID) -> None:
        self.cache.invalidate(exam_key(exam_id))
        self.cache.delete_pattern(PUBLIC_EXAMS_PATTERN)

    def create_exam(self, data: ExamCreate, created_by: str) -> Exam:
        exam = Exam(created_by=created_by, **data.model_dump(include=set(EXAM_FIELDS)))
        if data.questions:
            self._replace_questions(exam, data.questions)
        self.db.add(exam)
        self.db.commit()
        self.db.refresh(exam)
        self._invalidate(exam.id)
        logger.info(f"Exam {exam.id} created by {created_by} with {len(exam.questions)} question(s)")
        return exam

    def update_exam(self, exam_id: uuid.UUID, data: ExamUpdate) -> Exam:
        exam = self.get_admin_exam(exam_id)
        for name, value in data.model_dump(include=set(EXAM_FIELDS), exclude_unset=True).items():
            if value is None and name not in NULLABLE_FIELDS:
                continue
            setattr(exam, name, value)
        if data.questions is not None:
            self._replace_questions(exam, data.questions)
        self.db.commit()
        self.db.refresh(exam)
        self._invalidate(exam.id)
        logger.info(f"Exam {exam.id} updated")
        return exam

    def delete_exam(self, exam_id: uuid.UUID) -> None:
        exam = self.get_admin_exam(exam_id)
        self.db.delete(exam)
        self.db.commit()
        self._invalidate(exam_id)
        logger.info(f"Exam {exam_id} deleted")
