import re
import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, constr, model_validator

QuestionTypeLiteral = Literal["multiple-choice", "true-false", "short-answer"]
TRUE_FALSE_KEY = re.compile(r"^[ĐS]{4}\Z")


class QuestionIn(BaseModel):
    question_text: constr(min_length=1)
    question_type: QuestionTypeLiteral
    options: Optional[List[str]] = None
    correct_answer: constr(min_length=1)
    points: int = Field(ge=1, default=1)
    order: Optional[int] = Field(ge=0, default=None)
    explanation: Optional[str] = None

    @model_validator(mode="after")
    def check_answer_shape(self):
        if self.question_type == "multiple-choice" and not self.options:
            raise ValueError("multiple-choice questions need options")
        if self.question_type == "true-false" and not TRUE_FALSE_KEY.match(self.correct_answer):
            raise ValueError("true-false keys are four characters, one of Đ/S per statement")
        return self


class ExamCreate(BaseModel):
    title: constr(min_length=1, max_length=255)
    description: Optional[str] = None
    course_id: Optional[uuid.UUID] = None
    duration_minutes: int = Field(ge=1, default=60)
    passing_score: int = Field(ge=0, le=100, default=70)
    max_attempts: int = Field(ge=1, default=1)
    shuffle_questions: bool = False
    is_published: bool = False
    questions: Optional[List[QuestionIn]] = None


class ExamUpdate(BaseModel):
    title: Optional[constr(min_length=1, max_length=255)] = None
    description: Optional[str] = None
    course_id: Optional[uuid.UUID] = None
    duration_minutes: Optional[int] = Field(ge=1, default=None)
    passing_score: Optional[int] = Field(ge=0, le=100, default=None)
    max_attempts: Optional[int] = Field(ge=1, default=None)
    shuffle_questions: Optional[bool] = None
    is_published: Optional[bool] = None
    questions: Optional[List[QuestionIn]] = None


class ExamOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    description: Optional[str] = None
    course_id: Optional[uuid.UUID] = None
    duration_minutes: int
    passing_score: int
    max_attempts: int
    shuffle_questions: bool
    is_published: bool
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    question_count: Optional[int] = None


class AdminExamRow(ExamOut):
    submission_count: int = 0


class QuestionOut(BaseModel):
    """A question as shown to a candidate: no key, no explanation."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    question_text: str
    question_type: str
    options: Optional[List[str]] = None
    points: int
    order: int


class AdminQuestionOut(QuestionOut):
    correct_answer: str
    explanation: Optional[str] = None


class SubmitAnswers(BaseModel):
    # values are not type checked; anything that is not a string scores zero
    answers: Dict[str, Any]


class StartResponse(BaseModel):
    submissionId: uuid.UUID
    startedAt: datetime
    deadline: datetime


class QuestionsResponse(BaseModel):
    exam: ExamOut
    questions: List[QuestionOut]


class SaveAnswersResponse(BaseModel):
    saved: int


class ResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    submission_id: uuid.UUID
    exam_id: uuid.UUID
    score: int
    passed: bool
    earned_points: float
    total_points: int
    is_late: bool
    auto_submitted: bool
    started_at: datetime
    submitted_at: datetime


class ResultResponse(BaseModel):
    result: ResultOut
