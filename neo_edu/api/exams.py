import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from neo_edu.api.deps import get_authoring, get_exam_engine
from neo_edu.core.auth import TokenData, get_current_user
from neo_edu.models.schemas import (
    ExamOut, QuestionOut, QuestionsResponse, ResultOut, ResultResponse, SaveAnswersResponse,
    StartResponse, SubmitAnswers,
)
from neo_edu.services.authoring import ExamAuthoringService
from neo_edu.services.exam_engine import ExamEngine, GradedResult

router = APIRouter()


def _result(r: GradedResult) -> ResultOut:
    return ResultOut.model_validate(r)


@router.get("", response_model=Dict[str, List[Dict[str, Any]]])
def list_exams(course_id: Optional[uuid.UUID] = None, page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
               svc: ExamAuthoringService = Depends(get_authoring)):
    return {"exams": svc.list_published(course_id, page, limit)}


@router.post("/submissions/{submission_id}/submit", response_model=ResultOut)
def submit_submission(submission_id: uuid.UUID, payload: SubmitAnswers, user: TokenData = Depends(get_current_user),
                      engine: ExamEngine = Depends(get_exam_engine)):
    return _result(engine.submit(submission_id, user.sub, payload.answers))


@router.get("/submissions/{submission_id}", response_model=ResultResponse)
def submission_result(submission_id: uuid.UUID, user: TokenData = Depends(get_current_user),
                      engine: ExamEngine = Depends(get_exam_engine)):
    return ResultResponse(result=_result(engine.get_result(submission_id, user.sub)))


@router.get("/{exam_id}", response_model=Dict[str, Dict[str, Any]])
def get_exam(exam_id: uuid.UUID, svc: ExamAuthoringService = Depends(get_authoring)):
    return {"exam": svc.get_exam_detail(exam_id)}


@router.post("/{exam_id}/start", response_model=StartResponse)
def start_exam(exam_id: uuid.UUID, user: TokenData = Depends(get_current_user),
               engine: ExamEngine = Depends(get_exam_engine)):
    handle = engine.start(exam_id, user.sub)
    return StartResponse(submissionId=handle.submission_id, startedAt=handle.started_at, deadline=handle.deadline)


@router.get("/{exam_id}/questions", response_model=QuestionsResponse)
def exam_questions(exam_id: uuid.UUID, user: TokenData = Depends(get_current_user),
                   engine: ExamEngine = Depends(get_exam_engine)):
    exam, questions = engine.get_questions(exam_id, user.sub)
    return QuestionsResponse(
        exam=ExamOut.model_validate(exam).model_copy(update={"question_count": len(questions)}),
        questions=[QuestionOut.model_validate(q) for q in questions],
    )


@router.put("/{exam_id}/answers", response_model=SaveAnswersResponse)
def save_answers(exam_id: uuid.UUID, payload: SubmitAnswers, user: TokenData = Depends(get_current_user),
                 engine: ExamEngine = Depends(get_exam_engine)):
    return SaveAnswersResponse(saved=engine.save_answers(exam_id, user.sub, payload.answers))


@router.post("/{exam_id}/submit", response_model=ResultOut)
def submit_exam(exam_id: uuid.UUID, payload: SubmitAnswers, user: TokenData = Depends(get_current_user),
                engine: ExamEngine = Depends(get_exam_engine)):
    return _result(engine.submit_for_exam(exam_id, user.sub, payload.answers))


@router.get("/{exam_id}/result", response_model=ResultResponse)
def exam_result(exam_id: uuid.UUID, user: TokenData = Depends(get_current_user),
                engine: ExamEngine = Depends(get_exam_engine)):
    return ResultResponse(result=_result(engine.get_latest_result(exam_id, user.sub)))
