import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from rq import Queue

from neo_edu.api.deps import get_authoring
from neo_edu.core.auth import TokenData, require_roles
from neo_edu.jobs.expiry_job import expire_stale_attempts
from neo_edu.jobs.queue import get_queue
from neo_edu.models.schemas import AdminExamRow, AdminQuestionOut, ExamCreate, ExamOut, ExamUpdate
from neo_edu.services.authoring import ExamAuthoringService

router = APIRouter()


class AdminExamList(BaseModel):
    exams: List[AdminExamRow]
    total: int
    page: int
    limit: int


class AdminExamDetail(BaseModel):
    exam: ExamOut
    questions: List[AdminQuestionOut]


class SweepQueued(BaseModel):
    job_id: str


def _detail(exam) -> AdminExamDetail:
    return AdminExamDetail(
        exam=ExamOut.model_validate(exam).model_copy(update={"question_count": len(exam.questions)}),
        questions=[AdminQuestionOut.model_validate(q) for q in exam.questions],
    )


@router.get("/exams", response_model=AdminExamList, dependencies=[Depends(require_roles("admin"))])
def list_exams(search: Optional[str] = None, page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
               svc: ExamAuthoringService = Depends(get_authoring)):
    rows, total = svc.list_admin(search, page, limit)
    return AdminExamList(exams=rows, total=total, page=page, limit=limit)


@router.get("/exams/{exam_id}", response_model=AdminExamDetail, dependencies=[Depends(require_roles("admin"))])
def get_exam(exam_id: uuid.UUID, svc: ExamAuthoringService = Depends(get_authoring)):
    return _detail(svc.get_admin_exam(exam_id))


@router.post("/exams", response_model=AdminExamDetail, status_code=status.HTTP_201_CREATED)
def create_exam(payload: ExamCreate, user: TokenData = Depends(require_roles("admin")),
                svc: ExamAuthoringService = Depends(get_authoring)):
    return _detail(svc.create_exam(payload, user.sub))


@router.put("/exams/{exam_id}", response_model=AdminExamDetail, dependencies=[Depends(require_roles("admin"))])
def update_exam(exam_id: uuid.UUID, payload: ExamUpdate, svc: ExamAuthoringService = Depends(get_authoring)):
    return _detail(svc.update_exam(exam_id, payload))


@router.delete("/exams/{exam_id}", dependencies=[Depends(require_roles("admin"))])
def delete_exam(exam_id: uuid.UUID, svc: ExamAuthoringService = Depends(get_authoring)):
    svc.delete_exam(exam_id)
    return {"message": "Exam deleted successfully"}


@router.post("/exams/expire-stale", response_model=SweepQueued, status_code=status.HTTP_202_ACCEPTED,
             dependencies=[Depends(require_roles("admin"))])
def queue_expiry_sweep(queue: Queue = Depends(get_queue)):
    job = queue.enqueue(expire_stale_attempts, job_timeout=600)
    return SweepQueued(job_id=job.get_id())
