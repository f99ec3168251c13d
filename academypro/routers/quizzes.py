"""
Quiz API endpoints
Generation via the LLM, question-by-question reads, grading and results
"""

import logging
from typing import Callable

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from academypro.auth.dependencies import CurrentUser, ensure_same_academy, require_roles
from academypro.database import schemas
from academypro.database.database import get_db
from academypro.database.models import Exam, Lecture, Role
from academypro.database.mongo import DocumentStore
from academypro.errors import NotFoundError, UpstreamError, ok
from academypro.resources import get_document_store, get_llm
from academypro.services import quiz as quiz_service
from academypro.services.quiz import QuizCreationOutcome

log = logging.getLogger(__name__)

router = APIRouter(prefix="/quiz", tags=["quiz"])

STAFF = (Role.CHIEF, Role.TEACHER)


def _academy_exam(db: Session, exam_id: int, academy_id: str) -> Exam:
    exam = (
        db.query(Exam)
        .join(Lecture, Lecture.lecture_id == Exam.lecture_id)
        .filter(Exam.exam_id == exam_id, Lecture.academy_id == academy_id)
        .first()
    )
    if not exam:
        raise NotFoundError(f"Exam {exam_id} not found", error_code="EXAM_NOT_FOUND")
    return exam


def _public_quiz(doc: dict) -> dict:
    """Quiz document without its answer key."""
    return {
        "exam_id": doc["exam_id"],
        "title": doc.get("title"),
        "comment": doc.get("comment"),
        "keyword": doc.get("keyword"),
        "lecture_id": doc.get("lecture_id"),
        "question_count": len(doc.get("quiz_list", [])),
    }


@router.post("/create", status_code=status.HTTP_201_CREATED)
def create_quiz(
    body: schemas.QuizCreate,
    current: CurrentUser = Depends(require_roles(*STAFF)),
    db: Session = Depends(get_db),
    store: DocumentStore = Depends(get_document_store),
    generate: Callable[[str], str] = Depends(get_llm),
):
    ensure_same_academy(current, current.academy_id)
    result = quiz_service.create_quiz(
        db, store, generate,
        academy_id=current.academy_id,
        lecture_id=body.lecture_id,
        user_id=current.user_id,
        title=body.title,
        keyword=body.keyword,
        comment=body.comment,
    )
    if result.outcome == QuizCreationOutcome.ORPHANED:
        raise UpstreamError("Quiz generation failed and cleanup is pending", error_code="QUIZ_ORPHANED")
    if not result.committed:
        raise UpstreamError("Quiz generation failed, please try again", error_code="QUIZ_GENERATION_FAILED")
    return ok("Quiz created", _public_quiz(result.quiz))


@router.get("/{exam_id}/result")
def get_quiz_results(
    exam_id: int,
    current: CurrentUser = Depends(require_roles(Role.CHIEF, Role.TEACHER, Role.STUDENT)),
    db: Session = Depends(get_db),
    store: DocumentStore = Depends(get_document_store),
):
    ensure_same_academy(current, current.academy_id)
    _academy_exam(db, exam_id, current.academy_id)
    results = quiz_service.quiz_results(store, exam_id)
    if current.role == Role.STUDENT:
        results = {k: v for k, v in results.items() if k == current.user_id}
    return ok("Quiz results", {"exam_id": exam_id, "results": results})


@router.get("/{exam_id}/{quiz_num}")
def get_question(
    exam_id: int,
    quiz_num: int,
    current: CurrentUser = Depends(require_roles(Role.CHIEF, Role.TEACHER, Role.STUDENT)),
    db: Session = Depends(get_db),
    store: DocumentStore = Depends(get_document_store),
):
    ensure_same_academy(current, current.academy_id)
    _academy_exam(db, exam_id, current.academy_id)
    return ok("Quiz question", quiz_service.get_question(store, exam_id, quiz_num))


@router.post("/{exam_id}/grade")
def grade_quiz(
    exam_id: int,
    body: schemas.QuizSubmission,
    current: CurrentUser = Depends(require_roles(Role.STUDENT)),
    db: Session = Depends(get_db),
    store: DocumentStore = Depends(get_document_store),
):
    ensure_same_academy(current, current.academy_id)
    _academy_exam(db, exam_id, current.academy_id)
    result = quiz_service.grade_quiz(db, store, exam_id, current.user_id, body.answers)
    return ok("Quiz graded", result)
