"""
Exam types (midterm, quiz, ...) are named per academy.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from academypro.auth.dependencies import CurrentUser, ensure_same_academy, require_roles
from academypro.database import crud, schemas
from academypro.database.database import get_db
from academypro.database.models import ExamType, Role
from academypro.errors import ConflictError, ok

router = APIRouter(prefix="/exam-type", tags=["exam-type"])


def _exam_type_data(exam_type: ExamType) -> dict:
    return schemas.ExamTypeResponse.model_validate(exam_type).model_dump()


@router.post("/{academy_id}", status_code=status.HTTP_201_CREATED)
def create_exam_type(
    academy_id: str,
    body: schemas.ExamTypeCreate,
    current: CurrentUser = Depends(require_roles(Role.CHIEF, Role.TEACHER)),
    db: Session = Depends(get_db),
):
    ensure_same_academy(current, academy_id)
    exam_type = ExamType(academy_id=academy_id, exam_type_name=body.exam_type_name.strip())
    db.add(exam_type)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Exam type '{body.exam_type_name}' already exists")
    db.refresh(exam_type)
    return ok("Exam type created", _exam_type_data(exam_type))


@router.get("/{academy_id}")
def list_exam_types(
    academy_id: str,
    current: CurrentUser = Depends(require_roles(Role.CHIEF, Role.TEACHER, Role.STUDENT, Role.PARENT)),
    db: Session = Depends(get_db),
):
    ensure_same_academy(current, academy_id)
    exam_types = (
        db.query(ExamType)
        .filter(ExamType.academy_id == academy_id)
        .order_by(ExamType.exam_type_id)
        .all()
    )
    return ok("Exam types", [_exam_type_data(t) for t in exam_types])


@router.delete("/{academy_id}/{exam_type_id}")
def delete_exam_type(
    academy_id: str,
    exam_type_id: int,
    current: CurrentUser = Depends(require_roles(Role.CHIEF, Role.TEACHER)),
    db: Session = Depends(get_db),
):
    ensure_same_academy(current, academy_id)
    exam_type = crud.require_exam_type(db, exam_type_id, academy_id)
    db.delete(exam_type)
    db.commit()
    return ok("Exam type deleted", {"exam_type_id": exam_type_id})
