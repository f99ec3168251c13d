"""
Billable classes (course packages) of an academy.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from academypro.auth.dependencies import CurrentUser, ensure_same_academy, require_roles
from academypro.database import crud, schemas
from academypro.database.database import get_db
from academypro.database.models import Class, Role
from academypro.errors import ConflictError, ok

router = APIRouter(prefix="/expense", tags=["expense"])


def _class_data(item: Class) -> dict:
    return schemas.ClassResponse.model_validate(item).model_dump()


def _commit_unique(db: Session, name: str) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"A class named '{name}' already exists")


@router.post("/{academy_id}", status_code=status.HTTP_201_CREATED)
def create_class(
    academy_id: str,
    body: schemas.ClassCreate,
    current: CurrentUser = Depends(require_roles(Role.CHIEF)),
    db: Session = Depends(get_db),
):
    ensure_same_academy(current, academy_id)
    item = Class(academy_id=academy_id, **body.model_dump())
    db.add(item)
    _commit_unique(db, body.class_name)
    db.refresh(item)
    return ok("Class created", _class_data(item))


@router.get("/{academy_id}")
def list_classes(
    academy_id: str,
    current: CurrentUser = Depends(require_roles(Role.CHIEF, Role.TEACHER)),
    db: Session = Depends(get_db),
):
    ensure_same_academy(current, academy_id)
    items = db.query(Class).filter(Class.academy_id == academy_id).order_by(Class.class_id).all()
    return ok("Classes", [_class_data(i) for i in items])


@router.put("/{academy_id}/{class_id}")
def update_class(
    academy_id: str,
    class_id: int,
    body: schemas.ClassUpdate,
    current: CurrentUser = Depends(require_roles(Role.CHIEF)),
    db: Session = Depends(get_db),
):
    ensure_same_academy(current, academy_id)
    item = crud.require_class(db, class_id, academy_id)
    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(item, field, value)
    _commit_unique(db, item.class_name)
    db.refresh(item)
    return ok("Class updated", _class_data(item))


@router.delete("/{academy_id}/{class_id}")
def delete_class(
    academy_id: str,
    class_id: int,
    current: CurrentUser = Depends(require_roles(Role.CHIEF)),
    db: Session = Depends(get_db),
):
    ensure_same_academy(current, academy_id)
    item = crud.require_class(db, class_id, academy_id)
    db.delete(item)
    db.commit()
    return ok("Class deleted", {"class_id": class_id})
