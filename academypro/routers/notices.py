"""
Notice API endpoints
Multipart create/update with file attachments mirrored to object storage
"""

from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from sqlalchemy.orm import Session

from academypro.auth.dependencies import CurrentUser, ensure_same_academy, require_roles
from academypro.database import schemas
from academypro.database.database import get_db
from academypro.database.models import Notice, Role
from academypro.errors import ok
from academypro.resources import get_notice_root, get_object_storage
from academypro.services import notices
from academypro.services.object_storage import ObjectStorage

router = APIRouter(prefix="/notice", tags=["notice"])

WRITERS = (Role.CHIEF, Role.TEACHER)
READERS = (Role.CHIEF, Role.TEACHER, Role.STUDENT, Role.PARENT)


def _uploads(files: Optional[List[UploadFile]]):
    return [(f.filename, f.file) for f in files or [] if f.filename]


def _detail(notice: Notice, storage: ObjectStorage) -> dict:
    data = schemas.NoticeDetail.model_validate(notice).model_dump(mode="json")
    for f in data["files"]:
        f["url"] = storage.url_for(f["file"])
    return data


@router.post("/create", status_code=status.HTTP_201_CREATED)
def create_notice(
    title: str = Form(..., min_length=1, max_length=255),
    content: str = Form(..., min_length=1),
    lecture_id: int = Form(..., ge=0),
    files: Optional[List[UploadFile]] = File(None),
    current: CurrentUser = Depends(require_roles(*WRITERS)),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
    root: Path = Depends(get_notice_root),
):
    ensure_same_academy(current, current.academy_id)
    notice = notices.create_notice(
        db, storage, root, current.academy_id, lecture_id,
        current.user_id, title, content, _uploads(files),
    )
    return ok("Notice created", _detail(notice, storage))


@router.get("/list")
def list_notices(
    lecture_id: int,
    page: int = 1,
    page_size: int = 10,
    current: CurrentUser = Depends(require_roles(*READERS)),
    db: Session = Depends(get_db),
):
    ensure_same_academy(current, current.academy_id)
    page = max(page, 1)
    page_size = min(max(page_size, 1), 100)
    rows = notices.list_notices(db, current.academy_id, lecture_id, page, page_size)
    return ok("Notices", [schemas.NoticeSummary.model_validate(n).model_dump() for n in rows])


@router.get("/{notice_id}")
def get_notice(
    notice_id: str,
    current: CurrentUser = Depends(require_roles(*READERS)),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
):
    ensure_same_academy(current, current.academy_id)
    notice = notices.read_notice(db, notice_id, current.academy_id)
    return ok("Notice", _detail(notice, storage))


@router.put("/{notice_id}")
def update_notice(
    notice_id: str,
    title: Optional[str] = Form(None, min_length=1, max_length=255),
    content: Optional[str] = Form(None),
    delete_files: Optional[List[str]] = Form(None),
    files: Optional[List[UploadFile]] = File(None),
    current: CurrentUser = Depends(require_roles(*WRITERS)),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
    root: Path = Depends(get_notice_root),
):
    ensure_same_academy(current, current.academy_id)
    notice = notices.update_notice(
        db, storage, root, notice_id, current.academy_id,
        title=title, content=content,
        delete_files=delete_files or [], uploads=_uploads(files),
    )
    return ok("Notice updated", _detail(notice, storage))


@router.delete("/{notice_id}")
def delete_notice(
    notice_id: str,
    current: CurrentUser = Depends(require_roles(*WRITERS)),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
    root: Path = Depends(get_notice_root),
):
    ensure_same_academy(current, current.academy_id)
    notices.delete_notice(db, storage, root, notice_id, current.academy_id)
    return ok("Notice deleted", {"notice_id": notice_id})
