"""
Notice CRUD over the relational store and the attachment pipeline.
"""

import logging
from pathlib import Path
from typing import BinaryIO, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from academypro.database.models import Lecture, Notice, NoticeFile
from academypro.errors import ConflictError, NotFoundError, StorageError
from academypro.services import notice_files as nf

log = logging.getLogger(__name__)

NOTICE_NUM_ATTEMPTS = 3

Upload = Tuple[str, BinaryIO]


def allocate_notice_num(db: Session, academy_id: str, lecture_id: int) -> int:
    """Next sequence number in the (academy, lecture) scope, starting at 1."""
    current = (
        db.query(func.max(Notice.notice_num))
        .filter(Notice.academy_id == academy_id, Notice.lecture_id == lecture_id)
        .scalar()
    )
    return (current or 0) + 1


def get_notice(db: Session, notice_id: str, academy_id: Optional[str] = None) -> Notice:
    nf.parse_notice_id(notice_id)
    query = db.query(Notice).filter(Notice.notice_id == notice_id)
    if academy_id is not None:
        query = query.filter(Notice.academy_id == academy_id)
    notice = query.first()
    if not notice:
        raise NotFoundError(f"Notice {notice_id} not found", error_code="NOTICE_NOT_FOUND")
    return notice


def _check_lecture(db: Session, academy_id: str, lecture_id: int) -> None:
    # lecture 0 holds academy-wide notices
    if lecture_id == 0:
        return
    exists = (
        db.query(Lecture.lecture_id)
        .filter(Lecture.lecture_id == lecture_id, Lecture.academy_id == academy_id)
        .first()
    )
    if not exists:
        raise NotFoundError(f"Lecture {lecture_id} not found", error_code="LECTURE_NOT_FOUND")


def _insert_notice(db: Session, **fields) -> Notice:
    """Insert with a freshly allocated number, retrying when a concurrent insert wins it."""
    for attempt in range(1, NOTICE_NUM_ATTEMPTS + 1):
        num = allocate_notice_num(db, fields["academy_id"], fields["lecture_id"])
        notice = Notice(
            notice_id=nf.format_notice_id(fields["academy_id"], fields["lecture_id"], num),
            notice_num=num,
            **fields,
        )
        db.add(notice)
        try:
            db.flush()
            return notice
        except IntegrityError:
            db.rollback()
            log.info("Notice number %s taken, retrying (%d/%d)", num, attempt, NOTICE_NUM_ATTEMPTS)
    raise ConflictError("Could not allocate a notice number, try again", error_code="NOTICE_NUM_CONFLICT")


def _mirror_and_reclaim(storage, directory: Path, prefix: str, notice_id: str) -> None:
    try:
        nf.mirror(storage, directory, prefix)
    except StorageError:
        log.warning("Orphaned attachments left at %s for notice %s", directory, notice_id)
        raise StorageError("Notice saved but its attachments could not be stored")
    nf.reclaim(directory)


def create_notice(db: Session, storage, root: Path, academy_id: str, lecture_id: int,
                  user_id: str, title: str, content: str,
                  uploads: Sequence[Upload] = ()) -> Notice:
    _check_lecture(db, academy_id, lecture_id)
    staging = nf.stage_uploads(root, uploads) if uploads else None

    directory = None
    try:
        notice = _insert_notice(
            db, academy_id=academy_id, lecture_id=lecture_id,
            user_id=user_id, title=title, content=content,
        )
        if staging is not None:
            directory = nf.scoped_dir(root, academy_id, lecture_id, notice.notice_num)
            prefix = nf.notice_key_prefix(academy_id, lecture_id, notice.notice_num)
            for name in nf.relocate(staging, directory):
                db.add(NoticeFile(notice_id=notice.notice_id, file_name=name, file=f"{prefix}/{name}"))
        db.commit()
    except Exception:
        db.rollback()
        if staging is not None:
            nf.discard(staging)
        if directory is not None:
            nf.discard(directory)
        raise

    db.refresh(notice)
    log.info("Notice %s created with %d files", notice.notice_id, len(notice.files))
    if directory is not None:
        _mirror_and_reclaim(storage, directory, nf.notice_key_prefix(
            academy_id, lecture_id, notice.notice_num), notice.notice_id)
    return notice


def list_notices(db: Session, academy_id: str, lecture_id: int,
                 page: int = 1, page_size: int = 10) -> List[Notice]:
    return (
        db.query(Notice)
        .filter(Notice.academy_id == academy_id, Notice.lecture_id == lecture_id)
        .order_by(Notice.notice_num.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )


def read_notice(db: Session, notice_id: str, academy_id: str) -> Notice:
    """Fetch a notice for display and count the view."""
    notice = get_notice(db, notice_id, academy_id)
    notice.views = Notice.views + 1
    db.commit()
    db.refresh(notice)
    return notice


def update_notice(db: Session, storage, root: Path, notice_id: str, academy_id: str,
                  title: Optional[str] = None, content: Optional[str] = None,
                  delete_files: Sequence[str] = (), uploads: Sequence[Upload] = ()) -> Notice:
    """
    Edit text fields and swap attachments. Files named in delete_files are
    removed from storage and metadata before new uploads are recorded.
    """
    notice = get_notice(db, notice_id, academy_id)
    staging = nf.stage_uploads(root, uploads) if uploads else None

    doomed = [f for f in notice.files if f.file_name in set(delete_files)]
    if doomed:
        try:
            storage.delete_keys([f.file for f in doomed])
        except StorageError:
            if staging is not None:
                nf.discard(staging)
            raise

    prefix = nf.notice_key_prefix(notice.academy_id, notice.lecture_id, notice.notice_num)
    directory = None
    try:
        if title is not None:
            notice.title = title
        if content is not None:
            notice.content = content
        for f in doomed:
            notice.files.remove(f)
        db.flush()
        if staging is not None:
            directory = nf.scoped_dir(root, notice.academy_id, notice.lecture_id, notice.notice_num)
            existing = {f.file_name for f in notice.files}
            for name in nf.relocate(staging, directory):
                if name in existing:
                    continue
                db.add(NoticeFile(notice_id=notice.notice_id, file_name=name, file=f"{prefix}/{name}"))
        db.commit()
    except Exception:
        db.rollback()
        if staging is not None:
            nf.discard(staging)
        raise

    db.refresh(notice)
    if directory is not None:
        _mirror_and_reclaim(storage, directory, prefix, notice.notice_id)
    return notice


def delete_notice(db: Session, storage, root: Path, notice_id: str, academy_id: str) -> None:
    """Remove stored objects, rows and the local tree. A missing local tree is fine."""
    notice = get_notice(db, notice_id, academy_id)
    scope = (notice.academy_id, notice.lecture_id, notice.notice_num)

    storage.delete_prefix(nf.notice_key_prefix(*scope) + "/")
    db.delete(notice)
    db.commit()
    nf.reclaim(nf.scoped_dir(root, *scope))
    log.info("Notice %s deleted", notice_id)
