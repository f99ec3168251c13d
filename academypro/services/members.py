"""
Removing students and teachers from an academy.

A removed student takes their linked parents along. Affiliation and
registration rows are cleared, lecture rosters pruned and headcounts
recounted in one transaction.
"""

import logging
from typing import Dict, List

from sqlalchemy.orm import Session

from academypro.database import crud
from academypro.database.models import (
    AcademyUserRegistrationList, Family, Lecture, LectureParticipant, Role, User,
)
from academypro.errors import NotFoundError
from academypro.services.headcount import refresh_headcount

log = logging.getLogger(__name__)


def _members(db: Session, academy_id: str, user_ids: List[str], role: Role) -> List[User]:
    users = (
        db.query(User)
        .filter(User.academy_id == academy_id, User.role == role, User.user_id.in_(user_ids))
        .all()
    )
    missing = sorted(set(user_ids) - {u.user_id for u in users})
    if missing:
        raise NotFoundError(
            f"Not a {role.value.lower()} of this academy: {', '.join(missing)}",
            error_code="USER_NOT_FOUND",
        )
    return users


def _detach(db: Session, academy_id: str, users: List[User]) -> None:
    ids = [u.user_id for u in users]
    for user in users:
        user.academy_id = None
    db.query(AcademyUserRegistrationList).filter(
        AcademyUserRegistrationList.academy_id == academy_id,
        AcademyUserRegistrationList.user_id.in_(ids),
    ).delete(synchronize_session=False)

    lectures = db.query(Lecture).filter(Lecture.academy_id == academy_id).all()
    lecture_ids = [lecture.lecture_id for lecture in lectures]
    if lecture_ids:
        db.query(LectureParticipant).filter(
            LectureParticipant.lecture_id.in_(lecture_ids),
            LectureParticipant.user_id.in_(ids),
        ).delete(synchronize_session=False)
        for lecture in lectures:
            crud.refresh_lecture_headcount(db, lecture)


def remove_students(db: Session, academy_id: str, user_ids: List[str]) -> Dict:
    students = _members(db, academy_id, user_ids, Role.STUDENT)
    parent_ids = {
        f.parent_id for f in db.query(Family).filter(Family.student_id.in_(user_ids)).all()
    }
    parents = (
        db.query(User)
        .filter(User.user_id.in_(parent_ids), User.academy_id == academy_id)
        .all()
        if parent_ids else []
    )
    try:
        _detach(db, academy_id, students + parents)
        counts = refresh_headcount(db, academy_id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    removed = [u.user_id for u in students + parents]
    log.info("Removed %d students (%d with parents) from %s", len(students), len(removed), academy_id)
    return {"removed_user_ids": removed, "input_count": len(user_ids), "removed_count": len(removed), **counts}


def remove_teachers(db: Session, academy_id: str, user_ids: List[str]) -> Dict:
    teachers = _members(db, academy_id, user_ids, Role.TEACHER)
    try:
        db.query(Lecture).filter(
            Lecture.academy_id == academy_id, Lecture.teacher_id.in_(user_ids),
        ).update({Lecture.teacher_id: None}, synchronize_session=False)
        _detach(db, academy_id, teachers)
        counts = refresh_headcount(db, academy_id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    removed = [u.user_id for u in teachers]
    log.info("Removed %d teachers from %s", len(removed), academy_id)
    return {"removed_user_ids": removed, "input_count": len(user_ids), "removed_count": len(removed), **counts}
