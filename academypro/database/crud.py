"""
Shared lookups used across routers.
get_* return None when missing; require_* raise NotFoundError.
"""

from typing import List, Optional

from sqlalchemy.orm import Session

from academypro.database import models
from academypro.errors import NotFoundError


# ==========================================
# USERS
# ==========================================

def get_user(db: Session, user_id: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.user_id == user_id).first()


def require_user(db: Session, user_id: str, role: Optional[models.Role] = None) -> models.User:
    user = get_user(db, user_id)
    if not user or (role is not None and user.role != role):
        label = role.value.lower() if role else "user"
        raise NotFoundError(f"No {label} with id {user_id}", error_code="USER_NOT_FOUND")
    return user


def get_user_by_refresh_token(db: Session, token: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.refresh_token == token).first()


def latest_registration(db: Session, user_id: str) -> Optional[models.AcademyUserRegistrationList]:
    return (
        db.query(models.AcademyUserRegistrationList)
        .filter(models.AcademyUserRegistrationList.user_id == user_id)
        .order_by(models.AcademyUserRegistrationList.id.desc())
        .first()
    )


def parents_of(db: Session, student_id: str) -> List[models.User]:
    return (
        db.query(models.User)
        .join(models.Family, models.Family.parent_id == models.User.user_id)
        .filter(models.Family.student_id == student_id)
        .all()
    )


def children_ids(db: Session, parent_id: str) -> List[str]:
    return [
        f.student_id
        for f in db.query(models.Family).filter(models.Family.parent_id == parent_id).all()
    ]


# ==========================================
# LECTURES / EXAMS
# ==========================================

def require_lecture(db: Session, lecture_id: int, academy_id: Optional[str] = None) -> models.Lecture:
    query = db.query(models.Lecture).filter(models.Lecture.lecture_id == lecture_id)
    if academy_id is not None:
        query = query.filter(models.Lecture.academy_id == academy_id)
    lecture = query.first()
    if not lecture:
        raise NotFoundError(f"Lecture {lecture_id} not found", error_code="LECTURE_NOT_FOUND")
    return lecture


def require_exam(db: Session, exam_id: int, lecture_id: int) -> models.Exam:
    exam = (
        db.query(models.Exam)
        .filter(models.Exam.exam_id == exam_id, models.Exam.lecture_id == lecture_id)
        .first()
    )
    if not exam:
        raise NotFoundError(f"Exam {exam_id} not found", error_code="EXAM_NOT_FOUND")
    return exam


def require_exam_type(db: Session, exam_type_id: int, academy_id: str) -> models.ExamType:
    exam_type = (
        db.query(models.ExamType)
        .filter(models.ExamType.exam_type_id == exam_type_id, models.ExamType.academy_id == academy_id)
        .first()
    )
    if not exam_type:
        raise NotFoundError(f"Exam type {exam_type_id} not found", error_code="EXAM_TYPE_NOT_FOUND")
    return exam_type


def require_class(db: Session, class_id: int, academy_id: str) -> models.Class:
    item = (
        db.query(models.Class)
        .filter(models.Class.class_id == class_id, models.Class.academy_id == academy_id)
        .first()
    )
    if not item:
        raise NotFoundError(f"Class {class_id} not found", error_code="CLASS_NOT_FOUND")
    return item


def refresh_lecture_headcount(db: Session, lecture: models.Lecture) -> int:
    """Recount the roster. Does not commit."""
    db.flush()
    lecture.headcount = (
        db.query(models.LectureParticipant)
        .filter(models.LectureParticipant.lecture_id == lecture.lecture_id)
        .count()
    )
    return lecture.headcount
