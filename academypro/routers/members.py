"""
Student and teacher management within an academy.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from academypro.auth.dependencies import CurrentUser, ensure_same_academy, get_current_user, require_roles
from academypro.database import crud, schemas
from academypro.database.database import get_db
from academypro.database.models import Lecture, LectureParticipant, Role, User
from academypro.errors import ForbiddenError, ok
from academypro.services import members

student_router = APIRouter(prefix="/student", tags=["student"])
teacher_router = APIRouter(prefix="/teacher", tags=["teacher"])


def _contact(user: User) -> dict:
    return {"user_id": user.user_id, "user_name": user.user_name, "phone_number": user.phone_number}


# ==========================================
# STUDENTS
# ==========================================

@student_router.get("/{academy_id}")
def list_students(
    academy_id: str,
    current: CurrentUser = Depends(require_roles(Role.CHIEF, Role.TEACHER)),
    db: Session = Depends(get_db),
):
    ensure_same_academy(current, academy_id)
    students = (
        db.query(User)
        .filter(User.academy_id == academy_id, User.role == Role.STUDENT)
        .order_by(User.user_name)
        .all()
    )
    data = []
    for student in students:
        parents = crud.parents_of(db, student.user_id)
        data.append({**_contact(student), "parent": _contact(parents[0]) if parents else None})
    return ok("Students", data)


@student_router.delete("/{academy_id}")
def remove_students(
    academy_id: str,
    body: schemas.MemberRemoval,
    current: CurrentUser = Depends(require_roles(Role.CHIEF)),
    db: Session = Depends(get_db),
):
    ensure_same_academy(current, academy_id)
    result = members.remove_students(db, academy_id, list(dict.fromkeys(body.user_ids)))
    return ok("Students removed", result)


@student_router.get("/{user_id}/lecture")
def student_lectures(
    user_id: str,
    current: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    student = crud.require_user(db, user_id, Role.STUDENT)
    allowed = (
        current.user_id == user_id
        or (current.role == Role.PARENT and user_id in crud.children_ids(db, current.user_id))
        or (current.role in (Role.CHIEF, Role.TEACHER) and current.academy_id == student.academy_id)
    )
    if not allowed:
        raise ForbiddenError("You cannot view this student's lectures")

    lectures = (
        db.query(Lecture)
        .join(LectureParticipant, LectureParticipant.lecture_id == Lecture.lecture_id)
        .filter(LectureParticipant.user_id == user_id)
        .order_by(Lecture.lecture_id)
        .all()
    )
    data = [
        {
            "lecture_id": lecture.lecture_id,
            "lecture_name": lecture.lecture_name,
            "teacher_name": lecture.teacher.user_name if lecture.teacher else None,
            "days": [d.day.value for d in lecture.days],
            "start_time": lecture.start_time.isoformat() if lecture.start_time else None,
            "end_time": lecture.end_time.isoformat() if lecture.end_time else None,
        }
        for lecture in lectures
    ]
    return ok("Student lectures", data)


# ==========================================
# TEACHERS
# ==========================================

@teacher_router.get("/{academy_id}")
def list_teachers(
    academy_id: str,
    current: CurrentUser = Depends(require_roles(Role.CHIEF)),
    db: Session = Depends(get_db),
):
    ensure_same_academy(current, academy_id)
    teachers = (
        db.query(User)
        .filter(User.academy_id == academy_id, User.role == Role.TEACHER)
        .order_by(User.user_name)
        .all()
    )
    data = []
    for teacher in teachers:
        lectures = db.query(Lecture).filter(Lecture.teacher_id == teacher.user_id).all()
        data.append({
            **_contact(teacher),
            "lectures": [{"lecture_id": l.lecture_id, "lecture_name": l.lecture_name} for l in lectures],
        })
    return ok("Teachers", data)


@teacher_router.delete("/{academy_id}")
def remove_teachers(
    academy_id: str,
    body: schemas.MemberRemoval,
    current: CurrentUser = Depends(require_roles(Role.CHIEF)),
    db: Session = Depends(get_db),
):
    ensure_same_academy(current, academy_id)
    result = members.remove_teachers(db, academy_id, list(dict.fromkeys(body.user_ids)))
    return ok("Teachers removed", result)
