"""
Lecture API endpoints
Lectures, their rosters, exams and exam scores
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from academypro.auth.dependencies import CurrentUser, ensure_same_academy, require_roles
from academypro.database import crud, schemas
from academypro.database.database import get_db
from academypro.database.mongo import DocumentStore
from academypro.database.models import (
    Exam, ExamType, ExamUserScore, Lecture, LectureDay, LectureParticipant, Role, User,
)
from academypro.errors import BadRequestError, ConflictError, ForbiddenError, ok
from academypro.resources import get_document_store
from academypro.services import scores
from academypro.services.quiz import QUIZ_EXAM_TYPE

router = APIRouter(prefix="/lecture", tags=["lecture"])

STAFF = (Role.CHIEF, Role.TEACHER)
EVERYONE = (Role.CHIEF, Role.TEACHER, Role.STUDENT, Role.PARENT)


# ─── Helpers ───────────────────────────────────────────────────────────────────

def _lecture_data(lecture: Lecture) -> dict:
    return {
        "lecture_id": lecture.lecture_id,
        "lecture_name": lecture.lecture_name,
        "teacher_id": lecture.teacher_id,
        "teacher_name": lecture.teacher.user_name if lecture.teacher else None,
        "academy_id": lecture.academy_id,
        "days": [d.day.value for d in lecture.days],
        "start_time": lecture.start_time.isoformat() if lecture.start_time else None,
        "end_time": lecture.end_time.isoformat() if lecture.end_time else None,
        "headcount": lecture.headcount,
    }


def _exam_data(exam: Exam) -> dict:
    return schemas.ExamResponse.model_validate(exam).model_dump(mode="json")


def _own_lecture(db: Session, current: CurrentUser, lecture_id: int) -> Lecture:
    """Lecture in the caller's academy; a TEACHER must also be teaching it."""
    ensure_same_academy(current, current.academy_id)
    lecture = crud.require_lecture(db, lecture_id, current.academy_id)
    if current.role == Role.TEACHER and lecture.teacher_id != current.user_id:
        raise ForbiddenError("You do not teach this lecture")
    return lecture


def _check_teacher(db: Session, teacher_id: str, academy_id: str) -> None:
    teacher = crud.require_user(db, teacher_id, Role.TEACHER)
    if teacher.academy_id != academy_id:
        raise BadRequestError(f"{teacher_id} does not teach at this academy", error_code="INVALID_TEACHER")


def _check_times(start_time, end_time) -> None:
    if start_time and end_time and start_time >= end_time:
        raise BadRequestError("start_time must be before end_time", error_code="INVALID_INPUT")


# ==========================================
# LECTURES
# ==========================================

@router.get("/{academy_id}")
def list_lectures(
    academy_id: str,
    current: CurrentUser = Depends(require_roles(*STAFF)),
    db: Session = Depends(get_db),
):
    ensure_same_academy(current, academy_id)
    query = db.query(Lecture).filter(Lecture.academy_id == academy_id)
    if current.role == Role.TEACHER:
        query = query.filter(Lecture.teacher_id == current.user_id)
    lectures = query.order_by(Lecture.lecture_id).all()
    return ok("Lectures", [_lecture_data(lecture) for lecture in lectures])


@router.post("", status_code=status.HTTP_201_CREATED)
def create_lecture(
    body: schemas.LectureCreate,
    current: CurrentUser = Depends(require_roles(Role.CHIEF)),
    db: Session = Depends(get_db),
):
    ensure_same_academy(current, current.academy_id)
    _check_teacher(db, body.teacher_id, current.academy_id)
    _check_times(body.start_time, body.end_time)

    lecture = Lecture(
        lecture_name=body.lecture_name,
        teacher_id=body.teacher_id,
        academy_id=current.academy_id,
        start_time=body.start_time,
        end_time=body.end_time,
    )
    lecture.days = [LectureDay(day=day) for day in dict.fromkeys(body.days)]
    db.add(lecture)
    db.commit()
    db.refresh(lecture)
    return ok("Lecture created", _lecture_data(lecture))


@router.put("/{lecture_id}")
def modify_lecture(
    lecture_id: int,
    body: schemas.LectureUpdate,
    current: CurrentUser = Depends(require_roles(Role.CHIEF)),
    db: Session = Depends(get_db),
):
    lecture = _own_lecture(db, current, lecture_id)
    if body.teacher_id is not None:
        _check_teacher(db, body.teacher_id, lecture.academy_id)
        lecture.teacher_id = body.teacher_id
    if body.lecture_name is not None:
        lecture.lecture_name = body.lecture_name
    if body.start_time is not None:
        lecture.start_time = body.start_time
    if body.end_time is not None:
        lecture.end_time = body.end_time
    _check_times(lecture.start_time, lecture.end_time)
    if body.days is not None:
        lecture.days = []
        db.flush()
        lecture.days = [LectureDay(day=day) for day in dict.fromkeys(body.days)]
    db.commit()
    db.refresh(lecture)
    return ok("Lecture updated", _lecture_data(lecture))


@router.delete("/{lecture_id}")
def delete_lecture(
    lecture_id: int,
    current: CurrentUser = Depends(require_roles(Role.CHIEF)),
    db: Session = Depends(get_db),
):
    lecture = _own_lecture(db, current, lecture_id)
    db.delete(lecture)
    db.commit()
    return ok("Lecture deleted", {"lecture_id": lecture_id})


# ==========================================
# ROSTER
# ==========================================

@router.get("/{lecture_id}/student")
def list_lecture_students(
    lecture_id: int,
    current: CurrentUser = Depends(require_roles(*STAFF)),
    db: Session = Depends(get_db),
):
    lecture = _own_lecture(db, current, lecture_id)
    data = [
        {"user_id": p.user.user_id, "user_name": p.user.user_name, "phone_number": p.user.phone_number}
        for p in lecture.participants
    ]
    return ok("Lecture students", data)


@router.post("/{lecture_id}/student", status_code=status.HTTP_201_CREATED)
def add_lecture_students(
    lecture_id: int,
    body: schemas.RosterRequest,
    current: CurrentUser = Depends(require_roles(*STAFF)),
    db: Session = Depends(get_db),
):
    lecture = _own_lecture(db, current, lecture_id)
    user_ids = list(dict.fromkeys(body.user_ids))
    students = {
        u for (u,) in db.query(User.user_id).filter(
            User.user_id.in_(user_ids),
            User.academy_id == lecture.academy_id,
            User.role == Role.STUDENT,
        )
    }
    invalid = [u for u in user_ids if u not in students]
    if invalid:
        raise BadRequestError(f"Not students of this academy: {', '.join(invalid)}", error_code="INVALID_STUDENT")

    enrolled = {p.user_id for p in lecture.participants}
    added = [u for u in user_ids if u not in enrolled]
    for user_id in added:
        db.add(LectureParticipant(lecture_id=lecture.lecture_id, user_id=user_id))
    try:
        crud.refresh_lecture_headcount(db, lecture)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Some students were enrolled concurrently, try again")
    return ok("Students added", {"added": added, "headcount": lecture.headcount})


@router.delete("/{lecture_id}/student")
def remove_lecture_students(
    lecture_id: int,
    body: schemas.RosterRequest,
    current: CurrentUser = Depends(require_roles(*STAFF)),
    db: Session = Depends(get_db),
):
    lecture = _own_lecture(db, current, lecture_id)
    removed = (
        db.query(LectureParticipant)
        .filter(LectureParticipant.lecture_id == lecture.lecture_id, LectureParticipant.user_id.in_(body.user_ids))
        .delete(synchronize_session=False)
    )
    db.expire(lecture, ["participants"])
    crud.refresh_lecture_headcount(db, lecture)
    db.commit()
    return ok("Students removed", {"removed_count": removed, "headcount": lecture.headcount})


# ==========================================
# EXAMS
# ==========================================

@router.post("/{lecture_id}/exam", status_code=status.HTTP_201_CREATED)
def create_exam(
    lecture_id: int,
    body: schemas.ExamCreate,
    current: CurrentUser = Depends(require_roles(*STAFF)),
    db: Session = Depends(get_db),
):
    lecture = _own_lecture(db, current, lecture_id)
    crud.require_exam_type(db, body.exam_type_id, lecture.academy_id)
    exam = Exam(
        lecture_id=lecture.lecture_id,
        exam_type_id=body.exam_type_id,
        exam_name=body.exam_name,
        exam_date=body.exam_date,
    )
    db.add(exam)
    db.commit()
    db.refresh(exam)
    return ok("Exam created", _exam_data(exam))


@router.get("/{lecture_id}/exam")
def list_exams(
    lecture_id: int,
    exam_type_id: Optional[int] = None,
    current: CurrentUser = Depends(require_roles(*EVERYONE)),
    db: Session = Depends(get_db),
):
    ensure_same_academy(current, current.academy_id)
    lecture = crud.require_lecture(db, lecture_id, current.academy_id)
    query = db.query(Exam).filter(Exam.lecture_id == lecture.lecture_id)
    if exam_type_id is not None:
        query = query.filter(Exam.exam_type_id == exam_type_id)
    exams = query.order_by(Exam.exam_date, Exam.exam_id).all()
    return ok("Exams", [_exam_data(e) for e in exams])


@router.delete("/{lecture_id}/exam/{exam_id}")
def delete_exam(
    lecture_id: int,
    exam_id: int,
    current: CurrentUser = Depends(require_roles(*STAFF)),
    db: Session = Depends(get_db),
    store: DocumentStore = Depends(get_document_store),
):
    lecture = _own_lecture(db, current, lecture_id)
    exam = crud.require_exam(db, exam_id, lecture.lecture_id)
    is_quiz = exam.exam_type is not None and exam.exam_type.exam_type_name == QUIZ_EXAM_TYPE
    db.delete(exam)
    db.commit()
    if is_quiz:
        store.delete_quiz(exam_id)
    return ok("Exam deleted", {"exam_id": exam_id})


# ==========================================
# SCORES
# ==========================================

@router.post("/{lecture_id}/exam/{exam_id}/score")
def upload_scores(
    lecture_id: int,
    exam_id: int,
    body: schemas.ScoreBatch,
    current: CurrentUser = Depends(require_roles(*STAFF)),
    db: Session = Depends(get_db),
):
    lecture = _own_lecture(db, current, lecture_id)
    exam = scores.lock_exam(db, exam_id, lecture.lecture_id)
    exam = scores.upload_scores(db, exam, [(e.user_id, e.score) for e in body.scores])
    return ok("Scores uploaded", _exam_data(exam))


@router.get("/{lecture_id}/exam/{exam_id}/score")
def list_scores(
    lecture_id: int,
    exam_id: int,
    current: CurrentUser = Depends(require_roles(*STAFF)),
    db: Session = Depends(get_db),
):
    lecture = _own_lecture(db, current, lecture_id)
    exam = crud.require_exam(db, exam_id, lecture.lecture_id)
    rows = (
        db.query(ExamUserScore, User.user_name)
        .join(User, User.user_id == ExamUserScore.user_id)
        .filter(ExamUserScore.exam_id == exam.exam_id)
        .order_by(ExamUserScore.user_id)
        .all()
    )
    return ok("Scores", {
        "exam": _exam_data(exam),
        "scores": [{"user_id": s.user_id, "user_name": name, "score": s.score} for s, name in rows],
    })


@router.put("/{lecture_id}/exam/{exam_id}/score")
def modify_score(
    lecture_id: int,
    exam_id: int,
    body: schemas.ScoreUpdate,
    current: CurrentUser = Depends(require_roles(*STAFF)),
    db: Session = Depends(get_db),
):
    lecture = _own_lecture(db, current, lecture_id)
    exam = scores.lock_exam(db, exam_id, lecture.lecture_id)
    exam, changed = scores.modify_score(db, exam, body.user_id, body.score)
    message = "Score updated" if changed else "Score unchanged"
    return ok(message, _exam_data(exam))


def _check_score_viewer(db: Session, current: CurrentUser, user_id: str) -> None:
    if current.role == Role.STUDENT and current.user_id != user_id:
        raise ForbiddenError("Students can only view their own scores")
    if current.role == Role.PARENT and user_id not in crud.children_ids(db, current.user_id):
        raise ForbiddenError("Parents can only view their children's scores")


@router.get("/{lecture_id}/score")
def score_history(
    lecture_id: int,
    user_id: str,
    exam_type_id: int,
    asc: bool = True,
    current: CurrentUser = Depends(require_roles(*EVERYONE)),
    db: Session = Depends(get_db),
):
    """One user's scores in a lecture for one exam type, ordered by exam date."""
    ensure_same_academy(current, current.academy_id)
    lecture = crud.require_lecture(db, lecture_id, current.academy_id)
    _check_score_viewer(db, current, user_id)
    exam_type: ExamType = crud.require_exam_type(db, exam_type_id, lecture.academy_id)

    order = Exam.exam_date.asc() if asc else Exam.exam_date.desc()
    rows: List = (
        db.query(Exam, ExamUserScore.score)
        .join(ExamUserScore, ExamUserScore.exam_id == Exam.exam_id)
        .filter(
            Exam.lecture_id == lecture.lecture_id,
            Exam.exam_type_id == exam_type.exam_type_id,
            ExamUserScore.user_id == user_id,
        )
        .order_by(order, Exam.exam_id)
        .all()
    )
    return ok("Score history", {
        "user_id": user_id,
        "lecture_id": lecture.lecture_id,
        "exam_data": {
            "exam_type": {"exam_type_id": exam_type.exam_type_id, "exam_type_name": exam_type.exam_type_name},
            "exam_list": [
                {
                    "exam_id": exam.exam_id,
                    "exam_name": exam.exam_name,
                    "exam_date": exam.exam_date.isoformat() if exam.exam_date else None,
                    "score": score,
                }
                for exam, score in rows
            ],
        },
    })
