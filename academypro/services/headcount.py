"""
Cached academy headcounts.
Academy.student_headcount / teacher_headcount are recounted from the users table.
"""

from sqlalchemy.orm import Session

from academypro.database.models import Academy, Role, User
from academypro.errors import NotFoundError


def refresh_headcount(db: Session, academy_id: str) -> dict:
    """Recount affiliated students and teachers. Does not commit."""
    db.flush()
    academy = db.query(Academy).filter(Academy.academy_id == academy_id).first()
    if not academy:
        raise NotFoundError(f"Academy {academy_id} does not exist")

    academy.student_headcount = (
        db.query(User).filter(User.academy_id == academy_id, User.role == Role.STUDENT).count()
    )
    academy.teacher_headcount = (
        db.query(User).filter(User.academy_id == academy_id, User.role == Role.TEACHER).count()
    )
    return {
        "student_headcount": academy.student_headcount,
        "teacher_headcount": academy.teacher_headcount,
    }
