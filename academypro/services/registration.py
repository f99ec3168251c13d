"""
Academy membership workflow.

A registration moves PENDING → APPROVED | REJECTED and then never moves
again. A student's linked parents hold their own registration rows that
must follow the student's: transition_linked() applies one target state
to a primary row and its secondaries inside a single transaction.
"""

import logging
import secrets
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from academypro.database.models import (
    Academy, AcademyUserRegistrationList, Family, Role, Status, User,
)
from academypro.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from academypro.services.headcount import refresh_headcount

log = logging.getLogger(__name__)

JOINABLE_ROLES = (Role.TEACHER, Role.STUDENT, Role.PARENT)


class RegistrationState:
    """Allowed moves of a registration (or academy) status."""

    TRANSITIONS: Dict[Status, FrozenSet[Status]] = {
        Status.PENDING: frozenset({Status.APPROVED, Status.REJECTED}),
        Status.APPROVED: frozenset(),
        Status.REJECTED: frozenset(),
    }

    @classmethod
    def can_transition(cls, current: Status, target: Status) -> bool:
        return target in cls.TRANSITIONS.get(current, frozenset())

    @classmethod
    def check(cls, current: Status, target: Status) -> None:
        if not cls.can_transition(current, target):
            raise ConflictError(
                f"Cannot move registration from {current.value} to {target.value}",
                error_code="INVALID_TRANSITION",
            )


def _now():
    return datetime.now(timezone.utc)


# ==========================================
# ACADEMIES
# ==========================================

def register_academy(db: Session, chief_id: str, academy_id: str, academy_name: str,
                     academy_email: Optional[str] = None, address: Optional[str] = None,
                     phone_number: Optional[str] = None, academy_key: Optional[str] = None) -> Academy:
    """Create a PENDING academy owned by a CHIEF. The invite key must be unique."""
    academy = Academy(
        academy_id=academy_id,
        academy_key=academy_key or secrets.token_urlsafe(8),
        academy_name=academy_name,
        academy_email=academy_email,
        address=address,
        phone_number=phone_number,
        status=Status.PENDING,
        chief_id=chief_id,
    )
    db.add(academy)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Academy id or invite key already exists")
    db.refresh(academy)
    return academy


def decide_academy(db: Session, academy_id: str, target: Status) -> Academy:
    """ADMIN decision on a new academy. Approval affiliates the owning CHIEF."""
    academy = db.query(Academy).filter(Academy.academy_id == academy_id).first()
    if not academy:
        raise NotFoundError(f"Academy {academy_id} does not exist")
    RegistrationState.check(academy.status, target)

    academy.status = target
    if target == Status.APPROVED and academy.chief_id:
        chief = db.query(User).filter(User.user_id == academy.chief_id).first()
        if chief:
            chief.academy_id = academy.academy_id
    db.commit()
    db.refresh(academy)
    log.info("Academy %s → %s", academy_id, target.value)
    return academy


# ==========================================
# USER REGISTRATIONS
# ==========================================

def _pending_registration(db: Session, academy_id: str, user_id: str,
                          role: Optional[Role] = None) -> Optional[AcademyUserRegistrationList]:
    query = db.query(AcademyUserRegistrationList).filter(
        AcademyUserRegistrationList.academy_id == academy_id,
        AcademyUserRegistrationList.user_id == user_id,
        AcademyUserRegistrationList.status == Status.PENDING,
    )
    if role is not None:
        query = query.filter(AcademyUserRegistrationList.role == role)
    return query.first()


def _parent_ids(db: Session, student_id: str) -> List[str]:
    return [f.parent_id for f in db.query(Family).filter(Family.student_id == student_id).all()]


def request_registration(db: Session, user_id: str, role: Role, academy_id: str,
                         academy_key: str) -> List[AcademyUserRegistrationList]:
    """
    Ask to join an academy with its invite key.

    A STUDENT's linked parents get their own PENDING rows in the same
    commit, unless they already have one pending for this academy.
    """
    if role not in JOINABLE_ROLES:
        raise BadRequestError(f"{role.value} users cannot request to join an academy")

    academy = db.query(Academy).filter(Academy.academy_id == academy_id).first()
    if not academy:
        raise NotFoundError(f"Academy {academy_id} does not exist")
    if academy.status != Status.APPROVED:
        raise BadRequestError("Academy is not accepting members yet", error_code="ACADEMY_NOT_APPROVED")
    if not academy_key or not secrets.compare_digest(academy.academy_key, academy_key):
        raise ForbiddenError("Invalid academy key", error_code="INVALID_ACADEMY_KEY")

    user = db.query(User).filter(User.user_id == user_id, User.role == role).first()
    if not user:
        raise NotFoundError(f"No {role.value.lower()} with id {user_id}", error_code="USER_NOT_FOUND")
    if _pending_registration(db, academy_id, user_id, role):
        raise ConflictError("A registration request is already pending", error_code="ALREADY_PENDING")

    created = [AcademyUserRegistrationList(academy_id=academy_id, user_id=user_id, role=role)]
    if role == Role.STUDENT:
        for parent_id in _parent_ids(db, user_id):
            if _pending_registration(db, academy_id, parent_id) is None:
                created.append(
                    AcademyUserRegistrationList(academy_id=academy_id, user_id=parent_id, role=Role.PARENT)
                )

    db.add_all(created)
    db.commit()
    for row in created:
        db.refresh(row)
    return created


def list_pending(db: Session, academy_id: str) -> List[AcademyUserRegistrationList]:
    return (
        db.query(AcademyUserRegistrationList)
        .filter(
            AcademyUserRegistrationList.academy_id == academy_id,
            AcademyUserRegistrationList.status == Status.PENDING,
        )
        .order_by(AcademyUserRegistrationList.created_at)
        .all()
    )


def transition_linked(db: Session, primary: AcademyUserRegistrationList,
                      secondaries: Sequence[AcademyUserRegistrationList],
                      target: Status) -> List[AcademyUserRegistrationList]:
    """
    Move a registration and its linked rows to the same state atomically.

    On approval every involved user is affiliated with the academy and the
    academy headcounts are refreshed. Either all rows commit or none do.
    """
    rows = [primary, *secondaries]
    for row in rows:
        RegistrationState.check(row.status, target)

    decided_at = _now()
    try:
        for row in rows:
            row.status = target
            row.decided_at = decided_at
            if target == Status.APPROVED:
                user = db.query(User).filter(User.user_id == row.user_id).first()
                if user is None:
                    raise NotFoundError(f"User {row.user_id} no longer exists")
                user.academy_id = row.academy_id
        if target == Status.APPROVED:
            refresh_headcount(db, primary.academy_id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    log.info(
        "Registration of %s at %s → %s (linked: %s)",
        primary.user_id, primary.academy_id, target.value,
        [row.user_id for row in secondaries] or "none",
    )
    return rows


def _student_ids(db: Session, parent_id: str) -> List[str]:
    return [f.student_id for f in db.query(Family).filter(Family.parent_id == parent_id).all()]


def decide_registration(db: Session, academy_id: str, user_id: str,
                        target: Status) -> List[AcademyUserRegistrationList]:
    """
    CHIEF decision on a pending join request; students carry their parents along.

    Deciding a parent whose linked student is still pending at the same
    academy decides the student's request instead, so the pair never splits.
    """
    if target not in (Status.APPROVED, Status.REJECTED):
        raise BadRequestError("status must be APPROVED or REJECTED")

    primary = _pending_registration(db, academy_id, user_id)
    if primary is None:
        raise NotFoundError(f"No pending registration for {user_id}", error_code="REGISTRATION_NOT_FOUND")

    if primary.role == Role.PARENT:
        for student_id in _student_ids(db, user_id):
            student_row = _pending_registration(db, academy_id, student_id, Role.STUDENT)
            if student_row is not None:
                primary = student_row
                break

    secondaries = []
    if primary.role == Role.STUDENT:
        for parent_id in _parent_ids(db, primary.user_id):
            parent_row = _pending_registration(db, academy_id, parent_id, Role.PARENT)
            if parent_row is not None:
                secondaries.append(parent_row)

    return transition_linked(db, primary, secondaries, target)


# ==========================================
# FAMILY LINKS
# ==========================================

def link_family(db: Session, parent_id: str, student_id: str) -> Family:
    """
    Link a parent to a student. If the student already has a registration,
    the parent gets one in the same state (and the same affiliation when approved).
    """
    student = db.query(User).filter(User.user_id == student_id, User.role == Role.STUDENT).first()
    if not student:
        raise NotFoundError(f"{student_id} is not a registered student")
    parent = db.query(User).filter(User.user_id == parent_id, User.role == Role.PARENT).first()
    if not parent:
        raise NotFoundError(f"{parent_id} is not a registered parent")

    family = Family(parent_id=parent_id, student_id=student_id)
    db.add(family)

    student_registration = (
        db.query(AcademyUserRegistrationList)
        .filter(AcademyUserRegistrationList.user_id == student_id)
        .order_by(AcademyUserRegistrationList.id.desc())
        .first()
    )
    if student_registration is not None:
        db.add(AcademyUserRegistrationList(
            academy_id=student_registration.academy_id,
            user_id=parent_id,
            role=Role.PARENT,
            status=student_registration.status,
            decided_at=student_registration.decided_at,
        ))
        if student_registration.status == Status.APPROVED:
            parent.academy_id = student_registration.academy_id

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("These users are already linked")
    db.refresh(family)
    return family
