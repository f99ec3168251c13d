"""
Academy and membership registration endpoints.
ADMIN decides on academies; the academy's CHIEF decides on members.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from academypro.auth.dependencies import CurrentUser, ensure_same_academy, require_roles
from academypro.database import schemas
from academypro.database.database import get_db
from academypro.database.models import Academy, AcademyUserRegistrationList, Role, Status
from academypro.errors import NotFoundError, ok
from academypro.services import registration

router = APIRouter(prefix="/registration", tags=["registration"])


def _registration_data(row: AcademyUserRegistrationList) -> dict:
    return schemas.RegistrationResponse.model_validate(row).model_dump(mode="json")


def _academy_data(academy: Academy) -> dict:
    return schemas.AcademyResponse.model_validate(academy).model_dump(mode="json")


# ==========================================
# ACADEMIES
# ==========================================

@router.post("/request/academy", status_code=status.HTTP_201_CREATED)
def request_academy(
    body: schemas.AcademyCreate,
    current: CurrentUser = Depends(require_roles(Role.CHIEF)),
    db: Session = Depends(get_db),
):
    academy = registration.register_academy(
        db,
        chief_id=current.user_id,
        academy_id=body.academy_id,
        academy_name=body.academy_name,
        academy_email=body.academy_email,
        address=body.address,
        phone_number=body.phone_number,
        academy_key=body.academy_key,
    )
    return ok("Academy registration requested", _academy_data(academy))


@router.get("/list/academy")
def list_pending_academies(
    current: CurrentUser = Depends(require_roles(Role.ADMIN)),
    db: Session = Depends(get_db),
):
    academies = (
        db.query(Academy)
        .filter(Academy.status == Status.PENDING)
        .order_by(Academy.created_at)
        .all()
    )
    return ok("Pending academies", [_academy_data(a) for a in academies])


@router.post("/decide/academy")
def decide_academy(
    body: schemas.AcademyDecision,
    current: CurrentUser = Depends(require_roles(Role.ADMIN)),
    db: Session = Depends(get_db),
):
    target = Status.APPROVED if body.approve else Status.REJECTED
    academy = registration.decide_academy(db, body.academy_id, target)
    return ok(f"Academy {target.value.lower()}", _academy_data(academy))


# ==========================================
# MEMBERS
# ==========================================

@router.post("/request/user", status_code=status.HTTP_201_CREATED)
def request_membership(
    body: schemas.UserRegistrationRequest,
    current: CurrentUser = Depends(require_roles(Role.TEACHER, Role.STUDENT, Role.PARENT)),
    db: Session = Depends(get_db),
):
    rows = registration.request_registration(
        db, current.user_id, current.role, body.academy_id, body.academy_key,
    )
    return ok("Registration requested", [_registration_data(r) for r in rows])


@router.get("/list/user")
def list_pending_members(
    academy_id: str,
    current: CurrentUser = Depends(require_roles(Role.CHIEF, Role.TEACHER)),
    db: Session = Depends(get_db),
):
    ensure_same_academy(current, academy_id)
    rows = registration.list_pending(db, academy_id)
    data = [
        {
            **_registration_data(row),
            "user_name": row.user.user_name if row.user else None,
            "phone_number": row.user.phone_number if row.user else None,
        }
        for row in rows
    ]
    return ok("Pending registrations", data)


@router.post("/decide/user")
def decide_members(
    body: schemas.UserDecision,
    current: CurrentUser = Depends(require_roles(Role.CHIEF)),
    db: Session = Depends(get_db),
):
    academy_id = current.academy_id
    ensure_same_academy(current, academy_id)
    target = Status.APPROVED if body.approve else Status.REJECTED

    user_ids = list(dict.fromkeys(body.user_ids))
    pending = {
        row.user_id
        for row in db.query(AcademyUserRegistrationList).filter(
            AcademyUserRegistrationList.academy_id == academy_id,
            AcademyUserRegistrationList.user_id.in_(user_ids),
            AcademyUserRegistrationList.status == Status.PENDING,
        )
    }
    missing = [u for u in user_ids if u not in pending]
    if missing:
        raise NotFoundError(f"No pending registration for: {', '.join(missing)}",
                            error_code="REGISTRATION_NOT_FOUND")

    changed = []
    for user_id in user_ids:
        if user_id in changed:
            # already carried along as a linked parent
            continue
        rows = registration.decide_registration(db, academy_id, user_id, target)
        changed.extend(row.user_id for row in rows)

    return ok(f"Registrations {target.value.lower()}", {
        "user_ids": changed,
        "input_count": len(user_ids),
        "changed_count": len(changed),
        "status": target.value,
    })
