"""
Bill API endpoints
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from academypro.auth.dependencies import CurrentUser, ensure_same_academy, get_current_user, require_roles
from academypro.database import crud, schemas
from academypro.database.database import get_db
from academypro.database.models import Bill, Role
from academypro.errors import ok
from academypro.services import billing

router = APIRouter(prefix="/bill", tags=["bill"])


def _bill_data(bill: Bill) -> dict:
    return schemas.BillResponse(
        bill_id=bill.bill_id,
        academy_id=bill.academy_id,
        amount=bill.amount,
        deadline=bill.deadline,
        class_ids=[c.class_id for c in bill.classes],
        users=[schemas.BillUserResponse.model_validate(u) for u in bill.users],
    ).model_dump(mode="json")


@router.post("/{academy_id}", status_code=status.HTTP_201_CREATED)
def create_bill(
    academy_id: str,
    body: schemas.BillCreate,
    current: CurrentUser = Depends(require_roles(Role.CHIEF)),
    db: Session = Depends(get_db),
):
    ensure_same_academy(current, academy_id)
    bill = billing.create_bill(db, academy_id, body.user_ids, body.class_ids, body.deadline)
    return ok("Bill created", _bill_data(bill))


@router.get("/{academy_id}")
def list_bills(
    academy_id: str,
    current: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """CHIEF sees every bill; students see their own, parents their children's."""
    ensure_same_academy(current, academy_id)
    if current.role == Role.CHIEF:
        bills = billing.list_bills(db, academy_id)
    elif current.role == Role.PARENT:
        seen, bills = set(), []
        for child_id in crud.children_ids(db, current.user_id):
            for bill in billing.list_bills(db, academy_id, child_id):
                if bill.bill_id not in seen:
                    seen.add(bill.bill_id)
                    bills.append(bill)
    else:
        bills = billing.list_bills(db, academy_id, current.user_id)
    return ok("Bills", [_bill_data(b) for b in bills])


@router.post("/{academy_id}/pay")
def pay_bill(
    academy_id: str,
    body: schemas.BillPay,
    current: CurrentUser = Depends(require_roles(Role.STUDENT, Role.PARENT)),
    db: Session = Depends(get_db),
):
    ensure_same_academy(current, academy_id)
    payer_ids = [current.user_id]
    if current.role == Role.PARENT:
        payer_ids = crud.children_ids(db, current.user_id)
    shares = billing.pay_bill(db, academy_id, body.bill_id, payer_ids)
    paid = [schemas.BillUserResponse.model_validate(s).model_dump(mode="json") for s in shares]
    return ok("Bill paid", {"bill_id": body.bill_id, "paid": paid})
