"""
Joint bills: one Bill shared by a set of users for a set of classes.
"""

import logging
from datetime import date, datetime, timezone
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from academypro.database.models import Bill, BillClass, BillUser, Class, User
from academypro.errors import BadRequestError, NotFoundError

log = logging.getLogger(__name__)


def bill_amount(classes: Sequence[Class]) -> int:
    """Sum of class expenses. Class.discount is not applied."""
    return sum(c.expense for c in classes)


def create_bill(db: Session, academy_id: str, user_ids: List[str], class_ids: List[int],
                deadline: Optional[date] = None) -> Bill:
    user_ids = list(dict.fromkeys(user_ids))
    class_ids = list(dict.fromkeys(class_ids))
    if not user_ids or not class_ids:
        raise BadRequestError("A bill needs at least one user and one class", error_code="INVALID_INPUT")

    classes = (
        db.query(Class)
        .filter(Class.academy_id == academy_id, Class.class_id.in_(class_ids))
        .all()
    )
    missing_classes = sorted(set(class_ids) - {c.class_id for c in classes})
    if missing_classes:
        raise NotFoundError(f"Unknown classes: {missing_classes}", error_code="CLASS_NOT_FOUND")

    found_users = {
        u for (u,) in db.query(User.user_id)
        .filter(User.academy_id == academy_id, User.user_id.in_(user_ids))
        .all()
    }
    missing_users = sorted(set(user_ids) - found_users)
    if missing_users:
        raise NotFoundError(f"Users not in this academy: {', '.join(missing_users)}", error_code="USER_NOT_FOUND")

    bill = Bill(academy_id=academy_id, amount=bill_amount(classes), deadline=deadline)
    bill.classes = [BillClass(class_id=class_id) for class_id in class_ids]
    bill.users = [BillUser(user_id=user_id) for user_id in user_ids]
    db.add(bill)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(bill)
    log.info("Bill %s created for %d users (amount=%s)", bill.bill_id, len(user_ids), bill.amount)
    return bill


def list_bills(db: Session, academy_id: str, user_id: Optional[str] = None) -> List[Bill]:
    query = db.query(Bill).filter(Bill.academy_id == academy_id)
    if user_id is not None:
        query = query.join(BillUser).filter(BillUser.user_id == user_id)
    return query.order_by(Bill.bill_id.desc()).all()


def pay_bill(db: Session, academy_id: str, bill_id: int, user_ids: List[str]) -> List[BillUser]:
    """
    Mark the shares of the given users on one bill as paid.
    Users the bill does not name are skipped; paying twice is a no-op.
    """
    shares = (
        db.query(BillUser)
        .join(Bill)
        .filter(Bill.academy_id == academy_id, BillUser.bill_id == bill_id, BillUser.user_id.in_(user_ids))
        .all()
    ) if user_ids else []
    if not shares:
        raise NotFoundError(f"Bill {bill_id} is not owed by {', '.join(user_ids) or 'anyone'}",
                            error_code="BILL_NOT_FOUND")

    paid_at = datetime.now(timezone.utc)
    for share in shares:
        if not share.paid:
            share.paid = True
            share.paid_at = paid_at
    db.commit()
    for share in shares:
        db.refresh(share)
    return shares