from datetime import date

import pytest

from academypro.database.models import Class
from academypro.errors import BadRequestError, NotFoundError
from academypro.services import billing


@pytest.fixture
def classes(world):
    items = [
        Class(academy_id="acad1", class_name="Math", expense=150000, discount=10000, duration=30),
        Class(academy_id="acad1", class_name="English", expense=120000, duration=30),
        Class(academy_id="acad2", class_name="Other", expense=1, duration=1),
    ]
    world.add_all(items)
    world.commit()
    return items


def test_amount_ignores_discount(classes):
    assert billing.bill_amount(classes[:2]) == 270000


def test_create_bill_for_several_users(world, classes):
    bill = billing.create_bill(world, "acad1", ["student1", "parent1", "student1"],
                               [classes[0].class_id, classes[1].class_id], date(2024, 5, 31))

    assert bill.amount == 270000
    assert bill.deadline == date(2024, 5, 31)
    assert sorted(u.user_id for u in bill.users) == ["parent1", "student1"]
    assert all(not u.paid for u in bill.users)
    assert sorted(c.class_id for c in bill.classes) == sorted([classes[0].class_id, classes[1].class_id])


def test_classes_of_other_academies_are_rejected(world, classes):
    with pytest.raises(NotFoundError) as err:
        billing.create_bill(world, "acad1", ["student1"], [classes[2].class_id])
    assert err.value.error_code == "CLASS_NOT_FOUND"


def test_users_outside_the_academy_are_rejected(world, classes):
    with pytest.raises(NotFoundError) as err:
        billing.create_bill(world, "acad1", ["student2"], [classes[0].class_id])
    assert err.value.error_code == "USER_NOT_FOUND"


def test_empty_bill_is_rejected(world):
    with pytest.raises(BadRequestError):
        billing.create_bill(world, "acad1", [], [])


def test_paying_marks_only_the_payers_share(world, classes):
    bill = billing.create_bill(world, "acad1", ["student1", "parent1"], [classes[0].class_id])

    [share] = billing.pay_bill(world, "acad1", bill.bill_id, ["student1"])
    first_paid_at = share.paid_at

    assert share.user_id == "student1" and share.paid
    world.refresh(bill)
    assert {u.user_id: u.paid for u in bill.users} == {"student1": True, "parent1": False}

    [again] = billing.pay_bill(world, "acad1", bill.bill_id, ["student1"])
    assert again.paid_at == first_paid_at


def test_paying_a_bill_you_do_not_owe(world, classes):
    bill = billing.create_bill(world, "acad1", ["student1"], [classes[0].class_id])
    with pytest.raises(NotFoundError) as err:
        billing.pay_bill(world, "acad1", bill.bill_id, ["parent1"])
    assert err.value.error_code == "BILL_NOT_FOUND"


def test_list_bills_for_one_user(world, classes):
    billing.create_bill(world, "acad1", ["student1"], [classes[0].class_id])
    billing.create_bill(world, "acad1", ["parent1"], [classes[1].class_id])

    assert len(billing.list_bills(world, "acad1")) == 2
    assert [b.amount for b in billing.list_bills(world, "acad1", "student1")] == [150000]
    assert billing.list_bills(world, "acad2") == []
