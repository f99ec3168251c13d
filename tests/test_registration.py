import pytest

from academypro.database.models import Academy, AcademyUserRegistrationList, Role, Status, User
from academypro.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from academypro.services import registration
from academypro.services.registration import RegistrationState
from conftest import make_academy, make_user


def _user(db, user_id):
    return db.query(User).filter(User.user_id == user_id).one()


def _academy(db, academy_id):
    return db.query(Academy).filter(Academy.academy_id == academy_id).one()


# ─── State machine ────────────────────────────────────────────────────────────

@pytest.mark.parametrize("current,target,allowed", [
    (Status.PENDING, Status.APPROVED, True),
    (Status.PENDING, Status.REJECTED, True),
    (Status.PENDING, Status.PENDING, False),
    (Status.APPROVED, Status.REJECTED, False),
    (Status.APPROVED, Status.PENDING, False),
    (Status.REJECTED, Status.APPROVED, False),
])
def test_transition_table(current, target, allowed):
    assert RegistrationState.can_transition(current, target) is allowed


def test_check_raises_on_terminal_state():
    with pytest.raises(ConflictError) as err:
        RegistrationState.check(Status.APPROVED, Status.REJECTED)
    assert err.value.error_code == "INVALID_TRANSITION"


# ─── Academies ────────────────────────────────────────────────────────────────

def test_academy_approval_affiliates_chief(db):
    make_user(db, "chief9", Role.CHIEF)
    db.commit()
    academy = registration.register_academy(db, "chief9", "acad9", "Nine", academy_key="nine-key")
    assert academy.status == Status.PENDING
    assert _user(db, "chief9").academy_id is None

    academy = registration.decide_academy(db, "acad9", Status.APPROVED)

    assert academy.status == Status.APPROVED
    assert _user(db, "chief9").academy_id == "acad9"
    with pytest.raises(ConflictError):
        registration.decide_academy(db, "acad9", Status.REJECTED)


def test_academy_key_must_be_unique(world):
    with pytest.raises(ConflictError):
        registration.register_academy(world, "chief2", "acad3", "Three", academy_key="key-acad1")


def test_generated_academy_key(db):
    academy = registration.register_academy(db, "chief9", "acad9", "Nine")
    assert len(academy.academy_key) >= 8


# ─── Requests ─────────────────────────────────────────────────────────────────

def test_student_request_brings_parents_along(world):
    rows = registration.request_registration(world, "student2", Role.STUDENT, "acad1", "key-acad1")

    assert [(r.user_id, r.role, r.status) for r in rows] == [
        ("student2", Role.STUDENT, Status.PENDING),
        ("parent2", Role.PARENT, Status.PENDING),
    ]


def test_request_with_wrong_key_is_forbidden(world):
    with pytest.raises(ForbiddenError) as err:
        registration.request_registration(world, "student2", Role.STUDENT, "acad1", "wrong")
    assert err.value.error_code == "INVALID_ACADEMY_KEY"


def test_request_to_unapproved_academy(world):
    make_academy(world, "acad3", "chief2", status=Status.PENDING)
    world.commit()
    with pytest.raises(BadRequestError) as err:
        registration.request_registration(world, "teacher2", Role.TEACHER, "acad3", "key-acad3")
    assert err.value.error_code == "ACADEMY_NOT_APPROVED"


def test_duplicate_pending_request(world):
    registration.request_registration(world, "teacher2", Role.TEACHER, "acad1", "key-acad1")
    with pytest.raises(ConflictError) as err:
        registration.request_registration(world, "teacher2", Role.TEACHER, "acad1", "key-acad1")
    assert err.value.error_code == "ALREADY_PENDING"


def test_chief_cannot_request(world):
    with pytest.raises(BadRequestError):
        registration.request_registration(world, "chief2", Role.CHIEF, "acad1", "key-acad1")


def test_role_must_match_account(world):
    with pytest.raises(NotFoundError):
        registration.request_registration(world, "student2", Role.TEACHER, "acad1", "key-acad1")


# ─── Decisions ────────────────────────────────────────────────────────────────

def test_approving_student_approves_parents_and_refreshes_headcount(world):
    registration.request_registration(world, "student2", Role.STUDENT, "acad1", "key-acad1")

    rows = registration.decide_registration(world, "acad1", "student2", Status.APPROVED)

    assert {r.user_id for r in rows} == {"student2", "parent2"}
    assert all(r.status == Status.APPROVED and r.decided_at is not None for r in rows)
    assert _user(world, "student2").academy_id == "acad1"
    assert _user(world, "parent2").academy_id == "acad1"
    assert _academy(world, "acad1").student_headcount == 2


def test_rejection_leaves_users_unaffiliated(world):
    registration.request_registration(world, "student2", Role.STUDENT, "acad1", "key-acad1")

    rows = registration.decide_registration(world, "acad1", "student2", Status.REJECTED)

    assert all(r.status == Status.REJECTED for r in rows)
    assert _user(world, "student2").academy_id is None
    assert _user(world, "parent2").academy_id is None
    assert registration.list_pending(world, "acad1") == []


def test_deciding_parent_first_decides_the_student_too(world):
    registration.request_registration(world, "student2", Role.STUDENT, "acad1", "key-acad1")

    rows = registration.decide_registration(world, "acad1", "parent2", Status.APPROVED)

    assert {r.user_id for r in rows} == {"student2", "parent2"}
    assert all(r.status == Status.APPROVED for r in rows)
    with pytest.raises(NotFoundError):
        registration.decide_registration(world, "acad1", "student2", Status.REJECTED)
    assert _user(world, "student2").academy_id == "acad1"
    assert _user(world, "parent2").academy_id == "acad1"


def test_deciding_twice_finds_nothing_pending(world):
    registration.request_registration(world, "teacher2", Role.TEACHER, "acad1", "key-acad1")
    registration.decide_registration(world, "acad1", "teacher2", Status.APPROVED)

    with pytest.raises(NotFoundError):
        registration.decide_registration(world, "acad1", "teacher2", Status.REJECTED)
    assert _academy(world, "acad1").teacher_headcount == 2


def test_transition_of_decided_row_is_refused(world):
    [row] = registration.request_registration(world, "teacher2", Role.TEACHER, "acad1", "key-acad1")
    registration.transition_linked(world, row, [], Status.REJECTED)

    with pytest.raises(ConflictError):
        registration.transition_linked(world, row, [], Status.APPROVED)


def test_linked_transition_is_all_or_nothing(world):
    [primary] = registration.request_registration(world, "teacher2", Role.TEACHER, "acad1", "key-acad1")
    ghost = AcademyUserRegistrationList(academy_id="acad1", user_id="ghost", role=Role.PARENT)
    world.add(ghost)
    world.commit()

    with pytest.raises(NotFoundError):
        registration.transition_linked(world, primary, [ghost], Status.APPROVED)

    world.refresh(primary)
    assert primary.status == Status.PENDING
    assert _user(world, "teacher2").academy_id is None


# ─── Family links ─────────────────────────────────────────────────────────────

def test_linking_parent_copies_approved_registration(world):
    registration.request_registration(world, "student2", Role.STUDENT, "acad1", "key-acad1")
    registration.decide_registration(world, "acad1", "student2", Status.APPROVED)
    make_user(world, "parent3", Role.PARENT)
    world.commit()

    registration.link_family(world, "parent3", "student2")

    assert _user(world, "parent3").academy_id == "acad1"
    row = (
        world.query(AcademyUserRegistrationList)
        .filter(AcademyUserRegistrationList.user_id == "parent3")
        .one()
    )
    assert row.status == Status.APPROVED


def test_linking_twice_conflicts(world):
    with pytest.raises(ConflictError):
        registration.link_family(world, "parent1", "student1")


def test_link_requires_matching_roles(world):
    with pytest.raises(NotFoundError):
        registration.link_family(world, "student2", "student1")
