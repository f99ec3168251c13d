from datetime import date

import pytest

from academypro.database.models import Exam, ExamType, ExamUserScore, Lecture, Role
from academypro.errors import BadRequestError, NotFoundError
from academypro.services import scores
from conftest import make_user


@pytest.fixture
def exam(world):
    db = world
    make_user(db, "student3", Role.STUDENT, "acad1")
    make_user(db, "student4", Role.STUDENT, "acad1")
    lecture = Lecture(lecture_name="Math", teacher_id="teacher1", academy_id="acad1")
    exam_type = ExamType(academy_id="acad1", exam_type_name="midterm")
    db.add_all([lecture, exam_type])
    db.flush()
    exam = Exam(lecture_id=lecture.lecture_id, exam_type_id=exam_type.exam_type_id,
                exam_name="Midterm", exam_date=date(2024, 4, 1))
    db.add(exam)
    db.commit()
    db.refresh(exam)
    return exam


def _stats(exam):
    return exam.headcount, exam.low_score, exam.high_score, exam.total_score, exam.average_score


def test_new_exam_starts_empty(exam):
    assert _stats(exam) == (0, 100, 0, 0, 0.0)


def test_upload_computes_statistics(db, exam):
    exam = scores.upload_scores(db, exam, [("student1", 80), ("student3", 60), ("student4", None)])

    headcount, low, high, total, average = _stats(exam)
    assert (headcount, low, high, total) == (3, 0, 80, 140)
    assert average == pytest.approx(140 / 3)


def test_upload_replaces_existing_scores(db, exam):
    scores.upload_scores(db, exam, [("student1", 80), ("student3", 60)])
    exam = scores.upload_scores(db, exam, [("student1", 90)])

    assert _stats(exam) == (2, 60, 90, 150, 75.0)
    assert db.query(ExamUserScore).filter(ExamUserScore.exam_id == exam.exam_id).count() == 2


def test_duplicate_user_in_batch_keeps_last_entry(db, exam):
    exam = scores.upload_scores(db, exam, [("student1", 10), ("student1", 70)])
    assert _stats(exam) == (1, 70, 70, 70, 70.0)


def test_out_of_range_score_rejects_whole_batch(db, exam):
    with pytest.raises(BadRequestError) as err:
        scores.upload_scores(db, exam, [("student1", 80), ("student3", 101)])

    assert err.value.error_code == "SCORE_OUT_OF_RANGE"
    assert db.query(ExamUserScore).count() == 0
    db.refresh(exam)
    assert exam.headcount == 0


def test_negative_score_is_rejected(db, exam):
    with pytest.raises(BadRequestError):
        scores.upload_scores(db, exam, [("student1", -1)])


def test_unknown_user_is_rejected(db, exam):
    with pytest.raises(BadRequestError) as err:
        scores.upload_scores(db, exam, [("ghost", 50)])
    assert err.value.error_code == "INVALID_STUDENT"


def test_users_who_are_not_students_of_the_academy_are_rejected(db, exam):
    with pytest.raises(BadRequestError) as err:
        scores.upload_scores(db, exam, [("student1", 70), ("chief2", 90), ("parent1", 10), ("student2", 40)])

    assert err.value.error_code == "INVALID_STUDENT"
    assert "chief2" in err.value.message and "student2" in err.value.message
    assert db.query(ExamUserScore).count() == 0
    db.refresh(exam)
    assert exam.headcount == 0


def test_empty_batch_is_rejected(db, exam):
    with pytest.raises(BadRequestError):
        scores.upload_scores(db, exam, [])


def test_modify_adjusts_total_and_rescans_extremes(db, exam):
    scores.upload_scores(db, exam, [("student1", 90), ("student3", 60), ("student4", 70)])

    exam, changed = scores.modify_score(db, exam, "student1", 50)

    assert changed is True
    assert _stats(exam) == (3, 50, 70, 180, 60.0)


def test_modify_to_same_value_is_a_no_op(db, exam):
    scores.upload_scores(db, exam, [("student1", 90)])
    exam, changed = scores.modify_score(db, exam, "student1", 90)

    assert changed is False
    assert _stats(exam) == (1, 90, 90, 90, 90.0)


def test_modify_requires_an_existing_score(db, exam):
    with pytest.raises(NotFoundError) as err:
        scores.modify_score(db, exam, "student1", 50)
    assert err.value.error_code == "SCORE_NOT_FOUND"


def test_modify_rejects_out_of_range(db, exam):
    scores.upload_scores(db, exam, [("student1", 90)])
    with pytest.raises(BadRequestError):
        scores.modify_score(db, exam, "student1", 150)


def test_record_score_first_grade_and_regrade(db, exam):
    locked = scores.lock_exam(db, exam.exam_id)
    scores.record_score(db, locked, "student1", 40)
    scores.record_score(db, locked, "student3", 80)
    db.commit()
    assert _stats(locked) == (2, 40, 80, 120, 60.0)

    scores.record_score(db, locked, "student1", 100)
    db.commit()
    assert _stats(locked) == (2, 80, 100, 180, 90.0)


def test_recalculate_matches_incremental_updates(db, exam):
    scores.upload_scores(db, exam, [("student1", 90), ("student3", 60)])
    scores.modify_score(db, exam, "student3", 100)
    incremental = _stats(exam)

    exam = scores.recalculate_exam_stats(db, exam)
    assert _stats(exam) == incremental


def test_recalculate_on_empty_exam_restores_defaults(db, exam):
    exam.headcount, exam.low_score, exam.high_score = 5, 3, 99
    scores.recalculate_exam_stats(db, exam)
    assert _stats(exam) == (0, 100, 0, 0, 0.0)


def test_lock_exam_checks_lecture(db, exam):
    with pytest.raises(NotFoundError):
        scores.lock_exam(db, exam.exam_id, lecture_id=exam.lecture_id + 100)
