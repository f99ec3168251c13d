"""
Exam score aggregation.

Every Exam row caches headcount, low/high/total/average over its
ExamUserScore rows. Three write paths keep the cache consistent:

  upload_scores()   batch upsert, then full recomputation
  modify_score()    one existing score; total/average adjusted by delta,
                    low/high re-derived by re-querying the score set
  record_score()    single upsert used by quiz grading (new rows bump
                    headcount, re-grades go through the delta path)

recalculate_exam_stats() is the repair/backfill function for the cache.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from academypro.database.models import Exam, ExamUserScore, Role, User
from academypro.errors import BadRequestError, NotFoundError

log = logging.getLogger(__name__)

MIN_SCORE = 0
MAX_SCORE = 100

# Values an exam carries while it has no scores (the creation defaults)
EMPTY_LOW_SCORE = 100
EMPTY_HIGH_SCORE = 0


def _check_range(score: int) -> None:
    if score < MIN_SCORE or score > MAX_SCORE:
        raise BadRequestError(
            f"Score must be between {MIN_SCORE} and {MAX_SCORE}, got {score}",
            error_code="SCORE_OUT_OF_RANGE",
        )


def normalize_scores(entries: Iterable[Tuple[str, Optional[int]]]) -> List[Tuple[str, int]]:
    """
    Validate a batch before anything is written.

    A missing score counts as 0. Any out-of-range score rejects the whole
    batch. When a user appears twice the last entry wins.
    """
    merged = {}
    for user_id, score in entries:
        if not user_id:
            raise BadRequestError("Every score entry needs a user_id", error_code="INVALID_INPUT")
        value = 0 if score is None else int(score)
        _check_range(value)
        merged[user_id] = value
    return list(merged.items())


def lock_exam(db: Session, exam_id: int, lecture_id: Optional[int] = None) -> Exam:
    """Load an exam with a row lock so concurrent score writes serialize on it."""
    query = db.query(Exam).filter(Exam.exam_id == exam_id)
    if lecture_id is not None:
        query = query.filter(Exam.lecture_id == lecture_id)
    exam = query.with_for_update().first()
    if not exam:
        raise NotFoundError(f"Exam {exam_id} not found")
    return exam


def recalculate_exam_stats(db: Session, exam: Exam) -> Exam:
    """Recompute every cached statistic from the ExamUserScore rows."""
    count, low, high, total = (
        db.query(
            func.count(ExamUserScore.id),
            func.min(ExamUserScore.score),
            func.max(ExamUserScore.score),
            func.sum(ExamUserScore.score),
        )
        .filter(ExamUserScore.exam_id == exam.exam_id)
        .one()
    )
    total = int(total or 0)
    exam.headcount = count
    exam.low_score = low if count else EMPTY_LOW_SCORE
    exam.high_score = high if count else EMPTY_HIGH_SCORE
    exam.total_score = total
    exam.average_score = total / max(count, 1)
    return exam


def _rescan_extremes(db: Session, exam: Exam) -> None:
    base = db.query(ExamUserScore.score).filter(ExamUserScore.exam_id == exam.exam_id)
    lowest = base.order_by(ExamUserScore.score.asc()).first()
    highest = base.order_by(ExamUserScore.score.desc()).first()
    exam.low_score = lowest[0] if lowest else EMPTY_LOW_SCORE
    exam.high_score = highest[0] if highest else EMPTY_HIGH_SCORE


def _apply_delta(db: Session, exam: Exam, row: ExamUserScore, score: int) -> None:
    delta = score - row.score
    row.score = score
    exam.total_score = exam.total_score + delta
    exam.average_score = exam.total_score / max(exam.headcount, 1)
    db.flush()
    _rescan_extremes(db, exam)


def _ensure_students_of_academy(db: Session, exam: Exam, user_ids: List[str]) -> None:
    found = {
        u for (u,) in db.query(User.user_id).filter(
            User.user_id.in_(user_ids),
            User.role == Role.STUDENT,
            User.academy_id == exam.lecture.academy_id,
        ).all()
    }
    invalid = sorted(set(user_ids) - found)
    if invalid:
        raise BadRequestError(f"Not students of this academy: {', '.join(invalid)}", error_code="INVALID_STUDENT")


def upload_scores(db: Session, exam: Exam, entries: Iterable[Tuple[str, Optional[int]]]) -> Exam:
    """Upsert a batch of scores for one exam and recompute its statistics. All or nothing."""
    scores = normalize_scores(entries)
    if not scores:
        raise BadRequestError("No scores supplied", error_code="INVALID_INPUT")
    _ensure_students_of_academy(db, exam, [user_id for user_id, _ in scores])

    existing = {
        row.user_id: row
        for row in db.query(ExamUserScore).filter(ExamUserScore.exam_id == exam.exam_id).all()
    }
    try:
        for user_id, score in scores:
            row = existing.get(user_id)
            if row is None:
                db.add(ExamUserScore(exam_id=exam.exam_id, user_id=user_id, score=score))
            else:
                row.score = score
        db.flush()
        recalculate_exam_stats(db, exam)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(exam)
    log.info("Uploaded %d scores for exam %s (headcount=%s)", len(scores), exam.exam_id, exam.headcount)
    return exam


def modify_score(db: Session, exam: Exam, user_id: str, score: int) -> Tuple[Exam, bool]:
    """
    Change one existing score.

    Returns (exam, changed). Setting a score to its current value is a
    successful no-op that writes nothing.
    """
    _check_range(score)
    row = (
        db.query(ExamUserScore)
        .filter(ExamUserScore.exam_id == exam.exam_id, ExamUserScore.user_id == user_id)
        .first()
    )
    if row is None:
        raise NotFoundError(f"No score recorded for user {user_id}", error_code="SCORE_NOT_FOUND")
    if row.score == score:
        return exam, False

    try:
        _apply_delta(db, exam, row, score)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(exam)
    return exam, True


def record_score(db: Session, exam: Exam, user_id: str, score: int) -> Exam:
    """
    Upsert a single score without committing.

    First grading for a user bumps headcount and folds the score into
    total/low/high; a re-grade adjusts by delta and re-scans the extremes.
    """
    _check_range(score)
    row = (
        db.query(ExamUserScore)
        .filter(ExamUserScore.exam_id == exam.exam_id, ExamUserScore.user_id == user_id)
        .first()
    )
    if row is not None:
        if row.score != score:
            _apply_delta(db, exam, row, score)
        return exam

    db.add(ExamUserScore(exam_id=exam.exam_id, user_id=user_id, score=score))
    exam.headcount = exam.headcount + 1
    exam.total_score = exam.total_score + score
    if exam.headcount == 1:
        exam.low_score = score
        exam.high_score = score
    else:
        exam.low_score = min(exam.low_score, score)
        exam.high_score = max(exam.high_score, score)
    exam.average_score = exam.total_score / exam.headcount
    db.flush()
    return exam
