"""
LLM-generated quizzes.

Creating a quiz spans both stores, so it runs as a two-phase saga:

  phase 1  commit the "퀴즈" ExamType (found or created) and a new Exam row
  phase 2  generate the questions and save them to the document store

If phase 2 fails the Exam row is deleted again (COMPENSATED). If that
delete also fails the exam is left without a quiz document (ORPHANED) and
its id is logged for cleanup. Callers always get a QuizCreationResult.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from academypro.database.models import Exam, ExamType, Lecture
from academypro.errors import BadRequestError, NotFoundError
from academypro.services.gpt_client import extract_json_obj
from academypro.services.scores import MAX_SCORE, lock_exam, record_score

log = logging.getLogger(__name__)

QUIZ_EXAM_TYPE = "퀴즈"
QUESTION_COUNT = 5
OPTION_COUNT = 4
POINTS_PER_QUESTION = 20


class QuizCreationOutcome(str, enum.Enum):
    COMMITTED = "COMMITTED"
    COMPENSATED = "COMPENSATED"
    ORPHANED = "ORPHANED"


@dataclass
class QuizCreationResult:
    outcome: QuizCreationOutcome
    exam_id: int
    quiz: Optional[dict] = None
    error: Optional[Exception] = None

    @property
    def committed(self) -> bool:
        return self.outcome == QuizCreationOutcome.COMMITTED


# ─── Prompt and response validation ───────────────────────────────────────────

def build_prompt(keyword: str, option_count: int = OPTION_COUNT, question_count: int = QUESTION_COUNT) -> str:
    return f"""Write {question_count} multiple-choice quiz questions about "{keyword}".
- Each question has exactly {option_count} options.
- Write every question, option and explanation in Korean.
- Respond with a single JSON object of this shape:
{{
  "quiz_list": [
    {{"question": "1+1은 무엇인가요?", "options": ["1", "3", "모름", "2"], "explanation": "자명하다"}}
  ],
  "answer_list": [3]
}}
- answer_list[i] is the 0-based index of the correct option of quiz_list[i].
"""


def parse_quiz(raw: str, option_count: int = OPTION_COUNT, question_count: int = QUESTION_COUNT) -> dict:
    """Parse and validate a model response. Raises ValueError when unusable."""
    data = extract_json_obj(raw)
    quiz_list = data.get("quiz_list")
    answer_list = data.get("answer_list")
    if not isinstance(quiz_list, list) or not isinstance(answer_list, list):
        raise ValueError("Response lacks quiz_list/answer_list")
    if len(quiz_list) != question_count or len(answer_list) != question_count:
        raise ValueError(f"Expected {question_count} questions, got {len(quiz_list)}/{len(answer_list)}")

    questions = []
    for item, answer in zip(quiz_list, answer_list):
        question = str(item.get("question", "")).strip() if isinstance(item, dict) else ""
        options = item.get("options") if isinstance(item, dict) else None
        if not question or not isinstance(options, list) or len(options) != option_count:
            raise ValueError(f"Malformed question: {item!r}")
        if isinstance(answer, bool) or not isinstance(answer, int) or not 0 <= answer < option_count:
            raise ValueError(f"Answer index out of range: {answer!r}")
        questions.append({
            "question": question,
            "options": [str(o) for o in options],
            "explanation": str(item.get("explanation", "")),
        })
    return {"quiz_list": questions, "answer_list": [int(a) for a in answer_list]}


# ─── Creation saga ────────────────────────────────────────────────────────────

def _quiz_exam_type(db: Session, academy_id: str) -> ExamType:
    query = db.query(ExamType).filter(
        ExamType.academy_id == academy_id, ExamType.exam_type_name == QUIZ_EXAM_TYPE,
    )
    exam_type = query.first()
    if exam_type:
        return exam_type
    exam_type = ExamType(academy_id=academy_id, exam_type_name=QUIZ_EXAM_TYPE)
    db.add(exam_type)
    try:
        db.flush()
    except IntegrityError:
        # created concurrently
        db.rollback()
        exam_type = query.one()
    return exam_type


def _compensate(db: Session, exam_id: int) -> QuizCreationOutcome:
    try:
        db.rollback()
        db.query(Exam).filter(Exam.exam_id == exam_id).delete()
        db.commit()
    except Exception:
        db.rollback()
        log.exception("Could not remove exam %s after failed quiz generation; left orphaned", exam_id)
        return QuizCreationOutcome.ORPHANED
    log.warning("Quiz generation failed; exam %s removed", exam_id)
    return QuizCreationOutcome.COMPENSATED


def create_quiz(db: Session, store, generate: Callable[[str], str], academy_id: str,
                lecture_id: int, user_id: str, title: str, keyword: str,
                comment: Optional[str] = None, quiz_date: Optional[date] = None) -> QuizCreationResult:
    lecture = (
        db.query(Lecture)
        .filter(Lecture.lecture_id == lecture_id, Lecture.academy_id == academy_id)
        .first()
    )
    if not lecture:
        raise NotFoundError(f"Lecture {lecture_id} not found", error_code="LECTURE_NOT_FOUND")

    # phase 1
    try:
        exam_type = _quiz_exam_type(db, academy_id)
        exam = Exam(
            lecture_id=lecture_id,
            exam_type_id=exam_type.exam_type_id,
            exam_name=title,
            exam_date=quiz_date or date.today(),
        )
        db.add(exam)
        db.commit()
    except Exception:
        db.rollback()
        raise
    exam_id = exam.exam_id

    # phase 2
    try:
        quiz = parse_quiz(generate(build_prompt(keyword)))
        doc = store.save_quiz(exam_id, {
            "title": title,
            "comment": comment,
            "keyword": keyword,
            "academy_id": academy_id,
            "lecture_id": lecture_id,
            "user_id": user_id,
            **quiz,
        })
    except Exception as e:
        log.warning("Quiz generation for exam %s failed: %s", exam_id, e)
        return QuizCreationResult(_compensate(db, exam_id), exam_id, error=e)

    log.info("Quiz created for exam %s (lecture %s)", exam_id, lecture_id)
    return QuizCreationResult(QuizCreationOutcome.COMMITTED, exam_id, quiz=doc)


# ─── Taking and grading ───────────────────────────────────────────────────────

def _load_quiz(store, exam_id: int) -> dict:
    quiz = store.get_quiz(exam_id)
    if not quiz:
        raise NotFoundError(f"No quiz for exam {exam_id}", error_code="QUIZ_NOT_FOUND")
    return quiz


def get_question(store, exam_id: int, quiz_num: int) -> dict:
    """One question (1-based) without its answer."""
    quiz = _load_quiz(store, exam_id)
    questions = quiz["quiz_list"]
    if not 1 <= quiz_num <= len(questions):
        raise NotFoundError(f"Quiz {exam_id} has no question {quiz_num}", error_code="QUESTION_NOT_FOUND")
    item = questions[quiz_num - 1]
    return {
        "exam_id": exam_id,
        "quiz_num": quiz_num,
        "total": len(questions),
        "question": item["question"],
        "options": item["options"],
    }


def grade_answers(answer_key: List[int], answers: List[int]) -> List[bool]:
    if len(answers) != len(answer_key):
        raise BadRequestError(
            f"Expected {len(answer_key)} answers, got {len(answers)}", error_code="INVALID_INPUT",
        )
    return [given == expected for given, expected in zip(answers, answer_key)]


def grade_quiz(db: Session, store, exam_id: int, user_id: str, answers: List[int]) -> dict:
    """
    Grade a submission, upsert the user's relational score and record the
    per-question result. Re-submitting replaces the previous grading.
    """
    quiz = _load_quiz(store, exam_id)
    correct = grade_answers(quiz["answer_list"], answers)
    score = min(sum(correct) * POINTS_PER_QUESTION, MAX_SCORE)

    exam = lock_exam(db, exam_id)
    try:
        record_score(db, exam, user_id, score)
        db.commit()
    except Exception:
        db.rollback()
        raise

    result = {
        "answers": list(answers),
        "correct": correct,
        "score": score,
        "graded_at": datetime.now(timezone.utc).isoformat(),
    }
    try:
        store.record_quiz_result(exam_id, user_id, result)
    except Exception:
        # the relational score is committed; re-submitting rewrites both stores
        log.exception("Quiz result for %s on exam %s not stored", user_id, exam_id)
        raise
    return result


def quiz_results(store, exam_id: int) -> dict:
    _load_quiz(store, exam_id)
    return store.get_quiz_results(exam_id)
