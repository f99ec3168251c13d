import pytest

from academypro.database.models import Exam, ExamType, ExamUserScore, Lecture
from academypro.errors import BadRequestError, NotFoundError
from academypro.services import quiz
from academypro.services.quiz import QuizCreationOutcome
from conftest import FakeLLM, quiz_response

ANSWERS = (0, 1, 2, 3, 0)


@pytest.fixture
def lecture(world):
    lecture = Lecture(lecture_name="Korean", teacher_id="teacher1", academy_id="acad1")
    world.add(lecture)
    world.commit()
    return lecture


def _create(db, documents, lecture, generate=None, title="Quiz 1"):
    return quiz.create_quiz(
        db, documents, generate or FakeLLM(quiz_response(ANSWERS)),
        academy_id="acad1", lecture_id=lecture.lecture_id, user_id="teacher1",
        title=title, keyword="맞춤법",
    )


# ─── Parsing ──────────────────────────────────────────────────────────────────

def test_parse_valid_response_inside_code_fence():
    parsed = quiz.parse_quiz("```json\n" + quiz_response(ANSWERS) + "\n```")
    assert parsed["answer_list"] == list(ANSWERS)
    assert len(parsed["quiz_list"]) == quiz.QUESTION_COUNT
    assert parsed["quiz_list"][0]["options"] == ["가", "나", "다", "라"]


@pytest.mark.parametrize("raw", [
    "not json at all",
    quiz_response((0, 1, 2)),
    quiz_response((0, 1, 2, 3, 4)),
    '{"quiz_list": [], "answer_list": []}',
])
def test_parse_rejects_unusable_responses(raw):
    with pytest.raises(ValueError):
        quiz.parse_quiz(raw)


def test_prompt_mentions_keyword_and_shape():
    prompt = quiz.build_prompt("광합성")
    assert "광합성" in prompt
    assert "answer_list" in prompt


# ─── Creation saga ────────────────────────────────────────────────────────────

def test_committed_quiz_creates_exam_and_document(world, documents, lecture):
    result = _create(world, documents, lecture)

    assert result.outcome == QuizCreationOutcome.COMMITTED
    exam = world.query(Exam).filter(Exam.exam_id == result.exam_id).one()
    assert exam.exam_type.exam_type_name == quiz.QUIZ_EXAM_TYPE
    assert documents.get_quiz(result.exam_id)["answer_list"] == list(ANSWERS)
    assert result.quiz["lecture_id"] == lecture.lecture_id


def test_quiz_exam_type_is_reused(world, documents, lecture):
    _create(world, documents, lecture, title="Quiz 1")
    _create(world, documents, lecture, title="Quiz 2")

    assert world.query(ExamType).filter(ExamType.exam_type_name == quiz.QUIZ_EXAM_TYPE).count() == 1
    assert world.query(Exam).count() == 2


def test_bad_generation_is_compensated(world, documents, lecture):
    result = _create(world, documents, lecture, generate=FakeLLM("{}"))

    assert result.outcome == QuizCreationOutcome.COMPENSATED
    assert isinstance(result.error, ValueError)
    assert world.query(Exam).count() == 0
    assert documents.quizzes == {}


def test_document_store_failure_is_compensated(world, documents, lecture):
    documents.fail_save = True
    result = _create(world, documents, lecture)

    assert result.outcome == QuizCreationOutcome.COMPENSATED
    assert world.query(Exam).count() == 0


def test_failed_compensation_reports_orphan(world, documents, lecture, monkeypatch):
    def generate(prompt):
        def refuse():
            raise RuntimeError("database went away")
        monkeypatch.setattr(world, "commit", refuse)
        return "garbage"

    result = _create(world, documents, lecture, generate=generate)
    monkeypatch.undo()

    assert result.outcome == QuizCreationOutcome.ORPHANED
    assert not result.committed
    assert world.query(Exam).filter(Exam.exam_id == result.exam_id).count() == 1


def test_unknown_lecture(world, documents):
    with pytest.raises(NotFoundError):
        quiz.create_quiz(world, documents, FakeLLM(), "acad1", 999, "teacher1", "t", "k")


# ─── Taking and grading ───────────────────────────────────────────────────────

def test_question_is_served_without_answer(world, documents, lecture):
    result = _create(world, documents, lecture)

    question = quiz.get_question(documents, result.exam_id, 1)

    assert question["question"] == "질문 1"
    assert question["total"] == 5
    assert "answer" not in question and "explanation" not in question
    with pytest.raises(NotFoundError):
        quiz.get_question(documents, result.exam_id, 6)
    with pytest.raises(NotFoundError):
        quiz.get_question(documents, result.exam_id, 0)


def test_grading_records_score_and_result(world, documents, lecture):
    exam_id = _create(world, documents, lecture).exam_id

    graded = quiz.grade_quiz(world, documents, exam_id, "student1", list(ANSWERS))

    assert graded["score"] == 100
    assert graded["correct"] == [True] * 5
    exam = world.query(Exam).filter(Exam.exam_id == exam_id).one()
    assert (exam.headcount, exam.high_score, exam.average_score) == (1, 100, 100.0)
    assert quiz.quiz_results(documents, exam_id)["student1"]["score"] == 100


def test_regrading_replaces_previous_score(world, documents, lecture):
    exam_id = _create(world, documents, lecture).exam_id
    quiz.grade_quiz(world, documents, exam_id, "student1", list(ANSWERS))

    graded = quiz.grade_quiz(world, documents, exam_id, "student1", [0, 1, 2, 0, 1])

    assert graded["score"] == 60
    exam = world.query(Exam).filter(Exam.exam_id == exam_id).one()
    world.refresh(exam)
    assert (exam.headcount, exam.total_score, exam.low_score, exam.high_score) == (1, 60, 60, 60)
    assert world.query(ExamUserScore).filter(ExamUserScore.exam_id == exam_id).count() == 1
    assert documents.get_quiz_results(exam_id)["student1"]["correct"] == [True, True, True, False, False]


def test_wrong_number_of_answers(world, documents, lecture):
    exam_id = _create(world, documents, lecture).exam_id
    with pytest.raises(BadRequestError):
        quiz.grade_quiz(world, documents, exam_id, "student1", [0, 1])


def test_grading_without_quiz(world, documents):
    with pytest.raises(NotFoundError) as err:
        quiz.grade_quiz(world, documents, 12345, "student1", list(ANSWERS))
    assert err.value.error_code == "QUIZ_NOT_FOUND"
