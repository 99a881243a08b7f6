import pytest

from database.models import AnswerOption, Exam, Image, Question, Section
from enrichment.schemas import (
    AnswerKeyEntry,
    AnswerKeyResult,
    ExtractedExam,
    ExtractedQuestion,
    ImageClassification,
)
from parsing.schemas import McqOption, Section as SectionGroup
from services.exam_persistence import (
    UploadedImage,
    link_answers_to_questions,
    save_extracted_data,
    upload_extracted_images,
)
from tests.conftest import make_image, make_page


def _extracted():
    questions = [
        ExtractedQuestion(
            question_number="1", text="What is 2+2?", page_number=1, section="Section A",
            question_type="mcq",
            options=[McqOption(label="A", text="3"), McqOption(label="B", text="4")],
            nearby_image_ids=["img-0.jpeg"], related_image_ids=["img-0.jpeg"],
        ),
        ExtractedQuestion(
            question_number="2", text="Use the word bank.", page_number=2, section="Section B",
            question_type="fill_blank", marks=2,
        ),
    ]
    return ExtractedExam(
        subject="Math", grade="Primary 4", school_name="Rosyth School", total_marks=100,
        sections=[
            SectionGroup(name="Section A", question_numbers=["1"]),
            SectionGroup(name="Section B", instructions="Word bank\n![wb](img-1.jpeg)", question_numbers=["2"]),
        ],
        questions=questions,
    )


def _uploaded(exam_id):
    return [
        UploadedImage("img-0.jpeg", f"images/{exam_id}/img-0.jpg", "image/jpeg", 1),
        UploadedImage("img-1.jpeg", f"images/{exam_id}/img-1.jpg", "image/jpeg", 2),
        UploadedImage("img-2.jpeg", f"images/{exam_id}/img-2.jpg", "image/jpeg", 3),
    ]


def test_answer_key_links_by_normalized_number(db, pending_exam):
    key = AnswerKeyResult(
        found=True, confidence="high", source_page_numbers=[12],
        entries=[AnswerKeyEntry(question_number="Q.1", answer="B", answer_type="mcq_option")],
    )
    counts = save_extracted_data(db, pending_exam.id, _extracted(), [], key)

    q1 = db.query(Question).filter(Question.question_number == "1").one()
    assert q1.expected_answer == "B"
    assert counts["linked_answers"] == 1

    exam = db.get(Exam, pending_exam.id)
    assert exam.has_answer_key is True
    assert exam.answer_key_confidence == "high"


def test_linking_never_adds_questions(db, pending_exam):
    key = AnswerKeyResult(found=True, confidence="medium", entries=[
        AnswerKeyEntry(question_number="7", answer="42"),
        AnswerKeyEntry(question_number="2", answer="went"),
    ])
    save_extracted_data(db, pending_exam.id, _extracted(), [], key)

    rows = db.query(Question).order_by(Question.order_index).all()
    assert [(q.question_number, q.expected_answer) for q in rows] == [("1", None), ("2", "went")]


def test_sections_questions_options_and_metadata(db, pending_exam):
    counts = save_extracted_data(db, pending_exam.id, _extracted(), [])
    assert counts == {"sections": 2, "questions": 2, "images": 0, "linked_answers": 0}

    exam = db.get(Exam, pending_exam.id)
    assert (exam.subject, exam.grade, exam.school_name, exam.total_marks) == (
        "Math", "Primary 4", "Rosyth School", 100,
    )
    assert exam.has_answer_key is False
    assert exam.answer_key_confidence is None

    sections = db.query(Section).order_by(Section.order_index).all()
    assert [s.name for s in sections] == ["Section A", "Section B"]
    assert [q.question_number for q in sections[1].questions] == ["2"]

    options = db.query(AnswerOption).order_by(AnswerOption.order_index).all()
    assert [(o.label, o.text) for o in options] == [("A", "3"), ("B", "4")]


def test_image_ownership(db, pending_exam):
    save_extracted_data(db, pending_exam.id, _extracted(), _uploaded(pending_exam.id))

    images = {img.source_image_id: img for img in db.query(Image).all()}
    assert images["img-0.jpeg"].question.question_number == "1"
    assert images["img-0.jpeg"].image_type == "question_diagram"
    assert images["img-1.jpeg"].section.name == "Section B"
    assert images["img-1.jpeg"].question_id is None
    assert images["img-1.jpeg"].image_type == "section_content"
    assert images["img-2.jpeg"].question_id is None
    assert images["img-2.jpeg"].section_id is None
    assert images["img-2.jpeg"].image_type == "exam_content"


def test_failure_rolls_back_everything(db, pending_exam):
    extracted = _extracted()
    uploaded = _uploaded(pending_exam.id)
    # storage_key is NOT NULL
    uploaded[1].storage_key = None

    with pytest.raises(Exception):
        save_extracted_data(db, pending_exam.id, extracted, uploaded)

    assert db.query(Question).count() == 0
    assert db.query(Section).count() == 0
    assert db.query(Image).count() == 0
    assert db.get(Exam, pending_exam.id).subject is None


def test_missing_exam_raises(db):
    with pytest.raises(ValueError):
        save_extracted_data(db, "does-not-exist", _extracted(), [])


def test_upload_skips_discardable_and_bitmapless_images(store):
    pages = [make_page(1, "", images=[
        make_image("img-0.jpeg"),
        make_image("img-1.jpeg"),
        make_image("img-2.jpeg", with_bitmap=False),
        make_image("img-3.jpeg"),
    ])]
    classifications = {
        "img-0.jpeg": ImageClassification(image_id="img-0.jpeg", classification="content", confidence="high"),
        "img-1.jpeg": ImageClassification(image_id="img-1.jpeg", classification="administrative", confidence="high"),
        # ambiguous administrative verdicts are kept
        "img-3.jpeg": ImageClassification(image_id="img-3.jpeg", classification="administrative", confidence="medium"),
    }
    uploaded = upload_extracted_images("exam-1", pages, classifications, store, {"img-0.jpeg": "diagram"})

    assert [u.image_id for u in uploaded] == ["img-0.jpeg", "img-3.jpeg"]
    assert uploaded[0].storage_key == "images/exam-1/img-0.png"
    assert uploaded[0].alt_text == "diagram"
    assert store.list_keys("images/exam-1/") == ["images/exam-1/img-0.png", "images/exam-1/img-3.png"]


def test_answer_collision_last_write_wins():
    class Row:
        def __init__(self, number):
            self.question_number = number
            self.expected_answer = None

    rows = [Row("1a"), Row("2")]
    linked = link_answers_to_questions(rows, [
        AnswerKeyEntry(question_number="1(a)", answer="5"),
        AnswerKeyEntry(question_number="1 a", answer="6"),
    ])
    assert linked == 1
    assert rows[0].expected_answer == "6"
    assert rows[1].expected_answer is None


def test_options_are_only_stored_for_mcq_questions(db, pending_exam):
    extracted = _extracted()
    extracted.questions[0].question_type = "long_answer"
    save_extracted_data(db, pending_exam.id, extracted, [])

    assert db.query(Question).count() == 2
    assert db.query(AnswerOption).count() == 0
