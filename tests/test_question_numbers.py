import pytest

from parsing.question_numbers import normalize_question_number


@pytest.mark.parametrize("label", ["Q1", "Qn 1.", "1", "Q.1", "Question 1", " q 1 ", "1.", "(1)", "QN1"])
def test_prefix_punctuation_and_whitespace_collapse(label):
    assert normalize_question_number(label) == "1"


def test_sub_parts_keep_their_letters():
    assert normalize_question_number("2a") == "2a"
    assert normalize_question_number("2(a)") == "2a"
    assert normalize_question_number("Q2 (a)") == "2a"
    assert normalize_question_number("3(ii)") == "3ii"


def test_words_without_a_following_digit_are_kept():
    # "q" is only a prefix when a number follows it
    assert normalize_question_number("Quiz") == "quiz"


@pytest.mark.parametrize("label", ["Q1", "Qn 1.", "Question 12(b)", "", "QQ1", "qn q 4", "5-a", "全部"])
def test_idempotent(label):
    once = normalize_question_number(label)
    assert normalize_question_number(once) == once


def test_total_on_odd_input():
    assert normalize_question_number(None) == ""
    assert normalize_question_number("") == ""
    assert normalize_question_number(7) == "7"
    assert normalize_question_number("...") == ""


def test_known_collision_is_lossy():
    assert normalize_question_number("1a") == normalize_question_number("1 (a)")
