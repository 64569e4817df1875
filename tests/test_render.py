import pytest

from coursepilot.models import (
    BlankSegment,
    BlankSelect,
    BlanksAnswer,
    Choice,
    CodeAnswer,
    CodeBlock,
    Conversation,
    FillInBlanks,
    MatchOption,
    SelectBlank,
    SingleChoice,
    TextBlank,
    TextSegment,
    VariantMismatch,
    expect_variant,
    is_code_submission_url,
)
from coursepilot.render import format_answer, format_files, format_question, type_marker

FILL = FillInBlanks(
    "",
    (TextSegment("2 + 2 = "), BlankSegment(0), TextSegment(", parity: "), BlankSegment(1)),
    (TextBlank("q1:1_p1"), SelectBlank("q1:1_p2", (MatchOption("1", "odd"), MatchOption("2", "even")))),
)


def test_code_submission_urls():
    assert is_code_submission_url("https://moodle.caseine.org/mod/vpl/view.php?id=42")
    assert is_code_submission_url("file:///tmp/1700000000_moodle_caseine_org_mod_vpl_view_php.html")
    assert not is_code_submission_url("https://moodle2025.uca.fr/mod/quiz/attempt.php")


def test_expect_variant():
    question = SingleChoice("Q", (Choice("n", "0", "a", False),))
    assert expect_variant(question, SingleChoice) is question
    with pytest.raises(VariantMismatch):
        expect_variant(question, CodeBlock)


def test_conversation_rejects_unknown_roles():
    conversation = Conversation()
    conversation.add("user", "hi")
    with pytest.raises(ValueError):
        conversation.add("system", "nope")
    assert len(conversation) == 1


def test_single_choice_is_numbered_from_one():
    question = SingleChoice("Pick", (Choice("n", "0", "a", False), Choice("n", "1", "b", False)))
    assert format_question(question) == "Pick\n\n( ) 1. a\n( ) 2. b\n"
    assert type_marker(question) == "[single]"


def test_fill_in_blanks_shows_numbered_slots():
    text = format_question(FILL)
    assert text.startswith("2 + 2 = [1]____, parity: [2]____")
    assert "[2] choose one of: odd | even" in text


def test_answer_lines_show_option_text():
    lines = format_answer(3, FILL, BlanksAnswer((BlankSelect("q1:1_p2", "2"),)))
    assert lines == ["Question 3 [fill] answer:", "  Blanks:", "    [1]: even"]


def test_long_code_answers_are_truncated():
    code = "\n".join(f"line{i}" for i in range(8))
    lines = format_answer(1, CodeBlock("C", "q1:1_answer"), CodeAnswer(code))
    assert lines[-1] == "    ... (3 more lines)"
    assert len(lines) == 2 + 5 + 1


def test_format_files():
    assert format_files((("a.py", "x = 1"),)) == "\n=== a.py ===\nx = 1\n"
