import asyncio

import pytest

from coursepilot.apply import (
    SET_CODE_JS,
    SET_HIDDEN_JS,
    SET_SELECT_JS,
    SET_TEXT_JS,
    SUBMIT_JS,
    TOGGLE_JS,
    AnswerApplier,
)
from coursepilot.errors import ApplyError
from coursepilot.models import (
    BlankSelect,
    BlanksAnswer,
    BlankText,
    Choice,
    CodeAnswer,
    CodeBlock,
    DragChoice,
    DragDropAnswer,
    DragDropIntoText,
    DropZone,
    FillInBlanks,
    MatchItem,
    MatchingAnswer,
    MatchOption,
    Matching,
    MultiAnswer,
    MultiChoice,
    SelectBlank,
    ShortAnswer,
    SingleAnswer,
    SingleChoice,
    TextAnswer,
    TextBlank,
)
from coursepilot.page import Delays
from tests.page_harness.fakes import FakePage


def _page():
    page = FakePage()
    for script in (TOGGLE_JS, SET_TEXT_JS, SET_SELECT_JS, SET_HIDDEN_JS, SET_CODE_JS, SUBMIT_JS):
        page.on(script, True)
    return page


def _multi(selected=(False, False, False)):
    return MultiChoice(
        "Primes?",
        tuple(Choice(f"q1:1_choice{i}", "1", text, sel) for i, (text, sel) in enumerate(zip("235", selected))),
    )


def test_multi_toggles_only_changed_choices():
    async def _run():
        page = _page()
        applier = AnswerApplier(page, Delays.none())
        answer = MultiAnswer(indices=(0, 2), texts=("2", "5"))

        assert await applier.apply(_multi(), answer) == 2
        assert page.args(TOGGLE_JS) == [
            {"name": "q1:1_choice0", "value": "1"},
            {"name": "q1:1_choice2", "value": "1"},
        ]

        # the page now reflects the answer; applying again must not untoggle
        assert await applier.apply(_multi((True, False, True)), answer) == 0
        assert page.count(TOGGLE_JS) == 2

    asyncio.run(_run())


def test_multi_deselects_choices_not_in_answer():
    async def _run():
        page = _page()
        applier = AnswerApplier(page, Delays.none())
        assert await applier.apply(_multi((True, True, False)), MultiAnswer((0,), ("2",))) == 1
        assert page.args(TOGGLE_JS) == [{"name": "q1:1_choice1", "value": "1"}]

    asyncio.run(_run())


def test_single_choice_already_selected_is_untouched():
    async def _run():
        page = _page()
        question = SingleChoice("Q", (Choice("q1:1_answer", "0", "a", False), Choice("q1:1_answer", "1", "b", True)))
        applier = AnswerApplier(page, Delays.none())
        assert await applier.apply(question, SingleAnswer(1, "b")) == 0
        assert await applier.apply(question, SingleAnswer(0, "a")) == 1

    asyncio.run(_run())


def test_text_matching_blanks_code_and_dragdrop_writes():
    async def _run():
        page = _page()
        applier = AnswerApplier(page, Delays.none())
        options = (MatchOption("1", "x"), MatchOption("2", "y"))

        await applier.apply(ShortAnswer("Q", "q1:1_answer", current_answer="old"), TextAnswer("new"))
        await applier.apply(
            Matching("M", (MatchItem("a", "q1:1_sub0", options, "1"), MatchItem("b", "q1:1_sub1", options))),
            MatchingAnswer((("q1:1_sub0", "1"), ("q1:1_sub1", "2"))),
        )
        await applier.apply(
            FillInBlanks("F", (), (TextBlank("q1:1_p1"), SelectBlank("q1:1_p2", options))),
            BlanksAnswer((BlankText("q1:1_p1", "Guido"), BlankSelect("q1:1_p2", "2"))),
        )
        await applier.apply(CodeBlock("C", "q1:1_answer", "python"), CodeAnswer("print(1)"))
        await applier.apply(
            DragDropIntoText("D", (), (DropZone(1, "q1:1_p1", "0"),), (DragChoice(2, "blue"),)),
            DragDropAnswer((("q1:1_p1", 2),)),
        )

        assert page.args(SET_TEXT_JS) == [
            {"name": "q1:1_answer", "value": "new"},
            {"name": "q1:1_p1", "value": "Guido"},
        ]
        assert page.args(SET_SELECT_JS) == [
            {"name": "q1:1_sub1", "value": "2"},
            {"name": "q1:1_p2", "value": "2"},
        ]
        assert page.args(SET_CODE_JS) == [{"name": "q1:1_answer", "value": "print(1)"}]
        assert page.args(SET_HIDDEN_JS) == [{"name": "q1:1_p1", "value": "2"}]

    asyncio.run(_run())


def test_answer_for_wrong_question_type_is_an_apply_error():
    async def _run():
        applier = AnswerApplier(_page(), Delays.none())
        with pytest.raises(ApplyError, match="SingleChoice"):
            await applier.apply(ShortAnswer("Q", "q1:1_answer"), SingleAnswer(0, "a"))

    asyncio.run(_run())


def test_apply_all_keeps_going_after_a_failure():
    async def _run():
        page = _page()
        page.on(SET_TEXT_JS, lambda target: target["name"] != "missing")
        applier = AnswerApplier(page, Delays.none())
        report = await applier.apply_all(
            [
                (ShortAnswer("Q1", "missing"), TextAnswer("a")),
                (ShortAnswer("Q2", "q2:1_answer"), TextAnswer("b")),
            ]
        )
        assert report.applied == 1
        assert [number for number, _ in report.failed] == [1]
        assert not report.all_failed

    asyncio.run(_run())


def test_submit_requires_button():
    async def _run():
        page = _page()
        applier = AnswerApplier(page, Delays.none())
        await applier.submit()
        page.on(SUBMIT_JS, False)
        with pytest.raises(ApplyError, match="submit button"):
            await applier.submit()

    asyncio.run(_run())


def test_negative_single_index_is_rejected_before_any_write():
    async def _run():
        page = _page()
        question = SingleChoice("Q", (Choice("q1:1_answer", "0", "a", False), Choice("q1:1_answer", "1", "b", False)))
        with pytest.raises(ApplyError, match="out of range"):
            await AnswerApplier(page, Delays.none()).apply(question, SingleAnswer(-1, "b"))
        assert page.calls == []

    asyncio.run(_run())


def test_multi_index_past_the_end_is_rejected_before_any_write():
    async def _run():
        page = _page()
        with pytest.raises(ApplyError, match="index 7"):
            await AnswerApplier(page, Delays.none()).apply(_multi(), MultiAnswer((0, 7), ("2", "?")))
        assert page.count(TOGGLE_JS) == 0

    asyncio.run(_run())


def test_unknown_control_names_are_rejected_before_any_write():
    async def _run():
        page = _page()
        applier = AnswerApplier(page, Delays.none())
        options = (MatchOption("1", "x"), MatchOption("2", "y"))

        with pytest.raises(ApplyError, match="q1:1_sub9"):
            await applier.apply(
                Matching("M", (MatchItem("a", "q1:1_sub0", options),)),
                MatchingAnswer((("q1:1_sub0", "1"), ("q1:1_sub9", "2"))),
            )
        with pytest.raises(ApplyError, match="q1:1_p7"):
            await applier.apply(
                FillInBlanks("F", (), (TextBlank("q1:1_p1"),)),
                BlanksAnswer((BlankText("q1:1_p1", "Guido"), BlankText("q1:1_p7", "x"))),
            )
        dragdrop = DragDropIntoText("D", (), (DropZone(1, "q1:1_p1"),), (DragChoice(2, "blue"),))
        with pytest.raises(ApplyError, match="q1:1_p4"):
            await applier.apply(dragdrop, DragDropAnswer((("q1:1_p4", 2),)))
        with pytest.raises(ApplyError, match="drag choice 5"):
            await applier.apply(dragdrop, DragDropAnswer((("q1:1_p1", 5),)))

        assert page.calls == []

    asyncio.run(_run())


def test_out_of_range_answer_does_not_stop_the_next_question():
    async def _run():
        page = _page()
        question = SingleChoice("Q", (Choice("q1:1_answer", "0", "a", False), Choice("q1:1_answer", "1", "b", False)))
        report = await AnswerApplier(page, Delays.none()).apply_all(
            [
                (question, SingleAnswer(5, "?")),
                (ShortAnswer("Q2", "q2:1_answer"), TextAnswer("b")),
            ]
        )
        assert report.applied == 1
        assert [number for number, _ in report.failed] == [1]
        assert page.count(TOGGLE_JS) == 0
        assert page.args(SET_TEXT_JS) == [{"name": "q2:1_answer", "value": "b"}]

    asyncio.run(_run())
