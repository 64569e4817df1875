from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from .errors import ApplyError
from .models import (
    AnswerResult,
    BlankSelect,
    BlanksAnswer,
    BlankText,
    CodeAnswer,
    CodeBlock,
    DragDropAnswer,
    DragDropIntoText,
    FillInBlanks,
    Matching,
    MatchingAnswer,
    MultiAnswer,
    MultiChoice,
    Question,
    SelectBlank,
    ShortAnswer,
    SingleAnswer,
    SingleChoice,
    TextAnswer,
    TextBlank,
    VariantMismatch,
    expect_variant,
)
from .page import Delays, PageHandle

logger = logging.getLogger(__name__)

TOGGLE_JS = r"""(target) => {
    for (const input of document.querySelectorAll('input')) {
        if (input.name === target.name && input.value === target.value) { input.click(); return true; }
    }
    return false;
}"""

SET_TEXT_JS = r"""(target) => {
    const input = document.getElementsByName(target.name)[0];
    if (!input) return false;
    input.value = target.value;
    input.dispatchEvent(new Event('input', { bubbles: true }));
    input.dispatchEvent(new Event('change', { bubbles: true }));
    return true;
}"""

SET_SELECT_JS = r"""(target) => {
    const select = document.getElementsByName(target.name)[0];
    if (!select || select.tagName !== 'SELECT') return false;
    select.value = target.value;
    select.dispatchEvent(new Event('change', { bubbles: true }));
    return true;
}"""

SET_HIDDEN_JS = r"""(target) => {
    const input = document.getElementsByName(target.name)[0];
    if (!input) return false;
    input.value = target.value;
    input.dispatchEvent(new Event('change', { bubbles: true }));
    return true;
}"""

SET_CODE_JS = r"""(target) => {
    const textarea = document.getElementsByName(target.name)[0];
    if (!textarea) return false;
    if (typeof ace !== 'undefined') {
        const scope = (textarea.closest('.qvpl-editor-menu') || {}).parentElement || textarea.closest('.formulation');
        const editorEl = scope && scope.querySelector('.ace_editor');
        if (editorEl) ace.edit(editorEl).setValue(target.value, -1);
    }
    textarea.value = target.value;
    textarea.dispatchEvent(new Event('input', { bubbles: true }));
    textarea.dispatchEvent(new Event('change', { bubbles: true }));
    return true;
}"""

SUBMIT_JS = r"""() => {
    const selectors = [
        'input[type="submit"][name="next"]',
        '.submitbtns input[type="submit"]',
        '#responseform input[type="submit"]',
        'input[type="submit"]',
        'button[type="submit"]',
    ];
    for (const selector of selectors) {
        const btn = document.querySelector(selector);
        if (btn) { btn.click(); return true; }
    }
    return false;
}"""


def _check_indices(indices, count: int) -> None:
    for index in indices:
        if not 0 <= index < count:
            raise ApplyError(f"choice index {index} out of range (question has {count} choices)")


def _check_names(names, known, what: str) -> None:
    for name in names:
        if name not in known:
            raise ApplyError(f"{what} {name!r} is not part of the question")


@dataclass
class ApplyReport:
    applied: int = 0
    failed: list[tuple[int, str]] = field(default_factory=list)

    @property
    def all_failed(self) -> bool:
        return self.applied == 0 and bool(self.failed)


class AnswerApplier:
    """Writes oracle answers into the live quiz page.

    Every method compares against the question snapshot taken at extraction
    time and touches only controls whose state differs, so applying the same
    answer twice never toggles a choice back off.
    """

    def __init__(self, page: PageHandle, delays: Delays = Delays()) -> None:
        self._page = page
        self._delays = delays

    async def _run(self, script: str, name: str, value: str, what: str) -> None:
        ok = await self._page.evaluate(script, {"name": name, "value": value})
        if not ok:
            raise ApplyError(f"{what} {name!r} not found")

    async def _toggle(self, name: str, value: str) -> None:
        await self._run(TOGGLE_JS, name, value, "choice input")

    async def _set_text(self, name: str, value: str) -> None:
        await self._run(SET_TEXT_JS, name, value, "text input")

    async def _set_select(self, name: str, value: str) -> None:
        await self._run(SET_SELECT_JS, name, value, "select")

    async def apply(self, question: Question, answer: AnswerResult) -> int:
        """Apply ``answer`` to ``question``'s controls; return the number of DOM writes."""
        try:
            return await self._apply(question, answer)
        except VariantMismatch as exc:
            raise ApplyError(f"answer {type(answer).__name__} does not fit question: {exc}") from exc

    async def _apply(self, question: Question, answer: AnswerResult) -> int:
        actions = 0
        if isinstance(answer, SingleAnswer):
            q = expect_variant(question, SingleChoice)
            _check_indices((answer.index,), len(q.choices))
            choice = q.choices[answer.index]
            if not choice.selected:
                await self._toggle(choice.input_name, choice.input_value)
                actions += 1
        elif isinstance(answer, MultiAnswer):
            q = expect_variant(question, MultiChoice)
            _check_indices(answer.indices, len(q.choices))
            wanted = set(answer.indices)
            for i, choice in enumerate(q.choices):
                if (i in wanted) != choice.selected:
                    await self._toggle(choice.input_name, choice.input_value)
                    actions += 1
        elif isinstance(answer, TextAnswer):
            q = expect_variant(question, ShortAnswer)
            if q.current_answer != answer.answer:
                await self._set_text(q.input_name, answer.answer)
                actions += 1
        elif isinstance(answer, MatchingAnswer):
            q = expect_variant(question, Matching)
            current = {item.select_name: item.selected_value for item in q.items}
            _check_names((name for name, _ in answer.selections), current, "select")
            for select_name, value in answer.selections:
                if current.get(select_name) != value:
                    await self._set_select(select_name, value)
                    actions += 1
        elif isinstance(answer, BlanksAnswer):
            q = expect_variant(question, FillInBlanks)
            current = {}
            for blank in q.blanks:
                if isinstance(blank, TextBlank):
                    current[blank.input_name] = blank.current_value
                elif isinstance(blank, SelectBlank):
                    current[blank.select_name] = blank.selected_value
            _check_names(
                (item.input_name if isinstance(item, BlankText) else item.select_name for item in answer.answers),
                current,
                "blank",
            )
            for item in answer.answers:
                if isinstance(item, BlankText):
                    if current.get(item.input_name) != item.answer:
                        await self._set_text(item.input_name, item.answer)
                        actions += 1
                elif isinstance(item, BlankSelect):
                    if current.get(item.select_name) != item.value:
                        await self._set_select(item.select_name, item.value)
                        actions += 1
                else:
                    raise TypeError(f"unknown blank answer: {item!r}")
        elif isinstance(answer, CodeAnswer):
            q = expect_variant(question, CodeBlock)
            if q.current_code != answer.code:
                await self._run(SET_CODE_JS, q.input_name, answer.code, "code editor")
                actions += 1
        elif isinstance(answer, DragDropAnswer):
            q = expect_variant(question, DragDropIntoText)
            current = {zone.input_name: zone.current_value for zone in q.drop_zones}
            _check_names((name for name, _ in answer.placements), current, "drop zone")
            offered = {choice.choice_number for choice in q.choices}
            for _, choice_number in answer.placements:
                if choice_number not in offered:
                    raise ApplyError(f"drag choice {choice_number} is not offered")
            for input_name, choice_number in answer.placements:
                if current.get(input_name) != str(choice_number):
                    await self._run(SET_HIDDEN_JS, input_name, str(choice_number), "drop zone")
                    actions += 1
        else:
            raise TypeError(f"unsupported answer type: {type(answer).__name__}")
        return actions

    async def apply_all(self, pairs: list[tuple[Question, AnswerResult]]) -> ApplyReport:
        """Apply each answer independently; one failing question does not stop the rest."""
        report = ApplyReport()
        for number, (question, answer) in enumerate(pairs, start=1):
            try:
                actions = await self.apply(question, answer)
            except ApplyError as exc:
                logger.warning("apply_failed: question=%s kind=%s error=%s", number, question.kind, exc)
                report.failed.append((number, str(exc)))
                continue
            logger.info("apply_ok: question=%s kind=%s actions=%s", number, question.kind, actions)
            report.applied += 1
        return report

    async def submit(self) -> None:
        if not await self._page.evaluate(SUBMIT_JS):
            raise ApplyError("submit button not found")
        logger.info("quiz_submitted: %s", await self._page.current_url())
        await asyncio.sleep(self._delays.action)
