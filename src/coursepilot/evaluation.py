from __future__ import annotations

import asyncio
import logging
import re
import sys
from dataclasses import dataclass
from typing import Callable

from .config import Settings
from .console import Prompter
from .errors import EvaluationError, OracleError
from .events import EventLog
from .extractor import PageExtractor
from .models import CodeSubmission, GeneratedCode
from .oracle import AnswerOracle
from .page import Delays, PageHandle
from .render import format_files, format_question
from .snapshots import SnapshotStore

logger = logging.getLogger(__name__)

GRADE_RE = re.compile(r"Proposed grade:\s*([\d.]+)\s*/\s*([\d.]+)")

CLICK_DELAY_SEC = 0.5

CLICK_EDIT_JS = r"""() => {
    const link = document.querySelector('a.nav-link[title="Edit"]') || document.querySelector('a[href*="forms/edit.php"]');
    if (!link) return false;
    link.click();
    return true;
}"""

SET_FILE_JS = r"""(target) => {
    if (typeof ace !== 'undefined') {
        const editors = document.querySelectorAll('.ace_editor');
        const el = editors[target.index] || editors[0];
        if (el) { ace.edit(el).setValue(target.content, -1); return true; }
    }
    if (typeof VPL !== 'undefined' && VPL.editor) {
        VPL.editor.setContent(target.content);
        return true;
    }
    const textareas = Array.from(document.querySelectorAll('textarea'));
    const ta = textareas.find(t => (t.name || '').includes('file') || (t.id || '').includes('file'))
        || textareas.find(t => t.offsetParent !== null);
    if (!ta) return false;
    ta.value = target.content;
    ta.dispatchEvent(new Event('input', { bubbles: true }));
    return true;
}"""

RESULT_TEXT_JS = r"""() => {
    const selectors = ['.vpl_ide_console', '.vpl_ide_result', '#vpl_console', '.console-output',
                       '#result', '.evaluation-result', 'pre.result'];
    for (const selector of selectors) {
        const el = document.querySelector(selector);
        if (el && el.textContent.trim()) return el.textContent.trim();
    }
    for (const el of document.querySelectorAll('*')) {
        const text = el.textContent || '';
        if (['Grade:', 'Result:', 'Passed', 'Failed', 'Score:', 'Points:'].some(k => text.includes(k))) {
            const direct = Array.from(el.childNodes)
                .filter(n => n.nodeType === Node.TEXT_NODE)
                .map(n => n.textContent.trim())
                .join(' ').trim();
            if (direct) return direct;
        }
    }
    return null;
}"""

GRADE_TEXT_JS = r"""() => {
    for (const el of document.querySelectorAll('*')) {
        const text = el.textContent || '';
        if (text.startsWith('Proposed grade:')) return text;
    }
    const results = document.querySelector('.vpl_ide_results, #vpl_results, .console-output');
    if (results) {
        const match = (results.textContent || '').match(/Proposed grade:\s*[\d.]+\s*\/\s*[\d.]+/);
        if (match) return match[0];
    }
    return null;
}"""

TEST_RESULTS_JS = r"""() => {
    const comments = document.querySelector('.vpl_ide_accordion_c_comments');
    if (!comments) return null;
    const parts = [];
    const walk = (node) => {
        if (node.nodeType === Node.TEXT_NODE) {
            const text = node.textContent.trim();
            if (!text) return true;
            if (text.startsWith('Description')) return false;
            parts.push(text);
            return true;
        }
        if (node.nodeType !== Node.ELEMENT_NODE) return true;
        const tag = node.tagName.toLowerCase();
        if (tag === 'br') { parts.push('\n'); return true; }
        if (tag === 'b') parts.push('\n[TEST] ');
        for (const child of node.childNodes) {
            if (walk(child) === false) return false;
        }
        return true;
    };
    walk(comments);
    const result = parts.join('').trim();
    return result.length < 10 ? null : result;
}"""


def parse_grade(text: str | None) -> float | None:
    """Return ``score / total`` from a "Proposed grade: x / y" line, or None.

    No match, an unparseable number and a non-positive total all mean "no
    grade", which is distinct from a grade of zero.
    """
    if not text:
        return None
    match = GRADE_RE.search(text)
    if not match:
        return None
    try:
        score = float(match.group(1))
        total = float(match.group(2))
    except ValueError:
        return None
    if total <= 0:
        return None
    return score / total


async def click_with_retry(
    page: PageHandle,
    action: str,
    retries: int,
    *,
    delay: float = CLICK_DELAY_SEC,
) -> bool:
    """Click the IDE button for ``action``, retrying lookup and click failures.

    Returns False when the button never appeared. A click that keeps failing
    raises ``EvaluationError`` after the last attempt.
    """
    selectors = (f"#vpl_ide_{action}", f'[id^="vpl_ide_"][title*="{action}" i]')
    last_error: Exception | None = None
    for attempt in range(1, retries + 1):
        element = None
        for selector in selectors:
            element = await page.find_element(selector)
            if element is not None:
                break
        if element is not None:
            try:
                await page.click(element)
                return True
            except Exception as exc:
                last_error = exc
                logger.warning("click_failed: action=%s attempt=%s/%s error=%s", action, attempt, retries, exc)
        else:
            last_error = None
            logger.warning("click_missing: action=%s attempt=%s/%s", action, attempt, retries)
        if attempt < retries:
            await asyncio.sleep(delay)
    if last_error is not None:
        raise EvaluationError(f"clicking {action} failed: {last_error}") from last_error
    return False


@dataclass
class EvaluationOutcome:
    success: bool
    attempts: int
    grade: float | None = None
    reason: str = ""


class EvaluationLoop:
    """generate, paste, save, evaluate, read the grade, regenerate on failure."""

    def __init__(
        self,
        page: PageHandle,
        settings: Settings,
        *,
        extractor: PageExtractor,
        oracle: AnswerOracle | None,
        prompter: Prompter,
        notify: Callable[[str], None],
        snapshots: SnapshotStore | None = None,
        events: EventLog | None = None,
        delays: Delays = Delays(),
    ) -> None:
        self._page = page
        self._settings = settings
        self._extractor = extractor
        self._oracle = oracle
        self._prompter = prompter
        self._notify = notify
        self._snapshots = snapshots
        self._events = events
        self._delays = delays

    def _event(self, event: str, **details) -> None:
        if self._events is not None:
            self._events.log(event, **details)

    async def load(self) -> CodeSubmission | None:
        question = await self._extractor.extract_code_submission(self._page)
        if question is None:
            print("No code submission found on this page.", file=sys.stderr)
            return None
        print("--- Code Submission [vpl] ---", file=sys.stderr)
        print(format_question(question), file=sys.stderr)
        for image in question.images:
            print(f"  [Image: {image.alt or image.url}]", file=sys.stderr)
        return question

    def _finish(self, success: bool, attempts: int, grade: float | None, message: str) -> EvaluationOutcome:
        self._notify(message)
        self._event("evaluation_done", success=success, attempts=attempts, grade=grade, reason=message)
        return EvaluationOutcome(success=success, attempts=attempts, grade=grade, reason=message)

    async def _confirm(self, message: str) -> bool:
        if self._settings.auto_submit:
            return True
        return await self._prompter.confirm(message)

    def _show(self, title: str, generated: GeneratedCode) -> None:
        if not generated.files:
            raise EvaluationError("VPL: no code files generated")
        print(f"\n{title}:", file=sys.stderr)
        print(format_files(generated.files), file=sys.stderr)

    async def _open_editor(self) -> None:
        print("Navigating to the code editor...", file=sys.stderr)
        if not await self._page.evaluate(CLICK_EDIT_JS):
            raise EvaluationError("VPL: could not find the Edit button")
        await self._page.wait_for_navigation()
        await asyncio.sleep(self._delays.navigation)

    async def _paste(self, files) -> None:
        await asyncio.sleep(self._delays.settle)
        for index, (filename, content) in enumerate(files):
            # the editor rejects content that starts on line 1
            ok = await self._page.evaluate(SET_FILE_JS, {"index": index, "content": f"\n{content}"})
            if not ok:
                raise EvaluationError(f"VPL: could not find an editor for {filename}")
        await asyncio.sleep(self._delays.settle)

    async def _click(self, action: str) -> None:
        if not await click_with_retry(self._page, action, self._settings.button_click_retries):
            raise EvaluationError(f"VPL: could not find the {action.capitalize()} button")

    async def _read_grade(self, previous: str | None) -> float | None:
        """Poll for the proposed grade until it differs from ``previous``.

        ``previous`` is the grade text shown before Evaluate was clicked. If
        it never changes before the timeout the score simply repeated, and
        that grade is returned.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._delays.evaluation_timeout
        await asyncio.sleep(self._delays.navigation)
        while True:
            text = await self._page.evaluate(GRADE_TEXT_JS)
            grade = parse_grade(text)
            if grade is not None and text != previous:
                return grade
            if loop.time() >= deadline:
                if grade is not None:
                    logger.info("grade_unchanged: %s", text)
                return grade
            await asyncio.sleep(self._delays.poll)

    async def run(self, question: CodeSubmission) -> EvaluationOutcome:
        if self._oracle is None:
            raise EvaluationError("the evaluation loop needs an answer oracle")
        print("Asking the oracle for a solution...", file=sys.stderr)
        try:
            generated = await self._oracle.generate_code(question)
        except OracleError as exc:
            raise EvaluationError(f"VPL: failed to generate code: {exc}") from exc
        self._show("Generated code", generated)
        if not await self._confirm("Paste generated code into editor?"):
            print("Cancelled by user", file=sys.stderr)
            return self._finish(False, 0, None, "VPL: Cancelled by user")

        conversation = generated.conversation
        files = generated.files
        await self._open_editor()

        max_retries = self._settings.llm_retries
        for attempt in range(max_retries + 1):
            if attempt > 0:
                print(f"Retry attempt {attempt}/{max_retries}", file=sys.stderr)
            if self._snapshots is not None:
                await self._snapshots.save(self._page)

            print("Pasting code into editor...", file=sys.stderr)
            await self._paste(files)
            print("Saving code...", file=sys.stderr)
            await self._click("save")
            await asyncio.sleep(self._delays.navigation)
            print("Running evaluation...", file=sys.stderr)
            previous = await self._page.evaluate(GRADE_TEXT_JS)
            await self._click("evaluate")

            grade = await self._read_grade(previous)
            result_text = await self._page.evaluate(RESULT_TEXT_JS)
            if result_text:
                print(f"\n=== Evaluation Result ===\n{result_text}", file=sys.stderr)
            if grade is None:
                raise EvaluationError("VPL: could not find the proposed grade")
            print(f"Proposed grade: {grade:.0%}", file=sys.stderr)
            self._event("evaluation_attempt", attempt=attempt + 1, grade=grade)
            logger.info("evaluation_attempt: attempt=%s grade=%s", attempt + 1, grade)

            if grade == 1.0:
                print("Full marks! Evaluation successful.", file=sys.stderr)
                return self._finish(True, attempt + 1, grade, "VPL: Full marks!")
            if attempt >= max_retries:
                return self._finish(
                    False, attempt + 1, grade, f"VPL: Failed after {max_retries} retries ({grade:.0%})"
                )

            feedback = await self._page.evaluate(TEST_RESULTS_JS)
            if not feedback:
                print("Could not parse test results for retry", file=sys.stderr)
                return self._finish(False, attempt + 1, grade, "VPL: Could not parse test results")
            print(f"\n=== Test Failure Details ===\n{feedback}", file=sys.stderr)

            print("Asking the oracle to fix the code...", file=sys.stderr)
            try:
                generated = await self._oracle.regenerate(conversation, str(feedback))
            except OracleError as exc:
                return self._finish(False, attempt + 1, grade, f"VPL: Failed to regenerate code: {exc}")
            self._show("Regenerated code", generated)
            if not await self._confirm("Paste regenerated code into editor?"):
                print("Cancelled by user", file=sys.stderr)
                return self._finish(False, attempt + 1, grade, "VPL: Cancelled by user")
            conversation = generated.conversation
            files = generated.files

        # unreachable: the last iteration always returns
        raise EvaluationError("VPL: exhausted all retry attempts")
