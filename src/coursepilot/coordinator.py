from __future__ import annotations

import asyncio
import enum
import logging
import sys
from dataclasses import dataclass
from typing import Awaitable, Callable

from .apply import AnswerApplier
from .config import Settings
from .console import ConfirmOutcome, Prompter, page_separator, show_lines, show_question
from .errors import FailureThresholdExceeded, OracleError, SessionError
from .events import EventLog
from .extractor import PageExtractor
from .models import AnswerResult, Question
from .oracle import AnswerOracle
from .page import Delays, PageHandle, wait_for_page_change
from .render import format_answer
from .snapshots import SnapshotStore

logger = logging.getLogger(__name__)


class FailureCounter:
    """Counts consecutive failures; a success resets the count."""

    def __init__(self, threshold: int) -> None:
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        self.threshold = threshold
        self.count = 0

    def record_failure(self) -> bool:
        self.count += 1
        return self.tripped

    def record_success(self) -> None:
        self.count = 0

    @property
    def tripped(self) -> bool:
        return self.count >= self.threshold


class RaceOutcome(enum.Enum):
    YES = "yes"
    ALL = "all"
    NO = "no"
    MANUAL = "manual"


async def race_confirmation(
    prompt: Awaitable[ConfirmOutcome],
    page_change: Awaitable[object],
) -> RaceOutcome:
    """Wait for whichever resolves first: the user's answer or a page change.

    The loser is cancelled before returning. When both finish in the same
    loop iteration the prompt wins.
    """
    prompt_task = asyncio.ensure_future(prompt)
    change_task = asyncio.ensure_future(page_change)
    tasks = (prompt_task, change_task)
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
    if prompt_task in done:
        return RaceOutcome(prompt_task.result().value)
    change_task.result()
    return RaceOutcome.MANUAL


@dataclass
class QuizResult:
    questions_found: int = 0
    answers_submitted: int = 0
    finished_by_confirmation: bool = False

    @property
    def complete(self) -> bool:
        return self.answers_submitted > 0 or self.questions_found == 0


class _PageEnd(enum.Enum):
    END = "end"
    CONTINUE = "continue"


class QuizCoordinator:
    """Drives a quiz across pages: display, answer, decide, apply, submit."""

    def __init__(
        self,
        page: PageHandle,
        settings: Settings,
        *,
        extractor: PageExtractor,
        oracle: AnswerOracle | None,
        prompter: Prompter,
        notify: Callable[[str], None],
        applier: AnswerApplier | None = None,
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
        self._applier = applier or AnswerApplier(page, delays)
        self._snapshots = snapshots
        self._events = events
        self._delays = delays
        self._failures = FailureCounter(settings.max_consecutive_failures)
        self._question_number = 0

    def _event(self, event: str, **details) -> None:
        if self._events is not None:
            self._events.log(event, **details)

    async def run(self) -> QuizResult:
        result = QuizResult()
        first = True
        while True:
            url = await self._page.current_url()
            if not first:
                print(page_separator(url), file=sys.stderr)
            first = False
            if self._snapshots is not None:
                await self._snapshots.save(self._page)

            questions = await self._extractor.extract_questions(self._page)
            self._event("quiz_page", url=url, questions=len(questions))
            if not questions:
                if await self._handle_empty_page(result) is _PageEnd.END:
                    break
                continue

            result.questions_found += len(questions)
            for offset, question in enumerate(questions, start=1):
                show_question(self._question_number + offset, question)

            if self._oracle is None:
                logger.info("quiz_display_only: questions=%s", len(questions))
                break

            pairs = await self._collect_answers(questions)
            if not pairs:
                if result.answers_submitted == 0:
                    print(
                        f"No answers to submit. The oracle failed on all {len(questions)} question(s) on this page.",
                        file=sys.stderr,
                    )
                else:
                    print("No answers to submit on this page.", file=sys.stderr)
                break

            outcome = await self._decide(len(pairs))
            self._event("quiz_decision", url=url, outcome=outcome.value, answers=len(pairs))
            if outcome in (RaceOutcome.YES, RaceOutcome.ALL):
                report = await self._applier.apply_all(pairs)
                if report.all_failed:
                    raise SessionError(f"could not apply any answer on {url}")
                await self._applier.submit()
                result.answers_submitted += report.applied
                print(f"All {report.applied} answer(s) submitted!", file=sys.stderr)
            elif outcome is RaceOutcome.MANUAL:
                print("User submitted manually.", file=sys.stderr)
                result.answers_submitted += len(pairs)
            else:
                print("Waiting for manual submission...", file=sys.stderr)
                await wait_for_page_change(self._page, self._delays)
                print("Page changed, continuing...", file=sys.stderr)

        logger.info(
            "quiz_done: questions=%s submitted=%s",
            result.questions_found,
            result.answers_submitted,
        )
        return result

    async def _handle_empty_page(self, result: QuizResult) -> _PageEnd:
        affordances = await self._extractor.find_confirmation_affordances(self._page)
        if not affordances:
            logger.info("quiz_end: no questions and no confirmation controls")
            return _PageEnd.END

        print(f"Found {len(affordances)} confirmation prompt(s):", file=sys.stderr)
        for name in affordances:
            print(f"  - {name}", file=sys.stderr)

        if self._settings.continuation_prompts:
            before = await self._page.current_url()
            if await self._extractor.click_confirmations(self._page):
                result.finished_by_confirmation = True
                self._notify("Quiz submitted successfully")
                return _PageEnd.END
            await wait_for_page_change(self._page, self._delays, initial=before)
            return _PageEnd.CONTINUE

        print("(set CONTINUATION_PROMPTS=true to auto-click)", file=sys.stderr)
        if not self._settings.visible:
            raise SessionError("no questions on page and confirmation controls need a human (headless run)")
        self._notify("No more questions found")
        print("Waiting for manual intervention or page change...", file=sys.stderr)
        await wait_for_page_change(self._page, self._delays)
        return _PageEnd.CONTINUE

    async def _images(self, question: Question) -> list[tuple[bytes, str]]:
        urls = [image.url for image in question.images]
        for choice in getattr(question, "choices", ()):
            urls.extend(image.url for image in getattr(choice, "images", ()))
        images = []
        for url in urls:
            try:
                fetched = await self._extractor.fetch_image(self._page, url)
            except Exception as exc:
                logger.warning("image_fetch_failed: %s %s", url, exc)
                continue
            if fetched is None:
                logger.warning("image_fetch_failed: %s", url)
                continue
            images.append(fetched)
        return images

    async def _collect_answers(self, questions: list[Question]) -> list[tuple[Question, AnswerResult]]:
        assert self._oracle is not None
        pairs: list[tuple[Question, AnswerResult]] = []
        logs: list[str] = []
        for question in questions:
            self._question_number += 1
            number = self._question_number
            try:
                answer = await self._oracle.answer(question, await self._images(question))
            except OracleError as exc:
                tripped = self._failures.record_failure()
                logger.warning(
                    "oracle_failed: question=%s kind=%s consecutive=%s/%s error=%s",
                    number,
                    question.kind,
                    self._failures.count,
                    self._failures.threshold,
                    exc,
                )
                print(
                    f"Failed to get an answer for question {number}: {exc} "
                    f"({self._failures.count}/{self._failures.threshold})",
                    file=sys.stderr,
                )
                self._event("oracle_failed", question=number, kind=question.kind, error=str(exc))
                if tripped:
                    raise FailureThresholdExceeded(
                        f"Quiz: exceeded {self._failures.threshold} consecutive oracle failures"
                    ) from exc
                continue
            self._failures.record_success()
            logs.extend(format_answer(number, question, answer))
            pairs.append((question, answer))
        show_lines(logs)
        return pairs

    async def _decide(self, count: int) -> RaceOutcome:
        if self._settings.auto_submit:
            return RaceOutcome.YES
        outcome = await race_confirmation(
            self._prompter.confirm_all(f"Submit {count} answer(s)?"),
            wait_for_page_change(self._page, self._delays),
        )
        if outcome is RaceOutcome.ALL:
            # single writer: only this branch, on the session's one control flow
            self._settings.enable_auto_submit()
        return outcome
