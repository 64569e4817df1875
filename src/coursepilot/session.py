from __future__ import annotations

import datetime as dt
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path

from playwright.async_api import async_playwright

from .config import Settings
from .console import ConsolePrompter, Prompter
from .coordinator import QuizCoordinator
from .errors import SessionError
from .evaluation import EvaluationLoop
from .events import EventLog
from .extractor import PageExtractor
from .hooks import StopHook
from .login import Site, login
from .models import is_code_submission_url
from .oracle import AnswerOracle
from .page import Delays, PageHandle, PlaywrightPage
from .snapshots import SnapshotStore, cleanup_sessions

logger = logging.getLogger(__name__)

EXIT_COMPLETE = 0
EXIT_INCOMPLETE = 1
EXIT_FATAL = 2


def new_run_id() -> str:
    return dt.datetime.now(tz=dt.timezone.utc).strftime("%Y%m%d_%H%M%S")


@dataclass
class SessionOptions:
    urls: list[str] = field(default_factory=list)
    ask_llm: bool = False
    semi_manual: bool = False
    debug_from: Path | None = None


class Session:
    """One run: open the browser, log in, run each URL's flow, pick the exit code."""

    def __init__(
        self,
        settings: Settings,
        options: SessionOptions,
        *,
        run_id: str | None = None,
        prompter: Prompter | None = None,
        oracle: AnswerOracle | None = None,
        delays: Delays = Delays(),
    ) -> None:
        self.settings = settings
        self.options = options
        self.run_id = run_id or new_run_id()
        self.prompter = prompter or ConsolePrompter()
        self.events = EventLog(settings.log_dir, self.run_id)
        self.notify = StopHook(settings.stop_hook)
        self.snapshots = SnapshotStore(settings.snapshot_root, self.run_id)
        self.extractor = PageExtractor(delays)
        self.delays = delays
        self._oracle = oracle

    def make_oracle(self) -> AnswerOracle | None:
        if not self.options.ask_llm:
            return None
        if self._oracle is not None:
            return self._oracle
        if not self.settings.gemini_api_key:
            raise SessionError("GOOGLE_API_KEY or GEMINI_API_KEY is required with --ask-llm")
        self._oracle = AnswerOracle(
            api_key=self.settings.gemini_api_key,
            model=self.settings.llm_model,
            timeout_sec=self.settings.llm_timeout_sec,
            retries=self.settings.api_retries,
            retry_delay_ms=self.settings.api_retry_delay_ms,
        )
        return self._oracle

    async def run(self) -> int:
        logger.info(
            "session_start: run_id=%s urls=%s ask_llm=%s visible=%s",
            self.run_id,
            len(self.options.urls),
            self.options.ask_llm,
            self.settings.visible,
        )
        try:
            cleanup_sessions(self.settings.snapshot_root, self.settings.session_max_age_mins)
            oracle = self.make_oracle()
            async with async_playwright() as pw:
                browser = await pw.chromium.launch(headless=not self.settings.visible)
                try:
                    page = PlaywrightPage(await browser.new_page())
                    code = await self.run_guarded(page, oracle)
                    if self.settings.visible:
                        await self.prompter.wait_for_enter("Browser is visible. Press Enter to close...")
                    return code
                finally:
                    await browser.close()
        except Exception as exc:
            return await self.fatal(exc, None)

    async def run_guarded(self, page: PageHandle, oracle: AnswerOracle | None) -> int:
        try:
            code = await self.run_on(page, oracle)
        except Exception as exc:
            return await self.fatal(exc, page)
        reason = "complete" if code == EXIT_COMPLETE else "incomplete"
        self.events.write_summary(reason=reason, exit_code=code)
        logger.info("session_done: run_id=%s exit_code=%s", self.run_id, code)
        return code

    async def run_on(self, page: PageHandle, oracle: AnswerOracle | None) -> int:
        if self.options.debug_from is not None:
            path = Path(self.options.debug_from).resolve()
            if not path.is_file():
                raise SessionError(f"debug file not found: {path}")
            url = path.as_uri()
            print(f"Loading local file: {url}", file=sys.stderr)
            await page.goto(url)
            return await self.run_flow(page, url, oracle)

        if not self.options.urls:
            raise SessionError("no URL given")
        code = EXIT_COMPLETE
        for url in self.options.urls:
            site = Site.detect(url)
            print(f"Navigating to {url} ({site.host})", file=sys.stderr)
            self.events.log("url_start", url=url, site=site.value)
            await page.goto(url)
            await login(
                page,
                site,
                url,
                self.settings,
                semi_manual=self.options.semi_manual,
                delays=self.delays,
            )
            self.events.log("login_done", url=url)
            code = max(code, await self.run_flow(page, url, oracle))
        return code

    async def run_flow(self, page: PageHandle, url: str, oracle: AnswerOracle | None) -> int:
        if is_code_submission_url(url):
            loop = EvaluationLoop(
                page,
                self.settings,
                extractor=self.extractor,
                oracle=oracle,
                prompter=self.prompter,
                notify=self.notify,
                snapshots=self.snapshots,
                events=self.events,
                delays=self.delays,
            )
            question = await loop.load()
            if question is None:
                return EXIT_INCOMPLETE
            if oracle is None:
                return EXIT_COMPLETE
            outcome = await loop.run(question)
            return EXIT_COMPLETE if outcome.success else EXIT_INCOMPLETE

        coordinator = QuizCoordinator(
            page,
            self.settings,
            extractor=self.extractor,
            oracle=oracle,
            prompter=self.prompter,
            notify=self.notify,
            snapshots=self.snapshots,
            events=self.events,
            delays=self.delays,
        )
        result = await coordinator.run()
        self.events.log(
            "quiz_done",
            url=url,
            questions=result.questions_found,
            submitted=result.answers_submitted,
        )
        return EXIT_COMPLETE if result.complete else EXIT_INCOMPLETE

    async def fatal(self, exc: Exception, page: PageHandle | None) -> int:
        cause = str(exc) or type(exc).__name__
        logger.error("session_fatal: %s", cause, exc_info=exc)
        self.events.log_exception("session_fatal", exc)
        if page is not None:
            await self.snapshots.save(page)
        self.notify(cause)
        self.events.write_summary(reason="fatal", exception=exc)
        print(f"ERROR: {cause}", file=sys.stderr)
        return EXIT_FATAL
