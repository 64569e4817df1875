from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class PageHandle(Protocol):
    """The browser capability the session core needs, and nothing more."""

    async def current_url(self) -> str: ...

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    async def find_element(self, selector: str) -> Any | None: ...

    async def click(self, element: Any) -> None: ...

    async def wait_for_navigation(self) -> None: ...

    async def goto(self, url: str) -> None: ...


@dataclass(frozen=True)
class Delays:
    """UI settle times in seconds. Tests pass ``Delays.none()``."""

    poll: float = 0.5
    settle: float = 1.0
    action: float = 2.0
    navigation: float = 3.0
    evaluation_timeout: float = 60.0

    @classmethod
    def none(cls) -> "Delays":
        return cls(poll=0.01, settle=0.0, action=0.0, navigation=0.0, evaluation_timeout=1.0)


def base_url(url: str) -> str:
    return url.split("?", 1)[0].split("#", 1)[0]


class PlaywrightPage:
    """``PageHandle`` backed by a Playwright async page."""

    def __init__(self, page, *, navigation_timeout_ms: int = 30000) -> None:
        self._page = page
        self._navigation_timeout_ms = navigation_timeout_ms

    @property
    def raw(self):
        return self._page

    async def current_url(self) -> str:
        return self._page.url or ""

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if arg is None:
            return await self._page.evaluate(script)
        return await self._page.evaluate(script, arg)

    async def find_element(self, selector: str):
        return await self._page.query_selector(selector)

    async def click(self, element) -> None:
        await element.click()

    async def wait_for_navigation(self) -> None:
        await self._page.wait_for_load_state("load", timeout=self._navigation_timeout_ms)

    async def goto(self, url: str) -> None:
        await self._page.goto(url, wait_until="load", timeout=self._navigation_timeout_ms)

    async def wait_for_url_change(self, initial_url: str) -> None:
        await self._page.wait_for_url(lambda url: url != initial_url, timeout=0)


async def wait_for_page_change(
    page: PageHandle,
    delays: Delays = Delays(),
    *,
    initial: str | None = None,
) -> str:
    """Block until the page URL differs from ``initial`` (default: the current URL).

    Returns the new URL. Passing ``initial`` read before an action avoids missing
    a navigation that completed before the wait started.
    """
    if initial is None:
        initial = await page.current_url()
    waiter = getattr(page, "wait_for_url_change", None)
    if waiter is not None:
        await waiter(initial)
    else:
        while True:
            await asyncio.sleep(delays.poll)
            if await page.current_url() != initial:
                break
    if delays.settle:
        await asyncio.sleep(delays.settle)
    current = await page.current_url()
    logger.info("page_changed: %s -> %s", initial, current)
    return current


async def page_html(page: PageHandle) -> str:
    html = await page.evaluate("() => document.documentElement.outerHTML")
    return html if isinstance(html, str) else "<html></html>"
