from __future__ import annotations

import asyncio
import enum
import logging
import sys
from typing import Iterable, Protocol

from .models import Question
from .render import format_question, type_marker

logger = logging.getLogger(__name__)


class ConfirmOutcome(enum.Enum):
    YES = "yes"
    ALL = "all"
    NO = "no"


class Prompter(Protocol):
    async def confirm_all(self, message: str) -> ConfirmOutcome: ...

    async def confirm(self, message: str) -> bool: ...

    async def wait_for_enter(self, message: str) -> None: ...


def parse_confirm_all(reply: str) -> ConfirmOutcome:
    value = reply.strip().lower()
    if value in ("y", "yes"):
        return ConfirmOutcome.YES
    if value in ("a", "all"):
        return ConfirmOutcome.ALL
    return ConfirmOutcome.NO


async def read_line(prompt: str) -> str:
    """Read one line from stdin without blocking the event loop.

    Cancelling the returned coroutine unregisters the reader, so a prompt that
    lost a race leaves nothing behind.
    """
    print(prompt, end="", file=sys.stderr, flush=True)
    loop = asyncio.get_running_loop()
    try:
        fd = sys.stdin.fileno()
        future: asyncio.Future[str] = loop.create_future()

        def _ready() -> None:
            if not future.done():
                future.set_result(sys.stdin.readline())

        loop.add_reader(fd, _ready)
    except (NotImplementedError, OSError, ValueError):
        # no selector support for stdin (Windows proactor, redirected stdin)
        return await asyncio.to_thread(sys.stdin.readline)
    try:
        return await future
    finally:
        loop.remove_reader(fd)


class ConsolePrompter:
    async def confirm_all(self, message: str) -> ConfirmOutcome:
        return parse_confirm_all(await read_line(f"{message} [y/a/N] "))

    async def confirm(self, message: str) -> bool:
        reply = await read_line(f"{message} [y/N] ")
        return reply.strip().lower() in ("y", "yes")

    async def wait_for_enter(self, message: str) -> None:
        await read_line(f"{message}\n")


def show_question(number: int, question: Question) -> None:
    header = f"--- Question {number} {type_marker(question)} ---"
    logger.info("question: %s", header)
    print(header, file=sys.stderr)
    print(format_question(question), file=sys.stderr, end="")
    for image in question.images:
        print(f"  [Image: {image.alt or image.url}]", file=sys.stderr)
    for choice in getattr(question, "choices", ()):
        for image in getattr(choice, "images", ()):
            print(f"    [Image: {image.alt or image.url}]", file=sys.stderr)
    print(file=sys.stderr)


def show_lines(lines: Iterable[str]) -> None:
    lines = list(lines)
    if not lines:
        return
    print()
    for line in lines:
        print(line)
    print()


def page_separator(url: str) -> str:
    number = page_number(url)
    if number is None:
        return "\n================================================"
    return f"\n==================== Page {number} ===================="


def page_number(url: str) -> int | None:
    if "page=" not in url:
        return None
    raw = url.split("page=", 1)[1].split("&", 1)[0].split("#", 1)[0]
    try:
        return int(raw)
    except ValueError:
        return None
