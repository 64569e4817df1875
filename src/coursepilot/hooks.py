from __future__ import annotations

import logging
import shlex
import subprocess

logger = logging.getLogger(__name__)


def run_stop_hook(hook: str | None, message: str) -> subprocess.Popen | None:
    """Fire ``hook`` with ``message`` as its single argument and return immediately.

    The command runs through ``sh -c`` so the hook may be any shell snippet.
    Its output and exit status are never read.
    """
    if not hook:
        return None
    command = f"{hook} {shlex.quote(message)}"
    logger.info("stop_hook: %s %r", hook, message)
    try:
        return subprocess.Popen(
            ["sh", "-c", command],
            stdin=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as exc:
        logger.warning("stop_hook_failed: %s", exc)
        return None


class StopHook:
    """Stop hook bound to the session's configured command."""

    def __init__(self, command: str | None) -> None:
        self.command = command
        self.fired: list[str] = []

    def __call__(self, message: str) -> None:
        self.fired.append(message)
        run_stop_hook(self.command, message)
