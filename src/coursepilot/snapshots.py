from __future__ import annotations

import logging
import re
import shutil
import time
from pathlib import Path

from .page import PageHandle, page_html

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^0-9A-Za-z_-]")


def url_label(url: str) -> str:
    label = url.replace("https://", "").replace("http://", "")
    return _UNSAFE.sub("_", label)


def cleanup_sessions(root: Path, max_age_mins: int, *, now: float | None = None) -> list[Path]:
    """Remove session directories under ``root`` not modified for ``max_age_mins``."""
    if not root.is_dir():
        return []
    cutoff = (now if now is not None else time.time()) - max_age_mins * 60
    removed = []
    for entry in sorted(root.iterdir()):
        if not entry.is_dir():
            continue
        if entry.stat().st_mtime < cutoff:
            shutil.rmtree(entry, ignore_errors=True)
            removed.append(entry)
    if removed:
        logger.info("snapshots_cleanup: removed=%s root=%s", len(removed), root)
    return removed


class SnapshotStore:
    def __init__(self, root: Path, session_id: str) -> None:
        self.directory = root / session_id

    def write(self, url: str, html: str, *, timestamp: int | None = None) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        ts = timestamp if timestamp is not None else int(time.time())
        path = self.directory / f"{ts}_{url_label(url)}.html"
        path.write_text(html, encoding="utf-8")
        return path

    async def save(self, page: PageHandle) -> Path | None:
        """Save the page's HTML; failures are logged and never raised."""
        try:
            url = await page.current_url()
            path = self.write(url, await page_html(page))
        except Exception as exc:
            logger.warning("snapshot_failed: %s", exc)
            return None
        logger.info("snapshot_saved: %s", path)
        return path
