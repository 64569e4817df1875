from __future__ import annotations

import datetime as dt
import json
import traceback
from collections import Counter, deque
from pathlib import Path
from typing import Any


class EventLog:
    """Append-only JSONL record of one run plus an end-of-run summary file."""

    def __init__(self, log_dir: Path, run_id: str) -> None:
        self.run_id = run_id
        self.log_path = log_dir / f"session_{run_id}.jsonl"
        self.summary_path = log_dir / f"session_{run_id}_summary.json"
        self._events: deque[dict[str, Any]] = deque(maxlen=50)
        self._counts: Counter[str] = Counter()

    @property
    def counts(self) -> dict[str, int]:
        return dict(self._counts)

    def _append(self, payload: dict[str, Any]) -> None:
        self._events.append(payload)
        self._counts[payload["event"]] += 1
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        with self.log_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, ensure_ascii=False) + "\n")

    def log(self, event: str, **details: Any) -> None:
        payload = {
            "ts": dt.datetime.now(tz=dt.timezone.utc).isoformat(),
            "run_id": self.run_id,
            "event": event,
        }
        payload.update(details)
        self._append(payload)

    def log_exception(self, event: str, exc: BaseException) -> None:
        self._append(
            {
                "ts": dt.datetime.now(tz=dt.timezone.utc).isoformat(),
                "run_id": self.run_id,
                "event": event,
                "exception": str(exc),
                "trace": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            }
        )

    def write_summary(self, *, reason: str | None, exception: BaseException | None = None, **extra: Any) -> Path:
        summary: dict[str, Any] = {
            "run_id": self.run_id,
            "totals": dict(self._counts),
            "stop_reason": reason,
            "last_events": list(self._events),
        }
        summary.update(extra)
        if exception is not None:
            summary["exception"] = {
                "type": type(exception).__name__,
                "message": str(exception),
                "trace": "".join(traceback.format_exception(type(exception), exception, exception.__traceback__)),
            }
        self.summary_path.parent.mkdir(parents=True, exist_ok=True)
        self.summary_path.write_text(json.dumps(summary, ensure_ascii=False, indent=2), encoding="utf-8")
        return self.summary_path
