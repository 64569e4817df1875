from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from dotenv import load_dotenv

load_dotenv()

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise RuntimeError(f"{name} must be a boolean (true/false), got {raw!r}")


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise RuntimeError(f"{name} must be positive")
    return value


@dataclass
class Settings:
    """Process-lifetime session settings.

    One instance is created at startup and passed by reference through the
    whole session. Every field is fixed after load except ``auto_submit``,
    which flips to True when the user answers "all" at a confirmation prompt.
    That write happens only on the session's single control flow, inside the
    winning branch of the confirmation race, so no lock guards it. If sessions
    ever run questions or tabs in parallel this must become an atomic flag or
    a message to the owner.
    """

    username: str = ""
    password: str = ""
    auto_submit: bool = False
    continuation_prompts: bool = False
    stop_hook: str | None = None
    llm_retries: int = 5
    api_retries: int = 3
    api_retry_delay_ms: int = 1000
    button_click_retries: int = 3
    max_consecutive_failures: int = 5
    session_max_age_mins: int = 120
    gemini_api_key: str | None = None
    llm_model: str = "gemini-2.5-flash"
    llm_timeout_sec: float = 60.0
    log_dir: Path = Path("./logs")
    institution: str = "Université Clermont Auvergne"
    visible: bool = False

    def enable_auto_submit(self) -> None:
        self.auto_submit = True

    @property
    def snapshot_root(self) -> Path:
        return self.log_dir / "htmls"


def load_settings(overrides: dict[str, Any] | None = None) -> Settings:
    load_dotenv()
    values: dict[str, Any] = {
        "username": os.getenv("MOODLE_USERNAME", "").strip(),
        "password": os.getenv("MOODLE_PASSWORD", ""),
        "auto_submit": _env_bool("AUTO_SUBMIT", False),
        "continuation_prompts": _env_bool("CONTINUATION_PROMPTS", False),
        "stop_hook": os.getenv("STOP_HOOK", "").strip() or None,
        "llm_retries": _env_int("LLM_RETRIES", 5),
        "api_retries": _env_int("API_RETRIES", 3, minimum=1),
        "api_retry_delay_ms": _env_int("API_RETRY_DELAY_MS", 1000),
        "button_click_retries": _env_int("BUTTON_CLICK_RETRIES", 3, minimum=1),
        "max_consecutive_failures": _env_int("MAX_CONSECUTIVE_FAILURES", 5, minimum=1),
        "session_max_age_mins": _env_int("SESSION_MAX_AGE_MINS", 120),
        "gemini_api_key": os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY") or None,
        "llm_model": os.getenv("LLM_MODEL", "gemini-2.5-flash").strip() or "gemini-2.5-flash",
        "llm_timeout_sec": _env_float("LLM_TIMEOUT_SEC", 60.0),
        "log_dir": Path(os.getenv("LOG_DIR", "./logs")),
        "institution": os.getenv("FEDERATION_INSTITUTION", "").strip() or "Université Clermont Auvergne",
    }
    for key, value in (overrides or {}).items():
        if key not in Settings.__dataclass_fields__:
            raise RuntimeError(f"unknown setting: {key}")
        if value is not None:
            values[key] = value
    if isinstance(values["log_dir"], str):
        values["log_dir"] = Path(values["log_dir"])
    for key in ("api_retries", "button_click_retries", "max_consecutive_failures"):
        if values[key] < 1:
            raise RuntimeError(f"{key} must be >= 1")
    return Settings(**values)
