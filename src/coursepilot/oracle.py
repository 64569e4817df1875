from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, TypeVar

import httpx
from google import genai
from google.genai import errors, types

from .answers import build_code_prompt, build_prompt, parse_answer, parse_files
from .errors import OracleError, TransientOracleError
from .models import AnswerResult, CodeSubmission, Conversation, GeneratedCode, Question

logger = logging.getLogger(__name__)

TRANSIENT_PATTERNS = (
    "api_error",
    "Internal server error",
    "overloaded",
    "rate_limit",
    "RESOURCE_EXHAUSTED",
    "UNAVAILABLE",
    "timeout",
)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (TransientOracleError, asyncio.TimeoutError, httpx.TransportError, OSError)):
        return True
    if isinstance(exc, errors.ServerError):
        return True
    if isinstance(exc, errors.APIError) and getattr(exc, "code", None) == 429:
        return True
    text = str(exc)
    return any(pattern in text for pattern in TRANSIENT_PATTERNS)


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    retries: int,
    delay_ms: int,
) -> T:
    """Run ``fn`` up to ``retries`` times, retrying only transient failures.

    The wait before attempt ``n + 1`` is ``delay_ms * n``.
    """
    for attempt in range(retries):
        try:
            return await fn()
        except TransientOracleError as exc:
            if attempt >= retries - 1:
                raise
            delay = delay_ms * (attempt + 1)
            logger.warning(
                "oracle_retry: attempt=%s/%s delay_ms=%s error=%s",
                attempt + 1,
                retries,
                delay,
                exc,
            )
            await asyncio.sleep(delay / 1000)
    raise OracleError("retry loop exhausted")


@dataclass
class AnswerOracle:
    api_key: str
    model: str
    timeout_sec: float = 60.0
    retries: int = 3
    retry_delay_ms: int = 1000

    def _client(self) -> genai.Client:
        return genai.Client(api_key=self.api_key)

    async def _generate(self, contents: list[types.Content]) -> str:
        client = self._client()
        config = types.GenerateContentConfig(temperature=0, response_mime_type="application/json")

        def _call() -> str:
            resp = client.models.generate_content(model=self.model, contents=contents, config=config)
            return (resp.text or "").strip()

        try:
            raw = await asyncio.wait_for(asyncio.to_thread(_call), timeout=self.timeout_sec)
        except asyncio.TimeoutError:
            raise TransientOracleError(f"timeout after {self.timeout_sec}s") from None
        except errors.APIError as exc:
            if is_transient(exc):
                raise TransientOracleError(str(exc)) from exc
            raise OracleError(str(exc)) from exc
        except (httpx.TransportError, OSError) as exc:
            # dropped connections and read timeouts from the client transport
            raise TransientOracleError(f"{type(exc).__name__}: {exc}") from exc
        if not raw:
            raise TransientOracleError("empty response")
        logger.debug("oracle_raw: %s", raw)
        return raw

    async def _complete(self, contents: list[types.Content]) -> str:
        return await call_with_retry(
            lambda: self._generate(contents),
            retries=self.retries,
            delay_ms=self.retry_delay_ms,
        )

    async def answer(self, question: Question, images: Iterable[tuple[bytes, str]] = ()) -> AnswerResult:
        prompt = build_prompt(question)
        parts = [types.Part.from_text(text=prompt)]
        parts.extend(types.Part.from_bytes(data=data, mime_type=mime) for data, mime in images)
        logger.info(
            "oracle_usage: answer model=%s kind=%s prompt_len=%s images=%s",
            self.model,
            question.kind,
            len(prompt),
            len(parts) - 1,
        )
        raw = await self._complete([types.Content(role="user", parts=parts)])
        return parse_answer(question, raw)

    async def generate_code(self, question: CodeSubmission) -> GeneratedCode:
        conversation = Conversation()
        conversation.add("user", build_code_prompt(question))
        logger.info(
            "oracle_usage: generate_code model=%s files=%s",
            self.model,
            len(question.required_files),
        )
        return await self._converse(conversation)

    async def regenerate(self, conversation: Conversation, feedback: str) -> GeneratedCode:
        """Append grader feedback to ``conversation`` and ask for corrected files."""
        conversation.add("user", feedback)
        logger.info(
            "oracle_usage: regenerate model=%s turns=%s feedback_len=%s",
            self.model,
            len(conversation),
            len(feedback),
        )
        return await self._converse(conversation)

    async def _converse(self, conversation: Conversation) -> GeneratedCode:
        contents = [
            types.Content(
                role="model" if message.role == "assistant" else "user",
                parts=[types.Part.from_text(text=message.text)],
            )
            for message in conversation.messages
        ]
        raw = await self._complete(contents)
        conversation.add("assistant", raw)
        return GeneratedCode(files=parse_files(raw), conversation=conversation)
