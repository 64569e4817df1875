from __future__ import annotations

import json
import logging
from typing import Any

from .errors import AnswerRejected
from .models import (
    AnswerResult,
    BlankSelect,
    BlanksAnswer,
    BlankText,
    CodeAnswer,
    CodeBlock,
    CodeSubmission,
    DragDropAnswer,
    DragDropIntoText,
    FillInBlanks,
    Matching,
    MatchingAnswer,
    MultiAnswer,
    MultiChoice,
    Question,
    SelectBlank,
    ShortAnswer,
    SingleAnswer,
    SingleChoice,
    TextAnswer,
    TextBlank,
)
from .render import format_question

logger = logging.getLogger(__name__)

_JSON_ONLY = "Respond with JSON only, no markdown, in this exact format:"


def build_prompt(question: Question) -> str:
    display = format_question(question)
    if isinstance(question, SingleChoice):
        return (
            "You are answering a single-choice question. Pick the ONE correct answer.\n\n"
            f"{display}{_JSON_ONLY}\n"
            '{"response": "<the text of the correct answer>", "response_number": <the number of the correct answer>}'
        )
    if isinstance(question, MultiChoice):
        return (
            "You are answering a multiple-choice question where MULTIPLE answers may be correct. "
            "Select ALL correct answers.\n\n"
            f"{display}{_JSON_ONLY}\n"
            '{"responses": ["<text of a correct answer>", ...], "response_numbers": [<number of a correct answer>, ...]}'
        )
    if isinstance(question, ShortAnswer):
        return (
            "You are answering a short answer question. Provide a concise, direct answer.\n\n"
            f"{display}{_JSON_ONLY}\n"
            '{"answer": "<your concise answer>"}'
        )
    if isinstance(question, Matching):
        return (
            "You are answering a matching question. For each item, select the correct option "
            "from its available choices.\n\n"
            f"{display}{_JSON_ONLY}\n"
            '{"matches": [{"prompt": "<item prompt text or slot number like \'[1]\'>", "answer": "<chosen option text>"}]}'
        )
    if isinstance(question, FillInBlanks):
        return (
            "You are answering a fill-in-the-blanks question. Fill in each numbered blank with "
            "the correct answer.\n\n"
            f"{display}{_JSON_ONLY}\n"
            '{"blanks": [{"blank_number": <number>, "answer": "<the answer for this blank>"}]}\n\n'
            "For text input blanks, provide the exact text to enter.\n"
            "For dropdown blanks, provide the exact text of the option to select (one of the listed choices)."
        )
    if isinstance(question, DragDropIntoText):
        return (
            "You are answering a drag-and-drop question. Place each choice into the correct drop zone.\n\n"
            f"{display}{_JSON_ONLY}\n"
            '{"placements": [{"place_number": <drop zone number>, "choice": "<the exact text of the choice>"}]}\n\n'
            "Each place_number corresponds to a drop zone. Choose the correct option for each zone "
            "from the available choices."
        )
    if isinstance(question, CodeBlock):
        return (
            "You are solving a programming problem. Write the complete solution code.\n"
            "Think in English.\n\n"
            f"{display}\nThe programming language is: {question.language}\n\n"
            f"IMPORTANT: {_JSON_ONLY}\n"
            '{"code": "<your complete solution code>"}\n\n'
            "Write correct, working code. Do not include docstrings or comments."
        )
    if isinstance(question, CodeSubmission):
        raise TypeError("code submissions use build_code_prompt")
    raise TypeError(f"unsupported question type: {type(question).__name__}")


def build_code_prompt(question: CodeSubmission) -> str:
    if question.required_files:
        lines = []
        for f in question.required_files:
            if f.content:
                lines.append(f"- {f.name} (template provided):\n```\n{f.content}\n```")
            else:
                lines.append(f"- {f.name}")
        files_list = "\n".join(lines)
    else:
        files_list = "No specific files required - determine appropriate filename(s) based on the problem."
    return (
        "You are solving a programming assignment. Write the complete solution code.\n"
        "Think in English.\n\n"
        f"Problem Description:\n{question.description}\n\n"
        f"Required Files:\n{files_list}\n\n"
        f"IMPORTANT: {_JSON_ONLY}\n"
        '{"files": [{"filename": "<filename>", "content": "<complete file content>"}]}\n\n'
        "Make sure the code is correct and ready to submit. Do not include docstrings or comments."
    )


def load_json(raw: str) -> dict[str, Any]:
    text = (raw or "").strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise AnswerRejected(f"oracle returned invalid JSON: {exc} - raw: {raw!r}") from None
    if not isinstance(data, dict):
        raise AnswerRejected(f"oracle returned {type(data).__name__}, expected an object")
    return data


def _number(value: Any, what: str) -> int:
    if isinstance(value, bool):
        raise AnswerRejected(f"{what} must be a number, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise AnswerRejected(f"{what} must be a number, got {value!r}") from None


def _choice_index(number: Any, count: int) -> int:
    n = _number(number, "answer number")
    if n < 1 or n > count:
        raise AnswerRejected(f"oracle returned invalid answer index: {n} (expected 1-{count})")
    return n - 1


def parse_answer(question: Question, raw: str) -> AnswerResult:
    """Validate oracle JSON against the question it answers.

    Out-of-range numbers are rejected outright. Option texts the question does
    not offer are logged and skipped, leaving that control untouched.
    """
    data = load_json(raw)
    if isinstance(question, SingleChoice):
        idx = _choice_index(data.get("response_number"), len(question.choices))
        return SingleAnswer(index=idx, text=question.choices[idx].text)

    if isinstance(question, MultiChoice):
        numbers = data.get("response_numbers")
        if not isinstance(numbers, list):
            raise AnswerRejected("response_numbers must be a list")
        indices: list[int] = []
        for number in numbers:
            idx = _choice_index(number, len(question.choices))
            if idx not in indices:
                indices.append(idx)
        return MultiAnswer(
            indices=tuple(indices),
            texts=tuple(question.choices[i].text for i in indices),
        )

    if isinstance(question, ShortAnswer):
        answer = data.get("answer")
        if not isinstance(answer, str):
            raise AnswerRejected("answer must be a string")
        return TextAnswer(answer=answer)

    if isinstance(question, Matching):
        selections: list[tuple[str, str]] = []
        for pair in data.get("matches") or []:
            if not isinstance(pair, dict):
                continue
            prompt = str(pair.get("prompt") or "").strip()
            answer = str(pair.get("answer") or "").strip()
            for i, item in enumerate(question.items, start=1):
                if item.prompt:
                    hit = bool(prompt) and (prompt in item.prompt or item.prompt in prompt)
                else:
                    hit = prompt in (f"[{i}]", str(i))
                if not hit:
                    continue
                value = next((o.value for o in item.options if o.text == answer), None)
                if value is None:
                    logger.warning("oracle_unknown_option: matching item=%s answer=%r", i, answer)
                else:
                    selections.append((item.select_name, value))
                break
        return MatchingAnswer(selections=tuple(selections))

    if isinstance(question, FillInBlanks):
        answers: list[BlankText | BlankSelect] = []
        for entry in data.get("blanks") or []:
            if not isinstance(entry, dict):
                continue
            number = _number(entry.get("blank_number"), "blank_number")
            if number < 1 or number > len(question.blanks):
                raise AnswerRejected(
                    f"oracle returned invalid blank number: {number} (expected 1-{len(question.blanks)})"
                )
            blank = question.blanks[number - 1]
            text = str(entry.get("answer") or "")
            if isinstance(blank, TextBlank):
                answers.append(BlankText(input_name=blank.input_name, answer=text))
            elif isinstance(blank, SelectBlank):
                value = next((o.value for o in blank.options if o.text == text), None)
                if value is None:
                    logger.warning("oracle_unknown_option: blank=%s answer=%r", number, text)
                else:
                    answers.append(BlankSelect(select_name=blank.select_name, value=value))
            else:
                raise TypeError(f"unknown blank: {blank!r}")
        return BlanksAnswer(answers=tuple(answers))

    if isinstance(question, DragDropIntoText):
        zones = {zone.place_number: zone for zone in question.drop_zones}
        placements: list[tuple[str, int]] = []
        for entry in data.get("placements") or []:
            if not isinstance(entry, dict):
                continue
            place = _number(entry.get("place_number"), "place_number")
            zone = zones.get(place)
            if zone is None:
                raise AnswerRejected(f"oracle returned unknown place number: {place}")
            text = str(entry.get("choice") or "")
            choice = next((c for c in question.choices if c.text == text), None)
            if choice is None:
                logger.warning("oracle_unknown_option: place=%s choice=%r", place, text)
                continue
            placements.append((zone.input_name, choice.choice_number))
        return DragDropAnswer(placements=tuple(placements))

    if isinstance(question, CodeBlock):
        code = data.get("code")
        if not isinstance(code, str):
            raise AnswerRejected("code must be a string")
        return CodeAnswer(code=code)

    raise TypeError(f"unsupported question type: {type(question).__name__}")


def parse_files(raw: str) -> tuple[tuple[str, str], ...]:
    data = load_json(raw)
    files = data.get("files")
    if not isinstance(files, list):
        raise AnswerRejected("files must be a list")
    out = []
    for entry in files:
        if not isinstance(entry, dict) or not entry.get("filename"):
            raise AnswerRejected(f"invalid file entry: {entry!r}")
        out.append((str(entry["filename"]), str(entry.get("content") or "")))
    return tuple(out)
