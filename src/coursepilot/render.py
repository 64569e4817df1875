from __future__ import annotations

from .models import (
    AnswerResult,
    BlankSegment,
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
    TextSegment,
)

CODE_PREVIEW_LINES = 5


def type_marker(question: Question) -> str:
    return f"[{question.kind}]"


def _render_segments(segments, blank_label) -> str:
    parts: list[str] = []
    for seg in segments:
        if isinstance(seg, TextSegment):
            parts.append(seg.text)
        elif isinstance(seg, BlankSegment):
            parts.append(blank_label(seg.index))
        else:
            raise TypeError(f"unknown segment: {seg!r}")
    return "".join(parts).strip()


def format_question(question: Question) -> str:
    lines: list[str] = []
    if isinstance(question, SingleChoice):
        lines.extend([question.question_text, ""])
        for i, choice in enumerate(question.choices, start=1):
            lines.append(f"( ) {i}. {choice.text}")
    elif isinstance(question, MultiChoice):
        lines.extend([question.question_text, ""])
        for i, choice in enumerate(question.choices, start=1):
            lines.append(f"[ ] {i}. {choice.text}")
    elif isinstance(question, ShortAnswer):
        lines.extend([question.question_text, "", "Answer: ________"])
    elif isinstance(question, Matching):
        lines.extend([question.question_text, ""])
        for i, item in enumerate(question.items, start=1):
            prompt = item.prompt or f"[{i}]"
            options = " | ".join(opt.text for opt in item.options if opt.value not in ("", "0"))
            lines.append(f"  {prompt} -> {{{options}}}")
    elif isinstance(question, FillInBlanks):
        lines.append(_render_segments(question.segments, lambda idx: f"[{idx + 1}]____"))
        lines.append("")
        for i, blank in enumerate(question.blanks, start=1):
            if isinstance(blank, SelectBlank):
                options = " | ".join(opt.text for opt in blank.options)
                lines.append(f"  [{i}] choose one of: {options}")
            else:
                lines.append(f"  [{i}] free text")
    elif isinstance(question, DragDropIntoText):
        numbers = {zone.place_number: zone for zone in question.drop_zones}
        text = _render_segments(question.segments, lambda idx: f"[{idx}]____") or question.question_text
        lines.extend([text, ""])
        if numbers:
            lines.append(f"Drop zones: {', '.join(str(n) for n in sorted(numbers))}")
        lines.append("Choices:")
        for choice in question.choices:
            lines.append(f"  - {choice.text} (group {choice.group})")
    elif isinstance(question, CodeBlock):
        lines.extend([question.question_text, "", f"Language: {question.language}"])
        if question.current_code.strip():
            lines.extend(["Current code:", question.current_code])
    elif isinstance(question, CodeSubmission):
        lines.append(question.description)
        if question.required_files:
            lines.extend(["", "Required files:"])
            for f in question.required_files:
                suffix = " (has template)" if f.content else ""
                lines.append(f"  - {f.name}{suffix}")
    else:
        raise TypeError(f"unsupported question type: {type(question).__name__}")
    return "\n".join(lines) + "\n"


def format_answer(number: int, question: Question, answer: AnswerResult) -> list[str]:
    lines = [f"Question {number} {type_marker(question)} answer:"]
    if isinstance(answer, SingleAnswer):
        lines.append(f"  Selected: {answer.index + 1}. {answer.text}")
    elif isinstance(answer, MultiAnswer):
        lines.append("  Selected:")
        for idx, text in zip(answer.indices, answer.texts):
            lines.append(f"    {idx + 1}. {text}")
    elif isinstance(answer, TextAnswer):
        lines.append(f"  Answer: {answer.answer}")
    elif isinstance(answer, MatchingAnswer):
        lines.append("  Matches:")
        items = {item.select_name: item for item in getattr(question, "items", ())}
        for select_name, value in answer.selections:
            item = items.get(select_name)
            prompt = item.prompt if item and item.prompt else select_name
            text = next((o.text for o in item.options if o.value == value), "?") if item else "?"
            lines.append(f"    {prompt} -> {text}")
    elif isinstance(answer, BlanksAnswer):
        lines.append("  Blanks:")
        for i, item in enumerate(answer.answers, start=1):
            if isinstance(item, BlankText):
                lines.append(f"    [{i}]: {item.answer}")
            elif isinstance(item, BlankSelect):
                lines.append(f"    [{i}]: {_select_text(question, item)}")
    elif isinstance(answer, CodeAnswer):
        code_lines = answer.code.splitlines()
        lines.append("  Code:")
        lines.extend(f"    {line}" for line in code_lines[:CODE_PREVIEW_LINES])
        if len(code_lines) > CODE_PREVIEW_LINES:
            lines.append(f"    ... ({len(code_lines) - CODE_PREVIEW_LINES} more lines)")
    elif isinstance(answer, DragDropAnswer):
        lines.append("  Placements:")
        choices = {c.choice_number: c.text for c in getattr(question, "choices", ())}
        for input_name, number in answer.placements:
            lines.append(f"    {input_name} <- {choices.get(number, number)}")
    else:
        raise TypeError(f"unsupported answer type: {type(answer).__name__}")
    return lines


def _select_text(question: Question, item: BlankSelect) -> str:
    if isinstance(question, FillInBlanks):
        for blank in question.blanks:
            if isinstance(blank, SelectBlank) and blank.select_name == item.select_name:
                for opt in blank.options:
                    if opt.value == item.value:
                        return opt.text
    return item.value


def format_files(files) -> str:
    parts = []
    for filename, content in files:
        parts.append(f"\n=== {filename} ===\n{content}")
    return "\n".join(parts) + "\n"
