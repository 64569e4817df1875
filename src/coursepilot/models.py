from __future__ import annotations

from dataclasses import dataclass, field
from typing import TypeVar, Union


def is_code_submission_url(url: str) -> bool:
    # saved snapshots flatten "/mod/vpl/" into "mod_vpl"
    return "/mod/vpl/" in url or "mod_vpl" in url


@dataclass(frozen=True)
class Image:
    url: str
    alt: str | None = None


@dataclass(frozen=True)
class Choice:
    input_name: str
    input_value: str
    text: str
    selected: bool
    images: tuple[Image, ...] = ()


@dataclass(frozen=True)
class MatchOption:
    value: str
    text: str


@dataclass(frozen=True)
class MatchItem:
    prompt: str
    select_name: str
    options: tuple[MatchOption, ...]
    selected_value: str = ""


@dataclass(frozen=True)
class TextBlank:
    input_name: str
    current_value: str = ""


@dataclass(frozen=True)
class SelectBlank:
    select_name: str
    options: tuple[MatchOption, ...]
    selected_value: str = ""


Blank = Union[TextBlank, SelectBlank]


@dataclass(frozen=True)
class TextSegment:
    text: str


@dataclass(frozen=True)
class BlankSegment:
    index: int


Segment = Union[TextSegment, BlankSegment]


@dataclass(frozen=True)
class DropZone:
    place_number: int
    input_name: str
    current_value: str = ""


@dataclass(frozen=True)
class DragChoice:
    choice_number: int
    text: str
    group: int = 1


@dataclass(frozen=True)
class RequiredFile:
    name: str
    content: str = ""


@dataclass(frozen=True)
class SingleChoice:
    question_text: str
    choices: tuple[Choice, ...]
    images: tuple[Image, ...] = ()
    kind = "single"


@dataclass(frozen=True)
class MultiChoice:
    question_text: str
    choices: tuple[Choice, ...]
    images: tuple[Image, ...] = ()
    kind = "multi"


@dataclass(frozen=True)
class ShortAnswer:
    question_text: str
    input_name: str
    current_answer: str = ""
    images: tuple[Image, ...] = ()
    kind = "text"


@dataclass(frozen=True)
class Matching:
    question_text: str
    items: tuple[MatchItem, ...]
    images: tuple[Image, ...] = ()
    kind = "match"


@dataclass(frozen=True)
class FillInBlanks:
    question_text: str
    segments: tuple[Segment, ...]
    blanks: tuple[Blank, ...]
    images: tuple[Image, ...] = ()
    kind = "fill"


@dataclass(frozen=True)
class DragDropIntoText:
    question_text: str
    segments: tuple[Segment, ...]
    drop_zones: tuple[DropZone, ...]
    choices: tuple[DragChoice, ...]
    images: tuple[Image, ...] = ()
    kind = "dragdrop"


@dataclass(frozen=True)
class CodeBlock:
    question_text: str
    input_name: str
    language: str = "text"
    current_code: str = ""
    images: tuple[Image, ...] = ()
    kind = "code"


@dataclass(frozen=True)
class CodeSubmission:
    description: str
    required_files: tuple[RequiredFile, ...]
    module_id: str = ""
    images: tuple[Image, ...] = ()
    kind = "vpl"

    @property
    def question_text(self) -> str:
        return self.description


Question = Union[
    SingleChoice,
    MultiChoice,
    ShortAnswer,
    Matching,
    FillInBlanks,
    DragDropIntoText,
    CodeBlock,
    CodeSubmission,
]

QUESTION_TYPES = (
    SingleChoice,
    MultiChoice,
    ShortAnswer,
    Matching,
    FillInBlanks,
    DragDropIntoText,
    CodeBlock,
    CodeSubmission,
)


class VariantMismatch(TypeError):
    pass


Q = TypeVar("Q")


def expect_variant(question: object, variant: type[Q]) -> Q:
    """Return ``question`` typed as ``variant`` or raise ``VariantMismatch``."""
    if not isinstance(question, variant):
        raise VariantMismatch(
            f"expected {variant.__name__}, got {type(question).__name__}"
        )
    return question


# Answers produced by the oracle. Indices are 0-based and already validated
# against the question they were produced for.


@dataclass(frozen=True)
class SingleAnswer:
    index: int
    text: str


@dataclass(frozen=True)
class MultiAnswer:
    indices: tuple[int, ...]
    texts: tuple[str, ...]


@dataclass(frozen=True)
class TextAnswer:
    answer: str


@dataclass(frozen=True)
class MatchingAnswer:
    # (select_name, option value)
    selections: tuple[tuple[str, str], ...]


@dataclass(frozen=True)
class BlankText:
    input_name: str
    answer: str


@dataclass(frozen=True)
class BlankSelect:
    select_name: str
    value: str


@dataclass(frozen=True)
class BlanksAnswer:
    answers: tuple[Union[BlankText, BlankSelect], ...]


@dataclass(frozen=True)
class CodeAnswer:
    code: str


@dataclass(frozen=True)
class DragDropAnswer:
    # (drop zone input name, choice number)
    placements: tuple[tuple[str, int], ...]


AnswerResult = Union[
    SingleAnswer,
    MultiAnswer,
    TextAnswer,
    MatchingAnswer,
    BlanksAnswer,
    CodeAnswer,
    DragDropAnswer,
]


@dataclass(frozen=True)
class Message:
    role: str  # user | assistant
    text: str


@dataclass
class Conversation:
    """Append-only message history handed back to the oracle on retries."""

    messages: list[Message] = field(default_factory=list)

    def add(self, role: str, text: str) -> None:
        if role not in ("user", "assistant"):
            raise ValueError(f"unknown role: {role}")
        self.messages.append(Message(role=role, text=text))

    def __len__(self) -> int:
        return len(self.messages)

    @property
    def last(self) -> Message | None:
        return self.messages[-1] if self.messages else None


@dataclass(frozen=True)
class GeneratedCode:
    files: tuple[tuple[str, str], ...]
    conversation: Conversation
