"""Data structures shared by the quiz generator, session and views."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

TOTAL_QUESTIONS = 10
OPTION_COUNT = 4
OPTION_KEYS = ("A", "B", "C", "D")


class Stage(Enum):
    """Lifecycle stages of a quiz session."""

    TITLE = "title"
    GENERATING = "generating"
    PLAYING = "playing"
    FEEDBACK = "feedback"
    ANALYZING = "analyzing"
    SUMMARY = "summary"


class Mode(Enum):
    """Study sticks to the material; Quiz goes for open trivia."""

    STUDY = "study"
    QUIZ = "quiz"

    @classmethod
    def from_value(cls, value: str) -> "Mode":
        return _enum_from_value(cls, value)


class Persona(Enum):
    """Teacher style that flavours generated questions and advice."""

    GENTLE = "gentle"
    TRICKY = "tricky"

    @classmethod
    def from_value(cls, value: str) -> "Persona":
        return _enum_from_value(cls, value)


def _enum_from_value(cls, value):
    normalized = str(value).strip().lower()
    for member in cls:
        if member.value == normalized:
            return member
    expected = ", ".join(member.value for member in cls)
    raise ValueError(
        f"Unknown {cls.__name__.lower()} '{value}'. Expected one of: {expected}."
    )


@dataclass(frozen=True)
class ImageAttachment:
    """An already validated image handed to the generator."""

    name: str
    data: bytes
    mime_type: str


@dataclass(frozen=True)
class Question:
    """One generated multiple-choice question."""

    id: str
    prompt_text: str
    options: tuple[str, str, str, str]
    correct_option_index: int
    short_explanation: str
    estimated_audience: str

    def __post_init__(self) -> None:
        if len(self.options) != OPTION_COUNT:
            raise ValueError(f"question needs exactly {OPTION_COUNT} options")
        if not 0 <= self.correct_option_index < OPTION_COUNT:
            raise ValueError("correct_option_index must index an option")

    @property
    def correct_option(self) -> str:
        return self.options[self.correct_option_index]

    def is_correct(self, option_index: int) -> bool:
        return option_index == self.correct_option_index


@dataclass(frozen=True)
class AnswerResult:
    """The outcome of answering one question."""

    question_index: int
    is_correct: bool
    elapsed_seconds: float


def score_percent(results: list[AnswerResult], total: int) -> int:
    """Percentage of correct answers, rounded half up."""

    if total <= 0:
        return 0
    correct = sum(1 for result in results if result.is_correct)
    return int(correct * 100 / total + 0.5)
