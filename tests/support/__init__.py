"""Fakes shared by the snap_quiz test suite."""

from .clock import FakeClock  # noqa: F401
from .completions import (  # noqa: F401
    ScriptedCompletionClient,
    make_question,
    make_questions,
    question_payload,
)
from .openai_client import OpenAIStub, OpenAIStubFactory  # noqa: F401

__all__ = [
    "FakeClock",
    "OpenAIStub",
    "OpenAIStubFactory",
    "ScriptedCompletionClient",
    "make_question",
    "make_questions",
    "question_payload",
]
