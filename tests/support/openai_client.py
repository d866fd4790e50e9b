"""Stand-ins for the OpenAI client object.

Tests pass these objects in directly or patch the ``OpenAI`` name inside
``snap_quiz.core.ai``; the real ``openai`` package stays importable.
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Dict, List, Optional


def _completion(
    content: Optional[str],
    *,
    finish_reason: str = "stop",
    refusal: Optional[str] = None,
) -> SimpleNamespace:
    message = SimpleNamespace(content=content, refusal=refusal)
    choice = SimpleNamespace(message=message, finish_reason=finish_reason)
    return SimpleNamespace(choices=[choice])


class OpenAIStub:
    """Expose ``chat.completions.create`` and record every call."""

    def __init__(self, **init_kwargs: Any) -> None:
        self.init_kwargs = init_kwargs
        self.calls: List[Dict[str, Any]] = []
        self.responses: List[SimpleNamespace] = []
        self.chat = SimpleNamespace(
            completions=SimpleNamespace(create=self._create_completion)
        )

    def queue_response(
        self,
        content: Optional[str],
        *,
        finish_reason: str = "stop",
        refusal: Optional[str] = None,
    ) -> None:
        self.responses.append(
            _completion(content, finish_reason=finish_reason, refusal=refusal)
        )

    def _create_completion(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        if self.responses:
            return self.responses.pop(0)
        return _completion("")


class OpenAIStubFactory:
    """Callable replacing the ``OpenAI`` class; remembers created stubs."""

    def __init__(self) -> None:
        self.instances: List[OpenAIStub] = []

    def __call__(self, **kwargs: Any) -> OpenAIStub:
        stub = OpenAIStub(**kwargs)
        self.instances.append(stub)
        return stub

    @property
    def last(self) -> Optional[OpenAIStub]:
        return self.instances[-1] if self.instances else None
