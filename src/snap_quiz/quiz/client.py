"""Chat-completion adapter used by the quiz generator."""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence

from ..core.ai import load_client as load_openai_client
from ..gateway.errors import SafetyBlockedError

__all__ = ["CompletionClient", "OpenAICompletionClient"]

Message = Mapping[str, Any]


class CompletionClient(Protocol):
    """Protocol satisfied by model adapters."""

    def complete(
        self,
        *,
        messages: Sequence[Message],
        max_tokens: int,
    ) -> str:
        """Return the assistant text for ``messages``.

        Implementations perform exactly one remote attempt and let client
        errors propagate so the gateway can classify them.
        """


class OpenAICompletionClient:
    """Adapter for OpenAI chat completions with inline image parts."""

    def __init__(
        self,
        *,
        model: str,
        temperature: float,
        request_timeout: int,
        api_base: str | None = None,
        client: Any | None = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.timeout = request_timeout
        if client is not None:
            self._client = client
        else:
            self._client = load_openai_client(
                api_base=api_base, timeout=float(request_timeout)
            )

    def complete(
        self,
        *,
        messages: Sequence[Message],
        max_tokens: int,
    ) -> str:
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[dict(message) for message in messages],
            temperature=self.temperature,
            max_tokens=max_tokens,
            timeout=self.timeout,
        )
        choice = response.choices[0]
        if getattr(choice, "finish_reason", None) == "content_filter":
            raise SafetyBlockedError("Response stopped by the content filter.")
        refusal = getattr(choice.message, "refusal", None)
        if refusal:
            raise SafetyBlockedError(f"Request refused for safety: {refusal}")
        return (choice.message.content or "").strip()
