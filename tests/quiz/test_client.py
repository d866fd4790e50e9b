from __future__ import annotations

import pytest

from snap_quiz.core import ai
from snap_quiz.gateway.errors import SafetyBlockedError
from snap_quiz.quiz.client import OpenAICompletionClient

from support import OpenAIStub, OpenAIStubFactory


def make_client(stub):
    return OpenAICompletionClient(
        model="gpt-test",
        temperature=0.5,
        request_timeout=30,
        client=stub,
    )


def test_complete_passes_request_options():
    stub = OpenAIStub()
    stub.queue_response("  [1, 2]  ")
    client = make_client(stub)

    text = client.complete(
        messages=[{"role": "user", "content": "hi"}], max_tokens=123
    )

    assert text == "[1, 2]"
    call = stub.calls[0]
    assert call["model"] == "gpt-test"
    assert call["temperature"] == 0.5
    assert call["max_tokens"] == 123
    assert call["timeout"] == 30
    assert call["messages"] == [{"role": "user", "content": "hi"}]


def test_empty_content_returns_empty_string():
    stub = OpenAIStub()
    stub.queue_response(None)

    assert make_client(stub).complete(messages=[], max_tokens=1) == ""


def test_content_filter_raises_safety_error():
    stub = OpenAIStub()
    stub.queue_response("", finish_reason="content_filter")

    with pytest.raises(SafetyBlockedError):
        make_client(stub).complete(messages=[], max_tokens=1)


def test_refusal_raises_safety_error():
    stub = OpenAIStub()
    stub.queue_response(None, refusal="I can't help with that.")

    with pytest.raises(SafetyBlockedError, match="can't help"):
        make_client(stub).complete(messages=[], max_tokens=1)


def test_default_client_uses_core_loader(monkeypatch):
    factory = OpenAIStubFactory()
    monkeypatch.setattr(ai, "OpenAI", factory)
    monkeypatch.setattr(ai, "load_dotenv", lambda: False)
    monkeypatch.setenv(ai.API_KEY_ENV, "sk-test")

    OpenAICompletionClient(
        model="gpt-test",
        temperature=0.2,
        request_timeout=15,
        api_base="https://example.invalid/v1",
    )

    assert factory.last is not None
    assert factory.last.init_kwargs == {
        "api_key": "sk-test",
        "max_retries": 0,
        "base_url": "https://example.invalid/v1",
        "timeout": 15.0,
    }


def test_load_client_requires_api_key(monkeypatch):
    monkeypatch.setattr(ai, "load_dotenv", lambda: False)
    monkeypatch.delenv(ai.API_KEY_ENV, raising=False)

    with pytest.raises(RuntimeError, match=ai.API_KEY_ENV):
        ai.load_client()


def test_real_client_never_retries_on_its_own(monkeypatch):
    monkeypatch.setattr(ai, "load_dotenv", lambda: False)
    monkeypatch.setenv(ai.API_KEY_ENV, "sk-test")

    client = ai.load_client(api_base="http://127.0.0.1:9/v1", timeout=5.0)

    assert client.max_retries == 0
    assert str(client.base_url).startswith("http://127.0.0.1:9/v1")
