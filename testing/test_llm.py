"""Tests for the OpenAI service wrapper using a fake client."""

from types import SimpleNamespace

import httpx
import openai
import pytest

from studydesk.config import settings
from studydesk.services.llm import CompletionError, LLMService


class FakeCompletions:
    def __init__(self, content="{}", error=None):
        self.content = content
        self.error = error
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeEmbeddings:
    def create(self, model, input):
        # Returned in reverse index order.
        data = [SimpleNamespace(index=i, embedding=[float(len(t))]) for i, t in enumerate(input)]
        return SimpleNamespace(data=list(reversed(data)))


def make_service(completions):
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions), embeddings=FakeEmbeddings())
    return LLMService(client=client, model="test-model")


def test_json_mode_follows_system_turn():
    completions = FakeCompletions('{"type":"text","content":"hi"}')
    service = make_service(completions)

    service.complete([{"role": "system", "content": "tutor"}, {"role": "user", "content": "go"}])
    assert completions.kwargs["response_format"] == {"type": "json_object"}
    assert completions.kwargs["model"] == "test-model"

    service.complete([{"role": "user", "content": "plain"}])
    assert "response_format" not in completions.kwargs

    service.complete([{"role": "system", "content": "rag"}], json_mode=False)
    assert "response_format" not in completions.kwargs


def test_empty_reply_raises():
    service = make_service(FakeCompletions(content=""))

    with pytest.raises(CompletionError):
        service.complete([{"role": "user", "content": "hi"}])


def test_sdk_errors_become_completion_errors():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    service = make_service(FakeCompletions(error=openai.APIConnectionError(request=request)))

    with pytest.raises(CompletionError):
        service.complete([{"role": "user", "content": "hi"}])


def test_embed_many_preserves_input_order():
    service = make_service(FakeCompletions())

    assert service.embed_many(["a", "bbb", "cc"]) == [[1.0], [3.0], [2.0]]
    assert service.embed("four") == [4.0]
    assert service.embed_many([]) == []


def test_missing_api_key_fails_fast(monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", None)

    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        LLMService()
