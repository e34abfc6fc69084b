"""OpenAI completion and embedding service."""

import logging
from typing import Optional

import openai
from openai import OpenAI

from studydesk.config import settings

log = logging.getLogger(__name__)


class CompletionError(RuntimeError):
    """The completion service was unreachable or returned nothing usable."""


class LLMService:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[OpenAI] = None,
    ):
        # Values from .env may carry stray whitespace.
        key = (api_key or settings.OPENAI_API_KEY or "").strip() or None
        if client is None and not key:
            raise ValueError("OPENAI_API_KEY is not set")
        self.client = client or OpenAI(api_key=key)
        self.model = model or settings.OPENAI_MODEL
        self.embedding_model = settings.EMBEDDING_MODEL

    def complete(self, messages: list[dict], json_mode: Optional[bool] = None) -> str:
        """Return the text of one chat completion.

        JSON mode is forced when the conversation carries a system prompt
        (tutoring), unless `json_mode` says otherwise.
        """
        if json_mode is None:
            json_mode = any(m.get("role") == "system" for m in messages)
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        log.info(f"Sending {len(messages)} messages to {self.model}")
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=settings.OPENAI_TEMPERATURE,
                max_tokens=settings.OPENAI_MAX_TOKENS,
                **kwargs,
            )
        except openai.RateLimitError as e:
            if getattr(e, "code", None) == "insufficient_quota":
                raise CompletionError("OpenAI API quota exceeded") from e
            raise CompletionError(f"OpenAI rate limit: {e}") from e
        except openai.AuthenticationError as e:
            raise CompletionError("OpenAI API key is invalid") from e
        except openai.OpenAIError as e:
            raise CompletionError(str(e) or e.__class__.__name__) from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise CompletionError("OpenAI returned an empty response")
        log.debug(f"Response preview: {content[:100]}")
        return content

    def embed(self, text: str) -> list[float]:
        return self.embed_many([text])[0]

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed texts in one request, preserving order."""
        if not texts:
            return []
        try:
            response = self.client.embeddings.create(model=self.embedding_model, input=texts)
        except openai.OpenAIError as e:
            raise CompletionError(f"Embedding failed: {e}") from e
        data = sorted(response.data, key=lambda d: d.index)
        return [d.embedding for d in data]
