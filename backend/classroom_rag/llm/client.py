"""Chat completion clients.

``OpenAIChatClient`` talks to the OpenAI API; ``DeterministicStubClient`` needs
no key and answers predictably, which is what tests and offline development run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Sequence

import openai
from openai import OpenAI
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from classroom_rag.core.config import Settings
from classroom_rag.core.errors import ProviderError
from classroom_rag.core.logging import get_logger, log_context
from classroom_rag.utils.text import estimate_tokens

logger = get_logger(__name__)

Message = dict[str, str]

_RETRYABLE_ERRORS = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


@dataclass(slots=True)
class Completion:
    text: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class ChatModel(Protocol):
    """Protocol for chat completion implementations."""

    model_name: str

    def complete(
        self,
        messages: Sequence[Message],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> Completion: ...


class OpenAIChatClient:
    """OpenAI-backed chat model with explicit timeout and bounded retries."""

    def __init__(
        self,
        api_key: str | None,
        model: str = "gpt-4o-mini",
        temperature: float = 0.3,
        max_tokens: int = 1500,
        timeout: float = 60.0,
        max_retries: int = 3,
        client: OpenAI | None = None,
    ) -> None:
        if client is None and not api_key:
            raise ProviderError("chat", "an OpenAI API key is required for the openai backend")
        self.model_name = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_retries = max_retries
        self.client = client or OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def complete(
        self,
        messages: Sequence[Message],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> Completion:
        params: dict[str, object] = {
            "model": self.model_name,
            "messages": list(messages),
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.max_tokens,
        }
        if json_mode:
            params["response_format"] = {"type": "json_object"}

        @retry(
            reraise=True,
            retry=retry_if_exception_type(_RETRYABLE_ERRORS),
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
        )
        def call():
            return self.client.chat.completions.create(**params)

        try:
            response = call()
        except openai.OpenAIError as exc:
            logger.error("Chat completion failed", extra=log_context(model=self.model_name, error=str(exc)))
            raise ProviderError("chat", str(exc)) from exc

        text = response.choices[0].message.content or ""
        usage = response.usage
        if usage is None:
            return Completion(
                text=text,
                model=self.model_name,
                prompt_tokens=sum(estimate_tokens(message["content"]) for message in messages),
                completion_tokens=estimate_tokens(text),
            )
        return Completion(
            text=text,
            model=response.model or self.model_name,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
        )


@dataclass
class DeterministicStubClient:
    """Deterministic chat model for tests; no API key required.

    Queued ``replies`` are returned first, in order. Otherwise JSON requests get
    an empty object and plain requests a summary naming the numbered sources
    found in the last message.
    """

    model_name: str = "stub"
    replies: list[str] = field(default_factory=list)
    calls: list[list[Message]] = field(default_factory=list)

    def complete(
        self,
        messages: Sequence[Message],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> Completion:
        self.calls.append([dict(message) for message in messages])
        if self.replies:
            text = self.replies.pop(0)
        elif json_mode:
            text = "{}"
        else:
            prompt = messages[-1]["content"] if messages else ""
            cited = prompt.count("[Source ")
            text = f"Answer drawn from {cited} source(s) in the provided materials."
        prompt_tokens = sum(estimate_tokens(message["content"]) for message in messages)
        return Completion(
            text=text,
            model=self.model_name,
            prompt_tokens=prompt_tokens,
            completion_tokens=estimate_tokens(text),
        )


def build_chat_model(settings: Settings) -> ChatModel:
    """Instantiate the configured chat backend."""
    if settings.chat_backend == "openai":
        logger.info("Using OpenAI chat model", extra=log_context(model=settings.chat_model))
        return OpenAIChatClient(
            api_key=settings.openai_api_key,
            model=settings.chat_model,
            temperature=settings.chat_temperature,
            max_tokens=settings.chat_max_tokens,
            timeout=settings.provider_timeout_seconds,
            max_retries=settings.provider_max_retries,
        )
    logger.warning("No chat backend configured, using deterministic stub client")
    return DeterministicStubClient()


__all__ = ["ChatModel", "Completion", "OpenAIChatClient", "DeterministicStubClient", "build_chat_model"]
