"""Embedding utilities."""

from __future__ import annotations

import hashlib
import math
import re
from array import array
from dataclasses import dataclass
from typing import Iterable, Protocol

import openai
from openai import OpenAI
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from classroom_rag.core.config import Settings
from classroom_rag.core.errors import ProviderError
from classroom_rag.core.logging import get_logger, log_context
from classroom_rag.utils.text import estimate_tokens

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"\w+")

_RETRYABLE_ERRORS = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


@dataclass(slots=True)
class EmbeddingBatch:
    vectors: list[list[float]]
    model: str
    dim: int
    backend: str
    tokens_used: int = 0


class Embedder(Protocol):
    """Anything that turns texts into unit vectors."""

    model_name: str

    @property
    def dim(self) -> int: ...

    def encode(self, texts: Iterable[str]) -> EmbeddingBatch: ...


class EmbeddingModel:
    """Lightweight hashed embedding model with deterministic output."""

    def __init__(
        self,
        model_name: str = "hashed",
        dim: int = 384,
    ) -> None:
        self.model_name = model_name
        self._dim = dim
        self._backend = "hashed"

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def backend(self) -> str:
        return self._backend

    def encode(self, texts: Iterable[str]) -> EmbeddingBatch:
        vectors: list[list[float]] = []
        tokens_used = 0
        for text in texts:
            tokens = _tokenize(text)
            vector = [0.0] * self._dim
            for token in tokens:
                slot = _hash_token(token, self._dim)
                vector[slot] += 1.0
            _normalize(vector)
            vectors.append(vector)
            tokens_used += estimate_tokens(text)
        return EmbeddingBatch(
            vectors=vectors,
            model=self.model_name,
            dim=self._dim,
            backend=self._backend,
            tokens_used=tokens_used,
        )


class OpenAIEmbeddingModel:
    """Embeddings from the OpenAI API with bounded retries.

    When ``dim`` is set it is sent as ``dimensions`` so the API shortens the
    vectors; otherwise the model returns its native size.
    """

    NATIVE_DIM = 1536

    def __init__(
        self,
        api_key: str | None,
        model_name: str = "text-embedding-3-small",
        dim: int | None = None,
        timeout: float = 60.0,
        max_retries: int = 3,
        client: OpenAI | None = None,
    ) -> None:
        if client is None and not api_key:
            raise ProviderError("embeddings", "an OpenAI API key is required for the openai backend")
        self.model_name = model_name
        self._dimensions = dim
        self._dim = dim or self.NATIVE_DIM
        self._max_retries = max_retries
        self.client = client or OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    @property
    def dim(self) -> int:
        return self._dim

    def encode(self, texts: Iterable[str]) -> EmbeddingBatch:
        inputs = list(texts)
        if not inputs:
            return EmbeddingBatch(vectors=[], model=self.model_name, dim=self._dim, backend="openai")
        try:
            response = self._create(inputs)
        except openai.OpenAIError as exc:
            logger.error(
                "Embedding request failed",
                extra=log_context(model=self.model_name, inputs=len(inputs), error=str(exc)),
            )
            raise ProviderError("embeddings", str(exc)) from exc
        ordered = sorted(response.data, key=lambda item: item.index)
        vectors = [list(item.embedding) for item in ordered]
        for vector in vectors:
            _normalize(vector)
        usage = getattr(response, "usage", None)
        tokens_used = usage.total_tokens if usage is not None else sum(estimate_tokens(text) for text in inputs)
        return EmbeddingBatch(
            vectors=vectors,
            model=self.model_name,
            dim=len(vectors[0]) if vectors else self._dim,
            backend="openai",
            tokens_used=tokens_used,
        )

    def _create(self, inputs: list[str]):
        @retry(
            reraise=True,
            retry=retry_if_exception_type(_RETRYABLE_ERRORS),
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
        )
        def call():
            if self._dimensions:
                return self.client.embeddings.create(
                    model=self.model_name, input=inputs, dimensions=self._dimensions
                )
            return self.client.embeddings.create(model=self.model_name, input=inputs)

        return call()


def build_embedder(settings: Settings) -> Embedder:
    """Instantiate the configured embedding backend."""
    if settings.embedding_backend == "openai":
        return OpenAIEmbeddingModel(
            api_key=settings.openai_api_key,
            model_name=settings.embedding_model,
            dim=settings.embedding_dim,
            timeout=settings.provider_timeout_seconds,
            max_retries=settings.provider_max_retries,
        )
    return EmbeddingModel(model_name=f"hashed-{settings.embedding_dim}", dim=settings.embedding_dim)


def vector_to_bytes(vector: list[float]) -> bytes:
    arr = array("f", vector)
    return arr.tobytes()


def vector_from_bytes(blob: bytes) -> list[float]:
    arr = array("f")
    arr.frombytes(blob)
    return arr.tolist()


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    value = int.from_bytes(digest, "big")
    return value % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "Embedder",
    "EmbeddingModel",
    "OpenAIEmbeddingModel",
    "EmbeddingBatch",
    "build_embedder",
    "vector_to_bytes",
    "vector_from_bytes",
]
