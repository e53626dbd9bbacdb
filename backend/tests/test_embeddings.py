"""Tests for embedding utilities."""

from types import SimpleNamespace

import httpx
import openai
import pytest

from classroom_rag.core.errors import ProviderError
from classroom_rag.ingest.embeddings import (
    EmbeddingModel,
    OpenAIEmbeddingModel,
    build_embedder,
    vector_from_bytes,
    vector_to_bytes,
)


def test_embedding_model_placeholder() -> None:
    model = EmbeddingModel("hashed-384", dim=384)
    batch = model.encode(["hello", "world"])
    vectors = batch.vectors
    assert len(vectors) == 2
    assert all(len(vec) == model.dim for vec in vectors)
    assert abs(sum(value * value for value in vectors[0]) - 1.0) < 1e-6
    assert batch.model == "hashed-384"
    assert batch.tokens_used == 4


def test_hashed_embeddings_are_deterministic() -> None:
    first = EmbeddingModel(dim=64).encode(["la photosynthese"]).vectors[0]
    second = EmbeddingModel(dim=64).encode(["la photosynthese"]).vectors[0]
    assert first == second


def test_vector_bytes_round_trip() -> None:
    vector = [0.5, -0.25, 0.125]
    assert vector_from_bytes(vector_to_bytes(vector)) == vector


def test_build_embedder_defaults_to_hashed(settings) -> None:
    embedder = build_embedder(settings)
    assert embedder.model_name == f"hashed-{settings.embedding_dim}"


class FakeEmbeddings:
    def __init__(self, outcomes: list) -> None:
        self.outcomes = outcomes
        self.calls = 0
        self.requests: list[dict] = []

    def create(self, model: str, input: list[str], **options):
        self.calls += 1
        self.requests.append({"model": model, **options})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _response(vectors: list[list[float]]) -> SimpleNamespace:
    data = [SimpleNamespace(index=index, embedding=vector) for index, vector in reversed(list(enumerate(vectors)))]
    return SimpleNamespace(data=data, usage=SimpleNamespace(total_tokens=7))


def _timeout() -> openai.APITimeoutError:
    return openai.APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/embeddings"))


def test_openai_embeddings_are_ordered_and_normalized() -> None:
    embeddings = FakeEmbeddings([_response([[3.0, 4.0], [0.0, 2.0]])])
    model = OpenAIEmbeddingModel(api_key=None, dim=2, client=SimpleNamespace(embeddings=embeddings))
    batch = model.encode(["first", "second"])
    assert batch.vectors == [pytest.approx([0.6, 0.8]), pytest.approx([0.0, 1.0])]
    assert batch.tokens_used == 7
    assert batch.backend == "openai"


def test_openai_embeddings_retry_transient_errors() -> None:
    embeddings = FakeEmbeddings([_timeout(), _response([[1.0, 0.0]])])
    model = OpenAIEmbeddingModel(api_key=None, dim=2, max_retries=3, client=SimpleNamespace(embeddings=embeddings))
    assert model.encode(["text"]).vectors == [[1.0, 0.0]]
    assert embeddings.calls == 2


def test_openai_embeddings_raise_provider_error_after_retries() -> None:
    embeddings = FakeEmbeddings([_timeout(), _timeout()])
    model = OpenAIEmbeddingModel(api_key=None, dim=2, max_retries=2, client=SimpleNamespace(embeddings=embeddings))
    with pytest.raises(ProviderError) as excinfo:
        model.encode(["text"])
    assert excinfo.value.retryable is True
    assert embeddings.calls == 2


def test_openai_backend_requires_key() -> None:
    with pytest.raises(ProviderError):
        OpenAIEmbeddingModel(api_key=None)


def test_openai_embeddings_request_configured_dimensions() -> None:
    embeddings = FakeEmbeddings([_response([[1.0, 0.0]])])
    model = OpenAIEmbeddingModel(api_key=None, dim=2, client=SimpleNamespace(embeddings=embeddings))
    model.encode(["text"])
    assert embeddings.requests == [{"model": "text-embedding-3-small", "dimensions": 2}]


def test_openai_embeddings_native_size_without_dimensions() -> None:
    embeddings = FakeEmbeddings([_response([[1.0, 0.0]])])
    model = OpenAIEmbeddingModel(api_key=None, client=SimpleNamespace(embeddings=embeddings))
    model.encode(["text"])
    assert embeddings.requests == [{"model": "text-embedding-3-small"}]
    assert model.dim == OpenAIEmbeddingModel.NATIVE_DIM


def test_build_embedder_openai_uses_configured_dim(settings) -> None:
    configured = settings.model_copy(
        update={"embedding_backend": "openai", "openai_api_key": "sk-test", "embedding_dim": 512}
    )
    embedder = build_embedder(configured)
    assert isinstance(embedder, OpenAIEmbeddingModel)
    assert embedder.dim == 512
