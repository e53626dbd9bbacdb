"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from classroom_rag.ingest.chunker import check_chunk_bounds

ENV_PREFIX = "CRAG_"
DEFAULT_CONFIG_PATH = Path("~/.config/classroom-rag/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("storage", "root"): "storage_root",
    ("quota", "storage_token_cap"): "storage_token_cap",
    ("quota", "monthly_import_token_cap"): "monthly_import_token_cap",
    ("quota", "starting_balance"): "starting_token_balance",
    ("chunking", "target"): "chunk_target_chars",
    ("chunking", "min"): "chunk_min_chars",
    ("chunking", "max"): "chunk_max_chars",
    ("chunking", "overlap"): "chunk_overlap_chars",
    ("embeddings", "backend"): "embedding_backend",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dim"): "embedding_dim",
    ("embeddings", "batch_size"): "embedding_batch_size",
    ("retrieval", "similarity_threshold"): "similarity_threshold",
    ("retrieval", "default_top_k"): "default_top_k",
    ("retrieval", "max_top_k"): "max_top_k",
    ("llm", "backend"): "chat_backend",
    ("llm", "model"): "chat_model",
    ("llm", "temperature"): "chat_temperature",
    ("llm", "max_tokens"): "chat_max_tokens",
    ("admin", "account_ids"): "admin_account_ids",
    ("admin", "secret"): "admin_secret",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".classroom-rag" / "crag.db")
    storage_root: Path = Field(default=Path.home() / ".classroom-rag" / "objects")

    # Quota ledger
    storage_token_cap: int = Field(default=2_000_000, ge=0)
    monthly_import_token_cap: int = Field(default=500_000, ge=0)
    starting_token_balance: int = Field(default=200_000, ge=0)

    # Upload broker
    max_upload_bytes: int = 10 * 1024 * 1024
    upload_grant_ttl_seconds: int = 7200

    # Chunking, in characters
    chunk_target_chars: int = 1000
    chunk_min_chars: int = 200
    chunk_max_chars: int = 1500
    chunk_overlap_chars: int = 150
    min_document_chars: int = 50

    # Embeddings
    embedding_backend: Literal["hashed", "openai"] = "hashed"
    embedding_model: str = "text-embedding-3-small"
    embedding_dim: int = 384
    embedding_batch_size: int = Field(default=20, ge=1)

    # Retrieval
    similarity_threshold: float = 0.28
    default_top_k: int = 5
    max_top_k: int = 10
    rerank_pool_size: int = 15
    max_context_chars: int = 12_000
    excerpt_chars: int = 300

    # Language model
    chat_backend: Literal["stub", "openai"] = "stub"
    chat_model: str = "gpt-4o-mini"
    chat_temperature: float = 0.3
    chat_max_tokens: int = 1500
    history_messages: int = 10
    openai_api_key: str | None = None
    provider_timeout_seconds: float = 60.0
    provider_max_retries: int = Field(default=3, ge=1)

    # Ingestion
    ingest_lease_seconds: int = 600

    # Access control
    admin_account_ids: list[str] = Field(default_factory=list)
    admin_secret: str | None = None

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", "storage_root", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("paths must be a path or string")

    @field_validator("admin_account_ids", mode="before")
    @classmethod
    def _split_ids(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @model_validator(mode="after")
    def _check_chunk_bounds(self) -> "Settings":
        check_chunk_bounds(
            self.chunk_target_chars, self.chunk_min_chars, self.chunk_max_chars, self.chunk_overlap_chars
        )
        if self.default_top_k > self.max_top_k:
            raise ValueError("default_top_k cannot exceed max_top_k")
        return self

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        if "openai_api_key" not in data and os.environ.get("OPENAI_API_KEY"):
            data["openai_api_key"] = os.environ["OPENAI_API_KEY"]
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with CRAG_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
