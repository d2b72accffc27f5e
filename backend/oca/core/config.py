"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "OCA_"
DEFAULT_CONFIG_PATH = Path("~/.config/oca/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("llm", "host"): "llm_host",
    ("llm", "model"): "llm_model",
    ("llm", "api_key"): "llm_api_key",
    ("llm", "timeout"): "llm_timeout",
    ("embeddings", "backend"): "embedding_backend",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dim"): "embedding_dim",
    ("datastore", "supabase_url"): "supabase_url",
    ("datastore", "supabase_service_key"): "supabase_service_key",
    ("datastore", "db_path"): "db_path",
    ("retrieval", "top_k"): "retrieval_top_k",
    ("retrieval", "threshold"): "retrieval_threshold",
    ("chat", "history_limit"): "history_limit",
    ("chat", "max_prompt_chars"): "max_prompt_chars",
    ("chat", "stream_end_marker"): "stream_end_marker",
    ("ingest", "chunk_size"): "chunk_size",
    ("ingest", "chunk_overlap"): "chunk_overlap",
    ("server", "host"): "host",
    ("server", "port"): "port",
    ("server", "cors_origins"): "cors_origins",
}

# Variable names used by existing OCA deployments.
_LEGACY_ENV_MAP: Mapping[str, str] = {
    "OLLAMA_HOST": "llm_host",
    "OLLAMA_MODEL": "llm_model",
    "OLLAMA_API_KEY": "llm_api_key",
    "OLLAMA_EMBED_MODEL": "embedding_model",
    "SUPABASE_URL": "supabase_url",
    "SUPABASE_SERVICE_ROLE_KEY": "supabase_service_key",
    "PORT": "port",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    llm_host: str = "http://localhost:11434"
    llm_model: str = "llama3"
    llm_api_key: str | None = None
    llm_timeout: float = 120.0
    embedding_backend: Literal["ollama", "hashed"] = "ollama"
    embedding_model: str = "nomic-embed-text"
    embedding_dim: int = Field(default=768, gt=0)
    supabase_url: str | None = None
    supabase_service_key: str | None = None
    db_path: Path | None = None
    retrieval_top_k: int = Field(default=5, gt=0)
    retrieval_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    history_limit: int = Field(default=10, gt=0)
    max_prompt_chars: int | None = None
    stream_end_marker: str = "[DONE]"
    chunk_size: int = Field(default=800, gt=0)
    chunk_overlap: int = Field(default=150, ge=0)
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    log_json: bool = True

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", mode="before")
    @classmethod
    def _expand_db_path(cls, value: Any) -> Path | None:
        if value is None or value == "":
            return None
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("db_path must be a path or string")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("llm_api_key", "supabase_url", "supabase_service_key", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def llm_is_cloud(self) -> bool:
        return "ollama.com" in self.llm_host or self.llm_host.startswith("https://")

    @property
    def datastore_backend(self) -> Literal["supabase", "sqlite"] | None:
        if self.supabase_url and self.supabase_service_key:
            return "supabase"
        if self.db_path is not None:
            return "sqlite"
        return None

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config, then .env and env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        load_dotenv(override=False)
        data.update(_load_env_overrides())
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
        mapped_key = _YAML_KEY_MAP.get(next_prefix)
        if mapped_key:
            flat[mapped_key] = value
        elif isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        elif key in Settings.model_fields:
            flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map legacy names, then OCA_-prefixed variables, into Settings fields."""
    overrides: dict[str, Any] = {}
    for env_name, field_name in _LEGACY_ENV_MAP.items():
        value = os.environ.get(env_name)
        if value is not None:
            overrides[field_name] = value
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX) or key == f"{ENV_PREFIX}CONFIG":
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
