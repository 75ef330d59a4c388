"""Central configuration for the hybrid memory engine.

All settings are loaded from environment variables prefixed with
``HYBRID_MEMORY_``.  Validation and type coercion are handled by
``pydantic-settings``; any invalid combination is fatal at construction.

Usage::

    from hybrid_memory.config import get_settings

    settings = get_settings()
    print(settings.SQLITE_PATH, settings.vector_dimensions)

Hosts that already hold a parsed plugin config mapping (camelCase keys) can
use :meth:`HybridMemorySettings.from_mapping` instead.
"""

from __future__ import annotations

import functools
import logging
import os
import re
from pathlib import Path
from typing import Any, ClassVar, Literal, Mapping

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hybrid_memory.models.registry import (
    DEFAULT_LOCAL_MODEL,
    DEFAULT_REMOTE_MODEL,
    vector_dims_for_model,
)

logger = logging.getLogger(__name__)

ENV_PREFIX = "HYBRID_MEMORY_"

# Canonical .env locations (checked in order of priority).
ENV_PATHS: list[str] = ["config/.env", ".env"]

_ENV_REFERENCE = re.compile(r"\$\{([^}]+)\}")


def resolve_env_vars(value: str) -> str:
    """Replace every ``${VAR}`` in *value* with the variable's value.

    Raises:
        ValueError: If a referenced variable is unset or empty.
    """

    def _lookup(match: re.Match[str]) -> str:
        name = match.group(1)
        resolved = os.environ.get(name)
        if not resolved:
            raise ValueError(f"Environment variable {name} is not set")
        return resolved

    return _ENV_REFERENCE.sub(_lookup, value)


# ---------------------------------------------------------------------------
# Settings model
# ---------------------------------------------------------------------------


class HybridMemorySettings(BaseSettings):
    """Validated configuration for the memory engine.

    Only a remote provider has a required value (``EMBEDDING_API_KEY``);
    the default local setup runs with no configuration at all.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------
    EMBEDDING_PROVIDER: Literal["remote", "local"] = Field(
        default="local",
        description="'remote' for an OpenAI-compatible API, 'local' for sentence-transformers.",
    )
    EMBEDDING_MODEL: str | None = Field(
        default=None,
        description=(
            "Embedding model id.  Defaults to text-embedding-3-small (remote) "
            "or all-MiniLM-L6-v2 (local).  CANNOT be changed after the first "
            "run without invalidating all stored vectors."
        ),
    )
    EMBEDDING_API_KEY: str | None = Field(
        default=None,
        description="Bearer token for the remote API.  ${VAR} references are resolved.",
    )
    EMBEDDING_BASE_URL: str | None = Field(
        default=None,
        description="Remote API base URL.  None means https://api.openai.com/v1.",
    )
    EMBEDDING_MODEL_PATH: str | None = Field(
        default=None,
        description="Local model directory or hub id.  Falls back to EMBEDDING_MODEL.",
    )
    EMBEDDING_CACHE_DIR: str | None = Field(
        default=None,
        description="Download cache for local model weights.",
    )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    SQLITE_PATH: str = Field(
        default="~/.hybrid_memory/facts.db",
        description="SQLite database holding facts and the full-text index.",
    )
    VECTOR_PATH: str = Field(
        default="~/.hybrid_memory/vectors",
        description="Directory of the embedded Qdrant vector collection.",
    )

    # ------------------------------------------------------------------
    # Behaviour
    # ------------------------------------------------------------------
    AUTO_CAPTURE: bool = Field(
        default=True,
        description="Capture memorable user statements at the end of each turn.",
    )
    AUTO_RECALL: bool = Field(
        default=True,
        description="Inject relevant memories at the start of each turn.",
    )
    CAPTURE_MAX_CHARS: int = Field(
        default=500,
        ge=10,
        description="Longest utterance considered for capture.",
    )

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("EMBEDDING_PROVIDER", mode="before")
    @classmethod
    def _normalise_provider(cls, value: Any) -> Any:
        """Accept ``openai`` as an alias of ``remote``."""
        if isinstance(value, str):
            value = value.strip().lower()
            if value == "openai":
                return "remote"
        return value

    @field_validator("EMBEDDING_API_KEY", mode="before")
    @classmethod
    def _resolve_api_key(cls, value: Any) -> Any:
        if isinstance(value, str):
            return resolve_env_vars(value)
        return value

    @model_validator(mode="after")
    def _check_embedding(self) -> HybridMemorySettings:
        if self.EMBEDDING_PROVIDER == "remote":
            if not self.EMBEDDING_API_KEY:
                raise ValueError(
                    "EMBEDDING_API_KEY is required when EMBEDDING_PROVIDER is 'remote'"
                )
            if self.EMBEDDING_MODEL is None:
                self.EMBEDDING_MODEL = DEFAULT_REMOTE_MODEL
        elif self.EMBEDDING_MODEL is None:
            self.EMBEDDING_MODEL = DEFAULT_LOCAL_MODEL
        # Raises UnsupportedModelError (a ValueError) for unknown models.
        vector_dims_for_model(self.effective_model)
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def effective_model(self) -> str:
        """The model id (remote) or model path (local) actually loaded."""
        if self.EMBEDDING_PROVIDER == "local" and self.EMBEDDING_MODEL_PATH:
            return self.EMBEDDING_MODEL_PATH
        return self.EMBEDDING_MODEL or ""

    @property
    def vector_dimensions(self) -> int:
        return vector_dims_for_model(self.effective_model)

    # ------------------------------------------------------------------
    # Plugin config mapping
    # ------------------------------------------------------------------

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> HybridMemorySettings:
        """Build settings from a parsed plugin config with camelCase keys.

        Keys absent from *config* still fall back to the environment and then
        to the defaults.

        Raises:
            ValueError: If the ``embedding`` section is missing.
            pydantic.ValidationError: If the resulting settings are invalid.
        """
        embedding = config.get("embedding")
        if not isinstance(embedding, Mapping):
            raise ValueError("embedding config required")

        values: dict[str, Any] = {}
        for key, field in (
            ("provider", "EMBEDDING_PROVIDER"),
            ("model", "EMBEDDING_MODEL"),
            ("apiKey", "EMBEDDING_API_KEY"),
            ("baseUrl", "EMBEDDING_BASE_URL"),
            ("modelPath", "EMBEDDING_MODEL_PATH"),
            ("modelCacheDir", "EMBEDDING_CACHE_DIR"),
        ):
            if embedding.get(key) is not None:
                values[field] = embedding[key]

        vector_path = config.get("vectorPath", config.get("lanceDbPath"))
        for field, value in (
            ("SQLITE_PATH", config.get("sqlitePath")),
            ("VECTOR_PATH", vector_path),
            ("AUTO_CAPTURE", config.get("autoCapture")),
            ("AUTO_RECALL", config.get("autoRecall")),
            ("CAPTURE_MAX_CHARS", config.get("captureMaxChars")),
        ):
            if value is not None:
                values[field] = value

        return cls(**values)

    # ------------------------------------------------------------------
    # Repr safety -- redact secrets in logs / debug output
    # ------------------------------------------------------------------

    _SENSITIVE_FIELDS: ClassVar[set[str]] = {"EMBEDDING_API_KEY"}

    def __repr__(self) -> str:
        fields = []
        for name in type(self).model_fields:
            val = getattr(self, name)
            if name in self._SENSITIVE_FIELDS:
                val = "***" if val else None
            fields.append(f"{name}={val!r}")
        return f"HybridMemorySettings({', '.join(fields)})"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def find_env_file() -> Path | None:
    """Return the first existing ``.env`` file from :data:`ENV_PATHS`."""
    for candidate in ENV_PATHS:
        p = Path(candidate)
        if p.is_file():
            return p
    return None


# ---------------------------------------------------------------------------
# Lazy singleton accessor
# ---------------------------------------------------------------------------


@functools.lru_cache(maxsize=1)
def get_settings() -> HybridMemorySettings:
    """Return the global :class:`HybridMemorySettings` singleton.

    The first call loads the first ``.env`` file found in :data:`ENV_PATHS`
    (without overriding variables already set) and validates the
    environment.  Subsequent calls return the cached instance.

    Raises:
        pydantic.ValidationError: If any value fails validation.
    """
    env_file = find_env_file()
    if env_file is not None:
        logger.debug("Loading environment from %s", env_file)
        load_dotenv(env_file, override=False)
    logger.debug("Initialising HybridMemorySettings from environment.")
    return HybridMemorySettings()
