"""Tests for config validation and repr redaction."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from hybrid_memory.config import HybridMemorySettings, get_settings, resolve_env_vars


def test_local_defaults():
    with patch.dict(os.environ, {}, clear=True):
        settings = HybridMemorySettings()
    assert settings.EMBEDDING_PROVIDER == "local"
    assert settings.EMBEDDING_MODEL == "sentence-transformers/all-MiniLM-L6-v2"
    assert settings.vector_dimensions == 384
    assert settings.AUTO_CAPTURE is True
    assert settings.AUTO_RECALL is True
    assert settings.CAPTURE_MAX_CHARS == 500


def test_env_prefix():
    with patch.dict(os.environ, {
        "HYBRID_MEMORY_CAPTURE_MAX_CHARS": "800",
        "HYBRID_MEMORY_AUTO_RECALL": "false",
        "CAPTURE_MAX_CHARS": "42",
    }, clear=True):
        settings = HybridMemorySettings()
    assert settings.CAPTURE_MAX_CHARS == 800
    assert settings.AUTO_RECALL is False


def test_remote_requires_api_key():
    with patch.dict(os.environ, {"HYBRID_MEMORY_EMBEDDING_PROVIDER": "remote"}, clear=True):
        with pytest.raises(ValidationError, match="EMBEDDING_API_KEY"):
            HybridMemorySettings()


def test_remote_defaults():
    with patch.dict(os.environ, {
        "HYBRID_MEMORY_EMBEDDING_PROVIDER": "remote",
        "HYBRID_MEMORY_EMBEDDING_API_KEY": "sk-test",
    }, clear=True):
        settings = HybridMemorySettings()
    assert settings.EMBEDDING_MODEL == "text-embedding-3-small"
    assert settings.vector_dimensions == 1536


def test_openai_is_an_alias_for_remote():
    with patch.dict(os.environ, {}, clear=True):
        settings = HybridMemorySettings(EMBEDDING_PROVIDER="OpenAI", EMBEDDING_API_KEY="sk-test")
    assert settings.EMBEDDING_PROVIDER == "remote"


def test_api_key_env_reference_resolved():
    with patch.dict(os.environ, {
        "HYBRID_MEMORY_EMBEDDING_PROVIDER": "remote",
        "HYBRID_MEMORY_EMBEDDING_API_KEY": "${MY_OPENAI_KEY}",
        "MY_OPENAI_KEY": "sk-from-env",
    }, clear=True):
        settings = HybridMemorySettings()
    assert settings.EMBEDDING_API_KEY == "sk-from-env"


def test_unset_env_reference_is_fatal():
    with patch.dict(os.environ, {
        "HYBRID_MEMORY_EMBEDDING_PROVIDER": "remote",
        "HYBRID_MEMORY_EMBEDDING_API_KEY": "${MISSING_KEY}",
    }, clear=True):
        with pytest.raises(ValidationError, match="MISSING_KEY is not set"):
            HybridMemorySettings()


def test_resolve_env_vars_multiple():
    with patch.dict(os.environ, {"A": "1", "B": "2"}, clear=True):
        assert resolve_env_vars("${A}-${B}-plain") == "1-2-plain"


def test_unsupported_model_is_fatal():
    with patch.dict(os.environ, {"HYBRID_MEMORY_EMBEDDING_MODEL": "my-secret-model"}, clear=True):
        with pytest.raises(ValidationError, match="Unsupported embedding model"):
            HybridMemorySettings()


def test_local_model_path_takes_precedence():
    path = "/models/embeddinggemma-300m-qat-Q8_0.gguf"
    with patch.dict(os.environ, {"HYBRID_MEMORY_EMBEDDING_MODEL_PATH": path}, clear=True):
        settings = HybridMemorySettings()
    assert settings.effective_model == path
    assert settings.vector_dimensions == 768


def test_capture_max_chars_lower_bound():
    with patch.dict(os.environ, {"HYBRID_MEMORY_CAPTURE_MAX_CHARS": "5"}, clear=True):
        with pytest.raises(ValidationError):
            HybridMemorySettings()


def test_sensitive_fields_redacted_in_repr():
    with patch.dict(os.environ, {}, clear=True):
        settings = HybridMemorySettings(EMBEDDING_PROVIDER="remote", EMBEDDING_API_KEY="sk-secret-key")
    r = repr(settings)
    assert "sk-secret-key" not in r
    assert "EMBEDDING_API_KEY='***'" in r


def test_unset_api_key_shows_none_in_repr():
    with patch.dict(os.environ, {}, clear=True):
        settings = HybridMemorySettings()
    assert "EMBEDDING_API_KEY=None" in repr(settings)


def test_from_mapping_remote():
    with patch.dict(os.environ, {}, clear=True):
        settings = HybridMemorySettings.from_mapping({
            "embedding": {
                "provider": "openai",
                "apiKey": "sk-test",
                "model": "text-embedding-3-large",
            },
            "lanceDbPath": "/data/vectors",
            "sqlitePath": "/data/facts.db",
            "autoRecall": False,
            "captureMaxChars": 1000,
        })
    assert settings.EMBEDDING_PROVIDER == "remote"
    assert settings.vector_dimensions == 3072
    assert settings.VECTOR_PATH == "/data/vectors"
    assert settings.SQLITE_PATH == "/data/facts.db"
    assert settings.AUTO_RECALL is False
    assert settings.AUTO_CAPTURE is True
    assert settings.CAPTURE_MAX_CHARS == 1000


def test_from_mapping_local():
    with patch.dict(os.environ, {}, clear=True):
        settings = HybridMemorySettings.from_mapping({
            "embedding": {
                "provider": "local",
                "modelPath": "/opt/models/bge-small-en-v1.5",
                "modelCacheDir": "/tmp/cache",
            },
            "vectorPath": "/data/vectors",
        })
    assert settings.effective_model == "/opt/models/bge-small-en-v1.5"
    assert settings.vector_dimensions == 384
    assert settings.EMBEDDING_CACHE_DIR == "/tmp/cache"
    assert settings.VECTOR_PATH == "/data/vectors"


def test_from_mapping_requires_embedding_section():
    with pytest.raises(ValueError, match="embedding config required"):
        HybridMemorySettings.from_mapping({"autoCapture": True})


def test_get_settings_loads_env_file(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("HYBRID_MEMORY_CAPTURE_MAX_CHARS=700\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    try:
        with patch.dict(os.environ, {}, clear=True):
            settings = get_settings()
            assert settings.CAPTURE_MAX_CHARS == 700
            assert get_settings() is settings
    finally:
        get_settings.cache_clear()
