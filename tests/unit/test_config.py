"""Unit tests for lendcore configuration management.

Tests AppConfig loading from environment variables, validation, and defaults.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from lendcore.config import AppConfig, ResourceConfig, get_config, reset_config


class TestAppConfig:
    """Test AppConfig creation and validation."""

    def test_from_env_requires_database_url(self, monkeypatch):
        """Test DATABASE_URL is required."""
        monkeypatch.delenv("DATABASE_URL", raising=False)

        with pytest.raises(KeyError) as exc_info:
            AppConfig.from_env()

        assert "DATABASE_URL" in str(exc_info.value)

    def test_from_env_with_minimal_config(self, monkeypatch):
        """Test loading with only required env vars."""
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
        monkeypatch.delenv("LOG_LEVEL", raising=False)

        config = AppConfig.from_env()

        assert config.db.url == "sqlite+aiosqlite:///./test.db"
        assert config.log_level == "INFO"
        assert config.matching.smart_pass_suggest_threshold == 0.9
        assert config.matching.learn_aliases is True
        assert config.llm.api_key is None

    def test_matching_overrides(self, monkeypatch):
        """Test Smart Pass and fuzzy thresholds come from the environment."""
        monkeypatch.setenv("SMART_PASS_SUGGEST_THRESHOLD", "0.85")
        monkeypatch.setenv("FUZZY_MIN_SCORE", "80")
        monkeypatch.setenv("LEARN_ALIASES", "false")

        config = AppConfig.from_env()

        assert config.matching.smart_pass_suggest_threshold == 0.85
        assert config.matching.fuzzy_min_score == 80
        assert config.matching.learn_aliases is False

    def test_llm_settings(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("LLM_MODEL", "gpt-4o")

        config = AppConfig.from_env()

        assert config.llm.api_key == "sk-test"
        assert config.llm.llm_model == "gpt-4o"

    def test_db_pool_settings(self, monkeypatch):
        monkeypatch.setenv("DB_POOL_SIZE", "5")
        monkeypatch.setenv("DB_ECHO", "true")

        config = AppConfig.from_env()

        assert config.db.pool_size == 5
        assert config.db.echo is True


class TestResourceConfig:
    def test_packaged_data_dir(self):
        resources = ResourceConfig()

        assert resources.vocabulary_path.name == "vocabulary.yaml"
        assert resources.vocabulary_path.exists()
        assert resources.field_hints_path.exists()
        assert resources.legacy_paths_path.exists()
        assert resources.checklist_templates_path.exists()

    def test_data_dir_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("LENDCORE_DATA_DIR", str(tmp_path))

        config = AppConfig.from_env()

        assert config.resources.data_dir == Path(tmp_path)
        assert config.resources.field_hints_path == tmp_path / "field_hints.yaml"


class TestGetConfig:
    def test_singleton_until_reset(self, monkeypatch):
        first = get_config()
        assert get_config() is first

        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./other.db")
        reset_config()

        assert get_config().db.url == "sqlite+aiosqlite:///./other.db"
