"""lendcore configuration management.

Loads configuration from environment variables with sensible defaults.
Mapping resources (field hints, legacy paths, seed vocabulary) are YAML files
shipped in ``lendcore/data`` and can be redirected with ``LENDCORE_DATA_DIR``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


@dataclass
class DBConfig:
    """Database connection configuration."""

    url: str
    pool_size: int = 10
    pool_max_overflow: int = 20
    pool_timeout: int = 30
    echo: bool = False  # SQL logging


@dataclass
class MatchingConfig:
    """Codification thresholds.

    Smart Pass confidences are 0..1; RapidFuzz scores are 0..100.
    """

    smart_pass_suggest_threshold: float = 0.9
    fuzzy_min_score: int = 70
    classifier_timeout_seconds: float = 30.0
    max_aliases_per_code: int = 5
    learn_aliases: bool = True


@dataclass
class LLMConfig:
    """External classifier (LLM) configuration."""

    provider: str = "openai"  # openai, fuzzy
    api_key: str | None = None
    llm_model: str = "gpt-4o-mini"
    temperature: float = 0.3
    max_tokens: int = 4000


@dataclass
class ResourceConfig:
    """Locations of the YAML mapping resources."""

    data_dir: Path = field(default_factory=lambda: Path(__file__).parent / "data")

    @property
    def field_hints_path(self) -> Path:
        """Path to field_hints.yaml (checklist name -> canonical field paths)."""
        return self.data_dir / "field_hints.yaml"

    @property
    def legacy_paths_path(self) -> Path:
        """Path to legacy_paths.yaml (legacy intelligence path -> canonical path)."""
        return self.data_dir / "legacy_paths.yaml"

    @property
    def vocabulary_path(self) -> Path:
        """Path to vocabulary.yaml (seed categories, codes and aliases)."""
        return self.data_dir / "vocabulary.yaml"

    @property
    def checklist_templates_path(self) -> Path:
        """Path to checklist_templates.yaml (requirement templates)."""
        return self.data_dir / "checklist_templates.yaml"


@dataclass
class AppConfig:
    """Root application configuration.

    Loads from environment variables with fail-fast on missing required values.
    """

    db: DBConfig
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    matching: MatchingConfig = field(default_factory=MatchingConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    resources: ResourceConfig = field(default_factory=ResourceConfig)

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load configuration from environment variables.

        Required environment variables:
        - DATABASE_URL: SQLAlchemy async connection string

        Optional (with defaults):
        - LOG_LEVEL: Logging verbosity (default: "INFO")
        - SMART_PASS_SUGGEST_THRESHOLD: confidence for "suggested" (default: 0.9)
        - OPENAI_API_KEY: enables the LLM classifier

        Raises:
            KeyError: If required environment variables are missing
        """
        database_url = os.environ.get("DATABASE_URL")
        if not database_url:
            raise KeyError(
                "DATABASE_URL environment variable is required. "
                "Example: sqlite+aiosqlite:///./lendcore.db"
            )

        data_dir = os.getenv("LENDCORE_DATA_DIR")

        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
            db=DBConfig(
                url=database_url,
                pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
                pool_max_overflow=int(os.getenv("DB_POOL_MAX_OVERFLOW", "20")),
                pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
                echo=os.getenv("DB_ECHO", "false").lower() == "true",
            ),
            matching=MatchingConfig(
                smart_pass_suggest_threshold=float(
                    os.getenv("SMART_PASS_SUGGEST_THRESHOLD", "0.9")
                ),
                fuzzy_min_score=int(os.getenv("FUZZY_MIN_SCORE", "70")),
                classifier_timeout_seconds=float(
                    os.getenv("CLASSIFIER_TIMEOUT_SECONDS", "30")
                ),
                max_aliases_per_code=int(os.getenv("MAX_ALIASES_PER_CODE", "5")),
                learn_aliases=os.getenv("LEARN_ALIASES", "true").lower() == "true",
            ),
            llm=LLMConfig(
                provider=os.getenv("LLM_PROVIDER", "openai"),
                api_key=os.getenv("OPENAI_API_KEY"),
                llm_model=os.getenv("LLM_MODEL", "gpt-4o-mini"),
                temperature=float(os.getenv("LLM_TEMPERATURE", "0.3")),
                max_tokens=int(os.getenv("LLM_MAX_TOKENS", "4000")),
            ),
            resources=ResourceConfig(data_dir=Path(data_dir))
            if data_dir
            else ResourceConfig(),
        )


# Singleton instance (lazy-loaded)
_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get or create singleton AppConfig instance from environment.

    Returns:
        AppConfig: Application configuration

    Raises:
        KeyError: If required environment variables are missing
    """
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def reset_config() -> None:
    """Drop the cached configuration (tests and CLI overrides)."""
    global _config
    _config = None
