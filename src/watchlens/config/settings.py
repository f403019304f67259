"""
Application settings and configuration management.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from watchlens import __version__

DEFAULT_USER_AGENTS: list[str] = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) "
    "Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15",
]

VALID_BACKENDS = ("llm", "api", "scraping")
VALID_PARSER_MODES = ("process", "thread", "inline")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = Field(default="watchlens")
    app_version: str = Field(default=__version__)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Storage
    cache_dir: Path = Field(default=Path("./cache"))
    logs_dir: Path = Field(default=Path("./logs"))

    # YouTube Data API
    youtube_api_key: str = Field(default="")
    youtube_quota_limit: int = Field(default=10_000, ge=0)
    youtube_quota_cost_per_call: int = Field(default=1, ge=0)
    youtube_channel_lookup_cost: int = Field(default=1, ge=0)
    youtube_resolve_channels: bool = Field(default=True)

    # LLM extraction (OpenAI-compatible endpoint, OpenRouter by default)
    openrouter_api_key: str = Field(default="")
    llm_base_url: str = Field(default="https://openrouter.ai/api/v1")
    llm_model: str = Field(default="google/gemma-3-4b-it")
    llm_temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    llm_max_tokens: int = Field(default=2000, gt=0)
    llm_retry_attempts: int = Field(default=3, ge=1)
    llm_excerpt_max_chars: int = Field(default=80_000, gt=0)
    llm_state_json_max_chars: int = Field(default=20_000, gt=0)
    llm_cost_limit: float = Field(default=10.0, ge=0.0)
    llm_app_url: str = Field(default="https://github.com/watchlens/watchlens")
    llm_app_name: str = Field(default="watchlens")

    # Scraping
    scraping_request_delay_ms: int = Field(default=1000, ge=0)
    scraping_user_agents: list[str] = Field(
        default_factory=lambda: list(DEFAULT_USER_AGENTS)
    )
    scraping_circuit_threshold: int = Field(default=10, ge=1)
    scraping_circuit_cooldown_seconds: int = Field(default=300, ge=0)

    # HTTP
    request_timeout: float = Field(default=30.0, gt=0)
    pool_timeout: float = Field(default=10.0, gt=0)
    max_connections_per_host: int = Field(default=10, ge=1)
    retry_attempts: int = Field(default=3, ge=0)
    retry_backoff_seconds: float = Field(default=1.0, ge=0)
    retry_backoff_max_seconds: float = Field(default=10.0, ge=0)

    # Pipeline
    preferred_backend: str = Field(default="llm")
    enable_fallback: bool = Field(default=True)
    fallback_order: str = Field(default="")  # comma-separated, empty = policy default
    max_concurrent_requests: int = Field(default=5, ge=1)
    batch_size: int = Field(default=10, ge=1)
    inter_batch_delay_ms: int = Field(default=2000, ge=0)
    cache_ttl_seconds: int = Field(default=7200, ge=0)
    short_max_duration_seconds: int = Field(default=60, ge=0)

    # Parser
    parser_mode: str = Field(default="process")
    parser_workers: Optional[int] = Field(default=None, ge=1)

    @field_validator("scraping_user_agents", mode="before")
    @classmethod
    def parse_user_agents(cls, v: str | list[str]) -> list[str]:
        """Parse user agents from a newline-separated string or list."""
        if isinstance(v, str):
            return [agent.strip() for agent in v.splitlines() if agent.strip()]
        return v

    @field_validator("cache_dir", "logs_dir", mode="before")
    @classmethod
    def ensure_path(cls, v: str | Path) -> Path:
        """Ensure directory paths are Path objects."""
        if isinstance(v, str):
            return Path(v)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @field_validator("preferred_backend")
    @classmethod
    def validate_preferred_backend(cls, v: str) -> str:
        """Validate preferred backend name."""
        if v.lower() not in VALID_BACKENDS:
            raise ValueError(f"Invalid backend: {v}")
        return v.lower()

    @field_validator("parser_mode")
    @classmethod
    def validate_parser_mode(cls, v: str) -> str:
        """Validate worker pool parser mode."""
        if v.lower() not in VALID_PARSER_MODES:
            raise ValueError(f"Invalid parser mode: {v}")
        return v.lower()

    def create_directories(self) -> None:
        """Create required directories if they don't exist."""
        for directory in [self.cache_dir, self.logs_dir]:
            directory.mkdir(parents=True, exist_ok=True)

    @property
    def has_youtube_api_key(self) -> bool:
        """Check if a YouTube Data API key is configured."""
        return bool(self.youtube_api_key.strip())

    @property
    def has_llm_api_key(self) -> bool:
        """Check if an LLM endpoint key is configured."""
        return bool(self.openrouter_api_key.strip())

    @property
    def fallback_order_list(self) -> list[str]:
        """Get the configured fallback order as a list of backend names."""
        return [
            name.strip().lower()
            for name in self.fallback_order.split(",")
            if name.strip()
        ]

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


def get_settings() -> Settings:
    """Get application settings."""
    return Settings()


# Global settings instance
settings = get_settings()
