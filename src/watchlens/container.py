"""
Dependency Injection Container for watchlens.

This module provides a centralized container that wires the enrichment
pipeline from application settings:

- Shared infrastructure (context, connection pools, parser) is created once
  per container via cached properties
- Backends are singletons so their quota, cost and circuit state persist
  across runs in the process
- Pipelines are transient: each ``create_pipeline`` call gets its own
  configuration but shares the backends and context

Usage
-----
    >>> from watchlens.container import container
    >>> pipeline = container.create_pipeline({"preferredBackend": "api"})
    >>> run = await pipeline.enrich(records)
    >>> await container.aclose()
"""

from __future__ import annotations

import logging
from functools import cached_property
from typing import Any, Mapping, Optional, Union

from watchlens.config.enrichment import EnrichmentConfig
from watchlens.config.settings import Settings, get_settings
from watchlens.services.backends.base import EnrichmentBackend
from watchlens.services.backends.llm import LLMBackend, LLMClient
from watchlens.services.backends.scraping import ScrapingBackend
from watchlens.services.backends.youtube_api import YouTubeAPIBackend
from watchlens.services.context import EnrichmentContext
from watchlens.services.enrichment.pipeline import EnrichmentPipeline
from watchlens.services.enrichment.shutdown_handler import get_shutdown_handler
from watchlens.services.http.fetcher import ClientIdentityRotator, PageFetcher
from watchlens.services.http.pool import ConnectionPoolManager
from watchlens.services.http.rate_limiter import RateLimiter
from watchlens.services.parsing.worker_pool import WorkerPoolParser

logger = logging.getLogger(__name__)

ConfigOverrides = Union[EnrichmentConfig, Mapping[str, Any], None]

_CACHED_PROPERTIES = (
    "settings",
    "config",
    "context",
    "pool_manager",
    "page_fetcher",
    "parser",
    "api_backend",
    "scraping_backend",
    "llm_backend",
)


class Container:
    """
    Dependency injection container for watchlens.

    Parameters
    ----------
    settings : Settings | None, optional
        Settings to wire from (default: loaded from the environment on
        first access).

    Examples
    --------
    Singletons are shared:

        >>> container = Container()
        >>> container.context is container.context
        True

    Pipelines are transient:

        >>> container.create_pipeline() is container.create_pipeline()
        False
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        if settings is not None:
            self.__dict__["settings"] = settings

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    @cached_property
    def settings(self) -> Settings:
        """Get the application settings."""
        return get_settings()

    @cached_property
    def config(self) -> EnrichmentConfig:
        """Get the default run configuration derived from settings."""
        return EnrichmentConfig.from_settings(self.settings)

    # -------------------------------------------------------------------------
    # Shared Infrastructure (Cached - same instance on repeated access)
    # -------------------------------------------------------------------------

    @cached_property
    def context(self) -> EnrichmentContext:
        """
        Get the enrichment context shared by every run in the process.

        The cache, quota tracker and cost tracker live here, so repeated
        runs reuse cached payloads and draw from the same daily quota.
        """
        return EnrichmentContext.create(self.config, shutdown=get_shutdown_handler())

    @cached_property
    def pool_manager(self) -> ConnectionPoolManager:
        """Get the per-host HTTP connection pools."""
        return ConnectionPoolManager(
            max_connections_per_host=self.settings.max_connections_per_host,
            request_timeout=self.settings.request_timeout,
            pool_timeout=self.settings.pool_timeout,
        )

    @cached_property
    def page_fetcher(self) -> PageFetcher:
        """Get the watch page fetcher shared by scraping and LLM extraction."""
        settings = self.settings
        return PageFetcher(
            self.pool_manager,
            ClientIdentityRotator(settings.scraping_user_agents),
            rate_limiter=RateLimiter.from_delay_ms(settings.scraping_request_delay_ms),
            retry_attempts=settings.retry_attempts,
            retry_backoff_seconds=settings.retry_backoff_seconds,
            retry_backoff_max_seconds=settings.retry_backoff_max_seconds,
        )

    @cached_property
    def parser(self) -> WorkerPoolParser:
        """Get the worker pool parser."""
        return WorkerPoolParser(
            mode=self.settings.parser_mode,
            max_workers=self.settings.parser_workers,
        )

    # -------------------------------------------------------------------------
    # Backends (Cached)
    # -------------------------------------------------------------------------

    @cached_property
    def api_backend(self) -> YouTubeAPIBackend:
        """Get the YouTube Data API backend (unavailable without an API key)."""
        settings = self.settings
        return YouTubeAPIBackend(
            settings.youtube_api_key,
            self.context,
            quota_cost_per_call=settings.youtube_quota_cost_per_call,
            channel_lookup_cost=settings.youtube_channel_lookup_cost,
            resolve_channels=settings.youtube_resolve_channels,
            retry_attempts=settings.retry_attempts,
            retry_backoff_seconds=settings.retry_backoff_seconds,
            retry_backoff_max_seconds=settings.retry_backoff_max_seconds,
            short_max_duration_seconds=settings.short_max_duration_seconds,
        )

    @cached_property
    def scraping_backend(self) -> ScrapingBackend:
        """Get the HTML scraping backend."""
        return ScrapingBackend(
            self.page_fetcher,
            self.parser,
            self.context,
            circuit_threshold=self.settings.scraping_circuit_threshold,
            circuit_cooldown_seconds=self.settings.scraping_circuit_cooldown_seconds,
        )

    @cached_property
    def llm_backend(self) -> LLMBackend:
        """Get the LLM extraction backend (unavailable without an API key)."""
        settings = self.settings
        client: Optional[LLMClient] = None
        if settings.has_llm_api_key:
            client = LLMClient(
                api_key=settings.openrouter_api_key,
                model=settings.llm_model,
                base_url=settings.llm_base_url,
                temperature=settings.llm_temperature,
                max_tokens=settings.llm_max_tokens,
                app_url=settings.llm_app_url,
                app_name=settings.llm_app_name,
                timeout=settings.request_timeout,
            )
        else:
            logger.debug("No LLM API key configured; LLM backend disabled")
        return LLMBackend(
            client,
            self.page_fetcher,
            self.parser,
            self.context,
            retry_attempts=settings.llm_retry_attempts,
            retry_backoff_seconds=settings.retry_backoff_seconds,
            retry_backoff_max_seconds=settings.retry_backoff_max_seconds,
            excerpt_max_chars=settings.llm_excerpt_max_chars,
            state_json_max_chars=settings.llm_state_json_max_chars,
        )

    @property
    def backends(self) -> dict[str, EnrichmentBackend]:
        """Get every backend by name."""
        return {
            self.llm_backend.name: self.llm_backend,
            self.api_backend.name: self.api_backend,
            self.scraping_backend.name: self.scraping_backend,
        }

    # -------------------------------------------------------------------------
    # Factory Methods (Transient - new instance per call)
    # -------------------------------------------------------------------------

    def resolve_config(self, overrides: ConfigOverrides = None) -> EnrichmentConfig:
        """
        Merge run overrides onto the settings-derived configuration.

        Parameters
        ----------
        overrides : EnrichmentConfig | Mapping[str, Any] | None, optional
            A complete config, or a mapping of fields to override
            (snake_case or camelCase keys).

        Returns
        -------
        EnrichmentConfig
            The effective run configuration.
        """
        if overrides is None:
            return self.config
        if isinstance(overrides, EnrichmentConfig):
            return overrides
        parsed = EnrichmentConfig.model_validate(dict(overrides))
        update = {name: getattr(parsed, name) for name in parsed.model_fields_set}
        return self.config.model_copy(update=update)

    def create_pipeline(self, overrides: ConfigOverrides = None) -> EnrichmentPipeline:
        """
        Create a new EnrichmentPipeline wired to the shared backends.

        Parameters
        ----------
        overrides : EnrichmentConfig | Mapping[str, Any] | None, optional
            Run configuration overrides.

        Returns
        -------
        EnrichmentPipeline
            A new pipeline sharing this container's context and backends.
        """
        return EnrichmentPipeline(
            context=self.context,
            backends=self.backends,
            config=self.resolve_config(overrides),
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def aclose(self) -> None:
        """Release backends, connection pools and the parser pool."""
        for name in ("llm_backend", "api_backend", "scraping_backend"):
            backend = self.__dict__.get(name)
            if backend is not None:
                await backend.aclose()
        pools = self.__dict__.get("pool_manager")
        if pools is not None:
            await pools.aclose()
        parser = self.__dict__.get("parser")
        if parser is not None:
            parser.shutdown()

    def reset(self) -> None:
        """
        Reset the container by clearing all cached instances.

        Primarily for tests. Call ``aclose`` first if backends were used.
        """
        for prop in _CACHED_PROPERTIES:
            self.__dict__.pop(prop, None)


# Global container instance
container = Container()
