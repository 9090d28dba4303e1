"""
Dependency Injection container for the release tracker.

This container uses the `dependency-injector` library to wire together all
the components of the application, such as services and infrastructure adapters,
based on the application's configuration.
"""

from typing import Any, List, Mapping

from dependency_injector import containers, providers
import httpx

from ..application.domain import *
from ..application.service import ReleaseWindowService
from ..application.transition import WeekTransitionEngine
from ..settings import project_path, settings

from .api_client import PerplexityReleaseProvider
from .cache_store import FileCacheStore
from .retry import ClassifiedRetryPolicy
from .window_store import FileWindowStore


def build_markets(raw: Mapping[str, Any]) -> List[Market]:
    """Builds the configured markets from the `[markets.<id>]` tables."""
    return [Market.from_mapping(market_id, values) for market_id, values in raw.items()]


class Container(containers.DeclarativeContainer):
    """DI container for wiring the application components."""

    config = providers.Object(settings)

    http_client = providers.Singleton(httpx.AsyncClient)

    provider: providers.Factory[ReleaseProvider] = providers.Factory(
        PerplexityReleaseProvider,
        client=http_client,
        token=config().provider.api_token,
        base_url=config().provider.base_url,
        model=config().provider.model,
        timeout=config().provider.timeout,
        temperature=config().provider.temperature,
        max_tokens=config().provider.max_tokens,
    )

    # Stores, engine and service hold per-market locks and must be shared.
    cache_store = providers.Singleton(
        FileCacheStore,
        cache_dir=project_path(config().cache.dir),
        ttl_hours=config().cache.ttl_hours,
    )

    window_store = providers.Singleton(
        FileWindowStore,
        data_dir=project_path(config().window.data_dir),
        archive_limit=config().window.archive_limit,
    )

    retry_policy: providers.Factory[RetryPolicy] = providers.Factory(
        ClassifiedRetryPolicy,
        max_retries=config().retry.max_retries,
        max_delay=config().retry.max_delay_seconds,
    )

    transition_engine = providers.Singleton(
        WeekTransitionEngine,
        window_store=window_store,
    )

    release_service = providers.Singleton(
        ReleaseWindowService,
        provider=provider,
        cache_store=cache_store,
        window_store=window_store,
        transition_engine=transition_engine,
        retry_policy=retry_policy,
        markets=build_markets(config().markets),
        refresh_slots=config().window.refresh_slots,
        concurrent_markets=config().service.concurrent_markets,
        max_catch_up_weeks=config().window.max_catch_up_weeks,
    )
