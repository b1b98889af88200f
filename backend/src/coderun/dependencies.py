"""Dependency injection container — wires adapters to ports.

``build_container`` assembles the whole engine once per application; route
handlers reach it through FastAPI's ``Depends()`` via ``app.state``, which
lets tests swap in fakes for the provider client, the state store or the
clock without touching globals.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable

from fastapi import Depends, Request

from coderun.adapters.outbound.providers import HttpProviderClient
from coderun.adapters.outbound.state import create_state_store
from coderun.application.commands import ExecuteCodeHandler
from coderun.config import Settings, get_settings
from coderun.domain.services.validator import RequestValidator, ValidationLimits
from coderun.ports.outbound import ProviderClientPort, StateStore
from coderun.shared.providers.dispatcher import FallbackDispatcher
from coderun.shared.providers.health import HealthPolicy, HealthProbe
from coderun.shared.providers.normalizer import ResultNormalizer
from coderun.shared.providers.rate_limiter import RateLimiter
from coderun.shared.providers.registry import ProviderRegistry, build_provider_registry
from coderun.shared.providers.types import RateLimit


# ── Settings ─────────────────────────────────────────────────
@lru_cache(maxsize=1)
def get_cached_settings() -> Settings:
    return get_settings()


# ── Container ────────────────────────────────────────────────
@dataclass
class Container:
    settings: Settings
    registry: ProviderRegistry
    store: StateStore
    client: ProviderClientPort
    health: HealthProbe
    rate_limiter: RateLimiter
    dispatcher: FallbackDispatcher
    execute_handler: ExecuteCodeHandler

    async def close(self) -> None:
        await self.client.close()
        await self.store.close()


def build_container(
    settings: Settings,
    *,
    registry: ProviderRegistry | None = None,
    store: StateStore | None = None,
    client: ProviderClientPort | None = None,
    clock: Callable[[], float] = time.time,
) -> Container:
    """Build every collaborator from ``settings``; any piece can be injected."""
    registry = registry or build_provider_registry(settings.providers_file or None)
    store = store or create_state_store(
        settings.state_backend,
        redis_url=settings.redis_url,
        max_connections=settings.redis_max_connections,
    )
    client = client or HttpProviderClient(
        timeout=settings.provider_http_timeout_seconds,
        max_connections=settings.provider_max_connections,
    )

    health = HealthProbe(
        store,
        HealthPolicy(
            ttl_seconds=settings.health_cache_ttl_seconds,
            failure_threshold=settings.health_failure_threshold,
            base_cooldown_s=settings.health_base_cooldown_seconds,
            max_cooldown_s=settings.health_max_cooldown_seconds,
        ),
        clock=clock,
    )
    rate_limiter = RateLimiter(
        store,
        user_limit=RateLimit(settings.user_rate_limit, settings.user_rate_window_seconds),
        clock=clock,
    )
    dispatcher = FallbackDispatcher(
        registry,
        health=health,
        rate_limiter=rate_limiter,
        client=client,
        normalizer=ResultNormalizer(max_output_bytes=settings.max_output_bytes),
    )
    validator = RequestValidator(
        registry.supports,
        ValidationLimits(
            max_source_bytes=settings.max_source_bytes,
            max_stdin_bytes=settings.max_stdin_bytes,
        ),
    )
    return Container(
        settings=settings,
        registry=registry,
        store=store,
        client=client,
        health=health,
        rate_limiter=rate_limiter,
        dispatcher=dispatcher,
        execute_handler=ExecuteCodeHandler(validator, rate_limiter, dispatcher),
    )


# ── Request-scoped accessors ─────────────────────────────────
def get_container(request: Request) -> Container:
    return request.app.state.container


def get_execute_handler(
    container: Container = Depends(get_container),
) -> ExecuteCodeHandler:
    return container.execute_handler
