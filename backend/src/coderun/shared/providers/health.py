"""Health probe — cached up/down state per provider.

State machine per provider:
    HEALTHY   → (threshold consecutive failures) → COOLDOWN
    COOLDOWN  → (cooldown expires)               → eligible again
    eligible  → (failure, counter ≥ threshold)   → COOLDOWN (doubled, capped)
    any       → (success)                        → HEALTHY

The authoritative record lives in a ``HealthStore``.  Reads are served from a
local snapshot for ``ttl_seconds``; only snapshot expiry goes back to the
store, and no provider is ever pinged on the hot path.  If the store is
unreachable the probe fails open: reads serve the last snapshot and writes
are dropped.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

import structlog

from coderun.domain.entities import ProviderHealthState
from coderun.ports.outbound import HealthStore
from coderun.shared.providers.types import Provider, ProviderHealth

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class HealthPolicy:
    ttl_seconds: float = 30.0
    failure_threshold: int = 3
    base_cooldown_s: float = 30.0
    max_cooldown_s: float = 300.0


@dataclass(slots=True)
class _Snapshot:
    state: ProviderHealthState
    fetched_at: float


class HealthProbe:
    """Per-provider health gate with TTL caching and exponential cooldown."""

    def __init__(
        self,
        store: HealthStore,
        policy: HealthPolicy | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._policy = policy or HealthPolicy()
        self._clock = clock
        self._cache: dict[str, _Snapshot] = {}
        self._lock = threading.Lock()

    @property
    def policy(self) -> HealthPolicy:
        return self._policy

    async def is_available(self, provider: Provider) -> bool:
        """True unless the provider is inside a cooldown."""
        if provider.is_client_side:
            return True
        state = await self.state(provider.provider_id)
        return state.is_healthy_at(self._clock())

    async def state(self, provider_id: str) -> ProviderHealthState:
        now = self._clock()
        with self._lock:
            snap = self._cache.get(provider_id)
            if snap is not None and now - snap.fetched_at < self._policy.ttl_seconds:
                return snap.state

        try:
            state = await self._store.load(provider_id)
        except Exception as exc:
            # Store unreachable: serve the last snapshot, else treat as healthy.
            logger.warning("health_store_unavailable", provider=provider_id, error=str(exc))
            return snap.state if snap is not None else ProviderHealthState(provider_id)
        self._remember(state, now)
        return state

    async def record_failure(self, provider: Provider, error: str) -> ProviderHealthState:
        if provider.is_client_side:
            return ProviderHealthState(provider.provider_id)
        now = self._clock()
        try:
            state = await self._store.record_failure(
                provider.provider_id,
                now=now,
                threshold=self._policy.failure_threshold,
                base_cooldown_s=self._policy.base_cooldown_s,
                max_cooldown_s=self._policy.max_cooldown_s,
            )
        except Exception as exc:
            logger.warning(
                "health_store_unavailable",
                provider=provider.provider_id,
                error=str(exc),
                dropped="failure",
            )
            return ProviderHealthState(provider.provider_id)
        self._remember(state, now)

        if not state.is_healthy_at(now):
            logger.warning(
                "provider_marked_unhealthy",
                provider=provider.provider_id,
                failures=state.consecutive_failures,
                cooldown_s=round(state.unhealthy_until - now, 1),
                trips=state.trips,
                error=error,
            )
        return state

    async def record_success(self, provider: Provider) -> ProviderHealthState:
        if provider.is_client_side:
            return ProviderHealthState(provider.provider_id)
        with self._lock:
            previous = self._cache.get(provider.provider_id)
        try:
            state = await self._store.record_success(provider.provider_id)
        except Exception as exc:
            logger.warning(
                "health_store_unavailable",
                provider=provider.provider_id,
                error=str(exc),
                dropped="success",
            )
            return ProviderHealthState(provider.provider_id)
        self._remember(state, self._clock())
        if previous is not None and previous.state.consecutive_failures:
            logger.info(
                "provider_recovered",
                provider=provider.provider_id,
                previous_failures=previous.state.consecutive_failures,
            )
        return state

    async def reset(self, provider_id: str) -> None:
        """Admin override — forget all failures for a provider."""
        await self._store.reset(provider_id)
        with self._lock:
            self._cache.pop(provider_id, None)
        logger.info("provider_health_reset", provider=provider_id)

    async def snapshot(self, provider: Provider) -> ProviderHealth:
        if provider.is_client_side:
            return ProviderHealth(provider_id=provider.provider_id)
        state = await self.state(provider.provider_id)
        now = self._clock()
        healthy = state.is_healthy_at(now)
        return ProviderHealth(
            provider_id=provider.provider_id,
            is_healthy=healthy,
            consecutive_failures=state.consecutive_failures,
            unhealthy_until=None if healthy else state.unhealthy_until,
            cooldown_remaining_s=0.0 if healthy else round(state.unhealthy_until - now, 1),
            trips=state.trips,
        )

    def _remember(self, state: ProviderHealthState, now: float) -> None:
        with self._lock:
            self._cache[state.provider_id] = _Snapshot(state, now)
