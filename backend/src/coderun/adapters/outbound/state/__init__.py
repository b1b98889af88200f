"""Keyed state stores for rate-limit windows and provider health.

``MemoryStateStore`` serves a single-instance deployment.  ``RedisStateStore``
keeps the same per-key invariants across instances: windows use ``INCR``
inside a MULTI/EXEC pipeline, health transitions run as one Lua script.
"""

from __future__ import annotations

import math
import threading
from typing import Any

import redis.asyncio as redis
import structlog

from coderun.domain.entities import ProviderHealthState, RateLimitWindow
from coderun.ports.outbound import StateStore

logger = structlog.get_logger(__name__)


def window_start_for(now: float, window_seconds: float) -> float:
    """Start of the wall-clock aligned window containing ``now``."""
    return math.floor(now / window_seconds) * window_seconds


class MemoryStateStore(StateStore):
    """In-process store; every operation holds the store lock."""

    def __init__(self, *, sweep_interval_s: float = 1.0) -> None:
        self._windows: dict[str, RateLimitWindow] = {}
        self._health: dict[str, ProviderHealthState] = {}
        self._lock = threading.Lock()
        self._sweep_interval = sweep_interval_s
        self._last_sweep = 0.0

    # ── Rate-limit windows ───────────────────────────────────
    async def hit(self, key: str, *, window_seconds: float, now: float) -> RateLimitWindow:
        with self._lock:
            window = self._current(key, window_seconds, now)
            window.count += 1
            self._maybe_sweep(now)
            return RateLimitWindow(key, window.window_start, window_seconds, window.count)

    async def peek(self, key: str, *, window_seconds: float, now: float) -> RateLimitWindow:
        with self._lock:
            window = self._windows.get(key)
            start = window_start_for(now, window_seconds)
            if window is None or window.window_start != start:
                return RateLimitWindow(key, start, window_seconds, 0)
            return RateLimitWindow(key, window.window_start, window_seconds, window.count)

    @property
    def window_count(self) -> int:
        with self._lock:
            return len(self._windows)

    # ── Health ───────────────────────────────────────────────
    async def load(self, provider_id: str) -> ProviderHealthState:
        with self._lock:
            return self._copy(self._health_for(provider_id))

    async def record_failure(
        self,
        provider_id: str,
        *,
        now: float,
        threshold: int,
        base_cooldown_s: float,
        max_cooldown_s: float,
    ) -> ProviderHealthState:
        with self._lock:
            state = self._health_for(provider_id)
            state.register_failure(
                now,
                threshold=threshold,
                base_cooldown_s=base_cooldown_s,
                max_cooldown_s=max_cooldown_s,
            )
            return self._copy(state)

    async def record_success(self, provider_id: str) -> ProviderHealthState:
        with self._lock:
            state = self._health_for(provider_id)
            state.register_success()
            return self._copy(state)

    async def reset(self, provider_id: str) -> None:
        with self._lock:
            self._health.pop(provider_id, None)

    async def close(self) -> None:
        pass

    async def health_check(self) -> bool:
        return True

    # ── Internals ────────────────────────────────────────────
    def _current(self, key: str, window_seconds: float, now: float) -> RateLimitWindow:
        """Caller holds lock."""
        start = window_start_for(now, window_seconds)
        window = self._windows.get(key)
        if window is None or window.window_start != start:
            window = RateLimitWindow(key, start, window_seconds, 0)
            self._windows[key] = window
        return window

    def _maybe_sweep(self, now: float) -> None:
        """Drop windows whose period has ended.  Caller holds lock."""
        if now - self._last_sweep < self._sweep_interval:
            return
        self._last_sweep = now
        expired = [k for k, w in self._windows.items() if w.expired_at(now)]
        for k in expired:
            del self._windows[k]

    def _health_for(self, provider_id: str) -> ProviderHealthState:
        """Caller holds lock."""
        state = self._health.get(provider_id)
        if state is None:
            state = ProviderHealthState(provider_id)
            self._health[provider_id] = state
        return state

    @staticmethod
    def _copy(state: ProviderHealthState) -> ProviderHealthState:
        return ProviderHealthState(
            provider_id=state.provider_id,
            consecutive_failures=state.consecutive_failures,
            unhealthy_until=state.unhealthy_until,
            trips=state.trips,
        )


_RECORD_FAILURE_LUA = """
local failures = redis.call('HINCRBY', KEYS[1], 'consecutive_failures', 1)
local trips = tonumber(redis.call('HGET', KEYS[1], 'trips') or '0')
local unhealthy_until = tonumber(redis.call('HGET', KEYS[1], 'unhealthy_until') or '0')
if failures >= tonumber(ARGV[2]) and unhealthy_until <= tonumber(ARGV[1]) then
    trips = trips + 1
    local cooldown = math.min(tonumber(ARGV[3]) * 2 ^ (trips - 1), tonumber(ARGV[4]))
    unhealthy_until = tonumber(ARGV[1]) + cooldown
    redis.call('HSET', KEYS[1], 'trips', trips, 'unhealthy_until', tostring(unhealthy_until))
end
return {failures, tostring(unhealthy_until), trips}
"""


class RedisStateStore(StateStore):
    """Shared store for multi-instance deployments."""

    def __init__(
        self,
        url: str,
        max_connections: int = 50,
        *,
        key_prefix: str = "coderun",
        client: Any | None = None,
    ) -> None:
        self._prefix = key_prefix
        if client is not None:
            self._pool = None
            self._client = client
        else:
            self._pool = redis.ConnectionPool.from_url(
                url,
                max_connections=max_connections,
                decode_responses=True,
            )
            self._client = redis.Redis(connection_pool=self._pool)
        self._record_failure = self._client.register_script(_RECORD_FAILURE_LUA)

    def _window_key(self, key: str, start: float) -> str:
        return f"{self._prefix}:rl:{key}:{int(start)}"

    def _health_key(self, provider_id: str) -> str:
        return f"{self._prefix}:health:{provider_id}"

    # ── Rate-limit windows ───────────────────────────────────
    async def hit(self, key: str, *, window_seconds: float, now: float) -> RateLimitWindow:
        start = window_start_for(now, window_seconds)
        rkey = self._window_key(key, start)
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(rkey)
            # Redis drops the key once the window is over.
            pipe.expire(rkey, math.ceil(window_seconds) + 1)
            count, _ = await pipe.execute()
        return RateLimitWindow(key, start, window_seconds, int(count))

    async def peek(self, key: str, *, window_seconds: float, now: float) -> RateLimitWindow:
        start = window_start_for(now, window_seconds)
        raw = await self._client.get(self._window_key(key, start))
        return RateLimitWindow(key, start, window_seconds, int(raw or 0))

    # ── Health ───────────────────────────────────────────────
    async def load(self, provider_id: str) -> ProviderHealthState:
        raw = await self._client.hgetall(self._health_key(provider_id))
        return ProviderHealthState(
            provider_id=provider_id,
            consecutive_failures=int(raw.get("consecutive_failures", 0)),
            unhealthy_until=float(raw.get("unhealthy_until", 0.0)),
            trips=int(raw.get("trips", 0)),
        )

    async def record_failure(
        self,
        provider_id: str,
        *,
        now: float,
        threshold: int,
        base_cooldown_s: float,
        max_cooldown_s: float,
    ) -> ProviderHealthState:
        failures, unhealthy_until, trips = await self._record_failure(
            keys=[self._health_key(provider_id)],
            args=[now, threshold, base_cooldown_s, max_cooldown_s],
        )
        return ProviderHealthState(
            provider_id=provider_id,
            consecutive_failures=int(failures),
            unhealthy_until=float(unhealthy_until),
            trips=int(trips),
        )

    async def record_success(self, provider_id: str) -> ProviderHealthState:
        await self._client.delete(self._health_key(provider_id))
        return ProviderHealthState(provider_id)

    async def reset(self, provider_id: str) -> None:
        await self._client.delete(self._health_key(provider_id))

    async def close(self) -> None:
        await self._client.aclose()
        if self._pool is not None:
            await self._pool.aclose()

    async def health_check(self) -> bool:
        try:
            return bool(await self._client.ping())
        except redis.RedisError:
            return False


def create_state_store(backend: str, redis_url: str = "", max_connections: int = 50) -> StateStore:
    if backend == "redis":
        logger.info("state_store_initialized", backend="redis")
        return RedisStateStore(redis_url, max_connections)
    logger.info("state_store_initialized", backend="memory")
    return MemoryStateStore()


__all__ = [
    "MemoryStateStore",
    "RedisStateStore",
    "create_state_store",
    "window_start_for",
]

