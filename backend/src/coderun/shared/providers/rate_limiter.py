"""Rate limiter — fixed wall-clock windows over a keyed counter store.

Two independent scopes share one store:

* ``user:<requestor_id>``   charged once per incoming request;
* ``provider:<provider_id>`` charged once per attempted invocation.

Each check is a single atomic increment-and-read, so concurrent requests for
the same key can never both slip past the limit.  An unreachable store lets
calls through.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable

import structlog

from coderun.ports.outbound import RateLimitStore
from coderun.shared.providers.types import Provider, RateLimit

logger = structlog.get_logger(__name__)

USER_SCOPE = "user"
PROVIDER_SCOPE = "provider"


@dataclass(frozen=True, slots=True)
class RateDecision:
    allowed: bool
    count: int
    limit: int
    retry_after_s: int = 0

    @property
    def remaining(self) -> int:
        return max(self.limit - self.count, 0)


class RateLimiter:
    """User-scope and provider-scope call budgets."""

    def __init__(
        self,
        store: RateLimitStore,
        *,
        user_limit: RateLimit,
        clock: Callable[[], float] = time.time,
        warning_threshold: float = 0.90,
    ) -> None:
        self._store = store
        self._user_limit = user_limit
        self._clock = clock
        self._warning_thr = warning_threshold

    @property
    def user_limit(self) -> RateLimit:
        return self._user_limit

    async def acquire_user(self, requestor_id: str) -> RateDecision:
        return await self._acquire(f"{USER_SCOPE}:{requestor_id}", self._user_limit)

    async def acquire_provider(self, provider: Provider) -> RateDecision:
        if provider.is_client_side:
            return RateDecision(allowed=True, count=0, limit=0)
        return await self._acquire(f"{PROVIDER_SCOPE}:{provider.provider_id}", provider.rate_limit)

    async def user_remaining(self, requestor_id: str) -> int:
        limit = self._user_limit
        window = await self._store.peek(
            f"{USER_SCOPE}:{requestor_id}",
            window_seconds=limit.window_seconds,
            now=self._clock(),
        )
        return max(limit.max_calls - window.count, 0)

    async def _acquire(self, key: str, limit: RateLimit) -> RateDecision:
        if limit.unlimited:
            return RateDecision(allowed=True, count=0, limit=0)

        now = self._clock()
        try:
            window = await self._store.hit(key, window_seconds=limit.window_seconds, now=now)
        except Exception as exc:
            # Store unreachable: allow the call (fail-open)
            logger.warning("rate_limit_store_unavailable", key=key, error=str(exc))
            return RateDecision(allowed=True, count=0, limit=limit.max_calls)
        retry_after = max(math.ceil(window.window_end - now), 1)

        if window.count > limit.max_calls:
            logger.debug(
                "rate_limit_exceeded",
                key=key,
                count=window.count,
                limit=limit.max_calls,
                retry_after_s=retry_after,
            )
            return RateDecision(False, window.count, limit.max_calls, retry_after)

        if window.count == math.ceil(limit.max_calls * self._warning_thr):
            logger.warning(
                "rate_limit_warning",
                key=key,
                count=window.count,
                limit=limit.max_calls,
            )
        return RateDecision(True, window.count, limit.max_calls, retry_after)
