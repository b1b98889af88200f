"""Outbound ports — interfaces that infrastructure adapters must implement.

These are the *driven* ports in hexagonal architecture.  The dispatcher and
application layer depend only on these abstractions, never on concrete
implementations (Redis clients, HTTP clients, etc.).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from coderun.domain.entities import ExecutionRequest, ProviderHealthState, RateLimitWindow
from coderun.shared.providers.types import Provider


# ═══════════════════════════════════════════════════════════════
#  Keyed state stores
# ═══════════════════════════════════════════════════════════════
class RateLimitStore(ABC):
    """Windowed counters, one per scope key.

    Windows are aligned to wall-clock multiples of ``window_seconds`` so they
    reset deterministically.  ``hit`` must be an atomic increment-and-read.
    """

    @abstractmethod
    async def hit(self, key: str, *, window_seconds: float, now: float) -> RateLimitWindow: ...

    @abstractmethod
    async def peek(self, key: str, *, window_seconds: float, now: float) -> RateLimitWindow: ...


class HealthStore(ABC):
    """Per-provider health records with atomic transitions."""

    @abstractmethod
    async def load(self, provider_id: str) -> ProviderHealthState: ...

    @abstractmethod
    async def record_failure(
        self,
        provider_id: str,
        *,
        now: float,
        threshold: int,
        base_cooldown_s: float,
        max_cooldown_s: float,
    ) -> ProviderHealthState: ...

    @abstractmethod
    async def record_success(self, provider_id: str) -> ProviderHealthState: ...

    @abstractmethod
    async def reset(self, provider_id: str) -> None: ...


class StateStore(RateLimitStore, HealthStore):
    """Both stores behind one backend (memory or Redis)."""

    @abstractmethod
    async def close(self) -> None: ...

    @abstractmethod
    async def health_check(self) -> bool: ...


# ═══════════════════════════════════════════════════════════════
#  Provider invocation
# ═══════════════════════════════════════════════════════════════
class ProviderClientPort(ABC):
    """Calls one remote provider and returns its raw, untrusted payload.

    Implementations raise ``ProviderUnavailableError`` on transport errors
    and non-2xx answers.  Timeouts are enforced by the caller.
    """

    @abstractmethod
    async def run(self, provider: Provider, request: ExecutionRequest) -> Any: ...

    @abstractmethod
    async def close(self) -> None: ...
