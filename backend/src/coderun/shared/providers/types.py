"""Core types for the execution-provider fallback framework."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from coderun.domain.enums import ApiStyle, ProviderKind


@dataclass(frozen=True, slots=True)
class RateLimit:
    """``max_calls`` per ``window_seconds``.  ``max_calls == 0`` = unlimited."""

    max_calls: int = 60
    window_seconds: float = 60.0

    @property
    def unlimited(self) -> bool:
        return self.max_calls <= 0


@dataclass(frozen=True)
class Provider:
    """Static configuration for a single execution provider.

    Attributes:
        provider_id:  Unique identifier (e.g. "piston", "judge0").
        priority:     Lower = tried first.
        languages:    Language keys this provider can run.
        rate_limit:   Provider-scope call budget.
        timeout_ms:   Hard cap on one invocation, whatever the provider advertises.
        kind:         Remote API, or the client-side terminal fallback.
        api_style:    Wire format of the remote API (request and response shape).
        base_url:     Root URL of the remote API.
        api_key:      Optional credential sent with each request.
        versions:     Language key → version string (or engine language id),
                      held read-only.
    """

    provider_id: str
    priority: int = 10
    languages: frozenset[str] = frozenset()
    rate_limit: RateLimit = field(default_factory=RateLimit)
    timeout_ms: int = 10_000
    kind: ProviderKind = ProviderKind.REMOTE_API
    api_style: ApiStyle = ApiStyle.GENERIC
    base_url: str = ""
    api_key: str = ""
    versions: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "versions", MappingProxyType(dict(self.versions)))

    @property
    def is_client_side(self) -> bool:
        return self.kind == ProviderKind.CLIENT_SIDE

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0

    def supports(self, language: str) -> bool:
        return language in self.languages

    def version_for(self, language: str) -> str:
        return self.versions.get(language, "*")

    def describe(self) -> dict[str, Any]:
        """Public view of the provider, without credentials."""
        return {
            "provider_id": self.provider_id,
            "priority": self.priority,
            "kind": self.kind.value,
            "api_style": self.api_style.value,
            "languages": sorted(self.languages),
            "timeout_ms": self.timeout_ms,
            "rate_limit": {
                "max_calls": self.rate_limit.max_calls,
                "window_seconds": self.rate_limit.window_seconds,
            },
        }


@dataclass
class ProviderHealth:
    """Read-only snapshot of a provider's current health."""

    provider_id: str
    is_healthy: bool = True
    consecutive_failures: int = 0
    unhealthy_until: float | None = None
    cooldown_remaining_s: float = 0.0
    trips: int = 0
