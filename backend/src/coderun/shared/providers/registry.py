"""Provider registry — the immutable, startup-loaded list of providers.

The registry fixes a total order over providers once: ascending priority,
ties broken by registration order, client-side providers always last.
Reconfiguration requires a restart.
"""

from __future__ import annotations

from pathlib import Path
from types import MappingProxyType
from typing import Iterator, Sequence

import structlog
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from coderun.domain.enums import ApiStyle, ProviderKind
from coderun.shared.providers.types import Provider, RateLimit

logger = structlog.get_logger(__name__)


class ProviderRegistry:
    """Read-only, priority-ordered collection of providers."""

    def __init__(self, providers: Sequence[Provider]) -> None:
        ids = [p.provider_id for p in providers]
        duplicates = sorted({pid for pid in ids if ids.count(pid) > 1})
        if duplicates:
            raise ValueError(f"Duplicate provider ids: {', '.join(duplicates)}")
        for p in providers:
            if not p.is_client_side and not p.base_url:
                raise ValueError(f"Remote provider {p.provider_id!r} has no base_url")

        indexed = list(enumerate(providers))
        indexed.sort(key=lambda item: (item[1].is_client_side, item[1].priority, item[0]))
        self._ordered: tuple[Provider, ...] = tuple(p for _, p in indexed)
        self._by_id = MappingProxyType({p.provider_id: p for p in self._ordered})

    def __iter__(self) -> Iterator[Provider]:
        return iter(self._ordered)

    def __len__(self) -> int:
        return len(self._ordered)

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._by_id

    def get(self, provider_id: str) -> Provider | None:
        return self._by_id.get(provider_id)

    @property
    def providers(self) -> tuple[Provider, ...]:
        return self._ordered

    @property
    def languages(self) -> frozenset[str]:
        langs: set[str] = set()
        for p in self._ordered:
            langs |= p.languages
        return frozenset(langs)

    def supports(self, language: str) -> bool:
        return any(p.supports(language) for p in self._ordered)

    def eligible_for(self, language: str) -> list[Provider]:
        """Providers able to run ``language``, in fallback order."""
        return [p for p in self._ordered if p.supports(language)]


# ═══════════════════════════════════════════════════════════════
#  Loading
# ═══════════════════════════════════════════════════════════════
class RateLimitDefinition(BaseModel):
    max_calls: int = Field(60, ge=0)
    window_seconds: float = Field(60.0, gt=0)


class ProviderDefinition(BaseModel):
    """On-disk (JSON) description of one provider."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    provider_id: str = Field(..., min_length=1, max_length=64)
    priority: int = 10
    languages: list[str] = Field(default_factory=list)
    rate_limit: RateLimitDefinition = Field(default_factory=RateLimitDefinition)
    timeout_ms: int = Field(10_000, gt=0, le=120_000)
    kind: ProviderKind = ProviderKind.REMOTE_API
    api_style: ApiStyle = ApiStyle.GENERIC
    base_url: str = ""
    api_key: str = ""
    versions: dict[str, str] = Field(default_factory=dict)

    def to_provider(self) -> Provider:
        return Provider(
            provider_id=self.provider_id,
            priority=self.priority,
            languages=frozenset(lang.strip().lower() for lang in self.languages if lang.strip()),
            rate_limit=RateLimit(
                max_calls=self.rate_limit.max_calls,
                window_seconds=self.rate_limit.window_seconds,
            ),
            timeout_ms=self.timeout_ms,
            kind=self.kind,
            api_style=self.api_style,
            base_url=self.base_url.rstrip("/"),
            api_key=self.api_key,
            versions={k.lower(): v for k, v in self.versions.items()},
        )


_DEFINITIONS = TypeAdapter(list[ProviderDefinition])


def default_providers() -> list[Provider]:
    """Built-in registry: two public engines, then the browser fallback."""
    return [
        Provider(
            provider_id="piston",
            priority=1,
            languages=frozenset(
                {"python", "javascript", "typescript", "java", "c", "cpp", "go", "rust", "ruby"}
            ),
            rate_limit=RateLimit(max_calls=300, window_seconds=60.0),
            timeout_ms=10_000,
            api_style=ApiStyle.PISTON,
            base_url="https://emkc.org/api/v2/piston",
        ),
        Provider(
            provider_id="judge0",
            priority=2,
            languages=frozenset(
                {"python", "javascript", "typescript", "java", "c", "cpp", "go", "rust", "ruby"}
            ),
            rate_limit=RateLimit(max_calls=100, window_seconds=60.0),
            timeout_ms=15_000,
            api_style=ApiStyle.JUDGE0,
            base_url="https://ce.judge0.com",
            versions={
                "python": "71",
                "javascript": "63",
                "typescript": "74",
                "java": "62",
                "c": "50",
                "cpp": "54",
                "go": "60",
                "rust": "73",
                "ruby": "72",
            },
        ),
        Provider(
            provider_id="browser",
            priority=1000,
            languages=frozenset({"python", "javascript"}),
            rate_limit=RateLimit(max_calls=0),
            kind=ProviderKind.CLIENT_SIDE,
        ),
    ]


def load_provider_definitions(raw: str | bytes) -> list[Provider]:
    """Parse a JSON array of provider definitions."""
    return [d.to_provider() for d in _DEFINITIONS.validate_json(raw)]


def build_provider_registry(providers_file: str | None = None) -> ProviderRegistry:
    """Build the registry from ``providers_file`` or the built-in defaults."""
    if providers_file:
        providers = load_provider_definitions(Path(providers_file).read_bytes())
        source = providers_file
    else:
        providers = default_providers()
        source = "builtin"

    registry = ProviderRegistry(providers)
    logger.info(
        "provider_registry_loaded",
        source=source,
        providers=[p.provider_id for p in registry],
        languages=sorted(registry.languages),
    )
    return registry
