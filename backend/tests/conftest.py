"""Shared test fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from coderun.adapters.outbound.state import MemoryStateStore
from coderun.domain.entities import ExecutionRequest
from coderun.domain.enums import ApiStyle, ProviderKind
from coderun.ports.outbound import ProviderClientPort
from coderun.shared.providers.registry import ProviderRegistry
from coderun.shared.providers.types import Provider, RateLimit


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_040.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedClient(ProviderClientPort):
    """Provider client whose per-provider behaviour is set by the test.

    A behaviour is either a payload to return, an exception instance to
    raise, or an async callable taking ``(provider, request)``.
    """

    def __init__(self, behaviours: dict[str, Any] | None = None) -> None:
        self.behaviours = dict(behaviours or {})
        self.calls: list[str] = []
        self.closed = False

    async def run(self, provider: Provider, request: ExecutionRequest) -> Any:
        self.calls.append(provider.provider_id)
        behaviour = self.behaviours.get(provider.provider_id)
        if isinstance(behaviour, BaseException):
            raise behaviour
        if callable(behaviour):
            return await behaviour(provider, request)
        return behaviour

    async def close(self) -> None:
        self.closed = True


class UnreachableStore(MemoryStateStore):
    """State store whose every call fails like a dropped Redis connection."""

    async def hit(self, key, *, window_seconds, now):
        raise ConnectionError("redis down")

    async def peek(self, key, *, window_seconds, now):
        raise ConnectionError("redis down")

    async def load(self, provider_id):
        raise ConnectionError("redis down")

    async def record_failure(self, provider_id, **kwargs):
        raise ConnectionError("redis down")

    async def record_success(self, provider_id):
        raise ConnectionError("redis down")


def make_provider(
    provider_id: str,
    priority: int,
    *,
    languages: tuple[str, ...] = ("python",),
    max_calls: int = 100,
    timeout_ms: int = 1_000,
    kind: ProviderKind = ProviderKind.REMOTE_API,
) -> Provider:
    return Provider(
        provider_id=provider_id,
        priority=priority,
        languages=frozenset(languages),
        rate_limit=RateLimit(max_calls=max_calls, window_seconds=60.0),
        timeout_ms=timeout_ms,
        kind=kind,
        api_style=ApiStyle.GENERIC,
        base_url="" if kind == ProviderKind.CLIENT_SIDE else f"https://{provider_id}.test",
    )


def ok_payload(stdout: str = "hi\n", exit_code: int = 0) -> dict[str, Any]:
    return {"stdout": stdout, "stderr": "", "exitCode": exit_code, "executionTimeMs": 12}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def provider_a() -> Provider:
    return make_provider("alpha", 1)


@pytest.fixture
def provider_b() -> Provider:
    return make_provider("beta", 2)


@pytest.fixture
def browser() -> Provider:
    return make_provider(
        "browser",
        1000,
        languages=("python", "javascript"),
        max_calls=0,
        kind=ProviderKind.CLIENT_SIDE,
    )


@pytest.fixture
def registry(provider_a: Provider, provider_b: Provider) -> ProviderRegistry:
    return ProviderRegistry([provider_b, provider_a])


@pytest.fixture
def sample_request() -> ExecutionRequest:
    return ExecutionRequest(language="python", source_code="print('hi')", requestor_id="student-1")
