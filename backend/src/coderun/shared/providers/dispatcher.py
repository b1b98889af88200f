"""Fallback engine — walks eligible providers in priority order.

Per provider:
    1. skip if the health probe has it in cooldown;
    2. skip if its own rate limit is spent for this window;
    3. invoke under its hard timeout;
    4. on timeout / transport / malformed payload → record failure, continue;
    5. on success → normalize, tag with the provider id, stop.

Reaching a client-side provider ends the walk with a client-side directive.
Running out of providers ends it with ``allProvidersExhausted``; that result
is final and is never retried here.  No provider error escapes ``dispatch``;
the health probe and rate limiter absorb state-store outages themselves.
"""

from __future__ import annotations

import asyncio
import time

import structlog

from coderun.domain.entities import (
    ExecutionRequest,
    ExecutionResult,
    NormalizedOutput,
    ProviderAttempt,
)
from coderun.domain.enums import AttemptOutcome, ExecutionStatus
from coderun.domain.exceptions import (
    AllProvidersExhaustedError,
    MalformedProviderResponseError,
    ProviderRateLimitedError,
    ProviderUnavailableError,
)
from coderun.ports.outbound import ProviderClientPort
from coderun.shared.observability.metrics import PROVIDER_ATTEMPTS, PROVIDER_LATENCY
from coderun.shared.providers.health import HealthProbe
from coderun.shared.providers.normalizer import ResultNormalizer
from coderun.shared.providers.rate_limiter import RateLimiter
from coderun.shared.providers.registry import ProviderRegistry
from coderun.shared.providers.types import Provider

logger = structlog.get_logger(__name__)


class FallbackDispatcher:
    """Selects, gates, invokes, and falls back across execution providers."""

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        health: HealthProbe,
        rate_limiter: RateLimiter,
        client: ProviderClientPort,
        normalizer: ResultNormalizer,
    ) -> None:
        self._registry = registry
        self._health = health
        self._limiter = rate_limiter
        self._client = client
        self._normalizer = normalizer

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    async def dispatch(self, request: ExecutionRequest) -> ExecutionResult:
        """Run ``request`` on the first provider that succeeds.

        The request must already have passed validation and the user-scope
        rate check.
        """
        log = logger.bind(execution_id=request.id, language=request.language)
        attempts: list[ProviderAttempt] = []
        errors: dict[str, str] = {}

        for provider in self._registry.eligible_for(request.language):
            pid = provider.provider_id

            if provider.is_client_side:
                attempts.append(ProviderAttempt(pid, AttemptOutcome.CLIENT_SIDE))
                self._count(pid, AttemptOutcome.CLIENT_SIDE)
                log.info(
                    "client_side_directive",
                    provider=pid,
                    failed_providers=list(errors),
                )
                return ExecutionResult.client_side(pid, tuple(attempts))

            if not await self._health.is_available(provider):
                attempts.append(ProviderAttempt(pid, AttemptOutcome.SKIPPED_UNHEALTHY))
                self._count(pid, AttemptOutcome.SKIPPED_UNHEALTHY)
                errors[pid] = "unhealthy"
                log.debug("provider_skipped_unhealthy", provider=pid)
                continue

            decision = await self._limiter.acquire_provider(provider)
            if not decision.allowed:
                err = ProviderRateLimitedError(pid)
                attempts.append(
                    ProviderAttempt(pid, AttemptOutcome.SKIPPED_RATE_LIMITED, error=err.code)
                )
                self._count(pid, AttemptOutcome.SKIPPED_RATE_LIMITED)
                errors[pid] = err.code
                log.debug("provider_skipped_rate_limited", provider=pid, count=decision.count)
                continue

            attempt, output = await self._invoke(provider, request, log)
            attempts.append(attempt)
            if output is not None:
                if len(attempts) > 1:
                    log.info(
                        "provider_failover_success",
                        provider=pid,
                        attempts=len(attempts),
                        failed_providers=list(errors),
                    )
                return ExecutionResult.success(pid, output, tuple(attempts))
            errors[pid] = attempt.error or attempt.outcome.value

        exc = AllProvidersExhaustedError(request.language, errors)
        log.warning("all_providers_exhausted", errors=errors, attempts=len(attempts))
        return ExecutionResult.failure(
            ExecutionStatus.ALL_PROVIDERS_EXHAUSTED, exc, tuple(attempts)
        )

    # ── One bounded invocation ───────────────────────────────
    async def _invoke(
        self,
        provider: Provider,
        request: ExecutionRequest,
        log: structlog.stdlib.BoundLogger,
    ) -> tuple[ProviderAttempt, NormalizedOutput | None]:
        pid = provider.provider_id
        start = time.monotonic()
        try:
            payload = await asyncio.wait_for(
                self._client.run(provider, request),
                timeout=provider.timeout_s,
            )
            output = self._normalizer.normalize(provider.api_style, pid, payload)

        except asyncio.TimeoutError:
            latency_ms = (time.monotonic() - start) * 1000
            error_msg = f"Timeout after {provider.timeout_ms}ms"
            await self._health.record_failure(provider, error_msg)
            self._observe(pid, AttemptOutcome.TIMED_OUT, latency_ms)
            log.warning("provider_timeout", provider=pid, timeout_ms=provider.timeout_ms)
            return ProviderAttempt(pid, AttemptOutcome.TIMED_OUT, latency_ms, error_msg), None

        except MalformedProviderResponseError as exc:
            latency_ms = (time.monotonic() - start) * 1000
            await self._health.record_failure(provider, exc.message)
            self._observe(pid, AttemptOutcome.MALFORMED_RESPONSE, latency_ms)
            log.warning("provider_malformed_response", provider=pid, error=exc.message)
            return (
                ProviderAttempt(pid, AttemptOutcome.MALFORMED_RESPONSE, latency_ms, exc.message),
                None,
            )

        except ProviderUnavailableError as exc:
            latency_ms = (time.monotonic() - start) * 1000
            await self._health.record_failure(provider, exc.message)
            self._observe(pid, AttemptOutcome.FAILED, latency_ms)
            log.warning("provider_unavailable", provider=pid, error=exc.message)
            return ProviderAttempt(pid, AttemptOutcome.FAILED, latency_ms, exc.message), None

        except Exception as exc:
            latency_ms = (time.monotonic() - start) * 1000
            error_msg = f"{type(exc).__name__}: {exc}"
            await self._health.record_failure(provider, error_msg)
            self._observe(pid, AttemptOutcome.FAILED, latency_ms)
            log.exception("provider_request_failed", provider=pid, error=error_msg)
            return ProviderAttempt(pid, AttemptOutcome.FAILED, latency_ms, error_msg), None

        latency_ms = (time.monotonic() - start) * 1000
        await self._health.record_success(provider)
        self._observe(pid, AttemptOutcome.SUCCEEDED, latency_ms)
        log.info(
            "provider_request_success",
            provider=pid,
            latency_ms=float(f"{latency_ms:.1f}"),
            exit_code=output.exit_code,
        )
        return ProviderAttempt(pid, AttemptOutcome.SUCCEEDED, latency_ms), output

    # ── Metrics ──────────────────────────────────────────────
    @staticmethod
    def _count(provider_id: str, outcome: AttemptOutcome) -> None:
        PROVIDER_ATTEMPTS.labels(provider=provider_id, outcome=outcome.value).inc()

    @classmethod
    def _observe(cls, provider_id: str, outcome: AttemptOutcome, latency_ms: float) -> None:
        cls._count(provider_id, outcome)
        PROVIDER_LATENCY.labels(provider=provider_id).observe(latency_ms / 1000)
