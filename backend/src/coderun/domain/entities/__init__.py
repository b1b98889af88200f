"""Domain entities — the request, the canonical result, and runtime state.

``ExecutionRequest`` and ``ExecutionResult`` are immutable snapshots.  The
state records (``ProviderHealthState``, ``RateLimitWindow``) are mutated only
by the keyed stores that own them.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field

from coderun.domain.enums import AttemptOutcome, ExecutionStatus
from coderun.domain.exceptions import DomainError


def _new_id() -> str:
    return uuid.uuid4().hex


# ═══════════════════════════════════════════════════════════════
#  Request
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """A student's snippet, as handed over by the caller."""

    language: str
    source_code: str
    requestor_id: str
    stdin: str = ""
    id: str = field(default_factory=_new_id)

    @property
    def source_size_bytes(self) -> int:
        return len(self.source_code.encode("utf-8"))

    @property
    def stdin_size_bytes(self) -> int:
        return len(self.stdin.encode("utf-8"))


# ═══════════════════════════════════════════════════════════════
#  Result
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class ErrorInfo:
    code: str
    message: str
    retry_after_s: int | None = None

    @classmethod
    def from_exception(cls, exc: DomainError) -> ErrorInfo:
        return cls(
            code=exc.code,
            message=exc.message,
            retry_after_s=getattr(exc, "retry_after_s", None),
        )


@dataclass(frozen=True, slots=True)
class ProviderAttempt:
    """One step of the fallback walk, kept for logs, metrics and tests."""

    provider_id: str
    outcome: AttemptOutcome
    latency_ms: float = 0.0
    error: str | None = None


@dataclass(frozen=True, slots=True)
class NormalizedOutput:
    """Canonical shape every provider payload is mapped into."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    execution_time_ms: int = 0
    stdout_truncated: bool = False
    stderr_truncated: bool = False


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Terminal outcome of one execution request."""

    status: ExecutionStatus
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    execution_time_ms: int = 0
    provider_used: str | None = None
    error: ErrorInfo | None = None
    attempts: tuple[ProviderAttempt, ...] = ()

    @classmethod
    def success(
        cls,
        provider_id: str,
        output: NormalizedOutput,
        attempts: tuple[ProviderAttempt, ...] = (),
    ) -> ExecutionResult:
        return cls(
            status=ExecutionStatus.SUCCESS,
            stdout=output.stdout,
            stderr=output.stderr,
            exit_code=output.exit_code,
            execution_time_ms=output.execution_time_ms,
            provider_used=provider_id,
            attempts=attempts,
        )

    @classmethod
    def client_side(
        cls, provider_id: str, attempts: tuple[ProviderAttempt, ...] = ()
    ) -> ExecutionResult:
        return cls(
            status=ExecutionStatus.CLIENT_SIDE_DIRECTIVE,
            provider_used=provider_id,
            attempts=attempts,
        )

    @classmethod
    def failure(
        cls,
        status: ExecutionStatus,
        exc: DomainError,
        attempts: tuple[ProviderAttempt, ...] = (),
    ) -> ExecutionResult:
        return cls(status=status, error=ErrorInfo.from_exception(exc), attempts=attempts)

    @property
    def invoked_providers(self) -> list[str]:
        """Providers that were actually called over the network."""
        skipped = {
            AttemptOutcome.SKIPPED_UNHEALTHY,
            AttemptOutcome.SKIPPED_RATE_LIMITED,
            AttemptOutcome.CLIENT_SIDE,
        }
        return [a.provider_id for a in self.attempts if a.outcome not in skipped]


# ═══════════════════════════════════════════════════════════════
#  Runtime state
# ═══════════════════════════════════════════════════════════════
@dataclass(slots=True)
class ProviderHealthState:
    """Up/down bookkeeping for one provider."""

    provider_id: str
    consecutive_failures: int = 0
    unhealthy_until: float = 0.0
    trips: int = 0

    def is_healthy_at(self, now: float) -> bool:
        return self.unhealthy_until <= now

    @property
    def is_healthy(self) -> bool:
        return self.is_healthy_at(time.time())

    def register_failure(
        self,
        now: float,
        *,
        threshold: int,
        base_cooldown_s: float,
        max_cooldown_s: float,
    ) -> None:
        """Count a failure; trip into cooldown once ``threshold`` is reached.

        While the counter stays at or above the threshold, a failure after
        the cooldown has elapsed re-enters it with the next, doubled,
        duration.  Failures landing inside an active cooldown only count.
        """
        self.consecutive_failures += 1
        if self.consecutive_failures >= threshold and self.unhealthy_until <= now:
            self.trips += 1
            cooldown = min(base_cooldown_s * (2 ** (self.trips - 1)), max_cooldown_s)
            self.unhealthy_until = now + cooldown

    def register_success(self) -> None:
        self.consecutive_failures = 0
        self.unhealthy_until = 0.0
        self.trips = 0


@dataclass(slots=True)
class RateLimitWindow:
    """Fixed, wall-clock aligned counting window for one scope key."""

    key: str
    window_start: float
    window_seconds: float
    count: int = 0

    @property
    def window_end(self) -> float:
        return self.window_start + self.window_seconds

    def expired_at(self, now: float) -> bool:
        return now >= self.window_end
