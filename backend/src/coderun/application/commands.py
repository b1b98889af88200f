"""Command handlers — write-side use cases.

Each handler encapsulates a single operation.  Handlers depend only on the
domain, the provider framework, and port interfaces, never on concrete
adapters.
"""

from __future__ import annotations

import structlog
from dataclasses import dataclass

from coderun.domain.entities import ExecutionRequest, ExecutionResult
from coderun.domain.enums import ExecutionStatus
from coderun.domain.exceptions import UserRateLimitedError, ValidationError
from coderun.domain.services.validator import RequestValidator
from coderun.shared.observability.metrics import EXECUTIONS_TOTAL
from coderun.shared.providers.dispatcher import FallbackDispatcher
from coderun.shared.providers.rate_limiter import RateLimiter

logger = structlog.get_logger(__name__)


# ═══════════════════════════════════════════════════════════════
#  Execute Code
# ═══════════════════════════════════════════════════════════════
@dataclass
class ExecuteCodeCommand:
    """Input for running a snippet."""

    language: str
    code: str
    requestor_id: str
    input: str = ""


class ExecuteCodeHandler:
    """Validates, charges the user budget once, then dispatches.

    State machine per call::

        Pending → Rejected                     (validation fails)
        Pending → RateLimited                  (user budget spent)
        Pending → Dispatching(0) → … → Success | ClientSideDirective | Exhausted

    Always returns exactly one terminal ``ExecutionResult``.
    """

    def __init__(
        self,
        validator: RequestValidator,
        rate_limiter: RateLimiter,
        dispatcher: FallbackDispatcher,
    ) -> None:
        self._validator = validator
        self._limiter = rate_limiter
        self._dispatcher = dispatcher

    async def handle(self, cmd: ExecuteCodeCommand) -> ExecutionResult:
        request = ExecutionRequest(
            language=(cmd.language or "").strip().lower(),
            source_code=cmd.code,
            requestor_id=(cmd.requestor_id or "").strip(),
            stdin=cmd.input or "",
        )
        log = logger.bind(execution_id=request.id, language=request.language)
        log.info("execution_started", source_bytes=request.source_size_bytes)

        result = await self._run(request)

        # Rejected requests carry caller-chosen language keys.
        label = "unknown" if result.status == ExecutionStatus.REJECTED else request.language
        EXECUTIONS_TOTAL.labels(language=label, status=result.status.value).inc()
        log.info(
            "execution_finished",
            status=result.status.value,
            provider=result.provider_used,
            attempts=len(result.attempts),
        )
        return result

    async def _run(self, request: ExecutionRequest) -> ExecutionResult:
        # 1. Validation: no provider interaction on failure
        try:
            self._validator.validate(request)
        except ValidationError as exc:
            return ExecutionResult.failure(ExecutionStatus.REJECTED, exc)

        # 2. User scope: charged once per request, not per provider attempt
        decision = await self._limiter.acquire_user(request.requestor_id)
        if not decision.allowed:
            exc = UserRateLimitedError(request.requestor_id, decision.retry_after_s)
            logger.info(
                "user_rate_limited",
                execution_id=request.id,
                requestor=request.requestor_id,
                count=decision.count,
                limit=decision.limit,
            )
            return ExecutionResult.failure(ExecutionStatus.RATE_LIMITED, exc)

        # 3. Fallback walk
        return await self._dispatcher.dispatch(request)
