"""Data Transfer Objects — Pydantic models for API boundaries.

DTOs handle serialisation, validation, and documentation.  They live in the
application layer because they are *not* domain objects — they adapt between
the external world and the domain.  Wire names follow the public contract
(``executionTimeMs``), Python attributes stay snake_case.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from coderun.domain.entities import ExecutionResult


# ═══════════════════════════════════════════════════════════════
#  Common
# ═══════════════════════════════════════════════════════════════
class ErrorResponse(BaseModel):
    code: str
    message: str


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    environment: str = "development"
    services: dict[str, str] = Field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════
#  Execution
# ═══════════════════════════════════════════════════════════════
class ExecuteRequest(BaseModel):
    """Body of ``POST /execute``.

    Size and content bounds are enforced by the domain validator so that
    oversize code maps to ``CODE_TOO_LARGE`` rather than a generic 422.
    """

    model_config = ConfigDict(str_strip_whitespace=False)

    language: str = Field(..., min_length=1, max_length=32, examples=["python"])
    code: str = Field(..., examples=["print('hello')"])
    input: str = Field("", description="Standard input fed to the program.")


class ExecuteResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = "success"
    output: str
    error: str
    exit_code: int = Field(..., alias="exitCode")
    execution_time_ms: int = Field(..., alias="executionTimeMs")
    provider_used: str = Field(..., alias="providerUsed")

    @classmethod
    def from_result(cls, result: ExecutionResult) -> ExecuteResponse:
        return cls(
            status=result.status.value,
            output=result.stdout,
            error=result.stderr,
            exit_code=result.exit_code,
            execution_time_ms=result.execution_time_ms,
            provider_used=result.provider_used or "",
        )


class ClientSideDirectiveResponse(BaseModel):
    """Tells the caller to run the snippet in its own sandboxed context."""

    model_config = ConfigDict(populate_by_name=True)

    status: str = "clientSideDirective"
    language: str
    provider_used: str = Field(..., alias="providerUsed")
    message: str = "No remote execution provider is available; run this snippet locally."


# ═══════════════════════════════════════════════════════════════
#  Providers
# ═══════════════════════════════════════════════════════════════
class RateLimitInfo(BaseModel):
    max_calls: int
    window_seconds: float


class ProviderInfoResponse(BaseModel):
    provider_id: str
    priority: int
    kind: str
    api_style: str
    languages: list[str]
    timeout_ms: int
    rate_limit: RateLimitInfo


class ProviderHealthResponse(BaseModel):
    provider_id: str
    is_healthy: bool
    consecutive_failures: int
    cooldown_remaining_s: float
    trips: int
