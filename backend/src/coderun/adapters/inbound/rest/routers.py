"""Health, Execute, Providers — REST routers."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import ORJSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from coderun.application.commands import ExecuteCodeCommand, ExecuteCodeHandler
from coderun.application.dtos import (
    ClientSideDirectiveResponse,
    ErrorResponse,
    ExecuteRequest,
    ExecuteResponse,
    HealthResponse,
    ProviderHealthResponse,
    ProviderInfoResponse,
)
from coderun.dependencies import Container, get_container, get_execute_handler
from coderun.domain.enums import ExecutionStatus
from coderun.domain.exceptions import ProviderNotFoundError
from coderun.shared.errors import error_response
from coderun.shared.security import Requestor, get_requestor, require_role


# ═══════════════════════════════════════════════════════════════
#  Health
# ═══════════════════════════════════════════════════════════════
health_router = APIRouter(tags=["Health"])


@health_router.get("/health", response_model=HealthResponse)
async def health_check(container: Container = Depends(get_container)) -> ORJSONResponse:
    settings = container.settings
    store_ok = await container.store.health_check()
    remote = [p for p in container.registry if not p.is_client_side]

    # Without shared state the limiter and health probe cannot do their job.
    overall = "ok" if store_ok else "degraded"
    body = HealthResponse(
        status=overall,
        environment=settings.app_env.value,
        services={
            "state_store": f"{settings.state_backend} ({'connected' if store_ok else 'disconnected'})",
            "providers": f"{len(remote)} remote, {len(container.registry) - len(remote)} client-side",
        },
    )
    return ORJSONResponse(content=body.model_dump(), status_code=200 if store_ok else 503)


@health_router.get("/metrics")
async def prometheus_metrics() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


# ═══════════════════════════════════════════════════════════════
#  Execute
# ═══════════════════════════════════════════════════════════════
execute_router = APIRouter(tags=["Execution"])


@execute_router.post(
    "/execute",
    responses={
        200: {"model": ExecuteResponse},
        413: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def execute_code(
    body: ExecuteRequest,
    requestor: Requestor = Depends(get_requestor),
    handler: ExecuteCodeHandler = Depends(get_execute_handler),
) -> ORJSONResponse:
    """Run a snippet on the first healthy, in-budget provider.

    Exactly one of: a normalized result, a client-side directive, or a
    ``{code, message}`` error.
    """
    result = await handler.handle(
        ExecuteCodeCommand(
            language=body.language,
            code=body.code,
            requestor_id=requestor.id,
            input=body.input,
        )
    )

    if result.status == ExecutionStatus.SUCCESS:
        payload = ExecuteResponse.from_result(result)
        return ORJSONResponse(content=payload.model_dump(by_alias=True))

    if result.status == ExecutionStatus.CLIENT_SIDE_DIRECTIVE:
        directive = ClientSideDirectiveResponse(
            language=body.language.strip().lower(),
            provider_used=result.provider_used or "",
        )
        return ORJSONResponse(content=directive.model_dump(by_alias=True))

    if result.error is None:
        raise RuntimeError(f"Execution ended as {result.status.value} without an error")
    return error_response(result.error)


# ═══════════════════════════════════════════════════════════════
#  Providers
# ═══════════════════════════════════════════════════════════════
providers_router = APIRouter(prefix="/providers", tags=["Providers"])


@providers_router.get("", response_model=list[ProviderInfoResponse])
async def list_providers(
    container: Container = Depends(get_container),
    _requestor: Requestor = Depends(get_requestor),
) -> list[ProviderInfoResponse]:
    """Registered providers in fallback order."""
    return [ProviderInfoResponse(**p.describe()) for p in container.registry]


@providers_router.get("/health", response_model=list[ProviderHealthResponse])
async def provider_health(
    container: Container = Depends(get_container),
    _requestor: Requestor = Depends(get_requestor),
) -> list[ProviderHealthResponse]:
    """Current health snapshot of every provider."""
    snapshots = [await container.health.snapshot(p) for p in container.registry]
    return [
        ProviderHealthResponse(
            provider_id=h.provider_id,
            is_healthy=h.is_healthy,
            consecutive_failures=h.consecutive_failures,
            cooldown_remaining_s=h.cooldown_remaining_s,
            trips=h.trips,
        )
        for h in snapshots
    ]


@providers_router.post("/{provider_id}/reset")
async def reset_provider(
    provider_id: str,
    container: Container = Depends(get_container),
    _admin: Requestor = Depends(require_role("admin")),
) -> dict:
    """Admin: clear failures and cooldown for a provider."""
    if provider_id not in container.registry:
        raise ProviderNotFoundError(provider_id)
    await container.health.reset(provider_id)
    return {"status": "reset", "provider_id": provider_id}
