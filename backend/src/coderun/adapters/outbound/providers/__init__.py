"""Remote execution provider client — one pure HTTP call per wire style.

Every call here is a single attempt.  Fallback, health, rate limits and the
hard timeout are the dispatcher's job; this adapter only translates the
request into the provider's native body and turns transport trouble into
``ProviderUnavailableError``.
"""

from __future__ import annotations

import json
from typing import Any

import httpx
import structlog

from coderun.domain.entities import ExecutionRequest
from coderun.domain.enums import ApiStyle
from coderun.domain.exceptions import MalformedProviderResponseError, ProviderUnavailableError
from coderun.ports.outbound import ProviderClientPort
from coderun.shared.providers.types import Provider

logger = structlog.get_logger(__name__)


class HttpProviderClient(ProviderClientPort):
    """httpx-backed client for remote-API providers."""

    def __init__(self, *, timeout: float = 30.0, max_connections: int = 100) -> None:
        self._client = httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_connections=max_connections),
        )

    async def run(self, provider: Provider, request: ExecutionRequest) -> Any:
        if provider.is_client_side:
            raise ProviderUnavailableError(
                provider.provider_id, "client-side providers are never invoked remotely"
            )

        if provider.api_style == ApiStyle.PISTON:
            url, body, headers = self._piston_request(provider, request)
        elif provider.api_style == ApiStyle.JUDGE0:
            url, body, headers = self._judge0_request(provider, request)
        else:
            url, body, headers = self._generic_request(provider, request)

        try:
            response = await self._client.post(
                url,
                json=body,
                headers=headers,
                timeout=provider.timeout_s,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProviderUnavailableError(
                provider.provider_id,
                f"HTTP {exc.response.status_code} from {provider.base_url}",
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(
                provider.provider_id, f"{type(exc).__name__}: {exc}"
            ) from exc

        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MalformedProviderResponseError(
                provider.provider_id, "response body is not JSON"
            ) from exc

    # ── Request builders (pure) ──────────────────────────────
    @staticmethod
    def _headers(provider: Provider, auth_header: str, prefix: str = "") -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if provider.api_key:
            headers[auth_header] = f"{prefix}{provider.api_key}"
        return headers

    def _generic_request(
        self, provider: Provider, request: ExecutionRequest
    ) -> tuple[str, dict[str, Any], dict[str, str]]:
        body = {
            "language": request.language,
            "version": provider.version_for(request.language),
            "source": request.source_code,
            "stdin": request.stdin,
            "timeout": provider.timeout_ms,
        }
        return (
            f"{provider.base_url}/execute",
            body,
            self._headers(provider, "Authorization", "Bearer "),
        )

    def _piston_request(
        self, provider: Provider, request: ExecutionRequest
    ) -> tuple[str, dict[str, Any], dict[str, str]]:
        body = {
            "language": request.language,
            "version": provider.version_for(request.language),
            "files": [{"content": request.source_code}],
            "stdin": request.stdin,
            "run_timeout": provider.timeout_ms,
            "compile_timeout": provider.timeout_ms,
        }
        return (
            f"{provider.base_url}/execute",
            body,
            self._headers(provider, "Authorization"),
        )

    def _judge0_request(
        self, provider: Provider, request: ExecutionRequest
    ) -> tuple[str, dict[str, Any], dict[str, str]]:
        raw_id = provider.versions.get(request.language, "")
        try:
            language_id = int(raw_id)
        except ValueError:
            raise ProviderUnavailableError(
                provider.provider_id,
                f"no judge0 language id configured for {request.language!r}",
            ) from None
        body = {
            "source_code": request.source_code,
            "language_id": language_id,
            "stdin": request.stdin,
            "cpu_time_limit": provider.timeout_s,
            "wall_time_limit": provider.timeout_s,
        }
        return (
            f"{provider.base_url}/submissions?base64_encoded=false&wait=true",
            body,
            self._headers(provider, "X-Auth-Token"),
        )

    async def close(self) -> None:
        await self._client.aclose()
