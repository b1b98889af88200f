"""Integration tests for API endpoints using FastAPI TestClient."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from coderun.adapters.outbound.state import MemoryStateStore
from coderun.config import get_settings
from coderun.dependencies import build_container, get_execute_handler
from coderun.domain.entities import ExecutionResult
from coderun.domain.enums import ExecutionStatus
from coderun.domain.exceptions import ProviderUnavailableError
from coderun.main import create_app
from coderun.shared.providers.registry import ProviderRegistry
from conftest import FakeClock, ScriptedClient, UnreachableStore, make_provider, ok_payload


@pytest.fixture
def settings():
    return get_settings(user_rate_limit=3, state_backend="memory", cors_origins=["*"])


@pytest.fixture
def scripted() -> ScriptedClient:
    return ScriptedClient({"alpha": ok_payload("hello\n"), "beta": ok_payload("from beta\n")})


@pytest.fixture
def container(settings, scripted, browser):
    registry = ProviderRegistry([make_provider("alpha", 1), make_provider("beta", 2), browser])
    return build_container(
        settings,
        registry=registry,
        store=MemoryStateStore(),
        client=scripted,
        clock=FakeClock(),
    )


@pytest.fixture
def client(settings, container):
    return TestClient(create_app(settings, container=container))


@pytest.fixture
def user_headers():
    return {"X-Requestor-Id": "student-42"}


@pytest.fixture
def admin_headers():
    return {"X-Requestor-Id": "instructor-1", "X-Requestor-Role": "admin"}


def _run(client: TestClient, headers: dict, **body):
    payload = {"language": "python", "code": "print('hello')", "input": ""}
    payload.update(body)
    return client.post("/api/v1/execute", json=payload, headers=headers)


class TestHealthEndpoints:
    def test_health_check(self, client):
        resp = client.get("/api/v1/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert "state_store" in data["services"]

    def test_metrics_endpoint(self, client, user_headers):
        _run(client, user_headers)
        resp = client.get("/api/v1/metrics")
        assert resp.status_code == 200
        assert b"http_requests_total" in resp.content
        assert b"code_executions_total" in resp.content

    def test_request_id_echoed(self, client):
        resp = client.get("/api/v1/health", headers={"X-Request-ID": "abc123"})
        assert resp.headers["X-Request-ID"] == "abc123"


class TestExecuteEndpoint:
    def test_success_shape(self, client, user_headers):
        resp = _run(client, user_headers)
        assert resp.status_code == 200
        assert resp.json() == {
            "status": "success",
            "output": "hello\n",
            "error": "",
            "exitCode": 0,
            "executionTimeMs": 12,
            "providerUsed": "alpha",
        }

    def test_failover_reports_provider_used(self, client, scripted, user_headers):
        scripted.behaviours["alpha"] = ProviderUnavailableError("alpha", "HTTP 500")
        resp = _run(client, user_headers)
        assert resp.status_code == 200
        assert resp.json()["providerUsed"] == "beta"

    def test_client_side_directive(self, client, scripted, user_headers):
        scripted.behaviours["alpha"] = ProviderUnavailableError("alpha", "down")
        scripted.behaviours["beta"] = ProviderUnavailableError("beta", "down")
        resp = _run(client, user_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "clientSideDirective"
        assert data["language"] == "python"
        assert data["providerUsed"] == "browser"

    def test_unsupported_language_is_422(self, client, scripted, user_headers):
        resp = _run(client, user_headers, language="go")
        # Neither remote provider nor the browser runs go.
        assert resp.status_code == 422
        assert resp.json()["code"] == "UNSUPPORTED_LANGUAGE"
        assert scripted.calls == []

    def test_code_too_large_is_413(self, client, scripted, user_headers):
        resp = _run(client, user_headers, code="a" * 50_001)
        assert resp.status_code == 413
        assert resp.json()["code"] == "CODE_TOO_LARGE"
        assert scripted.calls == []

    def test_missing_field_is_malformed(self, client, user_headers):
        resp = client.post("/api/v1/execute", json={"language": "python"}, headers=user_headers)
        assert resp.status_code == 422
        assert resp.json()["code"] == "MALFORMED_REQUEST"

    def test_user_rate_limit_is_429_with_retry_after(self, client, scripted, user_headers):
        for _ in range(3):
            assert _run(client, user_headers).status_code == 200
        calls_before = len(scripted.calls)

        resp = _run(client, user_headers)
        assert resp.status_code == 429
        assert resp.json()["code"] == "USER_RATE_LIMITED"
        assert int(resp.headers["Retry-After"]) >= 1
        assert len(scripted.calls) == calls_before

    def test_missing_identity_is_401(self, client):
        resp = _run(client, {})
        assert resp.status_code == 401
        assert resp.json()["code"] == "AUTHENTICATION_ERROR"


class TestExhaustion:
    def test_all_remote_down_without_client_side(self, settings, scripted, user_headers):
        scripted.behaviours["alpha"] = ProviderUnavailableError("alpha", "down")
        scripted.behaviours["beta"] = ProviderUnavailableError("beta", "down")
        container = build_container(
            settings,
            registry=ProviderRegistry([make_provider("alpha", 1), make_provider("beta", 2)]),
            store=MemoryStateStore(),
            client=scripted,
        )
        client = TestClient(create_app(settings, container=container))
        resp = _run(client, user_headers)
        assert resp.status_code == 503
        assert resp.json()["code"] == "ALL_PROVIDERS_EXHAUSTED"
        assert "Retry-After" not in resp.headers

    def test_error_status_without_error_detail_is_500(self, settings, container, user_headers):
        class _BrokenHandler:
            async def handle(self, cmd):
                return ExecutionResult(status=ExecutionStatus.ALL_PROVIDERS_EXHAUSTED)

        app = create_app(settings, container=container)
        app.dependency_overrides[get_execute_handler] = lambda: _BrokenHandler()
        client = TestClient(app, raise_server_exceptions=False)
        resp = _run(client, user_headers)
        assert resp.status_code == 500
        assert resp.json()["code"] == "INTERNAL_ERROR"


class TestStateStoreOutage:
    def test_execute_still_answers(self, settings, scripted, user_headers):
        container = build_container(
            settings,
            registry=ProviderRegistry([make_provider("alpha", 1), make_provider("beta", 2)]),
            store=UnreachableStore(),
            client=scripted,
        )
        client = TestClient(create_app(settings, container=container))
        resp = _run(client, user_headers)
        assert resp.status_code == 200
        assert resp.json()["providerUsed"] == "alpha"


class TestProviderEndpoints:
    def test_list_in_fallback_order(self, client, user_headers):
        resp = client.get("/api/v1/providers", headers=user_headers)
        assert resp.status_code == 200
        assert [p["provider_id"] for p in resp.json()] == ["alpha", "beta", "browser"]
        assert all("api_key" not in p for p in resp.json())

    def test_health_snapshots(self, client, scripted, user_headers):
        scripted.behaviours["alpha"] = ProviderUnavailableError("alpha", "down")
        for _ in range(3):
            _run(client, user_headers)
        resp = client.get("/api/v1/providers/health", headers=user_headers)
        alpha = next(h for h in resp.json() if h["provider_id"] == "alpha")
        assert alpha["is_healthy"] is False
        assert alpha["consecutive_failures"] == 3
        assert alpha["cooldown_remaining_s"] > 0

    def test_reset_requires_admin(self, client, user_headers):
        resp = client.post("/api/v1/providers/alpha/reset", headers=user_headers)
        assert resp.status_code == 403

    def test_reset_clears_cooldown(self, client, scripted, user_headers, admin_headers):
        scripted.behaviours["alpha"] = ProviderUnavailableError("alpha", "down")
        for _ in range(3):
            _run(client, user_headers)
        resp = client.post("/api/v1/providers/alpha/reset", headers=admin_headers)
        assert resp.status_code == 200
        health = client.get("/api/v1/providers/health", headers=admin_headers).json()
        assert next(h for h in health if h["provider_id"] == "alpha")["is_healthy"] is True

    def test_reset_unknown_provider_is_404(self, client, admin_headers):
        resp = client.post("/api/v1/providers/nope/reset", headers=admin_headers)
        assert resp.status_code == 404
