"""Unit tests for the provider registry and its loaders."""

from __future__ import annotations

import json

import pydantic
import pytest

from coderun.domain.enums import ApiStyle, ProviderKind
from coderun.shared.providers.registry import (
    ProviderRegistry,
    build_provider_registry,
    default_providers,
    load_provider_definitions,
)
from coderun.shared.providers.types import Provider
from conftest import make_provider


class TestOrdering:
    def test_ascending_priority(self) -> None:
        reg = ProviderRegistry([make_provider("c", 3), make_provider("a", 1), make_provider("b", 2)])
        assert [p.provider_id for p in reg] == ["a", "b", "c"]

    def test_ties_keep_registration_order(self) -> None:
        reg = ProviderRegistry([make_provider("second", 5), make_provider("first", 5)])
        assert [p.provider_id for p in reg] == ["second", "first"]

    def test_client_side_always_last(self) -> None:
        cheap_browser = make_provider(
            "browser", 0, languages=("python",), kind=ProviderKind.CLIENT_SIDE
        )
        reg = ProviderRegistry([cheap_browser, make_provider("remote", 50)])
        assert [p.provider_id for p in reg] == ["remote", "browser"]

    def test_eligible_filters_by_language(self, browser) -> None:
        reg = ProviderRegistry(
            [make_provider("py", 1), make_provider("java", 2, languages=("java",)), browser]
        )
        assert [p.provider_id for p in reg.eligible_for("java")] == ["java"]
        assert [p.provider_id for p in reg.eligible_for("python")] == ["py", "browser"]
        assert reg.eligible_for("cobol") == []


class TestValidation:
    def test_duplicate_ids_rejected(self) -> None:
        with pytest.raises(ValueError, match="Duplicate"):
            ProviderRegistry([make_provider("a", 1), make_provider("a", 2)])

    def test_remote_without_url_rejected(self) -> None:
        with pytest.raises(ValueError, match="base_url"):
            ProviderRegistry([Provider("nourl", languages=frozenset({"python"}))])

    def test_lookup(self, registry: ProviderRegistry) -> None:
        assert "alpha" in registry
        assert registry.get("missing") is None
        assert registry.supports("python")
        assert not registry.supports("cobol")

    def test_versions_are_read_only(self) -> None:
        source = {"python": "3.10.0"}
        provider = Provider("p", languages=frozenset({"python"}), versions=source)
        source["python"] = "2.7"
        assert provider.version_for("python") == "3.10.0"
        with pytest.raises(TypeError):
            provider.versions["python"] = "2.7"  # type: ignore[index]
        assert not hasattr(provider, "metadata")


class TestLoading:
    def test_defaults(self) -> None:
        reg = ProviderRegistry(default_providers())
        ids = [p.provider_id for p in reg]
        assert ids == ["piston", "judge0", "browser"]
        assert reg.get("judge0").api_style == ApiStyle.JUDGE0
        assert reg.get("browser").is_client_side

    def test_json_definitions(self) -> None:
        raw = json.dumps(
            [
                {
                    "provider_id": "local",
                    "priority": 1,
                    "languages": [" Python ", "go"],
                    "rate_limit": {"max_calls": 5, "window_seconds": 10},
                    "timeout_ms": 2000,
                    "base_url": "http://runner:2000/",
                    "api_key": "secret",
                },
                {"provider_id": "browser", "kind": "client-side", "languages": ["python"]},
            ]
        )
        providers = load_provider_definitions(raw)
        local = providers[0]
        assert local.languages == frozenset({"python", "go"})
        assert local.base_url == "http://runner:2000"
        assert local.rate_limit.max_calls == 5
        assert local.timeout_s == 2.0
        assert "api_key" not in local.describe()
        assert providers[1].kind == ProviderKind.CLIENT_SIDE

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            load_provider_definitions('[{"provider_id": "x", "retries": 3}]')

    def test_build_from_file(self, tmp_path) -> None:
        path = tmp_path / "providers.json"
        path.write_text(
            json.dumps([{"provider_id": "only", "languages": ["python"], "base_url": "http://x"}])
        )
        reg = build_provider_registry(str(path))
        assert [p.provider_id for p in reg] == ["only"]

    def test_build_without_file_uses_defaults(self) -> None:
        assert len(build_provider_registry()) == 3
