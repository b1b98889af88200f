"""Unit tests for the result normalizer."""

from __future__ import annotations

import pytest

from coderun.domain.enums import ApiStyle
from coderun.domain.exceptions import MalformedProviderResponseError, ProviderUnavailableError
from coderun.shared.providers.normalizer import (
    TRUNCATION_MARKER,
    ResultNormalizer,
    truncate_output,
)


@pytest.fixture
def normalizer() -> ResultNormalizer:
    return ResultNormalizer(max_output_bytes=65_536)


# ═══════════════════════════════════════════════════════════════
#  Truncation
# ═══════════════════════════════════════════════════════════════
class TestTruncation:
    def test_100kb_stdout_cut_to_64kb_with_marker(self, normalizer: ResultNormalizer) -> None:
        payload = {"stdout": "x" * 100_000, "stderr": "oops", "exitCode": 0}
        out = normalizer.normalize(ApiStyle.GENERIC, "p", payload)
        assert out.stdout.endswith(TRUNCATION_MARKER)
        assert len(out.stdout) == 65_536 + len(TRUNCATION_MARKER)
        assert out.stdout_truncated
        assert out.stderr == "oops"
        assert not out.stderr_truncated

    def test_streams_truncated_independently(self) -> None:
        normalizer = ResultNormalizer(max_output_bytes=10)
        out = normalizer.normalize(
            ApiStyle.GENERIC, "p", {"stdout": "short", "stderr": "e" * 50}
        )
        assert out.stdout == "short"
        assert out.stderr == "e" * 10 + TRUNCATION_MARKER

    def test_no_split_multibyte_sequences(self) -> None:
        text, cut = truncate_output("ab€€", 4)  # € is 3 bytes
        assert cut
        assert text == "ab" + TRUNCATION_MARKER

    def test_under_limit_untouched(self) -> None:
        assert truncate_output("hello", 5) == ("hello", False)


# ═══════════════════════════════════════════════════════════════
#  Wire styles
# ═══════════════════════════════════════════════════════════════
class TestGeneric:
    def test_missing_fields_default(self, normalizer: ResultNormalizer) -> None:
        out = normalizer.normalize(ApiStyle.GENERIC, "p", {})
        assert (out.stdout, out.stderr, out.exit_code, out.execution_time_ms) == ("", "", 0, 0)

    def test_snake_case_aliases(self, normalizer: ResultNormalizer) -> None:
        out = normalizer.normalize(
            ApiStyle.GENERIC,
            "p",
            {"stdout": "1\n", "exit_code": "2", "execution_time_ms": 40.7},
        )
        assert out.exit_code == 2
        assert out.execution_time_ms == 40

    def test_non_object_is_malformed(self, normalizer: ResultNormalizer) -> None:
        with pytest.raises(MalformedProviderResponseError):
            normalizer.normalize(ApiStyle.GENERIC, "p", ["not", "a", "dict"])

    def test_non_numeric_exit_code_is_malformed(self, normalizer: ResultNormalizer) -> None:
        with pytest.raises(MalformedProviderResponseError) as exc_info:
            normalizer.normalize(ApiStyle.GENERIC, "p", {"exitCode": "segfault"})
        assert exc_info.value.provider_id == "p"

    def test_wrong_type_stdout_is_malformed(self, normalizer: ResultNormalizer) -> None:
        with pytest.raises(MalformedProviderResponseError):
            normalizer.normalize(ApiStyle.GENERIC, "p", {"stdout": {"nested": True}})


class TestPiston:
    def test_run_stage(self, normalizer: ResultNormalizer) -> None:
        payload = {
            "language": "python",
            "version": "3.10.0",
            "run": {"stdout": "hi\n", "stderr": "", "code": 0, "signal": None, "wall_time": 31},
        }
        out = normalizer.normalize(ApiStyle.PISTON, "piston", payload)
        assert out.stdout == "hi\n"
        assert out.exit_code == 0
        assert out.execution_time_ms == 31

    def test_failed_compile_stage_without_run_stage(self, normalizer: ResultNormalizer) -> None:
        payload = {
            "language": "java",
            "version": "15.0.2",
            "compile": {"stdout": "", "stderr": "Main.java:1: error", "code": 1, "signal": None},
        }
        out = normalizer.normalize(ApiStyle.PISTON, "piston", payload)
        assert out.stderr == "Main.java:1: error"
        assert out.exit_code == 1

    def test_compile_killed_by_signal(self, normalizer: ResultNormalizer) -> None:
        payload = {"compile": {"stdout": "", "stderr": "", "code": None, "signal": "SIGKILL"}}
        out = normalizer.normalize(ApiStyle.PISTON, "piston", payload)
        assert out.exit_code == 137

    def test_successful_compile_uses_run_stage(self, normalizer: ResultNormalizer) -> None:
        payload = {
            "compile": {"stdout": "", "stderr": "", "code": 0, "signal": None},
            "run": {"stdout": "ok\n", "stderr": "", "code": 0, "signal": None},
        }
        out = normalizer.normalize(ApiStyle.PISTON, "piston", payload)
        assert out.stdout == "ok\n"

    def test_successful_compile_without_run_is_malformed(
        self, normalizer: ResultNormalizer
    ) -> None:
        with pytest.raises(MalformedProviderResponseError, match="missing run stage"):
            normalizer.normalize(
                ApiStyle.PISTON, "piston", {"compile": {"stderr": "", "code": 0}}
            )

    def test_signal_maps_to_shell_exit_code(self, normalizer: ResultNormalizer) -> None:
        payload = {"run": {"stdout": "", "stderr": "", "code": None, "signal": "SIGKILL"}}
        out = normalizer.normalize(ApiStyle.PISTON, "piston", payload)
        assert out.exit_code == 137

    def test_error_message_without_run_is_malformed(self, normalizer: ResultNormalizer) -> None:
        with pytest.raises(MalformedProviderResponseError, match="runtime is unknown"):
            normalizer.normalize(
                ApiStyle.PISTON, "piston", {"message": "runtime is unknown"}
            )


class TestJudge0:
    def test_accepted_submission(self, normalizer: ResultNormalizer) -> None:
        payload = {
            "stdout": "42\n",
            "stderr": None,
            "compile_output": None,
            "time": "0.015",
            "status": {"id": 3, "description": "Accepted"},
            "exit_code": 0,
        }
        out = normalizer.normalize(ApiStyle.JUDGE0, "judge0", payload)
        assert out.stdout == "42\n"
        assert out.stderr == ""
        assert out.exit_code == 0
        assert out.execution_time_ms == 15

    def test_compilation_error_surfaces_compile_output(
        self, normalizer: ResultNormalizer
    ) -> None:
        payload = {
            "stdout": None,
            "stderr": None,
            "compile_output": "error: expected ';'",
            "time": None,
            "status": {"id": 6, "description": "Compilation Error"},
        }
        out = normalizer.normalize(ApiStyle.JUDGE0, "judge0", payload)
        assert out.stderr == "error: expected ';'"
        assert out.exit_code == 1

    def test_runtime_error_falls_back_to_message(self, normalizer: ResultNormalizer) -> None:
        payload = {
            "stdout": "",
            "stderr": None,
            "message": "Exited with error status 1",
            "status": {"id": 11, "description": "Runtime Error (NZEC)"},
            "exit_code": 1,
        }
        out = normalizer.normalize(ApiStyle.JUDGE0, "judge0", payload)
        assert out.stderr == "Exited with error status 1"
        assert out.exit_code == 1

    def test_status_not_object_is_malformed(self, normalizer: ResultNormalizer) -> None:
        with pytest.raises(MalformedProviderResponseError):
            normalizer.normalize(ApiStyle.JUDGE0, "judge0", {"status": "Accepted"})

    @pytest.mark.parametrize(
        "status_id, description",
        [
            (1, "In Queue"),
            (2, "Processing"),
            (13, "Internal Error"),
            (14, "Exec Format Error"),
        ],
    )
    def test_engine_failure_statuses_are_unavailable(
        self, normalizer: ResultNormalizer, status_id: int, description: str
    ) -> None:
        payload = {"stdout": None, "status": {"id": status_id, "description": description}}
        with pytest.raises(ProviderUnavailableError, match=f"status {status_id}"):
            normalizer.normalize(ApiStyle.JUDGE0, "judge0", payload)

    def test_internal_error_keeps_engine_message(self, normalizer: ResultNormalizer) -> None:
        payload = {
            "status": {"id": 13, "description": "Internal Error"},
            "message": "No such file or directory",
        }
        with pytest.raises(ProviderUnavailableError, match="No such file or directory"):
            normalizer.normalize(ApiStyle.JUDGE0, "judge0", payload)
