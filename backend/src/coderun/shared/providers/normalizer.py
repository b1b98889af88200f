"""Result normalizer — maps untrusted provider payloads to one canonical shape.

Each wire style has its own adapter function.  Adapters default missing
fields (``""`` / ``0``) and raise ``MalformedProviderResponseError`` for
anything they cannot make sense of, or ``ProviderUnavailableError`` when the
engine reports its own failure, which the dispatcher treats like any
other provider failure.  stdout and stderr are truncated independently.
"""

from __future__ import annotations

import signal
from typing import Any, Callable, Mapping

from coderun.domain.entities import NormalizedOutput
from coderun.domain.enums import ApiStyle
from coderun.domain.exceptions import (
    MalformedProviderResponseError,
    ProviderUnavailableError,
)
from coderun.shared.observability.metrics import OUTPUT_TRUNCATIONS

TRUNCATION_MARKER = "\n... [output truncated]"

# judge0 status ids
_JUDGE0_ACCEPTED = 3
_JUDGE0_COMPILATION_ERROR = 6
_JUDGE0_ENGINE_FAILURES = {
    1: "submission still in queue",
    2: "submission still processing",
    13: "internal error",
    14: "exec format error",
}


def truncate_output(text: str, max_bytes: int) -> tuple[str, bool]:
    """Cut ``text`` to ``max_bytes`` of UTF-8 and append the marker."""
    encoded = text.encode("utf-8", errors="replace")
    if len(encoded) <= max_bytes:
        return text, False
    # A split multi-byte sequence at the cut is dropped.
    head = encoded[:max_bytes].decode("utf-8", errors="ignore")
    return head + TRUNCATION_MARKER, True


# ── Field coercion ───────────────────────────────────────────
class _Fields:
    """Defensive accessors bound to one provider for error reporting."""

    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id

    def malformed(self, message: str) -> MalformedProviderResponseError:
        return MalformedProviderResponseError(self.provider_id, message)

    def mapping(self, value: Any, name: str) -> Mapping[str, Any]:
        if not isinstance(value, Mapping):
            raise self.malformed(f"{name} is {type(value).__name__}, expected an object")
        return value

    def text(self, value: Any, name: str) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        raise self.malformed(f"{name} is {type(value).__name__}, expected a string")

    def integer(self, value: Any, name: str) -> int:
        if value is None:
            return 0
        if isinstance(value, bool):
            raise self.malformed(f"{name} is a boolean, expected a number")
        if isinstance(value, (int, float, str)):
            try:
                return int(float(value.strip() or 0)) if isinstance(value, str) else int(value)
            except (ValueError, OverflowError):
                raise self.malformed(f"{name}={value!r} is not numeric") from None
        raise self.malformed(f"{name} is {type(value).__name__}, expected a number")

    def seconds_to_ms(self, value: Any, name: str) -> int:
        if value is None:
            return 0
        if isinstance(value, bool):
            raise self.malformed(f"{name} is a boolean, expected a number")
        try:
            return int(round(float(value) * 1000))
        except (TypeError, ValueError, OverflowError):
            raise self.malformed(f"{name}={value!r} is not numeric") from None


def _first_present(payload: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if payload.get(name) is not None:
            return payload[name]
    return None


def _signal_exit_code(name: str) -> int:
    try:
        return 128 + signal.Signals[name].value
    except KeyError:
        return 1


# ── Adapters, one per wire style ─────────────────────────────
def _normalize_generic(payload: Any, f: _Fields) -> NormalizedOutput:
    body = f.mapping(payload, "response")
    return NormalizedOutput(
        stdout=f.text(body.get("stdout"), "stdout"),
        stderr=f.text(body.get("stderr"), "stderr"),
        exit_code=f.integer(_first_present(body, "exitCode", "exit_code", "code"), "exitCode"),
        execution_time_ms=f.integer(
            _first_present(body, "executionTimeMs", "execution_time_ms", "time_ms"),
            "executionTimeMs",
        ),
    )


def _normalize_piston(payload: Any, f: _Fields) -> NormalizedOutput:
    body = f.mapping(payload, "response")

    # A failed compile stage comes back without a run stage.
    stage = None
    compile_stage = body.get("compile")
    if compile_stage is not None:
        compiled = f.mapping(compile_stage, "compile")
        if f.integer(compiled.get("code"), "compile.code") != 0 or compiled.get("signal"):
            stage = compiled

    if stage is None:
        if body.get("run") is None:
            message = body.get("message")
            raise f.malformed(f"missing run stage ({message})" if message else "missing run stage")
        stage = f.mapping(body["run"], "run")

    code = stage.get("code")
    sig = stage.get("signal")
    if code is None and isinstance(sig, str) and sig:
        exit_code = _signal_exit_code(sig)
    else:
        exit_code = f.integer(code, "run.code")

    return NormalizedOutput(
        stdout=f.text(stage.get("stdout"), "run.stdout"),
        stderr=f.text(stage.get("stderr"), "run.stderr"),
        exit_code=exit_code,
        execution_time_ms=f.integer(stage.get("wall_time"), "run.wall_time"),
    )


def _normalize_judge0(payload: Any, f: _Fields) -> NormalizedOutput:
    body = f.mapping(payload, "response")
    status = body.get("status")
    status_id = 0
    if status is not None:
        status_id = f.integer(f.mapping(status, "status").get("id"), "status.id")
    if status_id in _JUDGE0_ENGINE_FAILURES:
        detail = f.text(body.get("message"), "message") or _JUDGE0_ENGINE_FAILURES[status_id]
        raise ProviderUnavailableError(f.provider_id, f"status {status_id}: {detail}")

    stderr = f.text(body.get("stderr"), "stderr")
    if status_id == _JUDGE0_COMPILATION_ERROR or not stderr:
        stderr = f.text(body.get("compile_output"), "compile_output") or stderr
    if not stderr and status_id not in (0, _JUDGE0_ACCEPTED):
        stderr = f.text(body.get("message"), "message")

    raw_exit = body.get("exit_code")
    if raw_exit is not None:
        exit_code = f.integer(raw_exit, "exit_code")
    else:
        exit_code = 0 if status_id in (0, _JUDGE0_ACCEPTED) else 1

    return NormalizedOutput(
        stdout=f.text(body.get("stdout"), "stdout"),
        stderr=stderr,
        exit_code=exit_code,
        execution_time_ms=f.seconds_to_ms(body.get("time"), "time"),
    )


_ADAPTERS: dict[ApiStyle, Callable[[Any, _Fields], NormalizedOutput]] = {
    ApiStyle.GENERIC: _normalize_generic,
    ApiStyle.PISTON: _normalize_piston,
    ApiStyle.JUDGE0: _normalize_judge0,
}


class ResultNormalizer:
    """Applies the adapter for a provider's wire style, then truncates."""

    def __init__(self, *, max_output_bytes: int = 65_536) -> None:
        if max_output_bytes <= 0:
            raise ValueError("max_output_bytes must be positive")
        self._max_bytes = max_output_bytes

    @property
    def max_output_bytes(self) -> int:
        return self._max_bytes

    def normalize(self, style: ApiStyle, provider_id: str, payload: Any) -> NormalizedOutput:
        adapter = _ADAPTERS.get(style)
        if adapter is None:
            raise MalformedProviderResponseError(provider_id, f"no adapter for style {style!r}")

        raw = adapter(payload, _Fields(provider_id))
        stdout, out_cut = truncate_output(raw.stdout, self._max_bytes)
        stderr, err_cut = truncate_output(raw.stderr, self._max_bytes)
        if out_cut:
            OUTPUT_TRUNCATIONS.labels(stream="stdout").inc()
        if err_cut:
            OUTPUT_TRUNCATIONS.labels(stream="stderr").inc()
        return NormalizedOutput(
            stdout=stdout,
            stderr=stderr,
            exit_code=raw.exit_code,
            execution_time_ms=max(raw.execution_time_ms, 0),
            stdout_truncated=out_cut,
            stderr_truncated=err_cut,
        )
