"""Request validator — bounds checks before anything is dispatched.

Pure: no I/O, no side effects.  The only outside knowledge it needs is the
set of languages the provider registry can serve.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

import structlog

from coderun.domain.entities import ExecutionRequest
from coderun.domain.exceptions import (
    CodeTooLargeError,
    MalformedRequestError,
    UnsupportedLanguageError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

# C0 controls and DEL, except tab, LF, VT, FF, CR.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0e-\x1f\x7f]")
_LANGUAGE_KEY = re.compile(r"[a-z0-9][a-z0-9+#._-]{0,31}")
_REQUESTOR_ID = re.compile(r"[\x21-\x7e]{1,128}")


@dataclass(frozen=True, slots=True)
class ValidationLimits:
    """Configurable request bounds."""

    max_source_bytes: int = 50_000
    max_stdin_bytes: int = 65_536


class RequestValidator:
    """Rejects oversized, malformed, or unservable requests."""

    def __init__(
        self,
        supports_language: Callable[[str], bool],
        limits: ValidationLimits | None = None,
    ) -> None:
        self._supports = supports_language
        self._limits = limits or ValidationLimits()

    @property
    def limits(self) -> ValidationLimits:
        return self._limits

    def validate(self, request: ExecutionRequest) -> None:
        """Raise a ``ValidationError`` subclass on the first violation."""
        try:
            self._check(request)
        except ValidationError as exc:
            logger.info(
                "request_rejected",
                execution_id=request.id,
                code=exc.code,
                reason=exc.message,
            )
            raise

    def _check(self, request: ExecutionRequest) -> None:
        # ── Shape ────────────────────────────────────────────
        if not _LANGUAGE_KEY.fullmatch(request.language or ""):
            raise MalformedRequestError("Language key is missing or malformed")
        if not _REQUESTOR_ID.fullmatch(request.requestor_id or ""):
            raise MalformedRequestError("Requestor id is missing or malformed")
        if _CONTROL_CHARS.search(request.source_code):
            raise MalformedRequestError("Source code contains control characters")
        if _CONTROL_CHARS.search(request.stdin):
            raise MalformedRequestError("Input contains control characters")

        # ── Size ─────────────────────────────────────────────
        size = request.source_size_bytes
        if size > self._limits.max_source_bytes:
            raise CodeTooLargeError(size, self._limits.max_source_bytes)
        if request.stdin_size_bytes > self._limits.max_stdin_bytes:
            raise MalformedRequestError(
                f"Input is {request.stdin_size_bytes} bytes; "
                f"the limit is {self._limits.max_stdin_bytes} bytes"
            )

        # ── Content ──────────────────────────────────────────
        if not request.source_code.strip():
            raise MalformedRequestError("Source code is empty")

        # ── Servability ──────────────────────────────────────
        if not self._supports(request.language):
            raise UnsupportedLanguageError(request.language)
