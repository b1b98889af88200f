"""Domain-specific exception hierarchy.

All exceptions inherit from ``DomainError`` so callers can catch the entire
family in one clause while still discriminating on subclass.  Each error
carries a stable ``code`` that is surfaced verbatim to API clients.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for all domain-layer errors."""

    def __init__(self, message: str, *, code: str = "DOMAIN_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


# ── Request validation ───────────────────────────────────────
class ValidationError(DomainError):
    """Input failed domain validation rules."""

    def __init__(self, message: str, *, code: str = "VALIDATION_ERROR") -> None:
        super().__init__(message, code=code)


class MalformedRequestError(ValidationError):
    def __init__(self, message: str) -> None:
        super().__init__(message, code="MALFORMED_REQUEST")


class CodeTooLargeError(ValidationError):
    def __init__(self, size_bytes: int, limit_bytes: int) -> None:
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        super().__init__(
            f"Source code is {size_bytes} bytes; the limit is {limit_bytes} bytes",
            code="CODE_TOO_LARGE",
        )


class UnsupportedLanguageError(ValidationError):
    def __init__(self, language: str) -> None:
        self.language = language
        super().__init__(
            f"No registered provider supports language {language!r}",
            code="UNSUPPORTED_LANGUAGE",
        )


# ── Rate limiting ────────────────────────────────────────────
class UserRateLimitedError(DomainError):
    def __init__(self, requestor_id: str, retry_after_s: int) -> None:
        self.requestor_id = requestor_id
        self.retry_after_s = retry_after_s
        super().__init__(
            f"Too many execution requests; retry in {retry_after_s}s",
            code="USER_RATE_LIMITED",
        )


class ProviderRateLimitedError(DomainError):
    """Internal only — a provider's own budget is spent for this window."""

    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(
            f"[{provider_id}] provider rate limit reached",
            code="PROVIDER_RATE_LIMITED",
        )


# ── Providers ────────────────────────────────────────────────
class ProviderUnavailableError(DomainError):
    """Transport error, timeout, or non-2xx answer from a provider."""

    def __init__(
        self, provider_id: str, message: str, *, code: str = "PROVIDER_UNAVAILABLE"
    ) -> None:
        self.provider_id = provider_id
        super().__init__(f"[{provider_id}] {message}", code=code)


class MalformedProviderResponseError(ProviderUnavailableError):
    def __init__(self, provider_id: str, message: str) -> None:
        super().__init__(provider_id, message, code="MALFORMED_PROVIDER_RESPONSE")


class AllProvidersExhaustedError(DomainError):
    """Raised when no provider produced a result after the whole fallback chain."""

    def __init__(self, language: str, errors: dict[str, str] | None = None) -> None:
        self.language = language
        self.errors = errors or {}
        super().__init__(
            f"No execution provider is currently available for {language!r}",
            code="ALL_PROVIDERS_EXHAUSTED",
        )


class ProviderNotFoundError(DomainError):
    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(f"Unknown provider {provider_id!r}", code="NOT_FOUND")


# ── Auth ─────────────────────────────────────────────────────
class AuthenticationError(DomainError):
    def __init__(self, message: str = "Missing requestor identity") -> None:
        super().__init__(message, code="AUTHENTICATION_ERROR")


class AuthorisationError(DomainError):
    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(message, code="AUTHORISATION_ERROR")
