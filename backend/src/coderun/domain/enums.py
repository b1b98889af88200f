"""Domain enumerations for the code execution service."""

from __future__ import annotations

import enum


class ExecutionStatus(str, enum.Enum):
    """Terminal status of an execution request.

    Every request ends in exactly one of these states.
    """

    SUCCESS = "success"
    ALL_PROVIDERS_EXHAUSTED = "allProvidersExhausted"
    REJECTED = "rejected"
    RATE_LIMITED = "rateLimited"
    CLIENT_SIDE_DIRECTIVE = "clientSideDirective"

    @property
    def is_failure(self) -> bool:
        return self in (
            ExecutionStatus.ALL_PROVIDERS_EXHAUSTED,
            ExecutionStatus.REJECTED,
            ExecutionStatus.RATE_LIMITED,
        )


class ProviderKind(str, enum.Enum):
    """How a provider is reached."""

    REMOTE_API = "remote-api"
    CLIENT_SIDE = "client-side"


class ApiStyle(str, enum.Enum):
    """Wire format spoken by a remote-API provider."""

    GENERIC = "generic"
    PISTON = "piston"
    JUDGE0 = "judge0"


class AttemptOutcome(str, enum.Enum):
    """What happened to a single provider during a dispatch."""

    SUCCEEDED = "succeeded"
    SKIPPED_UNHEALTHY = "skipped_unhealthy"
    SKIPPED_RATE_LIMITED = "skipped_rate_limited"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    MALFORMED_RESPONSE = "malformed_response"
    CLIENT_SIDE = "client_side"
