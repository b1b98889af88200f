"""Requestor identity — read from headers set by the upstream auth layer.

This service does not authenticate anyone itself.  The gateway in front of it
has already done so and forwards an opaque requestor id (the user-scope rate
key) plus an optional role.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Request

from coderun.domain.exceptions import AuthenticationError, AuthorisationError
from coderun.dependencies import get_cached_settings


@dataclass(frozen=True, slots=True)
class Requestor:
    id: str
    role: str = "user"


async def get_requestor(request: Request) -> Requestor:
    """Resolve the caller from the identity headers; 401 when absent."""
    settings = getattr(request.app.state, "settings", None) or get_cached_settings()
    requestor_id = (request.headers.get(settings.requestor_id_header) or "").strip()
    if not requestor_id:
        raise AuthenticationError(f"Missing {settings.requestor_id_header} header")
    role = (request.headers.get(settings.requestor_role_header) or "user").strip().lower()
    return Requestor(id=requestor_id, role=role or "user")


def require_role(*allowed_roles: str):
    """Create a FastAPI dependency that enforces role-based access.

    Usage:
        @router.post("/admin-only")
        async def admin_endpoint(_r: Requestor = Depends(require_role("admin"))): ...
    """

    async def _check_role(requestor: Requestor = Depends(get_requestor)) -> Requestor:
        if requestor.role not in allowed_roles:
            raise AuthorisationError(
                f"Insufficient permissions. Required role: {', '.join(allowed_roles)}"
            )
        return requestor

    return _check_role
