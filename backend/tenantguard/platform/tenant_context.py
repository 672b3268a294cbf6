"""
Request-scoped tenant context.

The authentication layer (out of this service's scope) resolves the
caller and attaches a TenantContext to request.state.tenant_context.
Handlers read it with get_tenant_context(); tenant_id is never taken
from request bodies or query strings.
"""

import logging
from dataclasses import dataclass, field
from typing import List

from fastapi import HTTPException, Request, status

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantContext:
    """Authenticated caller and the tenant they are acting on."""
    tenant_id: str
    user_id: str
    roles: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.tenant_id:
            raise ValueError("tenant_id cannot be empty")
        if not self.user_id:
            raise ValueError("user_id cannot be empty")


def get_tenant_context(request: Request) -> TenantContext:
    """
    Extract tenant context from request state.

    Raises 403 if tenant context is missing.
    """
    ctx = getattr(request.state, "tenant_context", None)
    if ctx is None:
        logger.error(
            "Route handler accessed without tenant context",
            extra={"path": request.url.path},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Tenant context not available",
        )
    return ctx
