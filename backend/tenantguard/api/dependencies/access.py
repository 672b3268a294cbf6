"""
Access and quota check dependencies.

Reusable FastAPI dependencies that turn access and quota decisions into
HTTP responses:

- require_access(...)   403 denied, 404 not found, 503 evaluation failure
- require_quota(metric) 402 blocked, 503 evaluation failure
- require_platform_admin 403 unless the caller is a platform super admin
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from tenantguard.access.engine import AccessDecisionEngine
from tenantguard.access.errors import AccessEvaluationError
from tenantguard.access.models import AccessDecision, ReasonCode
from tenantguard.cache import CacheBackend, get_cache_backend
from tenantguard.constants.roles import PLATFORM_SUPER_ADMIN
from tenantguard.database.session import get_db_session
from tenantguard.models.tenant import Tenant
from tenantguard.models.user import User
from tenantguard.platform.tenant_context import get_tenant_context
from tenantguard.quotas.errors import QuotaEvaluationError, QuotaExceededError
from tenantguard.quotas.grace import GracePeriodEnforcer
from tenantguard.quotas.models import QuotaDecision

logger = logging.getLogger(__name__)


@dataclass
class RequestSubjects:
    """User and tenant loaded for the current request."""
    user: User
    tenant: Optional[Tenant]
    db: Session


def get_cache() -> CacheBackend:
    return get_cache_backend()


def get_request_subjects(
    request: Request,
    db: Session = Depends(get_db_session),
) -> RequestSubjects:
    ctx = get_tenant_context(request)
    user = db.query(User).filter(User.id == ctx.user_id, User.is_active.is_(True)).first()
    if user is None:
        logger.warning("Unknown or inactive user", extra={"user_id": ctx.user_id})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User not found")
    tenant = db.query(Tenant).filter(Tenant.id == ctx.tenant_id).first()
    return RequestSubjects(user=user, tenant=tenant, db=db)


def get_access_engine(
    subjects: RequestSubjects = Depends(get_request_subjects),
    cache: CacheBackend = Depends(get_cache),
) -> AccessDecisionEngine:
    return AccessDecisionEngine(subjects.db, cache)


def get_grace_enforcer(
    subjects: RequestSubjects = Depends(get_request_subjects),
    cache: CacheBackend = Depends(get_cache),
) -> GracePeriodEnforcer:
    return GracePeriodEnforcer(subjects.db, cache)


def raise_for_decision(decision: AccessDecision) -> None:
    if decision.allowed:
        return
    code = (
        status.HTTP_404_NOT_FOUND
        if decision.reason == ReasonCode.NOT_FOUND
        else status.HTTP_403_FORBIDDEN
    )
    raise HTTPException(status_code=code, detail=decision.to_dict())


def require_access(
    module: str,
    sub_module: Optional[str] = None,
    component: Optional[str] = None,
    action: Optional[str] = None,
) -> Callable:
    """
    Factory for a dependency that enforces one feature path.

    Returns the AccessDecision when allowed.
    """

    def check_access(
        subjects: RequestSubjects = Depends(get_request_subjects),
        engine: AccessDecisionEngine = Depends(get_access_engine),
    ) -> AccessDecision:
        try:
            decision = engine.decide(
                subjects.user, subjects.tenant, module, sub_module, component, action
            )
        except AccessEvaluationError as e:
            logger.error(
                "Access evaluation failed",
                extra={"tenant_id": e.tenant_id, "error": e.detail},
                exc_info=True,
            )
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=e.to_dict(),
            )
        raise_for_decision(decision)
        return decision

    return check_access


def require_quota(metric: str) -> Callable:
    """
    Factory for a dependency that enforces quota (with grace) for metric.

    Returns the QuotaDecision when creation is allowed.
    """

    def check_quota(
        subjects: RequestSubjects = Depends(get_request_subjects),
        enforcer: GracePeriodEnforcer = Depends(get_grace_enforcer),
    ) -> QuotaDecision:
        try:
            decision = enforcer.evaluate(subjects.tenant, metric)
        except QuotaEvaluationError as e:
            logger.error(
                "Quota evaluation failed",
                extra={"tenant_id": e.tenant_id, "metric": e.metric, "error": e.detail},
                exc_info=True,
            )
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=e.to_dict(),
            )

        if not decision.allowed:
            error = QuotaExceededError(
                tenant_id=subjects.tenant.id if subjects.tenant else "",
                metric=metric,
                reason=decision.reason,
                decision=decision.to_dict(),
            )
            logger.warning("Quota denied", extra={"metric": metric, "state": decision.state.value})
            raise HTTPException(status_code=error.http_status, detail=error.to_dict())
        return decision

    return check_quota


def require_platform_admin(
    subjects: RequestSubjects = Depends(get_request_subjects),
) -> RequestSubjects:
    if not subjects.user.has_role(PLATFORM_SUPER_ADMIN):
        logger.warning(
            "Non-admin attempted admin quota access",
            extra={"user_id": subjects.user.id},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Platform administrator role required",
        )
    return subjects
