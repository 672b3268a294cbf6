"""
Admin quota API routes.

SECURITY: All routes require the platform super admin role.

- GET  /api/admin/quotas/{tenant_id}                    usage summary + warnings
- POST /api/admin/quotas/{tenant_id}/overrides          set a custom limit
- POST /api/admin/quotas/{tenant_id}/reconcile          rebuild cached usage
- POST /api/admin/quotas/warnings/{warning_id}/dismiss  dismiss a warning
- GET  /api/admin/quotas/settings/{metric}              enforcement settings
- PUT  /api/admin/quotas/settings/{metric}              update settings
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from tenantguard.access.plan_catalog import PlanCatalog
from tenantguard.api.dependencies.access import (
    RequestSubjects,
    get_cache,
    require_platform_admin,
)
from tenantguard.cache import CacheBackend
from tenantguard.models.quota import QuotaWarning
from tenantguard.models.tenant import Tenant
from tenantguard.quotas.errors import QuotaEvaluationError
from tenantguard.quotas.grace import GracePeriodEnforcer
from tenantguard.quotas.metrics import METRICS
from tenantguard.quotas.models import Limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/quotas", tags=["admin-quotas"])


class QuotaOverrideRequest(BaseModel):
    """Custom limit for one metric. -1 means unlimited; storage is in GB."""
    metric: str = Field(..., min_length=1, max_length=100)
    limit: float = Field(..., ge=-1)
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator("metric")
    @classmethod
    def validate_metric(cls, v: str) -> str:
        if v not in METRICS:
            raise ValueError(f"Unknown metric '{v}'")
        return v

    @field_validator("limit")
    @classmethod
    def validate_limit(cls, v: float) -> float:
        if -1 < v < 0:
            raise ValueError("limit must be -1 (unlimited) or >= 0")
        return v


class EnforcementSettingsRequest(BaseModel):
    warning_pct: Optional[int] = Field(None, ge=1, le=1000)
    critical_pct: Optional[int] = Field(None, ge=1, le=1000)
    block_pct: Optional[int] = Field(None, ge=1, le=1000)
    grace_days: Optional[int] = Field(None, ge=0, le=365)
    send_email: Optional[bool] = None
    send_sms: Optional[bool] = None
    is_active: Optional[bool] = None


class ModuleOverrideRequest(BaseModel):
    """Replace the module codes granted to a tenant outside its plan."""
    modules: list[str] = Field(default_factory=list)


def warning_to_dict(warning: QuotaWarning) -> dict:
    return {
        "id": warning.id,
        "metric": warning.metric,
        "percentage_used": warning.percentage_used,
        "level": warning.level,
        "created_at": warning.created_at.isoformat() if warning.created_at else None,
        "expires_at": warning.expires_at.isoformat() if warning.expires_at else None,
        "is_dismissed": warning.is_dismissed,
    }


def _get_tenant(subjects: RequestSubjects, tenant_id: str) -> Tenant:
    tenant = subjects.db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    return tenant


def _enforcer(subjects: RequestSubjects, cache: CacheBackend) -> GracePeriodEnforcer:
    return GracePeriodEnforcer(subjects.db, cache)


def _unavailable(e: QuotaEvaluationError) -> HTTPException:
    logger.error(
        "Quota evaluation failed",
        extra={"tenant_id": e.tenant_id, "metric": e.metric, "error": e.detail},
        exc_info=True,
    )
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.to_dict())


@router.get("/{tenant_id}")
def get_tenant_quotas(
    tenant_id: str,
    subjects: RequestSubjects = Depends(require_platform_admin),
    cache: CacheBackend = Depends(get_cache),
):
    tenant = _get_tenant(subjects, tenant_id)
    enforcer = _enforcer(subjects, cache)
    try:
        summary = enforcer.quota_summary(tenant)
    except QuotaEvaluationError as e:
        raise _unavailable(e)
    return {
        "tenant_id": tenant.id,
        "tier": enforcer.policy.tier_for(tenant),
        "quotas": summary,
        "warnings": [warning_to_dict(w) for w in enforcer.active_warnings(tenant)],
    }


@router.post("/{tenant_id}/overrides")
def override_quota(
    tenant_id: str,
    body: QuotaOverrideRequest,
    subjects: RequestSubjects = Depends(require_platform_admin),
    cache: CacheBackend = Depends(get_cache),
):
    tenant = _get_tenant(subjects, tenant_id)
    enforcer = _enforcer(subjects, cache)
    limit = enforcer.policy.set_custom_quota(tenant, body.metric, Limit.from_raw(body.limit))
    enforcer.enforcer.clear_cache(tenant, body.metric)

    logger.info(
        "Admin quota override",
        extra={
            "tenant_id": tenant.id,
            "metric": body.metric,
            "limit": limit.to_raw(),
            "admin_user_id": subjects.user.id,
            "reason": body.reason,
        },
    )
    return {"tenant_id": tenant.id, "metric": body.metric, "limit": limit.to_raw()}


@router.put("/{tenant_id}/modules")
def override_modules(
    tenant_id: str,
    body: ModuleOverrideRequest,
    subjects: RequestSubjects = Depends(require_platform_admin),
    cache: CacheBackend = Depends(get_cache),
):
    tenant = _get_tenant(subjects, tenant_id)
    tenant.modules = sorted(set(body.modules))
    subjects.db.flush()
    PlanCatalog(subjects.db, cache).invalidate(tenant.id)
    return {"tenant_id": tenant.id, "modules": tenant.modules}


@router.post("/{tenant_id}/reconcile")
def reconcile_usage(
    tenant_id: str,
    subjects: RequestSubjects = Depends(require_platform_admin),
    cache: CacheBackend = Depends(get_cache),
):
    tenant = _get_tenant(subjects, tenant_id)
    ledger = _enforcer(subjects, cache).enforcer.ledger
    try:
        results = [ledger.reconcile(tenant.id, metric).to_dict() for metric in METRICS]
    except QuotaEvaluationError as e:
        raise _unavailable(e)
    return {"tenant_id": tenant.id, "results": results}


@router.post("/warnings/{warning_id}/dismiss")
def dismiss_warning(
    warning_id: str,
    subjects: RequestSubjects = Depends(require_platform_admin),
    cache: CacheBackend = Depends(get_cache),
):
    try:
        warning = _enforcer(subjects, cache).dismiss_warning(warning_id)
    except QuotaEvaluationError as e:
        raise _unavailable(e)
    if warning is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Warning not found")
    return warning_to_dict(warning)


@router.get("/settings/{metric}")
def get_settings(
    metric: str,
    subjects: RequestSubjects = Depends(require_platform_admin),
    cache: CacheBackend = Depends(get_cache),
):
    settings = _enforcer(subjects, cache).policy.settings_for(metric)
    return {"metric": metric, **settings.to_dict()}


@router.put("/settings/{metric}")
def update_settings(
    metric: str,
    body: EnforcementSettingsRequest,
    subjects: RequestSubjects = Depends(require_platform_admin),
    cache: CacheBackend = Depends(get_cache),
):
    policy = _enforcer(subjects, cache).policy
    try:
        row = policy.update_settings(metric, **body.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return {
        "metric": row.metric,
        "warning_pct": row.warning_pct,
        "critical_pct": row.critical_pct,
        "block_pct": row.block_pct,
        "grace_days": row.grace_days,
        "send_email": row.send_email,
        "send_sms": row.send_sms,
        "is_active": row.is_active,
    }
