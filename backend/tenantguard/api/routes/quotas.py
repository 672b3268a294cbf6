"""
Tenant quota API routes.

Read-only views of the caller's own tenant:
- GET /api/quotas           per-metric usage summary and active warnings
- GET /api/quotas/{metric}  grace-aware decision for one metric
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from tenantguard.api.dependencies.access import (
    RequestSubjects,
    get_grace_enforcer,
    get_request_subjects,
)
from tenantguard.api.routes.admin_quotas import warning_to_dict
from tenantguard.quotas.errors import QuotaEvaluationError
from tenantguard.quotas.grace import GracePeriodEnforcer
from tenantguard.quotas.metrics import METRICS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/quotas", tags=["quotas"])


def _require_tenant(subjects: RequestSubjects):
    if subjects.tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    return subjects.tenant


@router.get("")
def get_own_quotas(
    subjects: RequestSubjects = Depends(get_request_subjects),
    enforcer: GracePeriodEnforcer = Depends(get_grace_enforcer),
):
    tenant = _require_tenant(subjects)
    try:
        summary = enforcer.quota_summary(tenant)
    except QuotaEvaluationError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.to_dict())
    return {
        "tenant_id": tenant.id,
        "quotas": summary,
        "warnings": [warning_to_dict(w) for w in enforcer.active_warnings(tenant)],
    }


@router.get("/{metric}")
def get_own_quota_decision(
    metric: str,
    subjects: RequestSubjects = Depends(get_request_subjects),
    enforcer: GracePeriodEnforcer = Depends(get_grace_enforcer),
):
    if metric not in METRICS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown metric '{metric}'")
    tenant = _require_tenant(subjects)
    try:
        return enforcer.evaluate(tenant, metric).to_dict()
    except QuotaEvaluationError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.to_dict())
