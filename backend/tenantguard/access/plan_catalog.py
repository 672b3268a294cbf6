"""
Plan catalog - which modules a tenant's subscription includes.

A tenant can use a module when any of these hold:
- the module is active and included in the tenant's active plan
- the module code is in the tenant's individually granted modules
- the module is active and flagged is_core

The module set is cached per tenant. Cache failures fall back to the
store; store failures raise AccessEvaluationError (fail-closed).
"""

import logging
from typing import FrozenSet, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tenantguard.access.errors import AccessEvaluationError
from tenantguard.cache import (
    PLAN_MODULES_CACHE_TTL_SECONDS,
    CacheBackend,
    CacheError,
    plan_modules_key,
)
from tenantguard.models.feature import FeatureLevel, FeatureNode
from tenantguard.models.plan import PlanModule
from tenantguard.models.tenant import Tenant

logger = logging.getLogger(__name__)


class PlanCatalog:
    """Resolves plan-included modules for tenants."""

    def __init__(self, session: Session, cache: Optional[CacheBackend] = None):
        self.db = session
        self.cache = cache

    def module_codes(self, tenant: Tenant) -> FrozenSet[str]:
        key = plan_modules_key(tenant.id)

        if self.cache is not None:
            try:
                cached = self.cache.get(key)
            except CacheError as e:
                logger.warning(
                    "Plan module cache read failed, loading from store",
                    extra={"tenant_id": tenant.id, "error": str(e)},
                )
                cached = None
            if cached is not None:
                return frozenset(cached)

        codes = self._compute(tenant)

        if self.cache is not None:
            try:
                self.cache.set(key, sorted(codes), PLAN_MODULES_CACHE_TTL_SECONDS)
            except CacheError as e:
                logger.warning(
                    "Plan module cache write failed",
                    extra={"tenant_id": tenant.id, "error": str(e)},
                )

        return codes

    def _compute(self, tenant: Tenant) -> FrozenSet[str]:
        try:
            codes = set(tenant.extra_module_codes)

            plan = tenant.active_plan
            if plan is not None:
                rows = (
                    self.db.query(FeatureNode.code)
                    .join(PlanModule, PlanModule.feature_node_id == FeatureNode.id)
                    .filter(
                        PlanModule.plan_id == plan.id,
                        FeatureNode.is_active.is_(True),
                        FeatureNode.level == FeatureLevel.MODULE,
                    )
                    .all()
                )
                codes.update(code for (code,) in rows)

            core = (
                self.db.query(FeatureNode.code)
                .filter(
                    FeatureNode.is_core.is_(True),
                    FeatureNode.is_active.is_(True),
                    FeatureNode.level == FeatureLevel.MODULE,
                )
                .all()
            )
            codes.update(code for (code,) in core)
        except SQLAlchemyError as e:
            logger.error(
                "Failed to resolve plan modules",
                extra={"tenant_id": tenant.id, "error": str(e)},
                exc_info=True,
            )
            raise AccessEvaluationError(tenant.id, "Failed to resolve plan modules", cause=e) from e

        return frozenset(codes)

    def is_module_included(self, tenant: Tenant, module_code: str) -> bool:
        return module_code in self.module_codes(tenant)

    def invalidate(self, tenant_id: str) -> None:
        """Drop the cached module set. Call after plan or module override changes."""
        if self.cache is None:
            return
        try:
            self.cache.delete(plan_modules_key(tenant_id))
            logger.info("Invalidated plan module cache", extra={"tenant_id": tenant_id})
        except CacheError as e:
            logger.warning(
                "Plan module cache invalidation failed",
                extra={"tenant_id": tenant_id, "error": str(e)},
            )
