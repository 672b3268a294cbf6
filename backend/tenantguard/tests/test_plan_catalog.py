"""
Tests for PlanCatalog module inclusion and its cache.
"""

import pytest
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from tenantguard.access.errors import AccessEvaluationError
from tenantguard.access.plan_catalog import PlanCatalog
from tenantguard.cache import CacheError, plan_modules_key


class TestModuleInclusion:
    """Union of plan modules, tenant overrides and core modules."""

    def test_plan_modules_and_core(self, make, db_session, catalog):
        plan = make.plan(modules=[catalog["hrm"]])
        tenant = make.tenant(plan=plan)

        codes = PlanCatalog(db_session).module_codes(tenant)
        assert codes == frozenset({"hrm", "dashboard"})

    def test_tenant_override_modules(self, make, db_session, catalog):
        tenant = make.tenant(plan=None, modules=["projects"])
        assert PlanCatalog(db_session).is_module_included(tenant, "projects")

    def test_inactive_plan_contributes_nothing(self, make, db_session, catalog):
        plan = make.plan(modules=[catalog["hrm"]], is_active=False)
        tenant = make.tenant(plan=plan)
        assert not PlanCatalog(db_session).is_module_included(tenant, "hrm")

    def test_inactive_module_is_excluded(self, make, db_session, catalog):
        plan = make.plan(modules=[catalog["hrm"]])
        tenant = make.tenant(plan=plan)
        catalog["hrm"].is_active = False
        db_session.flush()

        assert not PlanCatalog(db_session).is_module_included(tenant, "hrm")

    def test_inactive_core_module_is_excluded(self, make, db_session, catalog):
        tenant = make.tenant(plan=None)
        catalog["dashboard"].is_active = False
        db_session.flush()
        assert not PlanCatalog(db_session).is_module_included(tenant, "dashboard")


class TestPlanModuleCache:

    def test_result_is_cached_per_tenant(self, make, db_session, cache, catalog):
        tenant = make.tenant(plan=make.plan(modules=[catalog["hrm"]]))
        PlanCatalog(db_session, cache).module_codes(tenant)

        assert cache.get(plan_modules_key(tenant.id)) == ["dashboard", "hrm"]

    def test_invalidate_drops_entry(self, make, db_session, cache, catalog):
        tenant = make.tenant(plan=None)
        plans = PlanCatalog(db_session, cache)
        plans.module_codes(tenant)

        plans.invalidate(tenant.id)
        assert cache.get(plan_modules_key(tenant.id)) is None

    def test_cache_failure_falls_back_to_store(self, make, db_session, catalog):
        tenant = make.tenant(plan=make.plan(modules=[catalog["hrm"]]))
        broken = MagicMock()
        broken.get.side_effect = CacheError("down")
        broken.set.side_effect = CacheError("down")

        assert PlanCatalog(db_session, broken).is_module_included(tenant, "hrm")

    def test_store_failure_fails_closed(self, make, catalog):
        tenant = make.tenant(plan=None)
        session = MagicMock()
        session.query.side_effect = OperationalError("SELECT", {}, Exception("down"))

        with pytest.raises(AccessEvaluationError):
            PlanCatalog(session).module_codes(tenant)
