"""
HTTP tests for the access and quota routes and dependencies.

The authentication layer is replaced by a middleware that builds the
TenantContext from X-Test-Tenant / X-Test-User headers; the database and
cache dependencies are overridden with the test session and an in-memory
cache.

Test classes:
- TestTenantContext: missing context, unknown user
- TestAccessRoutes: /api/access/modules and /api/access/check
- TestQuotaRoutes: /api/quotas views of the caller's tenant
- TestAdminQuotaRoutes: platform admin guard and admin operations
- TestDependencies: require_access / require_quota on a small app
"""

from typing import Optional
from unittest.mock import patch

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from main import create_app
from tenantguard.api.dependencies.access import get_cache, require_access, require_quota
from tenantguard.constants.roles import PLATFORM_SUPER_ADMIN, TENANT_SUPER_ADMIN
from tenantguard.database.session import get_db_session
from tenantguard.models.quota import QuotaWarning
from tenantguard.platform.tenant_context import TenantContext
from tenantguard.quotas.enforcer import QuotaEnforcer


def _install_test_context(app: FastAPI) -> None:
    @app.middleware("http")
    async def test_tenant_context(request: Request, call_next):
        tenant_id = request.headers.get("X-Test-Tenant")
        user_id = request.headers.get("X-Test-User")
        if tenant_id and user_id:
            request.state.tenant_context = TenantContext(tenant_id=tenant_id, user_id=user_id)
        return await call_next(request)


def _override(app: FastAPI, db_session, cache) -> None:
    app.dependency_overrides[get_db_session] = lambda: db_session
    app.dependency_overrides[get_cache] = lambda: cache


@pytest.fixture
def client(db_session, cache):
    app = create_app()
    _install_test_context(app)
    _override(app, db_session, cache)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def tenant(make, catalog):
    plan = make.plan(tier="free", modules=[catalog["hrm"]])
    return make.tenant(plan=plan)


def _headers(tenant_id: str, user) -> dict:
    return {"X-Test-Tenant": tenant_id, "X-Test-User": user.id}


def _member(make, tenant, role_name: str = "Staff", grants=(), scope: str = "all", global_role=False):
    user = make.user()
    role = make.role(role_name, tenant=None if global_role else tenant)
    make.grant(role, *grants, scope=scope)
    make.assign(user, role, tenant=None if global_role else tenant)
    return user


@pytest.fixture
def admin_headers(make, tenant):
    admin = _member(make, tenant, PLATFORM_SUPER_ADMIN, global_role=True)
    return _headers(tenant.id, admin)


# =============================================================================
# TestTenantContext
# =============================================================================


class TestTenantContext:

    def test_health_needs_no_context(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_missing_context_is_forbidden(self, client):
        response = client.get("/api/access/modules")
        assert response.status_code == 403
        assert response.json()["detail"] == "Tenant context not available"

    def test_unknown_user_is_forbidden(self, client, tenant):
        response = client.get(
            "/api/access/modules",
            headers={"X-Test-Tenant": tenant.id, "X-Test-User": "nobody"},
        )
        assert response.status_code == 403


# =============================================================================
# TestAccessRoutes
# =============================================================================


class TestAccessRoutes:

    def test_modules_for_tenant_admin(self, client, make, tenant):
        user = _member(make, tenant, TENANT_SUPER_ADMIN)
        response = client.get("/api/access/modules", headers=_headers(tenant.id, user))

        assert response.status_code == 200
        codes = {m["code"] for m in response.json()["modules"]}
        assert codes == {"hrm", "dashboard"}

    def test_modules_for_granted_user(self, client, make, tenant, catalog):
        user = _member(make, tenant, grants=[catalog["hrm"]])
        response = client.get("/api/access/modules", headers=_headers(tenant.id, user))
        assert [m["code"] for m in response.json()["modules"]] == ["hrm"]

    def test_check_allowed_with_scope(self, client, make, tenant, catalog):
        user = _member(make, tenant, grants=[catalog["export"]], scope="team")
        response = client.post(
            "/api/access/check",
            json={"module": "hrm", "sub_module": "employees", "component": "list", "action": "export"},
            headers=_headers(tenant.id, user),
        )

        body = response.json()
        assert response.status_code == 200
        assert body["allowed"] is True
        assert body["reason"] == "success"
        assert body["level"] == "action"
        assert body["scope"] == "team"

    def test_check_plan_restriction(self, client, make, tenant):
        user = _member(make, tenant, TENANT_SUPER_ADMIN)
        body = client.post(
            "/api/access/check",
            json={"module": "projects"},
            headers=_headers(tenant.id, user),
        ).json()

        assert body["allowed"] is False
        assert body["reason"] == "plan_restriction"

    def test_check_missing_submodule(self, client, make, tenant):
        user = _member(make, tenant, TENANT_SUPER_ADMIN)
        body = client.post(
            "/api/access/check",
            json={"module": "hrm", "sub_module": "payroll"},
            headers=_headers(tenant.id, user),
        ).json()

        assert body["reason"] == "not_found"
        assert body["message"] == "Feature 'payroll' does not exist."

    def test_check_rejects_skipped_level(self, client, make, tenant):
        user = _member(make, tenant)
        response = client.post(
            "/api/access/check",
            json={"module": "hrm", "component": "list"},
            headers=_headers(tenant.id, user),
        )
        assert response.status_code == 422


# =============================================================================
# TestQuotaRoutes
# =============================================================================


class TestQuotaRoutes:

    def test_summary(self, client, db_session, cache, make, tenant):
        user = _member(make, tenant)
        QuotaEnforcer(db_session, cache).set_usage(tenant, "employees", 8)

        body = client.get("/api/quotas", headers=_headers(tenant.id, user)).json()

        assert body["tenant_id"] == tenant.id
        assert body["quotas"]["employees"]["used"] == 8
        assert body["quotas"]["employees"]["status"] == "warning"
        assert body["warnings"] == []

    def test_metric_decision(self, client, db_session, cache, make, tenant):
        user = _member(make, tenant)
        QuotaEnforcer(db_session, cache).set_usage(tenant, "employees", 10)

        body = client.get("/api/quotas/employees", headers=_headers(tenant.id, user)).json()

        assert body["allowed"] is True
        assert body["state"] == "grace"
        assert body["days_remaining"] == 10

    def test_unknown_metric(self, client, make, tenant):
        user = _member(make, tenant)
        response = client.get("/api/quotas/widgets", headers=_headers(tenant.id, user))
        assert response.status_code == 404

    def test_unknown_tenant(self, client, make, tenant):
        user = _member(make, tenant)
        response = client.get("/api/quotas", headers=_headers("missing-tenant", user))
        assert response.status_code == 404


# =============================================================================
# TestAdminQuotaRoutes
# =============================================================================


class TestAdminQuotaRoutes:

    def test_non_admin_is_forbidden(self, client, make, tenant):
        user = _member(make, tenant, TENANT_SUPER_ADMIN)
        response = client.get(f"/api/admin/quotas/{tenant.id}", headers=_headers(tenant.id, user))
        assert response.status_code == 403

    def test_tenant_summary(self, client, tenant, admin_headers):
        body = client.get(f"/api/admin/quotas/{tenant.id}", headers=admin_headers).json()

        assert body["tier"] == "free"
        assert body["quotas"]["users"]["limit"] == 5

    def test_unknown_tenant(self, client, admin_headers):
        response = client.get("/api/admin/quotas/nope", headers=admin_headers)
        assert response.status_code == 404

    def test_override_limit(self, client, db_session, tenant, admin_headers):
        response = client.post(
            f"/api/admin/quotas/{tenant.id}/overrides",
            json={"metric": "users", "limit": 50, "reason": "pilot"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["limit"] == 50
        assert tenant.metadata_json["max_users"] == 50

    def test_override_rejects_unknown_metric(self, client, tenant, admin_headers):
        response = client.post(
            f"/api/admin/quotas/{tenant.id}/overrides",
            json={"metric": "widgets", "limit": 5},
            headers=admin_headers,
        )
        assert response.status_code == 422

    def test_override_modules(self, client, make, tenant, admin_headers):
        response = client.put(
            f"/api/admin/quotas/{tenant.id}/modules",
            json={"modules": ["projects", "projects"]},
            headers=admin_headers,
        )
        assert response.json()["modules"] == ["projects"]

        staff = _member(make, tenant, TENANT_SUPER_ADMIN)
        body = client.post(
            "/api/access/check",
            json={"module": "projects"},
            headers=_headers(tenant.id, staff),
        ).json()
        assert body["allowed"] is True

    def test_reconcile(self, client, tenant, admin_headers):
        body = client.post(f"/api/admin/quotas/{tenant.id}/reconcile", headers=admin_headers).json()
        assert {r["metric"] for r in body["results"]} >= {"users", "employees"}

    def test_dismiss_warning(self, client, db_session, cache, tenant, admin_headers):
        QuotaEnforcer(db_session, cache).set_usage(tenant, "employees", 10)
        client.get("/api/quotas/employees", headers=admin_headers)
        warning = db_session.query(QuotaWarning).filter(QuotaWarning.tenant_id == tenant.id).one()

        response = client.post(
            f"/api/admin/quotas/warnings/{warning.id}/dismiss", headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json()["is_dismissed"] is True
        assert client.post(
            "/api/admin/quotas/warnings/missing/dismiss", headers=admin_headers
        ).status_code == 404

    def test_dismiss_store_failure_is_503(self, client, db_session, cache, tenant, admin_headers):
        QuotaEnforcer(db_session, cache).set_usage(tenant, "employees", 10)
        client.get("/api/quotas/employees", headers=admin_headers)
        warning = db_session.query(QuotaWarning).filter(QuotaWarning.tenant_id == tenant.id).one()

        down = OperationalError("UPDATE", {}, Exception("database is locked"))
        with patch.object(db_session, "flush", side_effect=down):
            response = client.post(
                f"/api/admin/quotas/warnings/{warning.id}/dismiss", headers=admin_headers
            )

        assert response.status_code == 503
        assert response.json()["detail"]["error"] == "QUOTA_EVAL_FAILED"

    def test_settings_round_trip(self, client, admin_headers):
        response = client.put(
            "/api/admin/quotas/settings/users",
            json={"grace_days": 3},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["grace_days"] == 3

        body = client.get("/api/admin/quotas/settings/users", headers=admin_headers).json()
        assert body["grace_days"] == 3
        assert body["block_pct"] == 100

    def test_settings_reject_inverted_thresholds(self, client, admin_headers):
        response = client.put(
            "/api/admin/quotas/settings/users",
            json={"warning_pct": 95, "critical_pct": 90},
            headers=admin_headers,
        )
        assert response.status_code == 422


# =============================================================================
# TestDependencies
# =============================================================================


def _guarded_app(db_session, cache) -> FastAPI:
    app = FastAPI()

    @app.post("/employees")
    def create_employee(
        _access=Depends(require_access("hrm", "employees")),
        quota=Depends(require_quota("employees")),
    ):
        return {"state": quota.state.value}

    @app.get("/export")
    def export(_access=Depends(require_access("hrm", "employees", "list", "export"))):
        return {"ok": True}

    @app.get("/ghost")
    def ghost(_access=Depends(require_access("hrm", "ghost"))):
        return {"ok": True}

    _install_test_context(app)
    _override(app, db_session, cache)
    return app


class TestDependencies:

    @pytest.fixture
    def guarded(self, db_session, cache):
        with TestClient(_guarded_app(db_session, cache)) as c:
            yield c

    def _user(self, make, tenant, catalog, grants: Optional[list] = None):
        return _member(make, tenant, grants=grants or [catalog["employees"]])

    def test_allowed(self, guarded, make, tenant, catalog):
        user = self._user(make, tenant, catalog)
        response = guarded.post("/employees", headers=_headers(tenant.id, user))
        assert response.status_code == 200
        assert response.json() == {"state": "ok"}

    def test_missing_grant_is_403(self, guarded, make, tenant, catalog):
        user = self._user(make, tenant, catalog)
        response = guarded.get("/export", headers=_headers(tenant.id, user))

        assert response.status_code == 403
        assert response.json()["detail"]["reason"] == "no_action_access"

    def test_missing_node_is_404(self, guarded, make, tenant, catalog):
        user = self._user(make, tenant, catalog)
        response = guarded.get("/ghost", headers=_headers(tenant.id, user))

        assert response.status_code == 404
        assert response.json()["detail"]["reason"] == "not_found"

    def test_quota_block_is_402(self, guarded, make, tenant, catalog):
        capped = make.tenant(plan=tenant.plan, limits={"max_employees": 0})
        user = self._user(make, capped, catalog)

        response = guarded.post("/employees", headers=_headers(capped.id, user))

        assert response.status_code == 402
        detail = response.json()["detail"]
        assert detail["error"] == "quota_exceeded"
        assert detail["decision"]["state"] == "blocked"
