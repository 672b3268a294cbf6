"""
Root test configuration and fixtures.

Provides database fixtures shared by all tests, plus:
- cache: fresh in-memory cache backend per test
- make: factory for users, tenants, plans, roles and catalog nodes
- catalog: a small HRM / Projects feature catalog
"""

import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Generator, Optional

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ.setdefault("ENV", "test")


def _get_test_database_url() -> str:
    """Get database URL for tests."""
    database_url = os.getenv("DATABASE_URL")

    if database_url:
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)
        return database_url

    # Default to SQLite for unit tests if no PostgreSQL available
    return "sqlite:///:memory:"


@pytest.fixture(scope="session")
def db_engine():
    """
    Create database engine for tests.

    Uses PostgreSQL if DATABASE_URL is set, otherwise SQLite in-memory.
    """
    database_url = _get_test_database_url()

    if database_url.startswith("postgresql"):
        try:
            engine = create_engine(database_url, pool_pre_ping=True)
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            pytest.skip(f"PostgreSQL not available: {e}")
    else:
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    from tenantguard.db_base import Base
    import tenantguard.models  # noqa: F401 - registers every table

    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """
    Create database session with transaction rollback for test isolation.

    Code under test only flushes, so everything it writes is discarded
    when the outer transaction rolls back.
    """
    connection = db_engine.connect()
    transaction = connection.begin()

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=connection)
    session = SessionLocal()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def cache():
    from tenantguard.cache import InMemoryCacheBackend

    return InMemoryCacheBackend()


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: mark test as slow-running")


# =============================================================================
# Factories
# =============================================================================


class _Factory:
    """Builds and flushes model rows for tests."""

    def __init__(self, db: Session):
        self.db = db

    def _save(self, row):
        self.db.add(row)
        self.db.flush()
        return row

    def user(self, email: Optional[str] = None, **kwargs):
        from tenantguard.models.user import User

        return self._save(User(
            id=str(uuid.uuid4()),
            email=email or f"user_{uuid.uuid4().hex[:8]}@example.com",
            name=kwargs.pop("name", "Test User"),
            **kwargs,
        ))

    def plan(self, tier: str = "starter", modules=(), limits: Optional[dict] = None, **kwargs):
        from tenantguard.models.plan import Plan, PlanModule

        plan = self._save(Plan(
            id=str(uuid.uuid4()),
            slug=kwargs.pop("slug", f"plan-{uuid.uuid4().hex[:6]}"),
            name=kwargs.pop("name", f"{tier.title()} Plan"),
            tier=tier,
            metadata_json=limits or {},
            **kwargs,
        ))
        for module in modules:
            self._save(PlanModule(plan_id=plan.id, feature_node_id=module.id))
        return plan

    def tenant(self, plan=None, limits: Optional[dict] = None, **kwargs):
        from tenantguard.models.tenant import Tenant

        return self._save(Tenant(
            id=str(uuid.uuid4()),
            name=kwargs.pop("name", "Test Tenant"),
            slug=kwargs.pop("slug", f"tenant-{uuid.uuid4().hex[:6]}"),
            email=kwargs.pop("email", "owner@example.com"),
            plan_id=plan.id if plan is not None else None,
            metadata_json=limits or {},
            **kwargs,
        ))

    def role(self, name: str = "Staff", tenant=None, **kwargs):
        from tenantguard.models.role import Role

        return self._save(Role(
            id=str(uuid.uuid4()),
            tenant_id=tenant.id if tenant is not None else None,
            name=name,
            slug=kwargs.pop("slug", f"{name.lower().replace(' ', '-')}-{uuid.uuid4().hex[:6]}"),
            **kwargs,
        ))

    def assign(self, user, role, tenant=None, is_active: bool = True):
        from tenantguard.models.user_role_assignment import UserRoleAssignment

        assignment = self._save(UserRoleAssignment(
            id=str(uuid.uuid4()),
            user_id=user.id,
            role_id=role.id,
            tenant_id=tenant.id if tenant is not None else None,
            is_active=is_active,
        ))
        self.db.refresh(user)
        return assignment

    def node(self, code: str, parent=None, **kwargs):
        from tenantguard.models.feature import FeatureLevel, FeatureNode

        level = FeatureLevel.MODULE if parent is None else FeatureLevel(parent.level).child_level
        return self._save(FeatureNode(
            id=str(uuid.uuid4()),
            parent_id=parent.id if parent is not None else None,
            level=level,
            code=code,
            name=kwargs.pop("name", code.replace("_", " ").title()),
            **kwargs,
        ))

    def grant(self, role, *nodes, scope: str = "all"):
        from tenantguard.models.role import RoleFeatureGrant

        for node in nodes:
            self._save(RoleFeatureGrant(
                id=str(uuid.uuid4()),
                role_id=role.id,
                feature_node_id=node.id,
                scope=scope,
            ))


@pytest.fixture
def make(db_session) -> _Factory:
    return _Factory(db_session)


@pytest.fixture
def catalog(make):
    """
    hrm > employees > list > {export, delete}
    projects > boards > kanban > create
    dashboard (core) > overview
    """
    hrm = make.node("hrm")
    employees = make.node("employees", hrm)
    employee_list = make.node("list", employees)
    export = make.node("export", employee_list)
    delete = make.node("delete", employee_list)

    projects = make.node("projects")
    boards = make.node("boards", projects)
    kanban = make.node("kanban", boards)
    create = make.node("create", kanban)

    dashboard = make.node("dashboard", is_core=True)
    overview = make.node("overview", dashboard)

    return {
        "hrm": hrm,
        "employees": employees,
        "list": employee_list,
        "export": export,
        "delete": delete,
        "projects": projects,
        "boards": boards,
        "kanban": kanban,
        "create": create,
        "dashboard": dashboard,
        "overview": overview,
    }


class FrozenClock:
    """Injectable clock for grace-period tests."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()
