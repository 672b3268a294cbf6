"""
Tenant model.

A tenant has at most one plan, an optional metadata map whose max_<metric>
keys override plan limits, and a list of individually granted module
codes that are available regardless of plan.
"""

import enum

from sqlalchemy import Column, ForeignKey, JSON, String
from sqlalchemy.orm import relationship

from tenantguard.db_base import Base
from tenantguard.models.base import TimestampMixin, generate_uuid


class TenantStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DEACTIVATED = "deactivated"


class Tenant(Base, TimestampMixin):
    """Customer tenant."""

    __tablename__ = "tenants"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    email = Column(String(255), nullable=True, comment="Billing / admin contact")
    phone = Column(String(50), nullable=True)
    status = Column(String(50), nullable=False, default=TenantStatus.ACTIVE.value)

    plan_id = Column(
        String(255),
        ForeignKey("plans.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    metadata_json = Column(
        "metadata",
        JSON,
        nullable=True,
        comment="max_<metric> limit overrides",
    )

    modules = Column(
        JSON,
        nullable=True,
        comment="Module codes granted outside the plan",
    )

    plan = relationship("Plan")

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, slug={self.slug})>"

    @property
    def active_plan(self):
        """The tenant's plan, or None when unset or inactive."""
        if self.plan is not None and self.plan.is_active:
            return self.plan
        return None

    @property
    def limit_overrides(self) -> dict:
        return dict(self.metadata_json or {})

    @property
    def extra_module_codes(self) -> list[str]:
        return list(self.modules or [])
