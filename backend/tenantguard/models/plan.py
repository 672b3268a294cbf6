"""
Subscription plan model.

A plan carries a tier code that selects the default quota table, an
optional metadata map of max_<metric> overrides, and the set of modules
it includes.
"""

import enum

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from tenantguard.db_base import Base
from tenantguard.models.base import TimestampMixin, generate_uuid


class PlanTier(str, enum.Enum):
    FREE = "free"
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


class Plan(Base, TimestampMixin):
    """Subscription plan."""

    __tablename__ = "plans"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    slug = Column(String(100), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    tier = Column(
        String(50),
        nullable=True,
        comment="free | starter | professional | enterprise",
    )

    # "metadata" is reserved on declarative classes
    metadata_json = Column(
        "metadata",
        JSON,
        nullable=True,
        comment="max_<metric> limit overrides",
    )

    is_active = Column(Boolean, nullable=False, default=True)

    plan_modules = relationship(
        "PlanModule",
        back_populates="plan",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Plan(id={self.id}, slug={self.slug}, tier={self.tier})>"

    @property
    def limit_overrides(self) -> dict:
        return dict(self.metadata_json or {})


class PlanModule(Base, TimestampMixin):
    """Module included in a plan."""

    __tablename__ = "plan_modules"

    id = Column(String(255), primary_key=True, default=generate_uuid)

    plan_id = Column(
        String(255),
        ForeignKey("plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    feature_node_id = Column(
        String(255),
        ForeignKey("feature_nodes.id", ondelete="CASCADE"),
        nullable=False,
    )

    plan = relationship("Plan", back_populates="plan_modules")
    module = relationship("FeatureNode")

    __table_args__ = (
        UniqueConstraint("plan_id", "feature_node_id", name="uq_plan_modules_plan_node"),
    )
