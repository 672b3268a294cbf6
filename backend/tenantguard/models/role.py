"""
Role model and feature grants.

Roles are either global (tenant_id IS NULL, e.g. the platform super admin)
or owned by a tenant. A role holds a set of grants on feature catalog
nodes; each grant carries a data-visibility scope.

Grants are exact-node: a grant on a module says nothing about the
module's submodules, components or actions.
"""

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from tenantguard.db_base import Base
from tenantguard.models.base import TimestampMixin, generate_uuid


class Role(Base, TimestampMixin):
    """
    Role definition.

    - tenant_id IS NULL => global role
    - tenant_id IS NOT NULL => tenant-scoped role
    """

    __tablename__ = "roles"

    id = Column(String(255), primary_key=True, default=generate_uuid)

    tenant_id = Column(
        String(255),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="Owning tenant ID. NULL for global roles.",
    )

    name = Column(String(100), nullable=False, comment="Role name, e.g. 'Super Administrator'")
    slug = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    grants = relationship(
        "RoleFeatureGrant",
        back_populates="role",
        cascade="all, delete-orphan",
    )

    assignments = relationship(
        "UserRoleAssignment",
        back_populates="role",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "slug", name="uq_roles_tenant_slug"),
        Index("ix_roles_tenant_active", "tenant_id", "is_active"),
    )

    def __repr__(self) -> str:
        scope = f"tenant={self.tenant_id}" if self.tenant_id else "global"
        return f"<Role(id={self.id}, name={self.name}, {scope})>"


class RoleFeatureGrant(Base, TimestampMixin):
    """Grant of one feature node to one role, with a visibility scope."""

    __tablename__ = "role_feature_grants"

    id = Column(String(255), primary_key=True, default=generate_uuid)

    role_id = Column(
        String(255),
        ForeignKey("roles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    feature_node_id = Column(
        String(255),
        ForeignKey("feature_nodes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    scope = Column(
        String(20),
        nullable=False,
        default="all",
        comment="own | team | department | all",
    )

    role = relationship("Role", back_populates="grants")
    feature_node = relationship("FeatureNode")

    __table_args__ = (
        UniqueConstraint("role_id", "feature_node_id", name="uq_role_feature_grants_role_node"),
    )

    def __repr__(self) -> str:
        return (
            f"<RoleFeatureGrant(role_id={self.role_id}, "
            f"node_id={self.feature_node_id}, scope={self.scope})>"
        )

