"""
User to role assignment.

Many-to-many link between users and roles. Assignments are soft-deleted
through is_active so role history survives revocation.
"""

from sqlalchemy import Boolean, Column, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import relationship

from tenantguard.db_base import Base
from tenantguard.models.base import TimestampMixin, generate_uuid


class UserRoleAssignment(Base, TimestampMixin):
    __tablename__ = "user_role_assignments"

    id = Column(String(255), primary_key=True, default=generate_uuid)

    user_id = Column(
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    role_id = Column(
        String(255),
        ForeignKey("roles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    tenant_id = Column(
        String(255),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="Tenant the assignment applies to. NULL for global roles.",
    )

    is_active = Column(Boolean, nullable=False, default=True)

    user = relationship("User", back_populates="role_assignments")
    role = relationship("Role", back_populates="assignments")

    __table_args__ = (
        UniqueConstraint("user_id", "role_id", name="uq_user_role_assignments_user_role"),
    )

    def __repr__(self) -> str:
        return f"<UserRoleAssignment(user_id={self.user_id}, role_id={self.role_id})>"
