"""
User model.

Users never own grants directly; they reach feature grants only through
their role assignments.
"""

from typing import Optional

from sqlalchemy import Boolean, Column, String
from sqlalchemy.orm import relationship

from tenantguard.db_base import Base
from tenantguard.models.base import TimestampMixin, generate_uuid


class User(Base, TimestampMixin):
    """Platform user."""

    __tablename__ = "users"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True, comment="Used for urgent SMS notices")
    is_active = Column(Boolean, nullable=False, default=True)

    role_assignments = relationship(
        "UserRoleAssignment",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"

    @property
    def roles(self) -> list:
        """Active roles held through active assignments."""
        return [
            a.role
            for a in self.role_assignments
            if a.is_active and a.role is not None and a.role.is_active
        ]

    def has_role(self, name: str) -> bool:
        """Check whether the user holds an active role with the given name."""
        return any(role.name == name for role in self.roles)

    def roles_for(self, tenant_id: Optional[str]) -> list:
        """Active roles that apply on a tenant: global assignments plus that tenant's."""
        return [
            a.role
            for a in self.role_assignments
            if a.is_active
            and a.role is not None
            and a.role.is_active
            and (a.tenant_id is None or a.tenant_id == tenant_id)
        ]
