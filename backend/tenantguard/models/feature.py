"""
Feature catalog model.

The catalog is a four-level tree: Module -> SubModule -> Component -> Action.
Every node carries a code that is unique among its siblings, and a node's
level is always exactly one below its parent's (modules have no parent).

Nodes are written by the catalog sync process and are read-only while
requests are being evaluated.
"""

import enum

from sqlalchemy import (
    Boolean,
    Column,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from tenantguard.db_base import Base
from tenantguard.models.base import TimestampMixin, generate_uuid


class FeatureLevel(str, enum.Enum):
    """Level of a node in the feature catalog, top-down."""
    MODULE = "module"
    SUBMODULE = "submodule"
    COMPONENT = "component"
    ACTION = "action"

    @property
    def depth(self) -> int:
        return _LEVEL_ORDER.index(self)

    @property
    def child_level(self) -> "FeatureLevel | None":
        idx = self.depth + 1
        return _LEVEL_ORDER[idx] if idx < len(_LEVEL_ORDER) else None

    @property
    def label(self) -> str:
        """Human-facing name used in decision messages."""
        return _LEVEL_LABELS[self]


_LEVEL_ORDER = [
    FeatureLevel.MODULE,
    FeatureLevel.SUBMODULE,
    FeatureLevel.COMPONENT,
    FeatureLevel.ACTION,
]

_LEVEL_LABELS = {
    FeatureLevel.MODULE: "Module",
    FeatureLevel.SUBMODULE: "Feature",
    FeatureLevel.COMPONENT: "Component",
    FeatureLevel.ACTION: "Action",
}


class FeatureNode(Base, TimestampMixin):
    """A single node of the feature catalog."""

    __tablename__ = "feature_nodes"

    id = Column(String(255), primary_key=True, default=generate_uuid)

    parent_id = Column(
        String(255),
        ForeignKey("feature_nodes.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="Parent node. NULL for modules.",
    )

    level = Column(
        Enum(FeatureLevel, values_callable=lambda e: [m.value for m in e], native_enum=False),
        nullable=False,
    )

    code = Column(String(100), nullable=False, comment="Unique among siblings")
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    is_core = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="Core modules are available to every tenant regardless of plan",
    )
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    sort_order = Column(Integer, nullable=False, default=0)

    parent = relationship("FeatureNode", remote_side=[id], back_populates="children")
    children = relationship(
        "FeatureNode",
        back_populates="parent",
        cascade="all, delete-orphan",
        order_by="FeatureNode.sort_order",
    )

    __table_args__ = (
        UniqueConstraint("parent_id", "code", name="uq_feature_nodes_parent_code"),
        Index("ix_feature_nodes_level_code", "level", "code"),
    )

    def __repr__(self) -> str:
        return f"<FeatureNode(id={self.id}, level={self.level}, code={self.code})>"
