"""
Hierarchical feature access control.

This package provides:
- FeatureTree: validated Module -> SubModule -> Component -> Action catalog
- RoleGrantStore: exact-node role grants with data-visibility scopes
- PlanCatalog: modules included in a tenant's plan
- AccessDecisionEngine: layered allow/deny decisions with reason codes
- AccessAuditLogger: structured log of every denial

Decision order: platform admin -> plan -> existence -> tenant admin -> grants
"""

from tenantguard.access.models import AccessDecision, AccessQuery, ReasonCode, Scope
from tenantguard.access.errors import (
    AccessError,
    AccessEvaluationError,
    FeatureTreeError,
    InvalidAccessQuery,
)
from tenantguard.access.feature_tree import (
    FeatureTree,
    PathResolution,
    TreeNode,
    build_feature_tree,
    invalidate_feature_tree,
    load_feature_tree,
)
from tenantguard.access.grants import RoleGrantStore
from tenantguard.access.plan_catalog import PlanCatalog
from tenantguard.access.engine import AccessDecisionEngine
from tenantguard.access.audit import AccessAuditLogger, AccessDenialEvent

__all__ = [
    "AccessDecision",
    "AccessQuery",
    "ReasonCode",
    "Scope",
    "AccessError",
    "AccessEvaluationError",
    "FeatureTreeError",
    "InvalidAccessQuery",
    "FeatureTree",
    "PathResolution",
    "TreeNode",
    "build_feature_tree",
    "invalidate_feature_tree",
    "load_feature_tree",
    "RoleGrantStore",
    "PlanCatalog",
    "AccessDecisionEngine",
    "AccessAuditLogger",
    "AccessDenialEvent",
]
