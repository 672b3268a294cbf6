"""
Access decision engine.

Composes the feature tree, role grants and plan catalog into a single
allow/deny decision with a reason code.

Evaluation order (first decisive step wins):
1. platform super admin         -> allow  (platform_super_admin)
2. tenant missing               -> deny   (not_found)
3. module not in tenant's plan  -> deny   (plan_restriction)
4. requested node missing       -> deny   (not_found, names the level)
5. tenant super admin           -> allow  (tenant_super_admin)
6. no role grants deepest node  -> deny   (no_<level>_access)
7. otherwise                    -> allow  (success)

Policy outcomes are returned. Store failures raise AccessEvaluationError
and callers must treat them as deny.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from tenantguard.access.audit import (
    AccessAuditLogger,
    AccessDenialEvent,
    get_access_audit_logger,
)
from tenantguard.access.feature_tree import FeatureTree, TreeNode, load_feature_tree
from tenantguard.access.grants import RoleGrantStore
from tenantguard.access.models import AccessDecision, AccessQuery, ReasonCode, Scope
from tenantguard.access.plan_catalog import PlanCatalog
from tenantguard.cache import CacheBackend
from tenantguard.constants.roles import PLATFORM_SUPER_ADMIN, TENANT_SUPER_ADMIN
from tenantguard.models.feature import FeatureLevel
from tenantguard.models.tenant import Tenant
from tenantguard.models.user import User

logger = logging.getLogger(__name__)

_NO_ACCESS_MESSAGES = {
    FeatureLevel.MODULE: "You don't have access to this module.",
    FeatureLevel.SUBMODULE: "You don't have access to this feature.",
    FeatureLevel.COMPONENT: "You don't have access to this component.",
    FeatureLevel.ACTION: "You don't have permission to perform this action.",
}


class AccessDecisionEngine:
    """
    Decides whether a user may use a feature on a tenant.

    One engine per request: the feature tree and role grants are loaded
    lazily and memoised for the engine's lifetime.

    strict_platform_admin moves the platform super admin bypass after the
    existence walk, so platform admins get not_found for unknown codes
    instead of an allow.
    """

    def __init__(
        self,
        session: Session,
        cache: Optional[CacheBackend] = None,
        tree: Optional[FeatureTree] = None,
        grants: Optional[RoleGrantStore] = None,
        plans: Optional[PlanCatalog] = None,
        audit: Optional[AccessAuditLogger] = None,
        strict_platform_admin: bool = False,
    ):
        self.db = session
        self.cache = cache
        self._tree = tree
        self.grants = grants or RoleGrantStore(session)
        self.plans = plans or PlanCatalog(session, cache)
        self.audit = audit or get_access_audit_logger()
        self.strict_platform_admin = strict_platform_admin

    @property
    def tree(self) -> FeatureTree:
        if self._tree is None:
            self._tree = load_feature_tree(self.db, self.cache)
        return self._tree

    def decide(
        self,
        user: User,
        tenant: Optional[Tenant],
        module_code: str,
        sub_module_code: Optional[str] = None,
        component_code: Optional[str] = None,
        action_code: Optional[str] = None,
    ) -> AccessDecision:
        """
        Decide access for one query.

        Raises:
            InvalidAccessQuery: a deeper code was given without its parent
            AccessEvaluationError: the store could not be read
        """
        query = AccessQuery(module_code, sub_module_code, component_code, action_code)
        decision = self._evaluate(user, tenant, query)

        if not decision.allowed:
            self.audit.log_denial(AccessDenialEvent.from_decision(
                decision,
                query,
                tenant_id=tenant.id if tenant is not None else None,
                user_id=user.id,
            ))
        else:
            logger.debug(
                "Access granted",
                extra={
                    "user_id": user.id,
                    "feature": query.describe(),
                    "reason": decision.reason.value,
                },
            )
        return decision

    def _evaluate(
        self,
        user: User,
        tenant: Optional[Tenant],
        query: AccessQuery,
    ) -> AccessDecision:
        is_platform_admin = user.has_role(PLATFORM_SUPER_ADMIN)

        if is_platform_admin and not self.strict_platform_admin:
            return AccessDecision(
                allowed=True,
                reason=ReasonCode.PLATFORM_SUPER_ADMIN,
                message="Platform Super Admin access.",
            )

        if tenant is None:
            return AccessDecision(
                allowed=False,
                reason=ReasonCode.NOT_FOUND,
                message="Tenant does not exist.",
            )

        if not is_platform_admin and not self.plans.is_module_included(tenant, query.module_code):
            return AccessDecision(
                allowed=False,
                reason=ReasonCode.PLAN_RESTRICTION,
                message=f"Module '{query.module_code}' is not included in your subscription plan.",
                level=FeatureLevel.MODULE,
            )

        resolution = self.tree.resolve(query)
        if not resolution.complete:
            return AccessDecision(
                allowed=False,
                reason=ReasonCode.NOT_FOUND,
                message=(
                    f"{resolution.missing_level.label} "
                    f"'{resolution.missing_code}' does not exist."
                ),
                level=resolution.missing_level,
            )

        target = resolution.deepest

        if is_platform_admin:
            return AccessDecision(
                allowed=True,
                reason=ReasonCode.PLATFORM_SUPER_ADMIN,
                message="Platform Super Admin access.",
                level=target.level,
                node_id=target.id,
            )

        roles = user.roles_for(tenant.id)

        if any(role.name == TENANT_SUPER_ADMIN for role in roles):
            return AccessDecision(
                allowed=True,
                reason=ReasonCode.TENANT_SUPER_ADMIN,
                message="Tenant Super Admin access.",
                level=target.level,
                node_id=target.id,
            )

        if not any(self.grants.has_grant(role, target) for role in roles):
            return AccessDecision(
                allowed=False,
                reason=ReasonCode.no_access_for(target.level),
                message=_NO_ACCESS_MESSAGES[target.level],
                level=target.level,
                node_id=target.id,
            )

        return AccessDecision(
            allowed=True,
            reason=ReasonCode.SUCCESS,
            message="Access granted.",
            level=target.level,
            node_id=target.id,
        )

    def resolve_scope(
        self,
        user: User,
        node: TreeNode,
        tenant_id: Optional[str] = None,
    ) -> Optional[Scope]:
        """
        Most permissive scope among the user's roles that grant node.

        With tenant_id, only global roles and roles assigned on that tenant count.
        """
        roles = user.roles if tenant_id is None else user.roles_for(tenant_id)
        scopes = []
        for role in roles:
            scope = self.grants.scope_for(role, node)
            if scope is not None:
                scopes.append(scope)
        return Scope.most_permissive(scopes)

    def resolve_action_scope(
        self,
        user: User,
        module_code: str,
        sub_module_code: str,
        component_code: str,
        action_code: str,
        tenant_id: Optional[str] = None,
    ) -> Optional[Scope]:
        """Scope for an action addressed by codes; None when it does not resolve."""
        resolution = self.tree.resolve(
            AccessQuery(module_code, sub_module_code, component_code, action_code)
        )
        if not resolution.complete:
            return None
        return self.resolve_scope(user, resolution.deepest, tenant_id)

    def accessible_modules(self, user: User, tenant: Optional[Tenant]) -> List[TreeNode]:
        """Modules the user can open on the tenant."""
        return [
            module
            for module in self.tree.modules()
            if self._evaluate(user, tenant, AccessQuery(module.code)).allowed
        ]

    def clear_tenant_cache(self, tenant_id: str) -> None:
        self.plans.invalidate(tenant_id)
