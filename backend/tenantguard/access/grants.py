"""
Role grant lookups and administration.

Grants are exact-node: holding a grant on a module says nothing about the
module's children. Administrators who want a whole subtree use
grant_subtree(), which writes an explicit grant for every node.

A RoleGrantStore instance memoises grants per role and is meant to live
for one request.
"""

import logging
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tenantguard.access.errors import AccessEvaluationError
from tenantguard.access.feature_tree import FeatureTree, TreeNode
from tenantguard.access.models import Scope
from tenantguard.models.feature import FeatureLevel
from tenantguard.models.role import Role, RoleFeatureGrant

logger = logging.getLogger(__name__)

ActionSelection = Union[str, Dict[str, str]]


class RoleGrantStore:
    """Resolves and edits a role's feature grants."""

    def __init__(self, session: Session):
        self.db = session
        self._memo: Dict[str, Dict[str, Scope]] = {}

    def grants_for_role(self, role: Role) -> Dict[str, Scope]:
        """Map of feature node id to scope for one role."""
        cached = self._memo.get(role.id)
        if cached is not None:
            return cached

        try:
            rows = (
                self.db.query(RoleFeatureGrant.feature_node_id, RoleFeatureGrant.scope)
                .filter(RoleFeatureGrant.role_id == role.id)
                .all()
            )
        except SQLAlchemyError as e:
            raise AccessEvaluationError(
                role.tenant_id, f"Failed to load grants for role {role.id}", cause=e
            ) from e

        grants = {node_id: Scope(scope) for node_id, scope in rows}
        self._memo[role.id] = grants
        return grants

    def has_grant(self, role: Role, node: TreeNode) -> bool:
        return node.id in self.grants_for_role(role)

    def scope_for(self, role: Role, node: TreeNode) -> Optional[Scope]:
        return self.grants_for_role(role).get(node.id)

    def forget(self, role: Role) -> None:
        self._memo.pop(role.id, None)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def sync_role_grants(
        self,
        role: Role,
        modules: Iterable[str] = (),
        sub_modules: Iterable[str] = (),
        components: Iterable[str] = (),
        actions: Iterable[ActionSelection] = (),
    ) -> int:
        """
        Replace a role's grants with a UI selection.

        modules, sub_modules and components are node ids granted with scope
        'all'. actions are node ids or {"id": ..., "scope": ...} dicts.

        Returns:
            Number of grants written
        """
        selection: Dict[str, Scope] = {}
        for node_id in list(modules) + list(sub_modules) + list(components):
            selection[node_id] = Scope.ALL
        for action in actions:
            if isinstance(action, dict):
                selection[action["id"]] = Scope(action.get("scope", Scope.ALL.value))
            else:
                selection[action] = Scope.ALL

        self.db.query(RoleFeatureGrant).filter(
            RoleFeatureGrant.role_id == role.id
        ).delete(synchronize_session=False)
        for node_id, scope in selection.items():
            self.db.add(RoleFeatureGrant(
                role_id=role.id,
                feature_node_id=node_id,
                scope=scope.value,
            ))
        self.db.flush()
        self.forget(role)

        logger.info(
            "Role grants synchronised",
            extra={"role_id": role.id, "grant_count": len(selection)},
        )
        return len(selection)

    def grant(self, role: Role, node: TreeNode, scope: Scope = Scope.ALL) -> None:
        """Grant a single node, updating the scope of an existing grant."""
        existing = (
            self.db.query(RoleFeatureGrant)
            .filter(
                RoleFeatureGrant.role_id == role.id,
                RoleFeatureGrant.feature_node_id == node.id,
            )
            .first()
        )
        if existing is not None:
            existing.scope = scope.value
        else:
            self.db.add(RoleFeatureGrant(
                role_id=role.id,
                feature_node_id=node.id,
                scope=scope.value,
            ))
        self.db.flush()
        self.forget(role)

    def grant_subtree(
        self,
        role: Role,
        tree: FeatureTree,
        node: TreeNode,
        scope: Scope = Scope.ALL,
    ) -> int:
        """Grant node and every descendant explicitly."""
        targets = [node] + tree.descendants(node)
        existing = self.grants_for_role(role)
        for target in targets:
            if target.id in existing:
                continue
            self.db.add(RoleFeatureGrant(
                role_id=role.id,
                feature_node_id=target.id,
                scope=scope.value,
            ))
        self.db.flush()
        self.forget(role)
        return len(targets)

    def revoke_subtree(self, role: Role, tree: FeatureTree, node: TreeNode) -> int:
        """Remove grants on node and every descendant."""
        ids = [node.id] + [d.id for d in tree.descendants(node)]
        deleted = (
            self.db.query(RoleFeatureGrant)
            .filter(
                RoleFeatureGrant.role_id == role.id,
                RoleFeatureGrant.feature_node_id.in_(ids),
            )
            .delete(synchronize_session=False)
        )
        self.db.flush()
        self.forget(role)
        return deleted

    def role_access_tree(self, role: Role, tree: FeatureTree) -> Dict[str, List[dict]]:
        """Grants grouped by level, for the role editor."""
        result: Dict[str, List[dict]] = {level.value: [] for level in FeatureLevel}
        for node_id, scope in self.grants_for_role(role).items():
            node = tree.get(node_id)
            if node is None:
                continue
            result[node.level.value].append({
                "id": node.id,
                "code": node.code,
                "name": node.name,
                "parent_id": node.parent_id,
                "scope": scope.value,
            })
        return result

    def accessible_module_ids(self, role: Role, tree: FeatureTree) -> List[str]:
        grants = self.grants_for_role(role)
        return [m.id for m in tree.modules() if m.id in grants]
