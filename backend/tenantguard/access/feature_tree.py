"""
In-memory view of the feature catalog.

FeatureTree is built once per request (or served from the shared cache)
and is immutable afterwards. Lookups are keyed by (parent_id, code) so
resolving a four-level path is four dict lookups.

Usage:
    tree = load_feature_tree(session, cache=get_cache_backend())
    resolution = tree.resolve(AccessQuery("hrm", "employees", "list", "export"))
    if not resolution.complete:
        ...  # resolution.missing_level names the first unresolved level
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tenantguard.access.errors import AccessEvaluationError, FeatureTreeError
from tenantguard.access.models import AccessQuery
from tenantguard.cache import (
    FEATURE_TREE_CACHE_TTL_SECONDS,
    FEATURE_TREE_KEY,
    CacheBackend,
    CacheError,
)
from tenantguard.models.feature import FeatureLevel, FeatureNode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TreeNode:
    """Detached snapshot of a FeatureNode row."""
    id: str
    parent_id: Optional[str]
    level: FeatureLevel
    code: str
    name: str
    is_core: bool = False
    sort_order: int = 0

    @classmethod
    def from_row(cls, row: FeatureNode) -> "TreeNode":
        return cls(
            id=row.id,
            parent_id=row.parent_id,
            level=FeatureLevel(row.level),
            code=row.code,
            name=row.name,
            is_core=bool(row.is_core),
            sort_order=row.sort_order or 0,
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["level"] = self.level.value
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TreeNode":
        return cls(**{**data, "level": FeatureLevel(data["level"])})


@dataclass(frozen=True)
class PathResolution:
    """
    Outcome of walking the tree for a query.

    nodes holds the resolved nodes top-down. When the walk stops early,
    missing_level and missing_code describe the first level that did not
    resolve under its parent.
    """
    nodes: List[TreeNode] = field(default_factory=list)
    missing_level: Optional[FeatureLevel] = None
    missing_code: Optional[str] = None

    @property
    def complete(self) -> bool:
        return self.missing_level is None

    @property
    def deepest(self) -> Optional[TreeNode]:
        return self.nodes[-1] if self.nodes else None


class FeatureTree:
    """Immutable, validated feature catalog."""

    def __init__(self, nodes: Iterable[TreeNode]):
        self._by_id: Dict[str, TreeNode] = {}
        self._by_parent_code: Dict[tuple, TreeNode] = {}
        self._children: Dict[Optional[str], List[TreeNode]] = {}

        ordered = sorted(nodes, key=lambda n: (n.level.depth, n.sort_order, n.code))
        for node in ordered:
            self._add(node)

    def _add(self, node: TreeNode) -> None:
        if node.id in self._by_id:
            raise FeatureTreeError(f"Duplicate node id {node.id}", node_id=node.id)

        if node.parent_id is None:
            if node.level != FeatureLevel.MODULE:
                raise FeatureTreeError(
                    f"Node '{node.code}' at level {node.level.value} has no parent",
                    node_id=node.id,
                )
        else:
            parent = self._by_id.get(node.parent_id)
            if parent is None:
                raise FeatureTreeError(
                    f"Node '{node.code}' references unknown parent {node.parent_id}",
                    node_id=node.id,
                )
            if parent.level.child_level != node.level:
                raise FeatureTreeError(
                    f"Node '{node.code}' is a {node.level.value} under a "
                    f"{parent.level.value}",
                    node_id=node.id,
                )

        key = (node.parent_id, node.code)
        if key in self._by_parent_code:
            raise FeatureTreeError(
                f"Code '{node.code}' is not unique under parent {node.parent_id}",
                node_id=node.id,
            )

        self._by_id[node.id] = node
        self._by_parent_code[key] = node
        self._children.setdefault(node.parent_id, []).append(node)

    def __len__(self) -> int:
        return len(self._by_id)

    def get(self, node_id: str) -> Optional[TreeNode]:
        return self._by_id.get(node_id)

    def module(self, code: str) -> Optional[TreeNode]:
        return self._by_parent_code.get((None, code))

    def child(self, parent: TreeNode, code: str) -> Optional[TreeNode]:
        return self._by_parent_code.get((parent.id, code))

    def modules(self) -> List[TreeNode]:
        return list(self._children.get(None, []))

    def children(self, node: TreeNode) -> List[TreeNode]:
        return list(self._children.get(node.id, []))

    def ancestors(self, node: TreeNode) -> List[TreeNode]:
        """Ancestors from the module down, excluding node itself."""
        chain = []
        current = node
        while current.parent_id is not None:
            current = self._by_id[current.parent_id]
            chain.append(current)
        return list(reversed(chain))

    def descendants(self, node: TreeNode) -> List[TreeNode]:
        """All nodes below node, depth-first."""
        result = []
        stack = list(reversed(self.children(node)))
        while stack:
            current = stack.pop()
            result.append(current)
            stack.extend(reversed(self.children(current)))
        return result

    def resolve(self, query: AccessQuery) -> PathResolution:
        """Walk the tree top-down, stopping at the first missing level."""
        resolved: List[TreeNode] = []
        parent: Optional[TreeNode] = None
        for level, code in query.codes():
            node = self.module(code) if parent is None else self.child(parent, code)
            if node is None:
                return PathResolution(nodes=resolved, missing_level=level, missing_code=code)
            resolved.append(node)
            parent = node
        return PathResolution(nodes=resolved)

    def to_list(self) -> List[Dict[str, Any]]:
        return [node.to_dict() for node in self._by_id.values()]

    @classmethod
    def from_list(cls, data: List[Dict[str, Any]]) -> "FeatureTree":
        return cls(TreeNode.from_dict(item) for item in data)


def _active_nodes(rows: Iterable[FeatureNode]) -> List[TreeNode]:
    """
    Snapshot active rows, dropping nodes whose ancestors are inactive.

    A deactivated module hides its whole subtree.
    """
    by_id = {row.id: row for row in rows}
    kept: Dict[str, TreeNode] = {}

    def reachable(row: FeatureNode) -> bool:
        current = row
        while current is not None:
            if not current.is_active:
                return False
            if current.parent_id is None:
                return True
            current = by_id.get(current.parent_id)
        return False

    for row in by_id.values():
        if reachable(row):
            kept[row.id] = TreeNode.from_row(row)
    return list(kept.values())


def build_feature_tree(session: Session) -> FeatureTree:
    """Build a tree from the store, bypassing any cache."""
    try:
        rows = session.query(FeatureNode).all()
    except SQLAlchemyError as e:
        raise AccessEvaluationError(None, "Failed to load feature catalog", cause=e) from e
    return FeatureTree(_active_nodes(rows))


def load_feature_tree(session: Session, cache: Optional[CacheBackend] = None) -> FeatureTree:
    """
    Load the feature tree, serving it from cache when possible.

    Cache failures are logged and the tree is rebuilt from the store.
    """
    if cache is not None:
        try:
            cached = cache.get(FEATURE_TREE_KEY)
        except CacheError as e:
            logger.warning(f"Feature tree cache read failed, loading from store: {e}")
            cached = None
        if cached is not None:
            try:
                return FeatureTree.from_list(cached)
            except (FeatureTreeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Discarding invalid cached feature tree: {e}")

    tree = build_feature_tree(session)

    if cache is not None:
        try:
            cache.set(FEATURE_TREE_KEY, tree.to_list(), FEATURE_TREE_CACHE_TTL_SECONDS)
        except CacheError as e:
            logger.warning(f"Feature tree cache write failed: {e}")

    return tree


def invalidate_feature_tree(cache: CacheBackend) -> None:
    """Drop the cached tree. Called by the catalog sync after it writes."""
    try:
        cache.delete(FEATURE_TREE_KEY)
        logger.info("Invalidated cached feature tree")
    except CacheError as e:
        logger.warning(f"Feature tree cache invalidation failed: {e}")
