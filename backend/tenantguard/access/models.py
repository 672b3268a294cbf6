"""
Value types for access decisions.

All types here are immutable and safe to cache or return from APIs.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from tenantguard.access.errors import InvalidAccessQuery
from tenantguard.models.feature import FeatureLevel


class Scope(str, Enum):
    """Data-visibility scope of a grant, ordered own < team < department < all."""
    OWN = "own"
    TEAM = "team"
    DEPARTMENT = "department"
    ALL = "all"

    @property
    def rank(self) -> int:
        return _SCOPE_RANK[self]

    @classmethod
    def most_permissive(cls, scopes: Iterable["Scope"]) -> Optional["Scope"]:
        best = None
        for scope in scopes:
            if best is None or scope.rank > best.rank:
                best = scope
        return best


_SCOPE_RANK = {
    Scope.OWN: 0,
    Scope.TEAM: 1,
    Scope.DEPARTMENT: 2,
    Scope.ALL: 3,
}


class ReasonCode(str, Enum):
    """Machine-readable outcome of an access decision."""
    PLATFORM_SUPER_ADMIN = "platform_super_admin"
    TENANT_SUPER_ADMIN = "tenant_super_admin"
    PLAN_RESTRICTION = "plan_restriction"
    NOT_FOUND = "not_found"
    NO_MODULE_ACCESS = "no_module_access"
    NO_SUBMODULE_ACCESS = "no_submodule_access"
    NO_COMPONENT_ACCESS = "no_component_access"
    NO_ACTION_ACCESS = "no_action_access"
    SUCCESS = "success"

    @classmethod
    def no_access_for(cls, level: FeatureLevel) -> "ReasonCode":
        return _NO_ACCESS_BY_LEVEL[level]


_NO_ACCESS_BY_LEVEL = {
    FeatureLevel.MODULE: ReasonCode.NO_MODULE_ACCESS,
    FeatureLevel.SUBMODULE: ReasonCode.NO_SUBMODULE_ACCESS,
    FeatureLevel.COMPONENT: ReasonCode.NO_COMPONENT_ACCESS,
    FeatureLevel.ACTION: ReasonCode.NO_ACTION_ACCESS,
}


@dataclass(frozen=True)
class AccessDecision:
    """
    Result of AccessDecisionEngine.decide().

    level is the deepest level the decision was made at (None for
    decisions taken before the tree walk). node_id is the deepest
    resolved catalog node, when one was resolved.
    """
    allowed: bool
    reason: ReasonCode
    message: str
    level: Optional[FeatureLevel] = None
    node_id: Optional[str] = None

    @property
    def is_not_found(self) -> bool:
        return self.reason == ReasonCode.NOT_FOUND

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["reason"] = self.reason.value
        d["level"] = self.level.value if self.level else None
        return d


@dataclass(frozen=True)
class AccessQuery:
    """The codes a caller asked about, top-down."""
    module_code: str
    sub_module_code: Optional[str] = None
    component_code: Optional[str] = None
    action_code: Optional[str] = None

    def __post_init__(self):
        if not self.module_code:
            raise InvalidAccessQuery("module_code is required")
        seen_gap = False
        for code in (self.sub_module_code, self.component_code, self.action_code):
            if code is None:
                seen_gap = True
            elif seen_gap:
                raise InvalidAccessQuery(
                    f"Query {self!r} skips a level; every code needs its parent code"
                )

    def codes(self) -> list[tuple[FeatureLevel, str]]:
        pairs = [
            (FeatureLevel.MODULE, self.module_code),
            (FeatureLevel.SUBMODULE, self.sub_module_code),
            (FeatureLevel.COMPONENT, self.component_code),
            (FeatureLevel.ACTION, self.action_code),
        ]
        return [(level, code) for level, code in pairs if code is not None]

    def describe(self) -> str:
        return ".".join(code for _, code in self.codes())
