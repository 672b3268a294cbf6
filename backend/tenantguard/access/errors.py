"""
Structured error classes for access evaluation.

Policy outcomes (denied, not found) are returned as AccessDecision values.
Only infrastructure failures and programming errors are raised.
"""

from typing import Optional


class AccessError(Exception):
    """Base exception for access evaluation errors."""
    pass


class AccessEvaluationError(AccessError):
    """
    Raised when access evaluation fails (fail-closed).

    Carries a machine-readable error_code for the UI to display.
    """

    def __init__(
        self,
        tenant_id: Optional[str],
        detail: str,
        cause: Optional[Exception] = None,
    ):
        self.tenant_id = tenant_id
        self.detail = detail
        self.cause = cause
        self.error_code = "ACCESS_EVAL_FAILED"
        super().__init__(f"Access evaluation failed for {tenant_id}: {detail}")

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.detail,
            "tenant_id": self.tenant_id,
        }


class FeatureTreeError(AccessError):
    """Raised when the feature catalog violates its structural invariants."""

    def __init__(self, detail: str, node_id: Optional[str] = None):
        self.detail = detail
        self.node_id = node_id
        super().__init__(detail)


class InvalidAccessQuery(AccessError, ValueError):
    """
    Raised for malformed queries, e.g. a component code without the
    submodule it belongs to. This is a caller bug, not a policy outcome.
    """
    pass
