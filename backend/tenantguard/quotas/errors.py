"""
Structured error classes for quota enforcement.
"""

from typing import Optional

from fastapi import status


class QuotaError(Exception):
    """Base exception for quota errors."""
    pass


class QuotaEvaluationError(QuotaError):
    """
    Raised when usage or limits cannot be read (fail-closed).

    Carries a machine-readable error_code for the UI to display.
    """

    def __init__(
        self,
        tenant_id: Optional[str],
        metric: Optional[str],
        detail: str,
        cause: Optional[Exception] = None,
    ):
        self.tenant_id = tenant_id
        self.metric = metric
        self.detail = detail
        self.cause = cause
        self.error_code = "QUOTA_EVAL_FAILED"
        super().__init__(f"Quota evaluation failed for {tenant_id}/{metric}: {detail}")

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.detail,
            "tenant_id": self.tenant_id,
            "metric": self.metric,
        }


class QuotaExceededError(QuotaError):
    """
    Raised by API dependencies when a quota decision denies creation.

    Services return QuotaDecision values; only the HTTP seam raises.
    """

    def __init__(
        self,
        tenant_id: str,
        metric: str,
        reason: str,
        decision: Optional[dict] = None,
        http_status: int = status.HTTP_402_PAYMENT_REQUIRED,
    ):
        self.tenant_id = tenant_id
        self.metric = metric
        self.reason = reason
        self.decision = decision or {}
        self.http_status = http_status
        super().__init__(f"Quota '{metric}' exceeded for {tenant_id}: {reason}")

    def to_dict(self) -> dict:
        return {
            "error": "quota_exceeded",
            "metric": self.metric,
            "reason": self.reason,
            "decision": self.decision,
        }
