"""
Access audit logging - record every access denial.

Provides:
- AccessDenialEvent: structured event for a denied decision
- AccessAuditLogger: writes events to the dedicated audit logger

Denials are written to the "tenantguard.access.audit" logger so log
shipping can route them separately from application logs.
"""

import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from tenantguard.access.models import AccessDecision, AccessQuery

logger = logging.getLogger(__name__)

audit_logger = logging.getLogger("tenantguard.access.audit")


@dataclass
class AccessDenialEvent:
    """Structured event for an access denial."""

    tenant_id: Optional[str]
    user_id: Optional[str]
    feature: str
    reason: str
    message: str
    level: Optional[str] = None
    endpoint: Optional[str] = None
    method: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_decision(
        cls,
        decision: AccessDecision,
        query: AccessQuery,
        tenant_id: Optional[str],
        user_id: Optional[str],
        **kwargs,
    ) -> "AccessDenialEvent":
        return cls(
            tenant_id=tenant_id,
            user_id=user_id,
            feature=query.describe(),
            reason=decision.reason.value,
            message=decision.message,
            level=decision.level.value if decision.level else None,
            **kwargs,
        )


class AccessAuditLogger:
    """Writes access denial events."""

    def log_denial(self, event: AccessDenialEvent) -> None:
        # "message" is reserved on LogRecord
        payload = event.to_dict()
        payload["denial_message"] = payload.pop("message")
        audit_logger.info(
            "access_denied",
            extra={"event_type": "access_denied", **payload},
        )


_audit_logger = AccessAuditLogger()


def get_access_audit_logger() -> AccessAuditLogger:
    return _audit_logger
