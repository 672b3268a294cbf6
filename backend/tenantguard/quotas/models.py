"""
Value types for quota evaluation.

Limit replaces the -1 "unlimited" sentinel with an explicit variant; the
sentinel is only accepted and produced at storage/config boundaries.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from tenantguard.models.quota import WarningLevel

UNLIMITED_SENTINEL = -1


@dataclass(frozen=True)
class Limit:
    """
    A quota limit: either unlimited or a non-negative bound.

    value is None for unlimited.
    """
    value: Optional[float] = None

    def __post_init__(self):
        if self.value is not None and self.value < 0:
            raise ValueError(f"Bounded limit must be >= 0, got {self.value}")

    @classmethod
    def unlimited(cls) -> "Limit":
        return cls(None)

    @classmethod
    def bounded(cls, value: Union[int, float]) -> "Limit":
        return cls(value)

    @classmethod
    def from_raw(cls, raw: Union[int, float, str, None]) -> "Limit":
        """Parse a stored/configured value where -1 means unlimited."""
        if raw is None:
            raise ValueError("Limit value is required")
        number = float(raw)
        if number == UNLIMITED_SENTINEL:
            return cls.unlimited()
        if number.is_integer():
            return cls.bounded(int(number))
        return cls.bounded(number)

    @property
    def is_unlimited(self) -> bool:
        return self.value is None

    def allows(self, current: float) -> bool:
        """True when one more unit can be consumed."""
        return self.is_unlimited or current < self.value

    def percentage(self, current: float) -> Optional[float]:
        """
        Usage as a percentage of the limit.

        None for unlimited limits. A zero bound is reported as 100% once
        anything is used and 0% otherwise.
        """
        if self.is_unlimited:
            return None
        if self.value == 0:
            return 100.0 if current > 0 else 0.0
        return current / self.value * 100

    def remaining(self, current: float) -> Optional[float]:
        if self.is_unlimited:
            return None
        return max(0, self.value - current)

    def to_raw(self) -> Union[int, float]:
        return UNLIMITED_SENTINEL if self.is_unlimited else self.value

    def __str__(self) -> str:
        return "unlimited" if self.is_unlimited else f"{self.value:g}"


class QuotaState(str, Enum):
    """Where a tenant stands for one metric."""
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"
    GRACE = "grace"
    BLOCKED = "blocked"
    NOT_FOUND = "not_found"


class QuotaStatus(str, Enum):
    """Summary status shown on quota dashboards."""
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"
    EXCEEDED = "exceeded"


def warning_level_for(percentage: float) -> WarningLevel:
    if percentage >= 100:
        return WarningLevel.CRITICAL
    if percentage >= 90:
        return WarningLevel.HIGH
    if percentage >= 80:
        return WarningLevel.MEDIUM
    return WarningLevel.LOW


@dataclass(frozen=True)
class EnforcementSettings:
    """Per-metric thresholds, in percent of the limit, plus grace length."""
    warning_pct: float = 80
    critical_pct: float = 90
    block_pct: float = 100
    grace_days: int = 10
    send_email: bool = True
    send_sms: bool = True

    def status_for(self, percentage: Optional[float]) -> QuotaStatus:
        if percentage is None:
            return QuotaStatus.OK
        if percentage >= self.block_pct:
            return QuotaStatus.EXCEEDED
        if percentage >= self.critical_pct:
            return QuotaStatus.CRITICAL
        if percentage >= self.warning_pct:
            return QuotaStatus.WARNING
        return QuotaStatus.OK

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class QuotaDecision:
    """
    Result of a quota evaluation.

    percentage is None for unlimited limits. days_in_grace and
    days_remaining are set only when a grace anchor is involved.
    """
    allowed: bool
    state: QuotaState
    metric: str
    current: float
    limit: Limit
    reason: str = ""
    percentage: Optional[float] = None
    warning_level: Optional[WarningLevel] = None
    days_in_grace: Optional[int] = None
    days_remaining: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "state": self.state.value,
            "metric": self.metric,
            "current": self.current,
            "limit": self.limit.to_raw(),
            "unlimited": self.limit.is_unlimited,
            "reason": self.reason,
            "percentage": round(self.percentage, 2) if self.percentage is not None else None,
            "warning_level": self.warning_level.value if self.warning_level else None,
            "days_in_grace": self.days_in_grace,
            "days_remaining": self.days_remaining,
        }


@dataclass(frozen=True)
class QuotaUsage:
    """One metric's line in a quota summary."""
    metric: str
    limit: Limit
    used: float
    status: QuotaStatus = QuotaStatus.OK
    warning_level: Optional[WarningLevel] = None

    @property
    def percentage(self) -> Optional[float]:
        return self.limit.percentage(self.used)

    def to_dict(self) -> Dict[str, Any]:
        percentage = self.percentage
        remaining = self.limit.remaining(self.used)
        return {
            "metric": self.metric,
            "limit": self.limit.to_raw(),
            "used": self.used,
            "remaining": UNLIMITED_SENTINEL if remaining is None else remaining,
            "percentage": round(percentage, 2) if percentage is not None else 0,
            "unlimited": self.limit.is_unlimited,
            "status": self.status.value,
            "warning_level": self.warning_level.value if self.warning_level else None,
        }
