"""
Usage metering and quota enforcement.

This package provides:
- UsageLedger: append-only usage records with a cached per-period aggregate
- QuotaPolicy: limit resolution (tenant override -> plan override -> tier default)
- QuotaEnforcer: base allow/deny against limits
- GracePeriodEnforcer: warning / grace / block state machine
- QuotaNotifier: notification seam (outbox-backed by default)

Limits are Limit values; the -1 "unlimited" sentinel only appears at
storage and config boundaries.
"""

from tenantguard.quotas.models import (
    EnforcementSettings,
    Limit,
    QuotaDecision,
    QuotaState,
    QuotaStatus,
    QuotaUsage,
    warning_level_for,
)
from tenantguard.quotas.errors import QuotaError, QuotaEvaluationError, QuotaExceededError
from tenantguard.quotas.metrics import METRICS, QUOTA_METRICS, MetricDefinition
from tenantguard.quotas.ledger import BillingPeriod, ReconcileResult, UsageLedger, billing_period
from tenantguard.quotas.policy import QuotaPolicy
from tenantguard.quotas.enforcer import QuotaEnforcer
from tenantguard.quotas.notifier import OutboxQuotaNotifier, QuotaNotifier
from tenantguard.quotas.grace import GracePeriodEnforcer

__all__ = [
    "EnforcementSettings",
    "Limit",
    "QuotaDecision",
    "QuotaState",
    "QuotaStatus",
    "QuotaUsage",
    "warning_level_for",
    "QuotaError",
    "QuotaEvaluationError",
    "QuotaExceededError",
    "METRICS",
    "QUOTA_METRICS",
    "MetricDefinition",
    "BillingPeriod",
    "ReconcileResult",
    "UsageLedger",
    "billing_period",
    "QuotaPolicy",
    "QuotaEnforcer",
    "OutboxQuotaNotifier",
    "QuotaNotifier",
    "GracePeriodEnforcer",
]
