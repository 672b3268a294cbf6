"""
Database models for the feature catalog, roles, plans, tenants,
usage metering and quota enforcement.
"""

from tenantguard.models.base import TimestampMixin, TenantScopedMixin
from tenantguard.models.feature import FeatureNode, FeatureLevel
from tenantguard.models.role import Role, RoleFeatureGrant
from tenantguard.models.user import User
from tenantguard.models.user_role_assignment import UserRoleAssignment
from tenantguard.models.plan import Plan, PlanModule, PlanTier
from tenantguard.models.tenant import Tenant, TenantStatus
from tenantguard.models.usage import UsageRecord, MetricType
from tenantguard.models.quota import QuotaWarning, QuotaEnforcementSetting, WarningLevel
from tenantguard.models.notification import (
    QuotaNotification,
    NotificationKind,
    NotificationChannel,
)

__all__ = [
    "TimestampMixin",
    "TenantScopedMixin",
    "FeatureNode",
    "FeatureLevel",
    "Role",
    "RoleFeatureGrant",
    "User",
    "UserRoleAssignment",
    "Plan",
    "PlanModule",
    "PlanTier",
    "Tenant",
    "TenantStatus",
    "UsageRecord",
    "MetricType",
    "QuotaWarning",
    "QuotaEnforcementSetting",
    "WarningLevel",
    "QuotaNotification",
    "NotificationKind",
    "NotificationChannel",
]
