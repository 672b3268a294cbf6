"""
Grace-period quota enforcement.

Wraps QuotaEnforcer with a warning / grace state machine:

    OK        usage below the limit (warning/critical reported, not stored)
    WARNING   at/over the limit but below block_pct; warning stored at most
    CRITICAL  once per 24h and notified
    GRACE     at/over block_pct, fewer than grace_days since the anchor
    BLOCKED   at/over block_pct, grace_days or more since the anchor

The anchor is the oldest non-dismissed QuotaWarning for the tenant and
metric. Its expiry is ignored for day counting. Dismissing the anchor
makes the next check create a new one, which restarts the grace period.

Notifications are queued through a QuotaNotifier. Notifier failures are
logged and never change the decision.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tenantguard.cache import CacheBackend
from tenantguard.models.base import as_utc, utcnow
from tenantguard.models.quota import QuotaWarning
from tenantguard.models.tenant import Tenant
from tenantguard.quotas.enforcer import QuotaEnforcer
from tenantguard.quotas.errors import QuotaEvaluationError
from tenantguard.quotas.metrics import QUOTA_METRICS
from tenantguard.quotas.models import (
    EnforcementSettings,
    Limit,
    QuotaDecision,
    QuotaState,
    QuotaStatus,
    QuotaUsage,
    warning_level_for,
)
from tenantguard.quotas.notifier import OutboxQuotaNotifier, QuotaNotifier

logger = logging.getLogger(__name__)

WARNING_DEDUPE_WINDOW = timedelta(hours=24)
REMINDER_INTERVAL = timedelta(hours=24)
SECONDS_PER_DAY = 86400


def days_between(start: datetime, end: datetime) -> int:
    """Whole days elapsed from start to end, never negative."""
    elapsed = (as_utc(end) - as_utc(start)).total_seconds()
    return max(0, math.floor(elapsed / SECONDS_PER_DAY))


class GracePeriodEnforcer:
    """Quota enforcement with warnings and a grace window before blocking."""

    def __init__(
        self,
        session: Session,
        cache: Optional[CacheBackend] = None,
        enforcer: Optional[QuotaEnforcer] = None,
        notifier: Optional[QuotaNotifier] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = session
        self.enforcer = enforcer or QuotaEnforcer(session, cache)
        self.notifier = notifier or OutboxQuotaNotifier(session)
        self.clock = clock

    @property
    def policy(self):
        return self.enforcer.policy

    def can_create_with_grace_period(self, tenant: Optional[Tenant], metric: str) -> bool:
        return self.evaluate(tenant, metric).allowed

    def evaluate(self, tenant: Optional[Tenant], metric: str) -> QuotaDecision:
        """
        Decide whether the tenant may create one more unit of metric.

        Raises:
            QuotaEvaluationError: usage, limits or warnings could not be read or stored
        """
        if tenant is None:
            return QuotaDecision(
                allowed=False,
                state=QuotaState.NOT_FOUND,
                metric=metric,
                current=0,
                limit=Limit.bounded(0),
                reason="Tenant does not exist.",
            )

        limit = self.enforcer.limit(tenant, metric)
        if limit.is_unlimited:
            return QuotaDecision(
                allowed=True,
                state=QuotaState.OK,
                metric=metric,
                current=0,
                limit=limit,
                reason="Unlimited.",
            )

        current = self.enforcer.current_usage(tenant, metric)
        settings = self.policy.settings_for(metric)

        if limit.value == 0:
            logger.info(
                "Quota blocked by zero limit",
                extra={"tenant_id": tenant.id, "metric": metric},
            )
            return QuotaDecision(
                allowed=False,
                state=QuotaState.BLOCKED,
                metric=metric,
                current=current,
                limit=limit,
                reason=f"Your plan does not include '{metric}'.",
                percentage=limit.percentage(current),
            )

        percentage = limit.percentage(current)

        if current < limit.value:
            status = settings.status_for(percentage)
            state = {
                QuotaStatus.WARNING: QuotaState.WARNING,
                QuotaStatus.CRITICAL: QuotaState.CRITICAL,
            }.get(status, QuotaState.OK)
            return QuotaDecision(
                allowed=True,
                state=state,
                metric=metric,
                current=current,
                limit=limit,
                reason="Within limit.",
                percentage=percentage,
                warning_level=warning_level_for(percentage) if state != QuotaState.OK else None,
            )

        if percentage >= settings.block_pct:
            return self._evaluate_grace(tenant, metric, current, limit, percentage, settings)

        return self._evaluate_warning(tenant, metric, current, limit, percentage, settings)

    def _evaluate_grace(
        self,
        tenant: Tenant,
        metric: str,
        current: float,
        limit: Limit,
        percentage: float,
        settings: EnforcementSettings,
    ) -> QuotaDecision:
        now = self.clock()
        level = warning_level_for(percentage)
        anchor = self.first_warning(tenant, metric)

        if anchor is None:
            self._create_warning(tenant, metric, percentage, settings, now, notified=True)
            self._notify(
                self.notifier.send_warning,
                tenant,
                metric,
                percentage,
                settings.grace_days,
                settings,
            )
            return QuotaDecision(
                allowed=True,
                state=QuotaState.GRACE,
                metric=metric,
                current=current,
                limit=limit,
                reason=f"Quota limit reached; {settings.grace_days} day grace period started.",
                percentage=percentage,
                warning_level=level,
                days_in_grace=0,
                days_remaining=settings.grace_days,
            )

        days_in_grace = days_between(anchor.created_at, now)
        days_remaining = max(0, settings.grace_days - days_in_grace)

        if days_in_grace < settings.grace_days:
            last_notified = as_utc(anchor.last_notified_at)
            if last_notified is None or now - last_notified >= REMINDER_INTERVAL:
                try:
                    anchor.last_notified_at = now
                    self.db.flush()
                except SQLAlchemyError as e:
                    raise QuotaEvaluationError(
                        tenant.id, metric, "Failed to update quota warning", cause=e
                    ) from e
                self._notify(
                    self.notifier.send_grace_reminder,
                    tenant,
                    metric,
                    percentage,
                    days_remaining,
                    settings,
                )
            return QuotaDecision(
                allowed=True,
                state=QuotaState.GRACE,
                metric=metric,
                current=current,
                limit=limit,
                reason=f"Quota limit reached; {days_remaining} day(s) of grace remaining.",
                percentage=percentage,
                warning_level=level,
                days_in_grace=days_in_grace,
                days_remaining=days_remaining,
            )

        logger.warning(
            "Quota blocked after grace period",
            extra={
                "tenant_id": tenant.id,
                "metric": metric,
                "days_in_grace": days_in_grace,
                "grace_days": settings.grace_days,
            },
        )
        return QuotaDecision(
            allowed=False,
            state=QuotaState.BLOCKED,
            metric=metric,
            current=current,
            limit=limit,
            reason=(
                f"Quota limit for '{metric}' exceeded and the {settings.grace_days} day "
                f"grace period has ended."
            ),
            percentage=percentage,
            warning_level=level,
            days_in_grace=days_in_grace,
            days_remaining=0,
        )

    def _evaluate_warning(
        self,
        tenant: Tenant,
        metric: str,
        current: float,
        limit: Limit,
        percentage: float,
        settings: EnforcementSettings,
    ) -> QuotaDecision:
        now = self.clock()
        level = warning_level_for(percentage)

        if percentage >= settings.warning_pct and not self._has_recent_warning(tenant, metric, now):
            self._create_warning(tenant, metric, percentage, settings, now, notified=True)
            self._notify(self.notifier.send_warning, tenant, metric, percentage, None, settings)

        state = QuotaState.CRITICAL if percentage >= settings.critical_pct else QuotaState.WARNING
        return QuotaDecision(
            allowed=True,
            state=state,
            metric=metric,
            current=current,
            limit=limit,
            reason="Approaching quota block threshold.",
            percentage=percentage,
            warning_level=level,
        )

    def first_warning(self, tenant: Tenant, metric: str) -> Optional[QuotaWarning]:
        """Oldest non-dismissed warning: the grace anchor."""
        try:
            return (
                self.db.query(QuotaWarning)
                .filter(
                    QuotaWarning.tenant_id == tenant.id,
                    QuotaWarning.metric == metric,
                    QuotaWarning.is_dismissed.is_(False),
                )
                .order_by(QuotaWarning.created_at.asc())
                .first()
            )
        except SQLAlchemyError as e:
            raise QuotaEvaluationError(tenant.id, metric, "Failed to load quota warnings", cause=e) from e

    def _has_recent_warning(self, tenant: Tenant, metric: str, now: datetime) -> bool:
        try:
            recent = (
                self.db.query(QuotaWarning.id)
                .filter(
                    QuotaWarning.tenant_id == tenant.id,
                    QuotaWarning.metric == metric,
                    QuotaWarning.created_at >= now - WARNING_DEDUPE_WINDOW,
                )
                .first()
            )
        except SQLAlchemyError as e:
            raise QuotaEvaluationError(tenant.id, metric, "Failed to load quota warnings", cause=e) from e
        return recent is not None

    def _create_warning(
        self,
        tenant: Tenant,
        metric: str,
        percentage: float,
        settings: EnforcementSettings,
        now: datetime,
        notified: bool,
    ) -> QuotaWarning:
        warning = QuotaWarning(
            tenant_id=tenant.id,
            metric=metric,
            percentage_used=round(percentage, 2),
            level=warning_level_for(percentage).value,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(days=settings.grace_days),
            last_notified_at=now if notified else None,
        )
        try:
            self.db.add(warning)
            self.db.flush()
        except SQLAlchemyError as e:
            raise QuotaEvaluationError(tenant.id, metric, "Failed to store quota warning", cause=e) from e
        logger.info(
            "Quota warning created",
            extra={
                "tenant_id": tenant.id,
                "metric": metric,
                "percentage": round(percentage, 2),
                "level": warning.level,
            },
        )
        return warning

    def _notify(
        self,
        send,
        tenant: Tenant,
        metric: str,
        percentage: float,
        days_remaining: Optional[int],
        settings: EnforcementSettings,
    ) -> None:
        try:
            send(
                tenant,
                metric,
                percentage,
                days_remaining,
                send_email=settings.send_email,
                send_sms=settings.send_sms,
            )
        except Exception as e:
            logger.error(
                "Quota notification failed",
                extra={"tenant_id": tenant.id, "metric": metric, "error": str(e)},
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Warning administration
    # ------------------------------------------------------------------

    def dismiss_warning(self, warning_id: str) -> Optional[QuotaWarning]:
        """
        Raises:
            QuotaEvaluationError: the warning could not be loaded or updated
        """
        try:
            warning = self.db.query(QuotaWarning).filter(QuotaWarning.id == warning_id).first()
            if warning is None:
                return None
            warning.dismiss(self.clock())
            self.db.flush()
        except SQLAlchemyError as e:
            raise QuotaEvaluationError(None, None, "Failed to dismiss quota warning", cause=e) from e
        logger.info(
            "Quota warning dismissed",
            extra={"warning_id": warning.id, "tenant_id": warning.tenant_id, "metric": warning.metric},
        )
        return warning

    def active_warnings(self, tenant: Tenant) -> List[QuotaWarning]:
        """Non-dismissed, non-expired warnings, newest first."""
        now = self.clock()
        rows = (
            self.db.query(QuotaWarning)
            .filter(
                QuotaWarning.tenant_id == tenant.id,
                QuotaWarning.is_dismissed.is_(False),
            )
            .order_by(QuotaWarning.created_at.desc())
            .all()
        )
        return [w for w in rows if w.is_active(now)]

    def quota_summary(self, tenant: Tenant) -> dict:
        """Per-metric usage with status and warning level."""
        summary = {}
        for metric in QUOTA_METRICS:
            limit = self.enforcer.limit(tenant, metric)
            used = 0 if limit.is_unlimited else self.enforcer.current_usage(tenant, metric)
            settings = self.policy.settings_for(metric)
            percentage = limit.percentage(used)
            usage = QuotaUsage(
                metric=metric,
                limit=limit,
                used=used,
                status=settings.status_for(percentage),
                warning_level=warning_level_for(percentage) if percentage is not None else None,
            )
            summary[metric] = usage.to_dict()
        return summary
