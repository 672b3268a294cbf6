"""
Usage Reconciliation Worker.

Background job that keeps cached usage aggregates honest:
1. Recomputes every tenant's per-metric aggregate from usage_records and
   overwrites the cache, counting drift
2. Logs tenants at or above the approaching-limit threshold

Run as: python -m tenantguard.workers.usage_reconcile_job

Configuration:
- USAGE_RECONCILE_INTERVAL: Seconds between cycles (default: 300)
- USAGE_RECONCILE_BATCH_SIZE: Tenants per cycle (default: 200)
"""

import os
import sys
import signal
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from tenantguard.cache import CacheBackend, get_cache_backend
from tenantguard.database.session import session_scope
from tenantguard.models.tenant import Tenant, TenantStatus
from tenantguard.quotas.enforcer import QuotaEnforcer
from tenantguard.quotas.errors import QuotaEvaluationError
from tenantguard.quotas.ledger import UsageLedger
from tenantguard.quotas.metrics import QUOTA_METRICS

logger = logging.getLogger(__name__)

POLL_INTERVAL = int(os.getenv("USAGE_RECONCILE_INTERVAL", "300"))
BATCH_SIZE = int(os.getenv("USAGE_RECONCILE_BATCH_SIZE", "200"))

_shutdown = False


def _handle_signal(signum, frame):
    global _shutdown
    logger.info("Shutdown signal received", extra={"signal": signum})
    _shutdown = True


@dataclass
class ReconciliationStats:
    """Track reconciliation run statistics."""

    tenants_reconciled: int = 0
    aggregates_checked: int = 0
    drift_detected: int = 0
    tenants_near_limit: int = 0
    errors: int = 0
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        duration = (datetime.now(timezone.utc) - self.start_time).total_seconds()
        return {
            "tenants_reconciled": self.tenants_reconciled,
            "aggregates_checked": self.aggregates_checked,
            "drift_detected": self.drift_detected,
            "tenants_near_limit": self.tenants_near_limit,
            "errors": self.errors,
            "duration_seconds": round(duration, 2),
        }


def _active_tenants(db: Session, limit: int) -> list:
    return (
        db.query(Tenant)
        .filter(Tenant.status == TenantStatus.ACTIVE.value)
        .order_by(Tenant.id)
        .limit(limit)
        .all()
    )


def _reconcile_usage(db: Session, cache: CacheBackend, stats: ReconciliationStats) -> None:
    """Phase 1: recompute cached aggregates from the durable store."""
    ledger = UsageLedger(db, cache)
    for tenant in _active_tenants(db, BATCH_SIZE):
        try:
            for metric in QUOTA_METRICS:
                result = ledger.reconcile(tenant.id, metric)
                stats.aggregates_checked += 1
                if result.drifted:
                    stats.drift_detected += 1
            stats.tenants_reconciled += 1
        except QuotaEvaluationError:
            stats.errors += 1
            logger.error(
                "Usage reconciliation failed for tenant",
                extra={"tenant_id": tenant.id},
                exc_info=True,
            )
            db.rollback()


def _report_near_limits(db: Session, cache: CacheBackend, stats: ReconciliationStats) -> None:
    """Phase 2: log tenants approaching a quota."""
    enforcer = QuotaEnforcer(db, cache)
    try:
        nearing = enforcer.tenants_nearing_quotas(_active_tenants(db, BATCH_SIZE))
    except QuotaEvaluationError:
        stats.errors += 1
        logger.error("Near-limit scan failed", exc_info=True)
        return

    stats.tenants_near_limit = len(nearing)
    for entry in nearing:
        logger.info("Tenant approaching quota", extra=entry)


def run_cycle(cache: Optional[CacheBackend] = None) -> ReconciliationStats:
    stats = ReconciliationStats()
    cache = cache or get_cache_backend()

    try:
        with session_scope() as db:
            _reconcile_usage(db, cache, stats)
            _report_near_limits(db, cache, stats)
    except Exception:
        stats.errors += 1
        logger.error("Usage reconciliation cycle failed", exc_info=True)

    logger.info("Usage reconciliation cycle complete", extra=stats.to_dict())
    return stats


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    logger.info("Usage reconcile worker starting", extra={"interval": POLL_INTERVAL})

    while not _shutdown:
        run_cycle()
        waited = 0
        while waited < POLL_INTERVAL and not _shutdown:
            time.sleep(1)
            waited += 1

    logger.info("Usage reconcile worker stopped")
    sys.exit(0)


if __name__ == "__main__":
    main()
