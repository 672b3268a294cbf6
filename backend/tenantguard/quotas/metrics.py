"""
Registry of metered quota metrics.

Each metric declares how it accumulates (counter or gauge), its unit, and
which limit key it is checked against. Storage is metered in bytes but
limited in gigabytes, so it carries a scale factor.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from tenantguard.models.usage import MetricType

BYTES_PER_GB = 1024 ** 3


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    metric_type: MetricType
    unit: str
    limit_key: str
    limit_scale: int = 1


METRICS: Dict[str, MetricDefinition] = {
    "api_calls_monthly": MetricDefinition("api_calls_monthly", MetricType.COUNTER, "calls", "api_calls_monthly"),
    "users": MetricDefinition("users", MetricType.GAUGE, "users", "users"),
    "employees": MetricDefinition("employees", MetricType.GAUGE, "count", "employees"),
    "projects": MetricDefinition("projects", MetricType.GAUGE, "count", "projects"),
    "customers": MetricDefinition("customers", MetricType.GAUGE, "count", "customers"),
    "rfis": MetricDefinition("rfis", MetricType.GAUGE, "count", "rfis"),
    "storage_bytes": MetricDefinition(
        "storage_bytes", MetricType.GAUGE, "bytes", "storage_gb", limit_scale=BYTES_PER_GB
    ),
}

QUOTA_METRICS = list(METRICS.keys())


def get_metric(name: str) -> Optional[MetricDefinition]:
    return METRICS.get(name)


def limit_key_for(metric: str) -> str:
    definition = METRICS.get(metric)
    return definition.limit_key if definition else metric


def limit_scale_for(metric: str) -> int:
    definition = METRICS.get(metric)
    return definition.limit_scale if definition else 1
