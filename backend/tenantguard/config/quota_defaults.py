"""
Quota defaults configuration loader.

Loads per-tier quota limits and default enforcement thresholds from
config/quota_defaults.yml. When the file is missing, the built-in table
below is used.

Consumers:
  - QuotaPolicy: default limit for a tenant's plan tier

Usage:
    from tenantguard.config.quota_defaults import get_quota_defaults_loader

    loader = get_quota_defaults_loader()
    loader.get_tier_limit("starter", "users")  # 25
"""

import logging
import os
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

_FALLBACK_TIERS: Dict[str, Dict[str, int]] = {
    "free": {
        "users": 5,
        "storage_gb": 1,
        "api_calls_monthly": 10000,
        "employees": 10,
        "projects": 3,
        "customers": 50,
        "rfis": 100,
    },
    "starter": {
        "users": 25,
        "storage_gb": 10,
        "api_calls_monthly": 100000,
        "employees": 50,
        "projects": 20,
        "customers": 500,
        "rfis": 1000,
    },
    "professional": {
        "users": 100,
        "storage_gb": 50,
        "api_calls_monthly": 500000,
        "employees": 200,
        "projects": 100,
        "customers": 5000,
        "rfis": 10000,
    },
    "enterprise": {
        "users": -1,
        "storage_gb": -1,
        "api_calls_monthly": -1,
        "employees": -1,
        "projects": -1,
        "customers": -1,
        "rfis": -1,
    },
}

_FALLBACK_ENFORCEMENT = {
    "warning_pct": 80,
    "critical_pct": 90,
    "block_pct": 100,
    "grace_days": 10,
}


class QuotaDefaultsLoader:
    """Thread-safe singleton loader for config/quota_defaults.yml."""

    _instance: Optional["QuotaDefaultsLoader"] = None
    _lock = Lock()

    def __new__(cls, config_path: Optional[str] = None):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._initialized:
            return

        self._config_path = config_path or os.getenv("QUOTA_DEFAULTS_PATH")
        self._raw: Dict[str, Any] = {}
        self._default_tier: str = "free"
        self._load_lock = Lock()

        self._load()
        self._initialized = True

    def _resolve_path(self) -> Path:
        if self._config_path:
            return Path(self._config_path)

        candidates = [
            Path(__file__).parent.parent.parent.parent / "config" / "quota_defaults.yml",
            Path(os.getcwd()) / "config" / "quota_defaults.yml",
            Path(os.getcwd()) / ".." / "config" / "quota_defaults.yml",
        ]

        for p in candidates:
            resolved = p.resolve()
            if resolved.exists():
                return resolved

        raise FileNotFoundError(
            f"quota_defaults.yml not found in: {[str(p) for p in candidates]}"
        )

    def _load(self) -> None:
        with self._load_lock:
            try:
                path = self._resolve_path()
                logger.info("Loading quota defaults from %s", path)

                with open(path, "r") as f:
                    self._raw = yaml.safe_load(f) or {}

                self._default_tier = self._raw.get("default_tier", "free")

                logger.info(
                    "Loaded quota defaults: tiers=%s",
                    list(self._raw.get("tiers", {}).keys()),
                )
            except FileNotFoundError:
                logger.warning("quota_defaults.yml not found, using fallback defaults")
                self._raw = {}
                self._default_tier = "free"

    def reload(self) -> None:
        """Re-read the YAML from disk."""
        self._load()

    @property
    def default_tier(self) -> str:
        return self._default_tier

    def tiers(self) -> Dict[str, Dict[str, int]]:
        return self._raw.get("tiers") or _FALLBACK_TIERS

    def has_tier(self, tier: Optional[str]) -> bool:
        return bool(tier) and tier in self.tiers()

    def get_tier_limits(self, tier: Optional[str]) -> Dict[str, int]:
        """
        Limits table for a tier.

        Unknown or missing tiers fall back to the default tier.
        """
        tiers = self.tiers()
        if tier and tier in tiers:
            return dict(tiers[tier])
        return dict(tiers.get(self._default_tier, {}))

    def get_tier_limit(self, tier: Optional[str], metric: str) -> Optional[int]:
        """Raw limit for tier/metric; None when the metric is not in the table."""
        return self.get_tier_limits(tier).get(metric)

    def get_enforcement_defaults(self) -> Dict[str, int]:
        configured = self._raw.get("enforcement") or {}
        return {**_FALLBACK_ENFORCEMENT, **configured}


def get_quota_defaults_loader() -> QuotaDefaultsLoader:
    return QuotaDefaultsLoader()
