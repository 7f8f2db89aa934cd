"""
Service Configuration

Environment Variables:
    CLAIMGATE_GRACE_PERIOD_SECONDS: claims accepted this long after policy end
        (default 2592000, 30 days)
    CLAIMGATE_ORACLE_GATING: require a resolved fact to approve (default true)
    CLAIMGATE_DEFAULT_MIN_SUBMISSIONS: default 3
    CLAIMGATE_DEFAULT_MAJORITY_PERCENT: default 66
    CLAIMGATE_DEFAULT_OUTLIER_PERCENT: default 15
    CLAIMGATE_DEFAULT_STALENESS_SECONDS: default 3600

The threshold defaults apply to every fact type until an admin configures
that type explicitly.
"""

import os
from dataclasses import dataclass, field

from ..schemas import ValidationThresholds
from ..schemas.oracle import (
    DEFAULT_MAJORITY_THRESHOLD_PERCENT,
    DEFAULT_MIN_SUBMISSIONS,
    DEFAULT_OUTLIER_DEVIATION_PERCENT,
    DEFAULT_STALENESS_SECONDS,
)
from .claims import DEFAULT_GRACE_PERIOD_SECONDS


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class ServiceConfig:
    grace_period_seconds: int = DEFAULT_GRACE_PERIOD_SECONDS
    oracle_gating: bool = True
    default_thresholds: ValidationThresholds = field(default_factory=ValidationThresholds)

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        return cls(
            grace_period_seconds=_env_int(
                "CLAIMGATE_GRACE_PERIOD_SECONDS", DEFAULT_GRACE_PERIOD_SECONDS
            ),
            oracle_gating=_env_bool("CLAIMGATE_ORACLE_GATING", True),
            default_thresholds=ValidationThresholds(
                min_submissions=_env_int(
                    "CLAIMGATE_DEFAULT_MIN_SUBMISSIONS", DEFAULT_MIN_SUBMISSIONS
                ),
                majority_threshold_percent=_env_int(
                    "CLAIMGATE_DEFAULT_MAJORITY_PERCENT", DEFAULT_MAJORITY_THRESHOLD_PERCENT
                ),
                outlier_deviation_percent=_env_int(
                    "CLAIMGATE_DEFAULT_OUTLIER_PERCENT", DEFAULT_OUTLIER_DEVIATION_PERCENT
                ),
                staleness_seconds=_env_int(
                    "CLAIMGATE_DEFAULT_STALENESS_SECONDS", DEFAULT_STALENESS_SECONDS
                ),
            ),
        )
