"""
Consensus Resolver

Pure function from (snapshot, thresholds, now) to an outcome. No I/O, no
clock, no shared state: identical inputs give identical outputs, which is
what makes journal replay reproduce the same results.

Phases run in strict order and short-circuit:

1. Count check        len(snapshot) < min_submissions         -> Pending
2. Staleness screen   now - submitted_at > staleness_seconds  -> dropped
                      (future-dated submissions are dropped too)
                      fresh < min_submissions                 -> Pending
3. Pre-outlier median lower median of the fresh values
4. Outlier filter     keep v with v*100 inside
                      [median*(100-d), median*(100+d)]
5. Agreement check    included*100 // fresh < majority        -> Rejected
6. Final value        lower median of the included values     -> Resolved

All arithmetic is integer; there is no float anywhere on this path.
"""

from dataclasses import dataclass
from typing import Sequence, Union

from ..schemas import DEFAULT_FACT_TYPE, ConsensusResult, Submission, ValidationThresholds
from .errors import ErrorCode
from .hasher import Hasher


@dataclass(frozen=True)
class Resolved:
    result: ConsensusResult


@dataclass(frozen=True)
class Pending:
    """Not enough (fresh) data yet; retry once more submissions arrive."""
    fact_id: str
    reason: str
    submission_count: int
    fresh_count: int
    required: int


@dataclass(frozen=True)
class Rejected:
    """Fresh data disagrees too much to trust a value."""
    fact_id: str
    code: ErrorCode
    consensus_percentage: int
    included_count: int
    total_count: int
    required_percent: int


Outcome = Union[Resolved, Pending, Rejected]


def lower_median(values: Sequence[int]) -> int:
    """Median with the lower central element for even counts."""
    if not values:
        raise ValueError("median of an empty sequence")
    ordered = sorted(values)
    return ordered[(len(ordered) - 1) // 2]


def is_stale(submitted_at: int, now: int, staleness_seconds: int) -> bool:
    if submitted_at > now:
        return True
    return now - submitted_at > staleness_seconds


def within_band(value: int, median: int, deviation_percent: int) -> bool:
    """value inside [median*(1-d/100), median*(1+d/100)], both ends inclusive."""
    low = median * (100 - deviation_percent)
    high = median * (100 + deviation_percent)
    low, high = min(low, high), max(low, high)
    return low <= value * 100 <= high


def resolve(
    fact_id: str,
    snapshot: Sequence[Submission],
    thresholds: ValidationThresholds,
    now: int,
    fact_type: str = DEFAULT_FACT_TYPE,
) -> Outcome:
    """
    Resolve one fact from a snapshot taken by the caller.

    The thresholds object is frozen, so what the caller passes is exactly
    what this call sees from start to finish.
    """
    submissions = tuple(snapshot)
    total = len(submissions)
    required = thresholds.min_submissions

    if total < required:
        return Pending(
            fact_id=fact_id,
            reason="insufficient_submissions",
            submission_count=total,
            fresh_count=total,
            required=required,
        )

    fresh = [
        s for s in submissions
        if not is_stale(s.submitted_at, now, thresholds.staleness_seconds)
    ]
    if len(fresh) < required:
        return Pending(
            fact_id=fact_id,
            reason="insufficient_fresh_submissions",
            submission_count=total,
            fresh_count=len(fresh),
            required=required,
        )

    median = lower_median([s.value for s in fresh])
    included = [
        s.value for s in fresh
        if within_band(s.value, median, thresholds.outlier_deviation_percent)
    ]

    total_count = len(fresh)
    included_count = len(included)
    consensus_percentage = included_count * 100 // total_count

    if consensus_percentage < thresholds.majority_threshold_percent:
        return Rejected(
            fact_id=fact_id,
            code=ErrorCode.CONSENSUS_NOT_REACHED,
            consensus_percentage=consensus_percentage,
            included_count=included_count,
            total_count=total_count,
            required_percent=thresholds.majority_threshold_percent,
        )

    return Resolved(
        result=ConsensusResult(
            fact_id=fact_id,
            fact_type=fact_type,
            consensus_value=lower_median(included),
            consensus_percentage=consensus_percentage,
            included_count=included_count,
            total_count=total_count,
            resolved_at=now,
            thresholds_version=thresholds.version,
            snapshot_digest=Hasher.hash_snapshot(fact_id, list(submissions)),
        )
    )


def outcome_name(outcome: Outcome) -> str:
    if isinstance(outcome, Resolved):
        return "resolved"
    if isinstance(outcome, Pending):
        return "pending"
    return "rejected"

