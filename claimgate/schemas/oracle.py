"""
Oracle Schemas

A Fact is one real-world data point that needs agreement.
A Submission is one oracle's report about it.
A ConsensusResult is the single value the system settled on, written once.
"""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field


DEFAULT_FACT_TYPE = "default"

# Defaults for oracle validation
DEFAULT_MIN_SUBMISSIONS = 3
DEFAULT_MAJORITY_THRESHOLD_PERCENT = 66  # 2 out of 3
DEFAULT_OUTLIER_DEVIATION_PERCENT = 15
DEFAULT_STALENESS_SECONDS = 3600  # 1 hour


class Submission(BaseModel):
    """
    One oracle report. Immutable once written.

    (fact_id, submitter_id) is unique across the ledger.
    """
    model_config = ConfigDict(frozen=True)

    fact_id: str = Field(..., min_length=1)
    submitter_id: UUID
    value: int = Field(..., description="Signed integer; range checks belong to consensus")
    submitted_at: int = Field(..., ge=0, description="UNIX seconds of the observation")


class ValidationThresholds(BaseModel):
    """
    Consensus configuration for one fact type.

    A resolution reads one of these once, at call start, and never sees a
    later change. `version` increases on every reconfiguration and is
    recorded on each ConsensusResult.
    """
    model_config = ConfigDict(frozen=True)

    min_submissions: int = Field(default=DEFAULT_MIN_SUBMISSIONS, ge=1)
    majority_threshold_percent: int = Field(
        default=DEFAULT_MAJORITY_THRESHOLD_PERCENT, ge=0, le=100
    )
    outlier_deviation_percent: int = Field(default=DEFAULT_OUTLIER_DEVIATION_PERCENT, ge=0)
    staleness_seconds: int = Field(default=DEFAULT_STALENESS_SECONDS, ge=0)
    version: int = Field(default=0, ge=0)


class ConsensusResult(BaseModel):
    """
    Finalized value for a fact. Created exactly once per fact_id.
    """
    model_config = ConfigDict(frozen=True)

    fact_id: str
    fact_type: str = DEFAULT_FACT_TYPE
    consensus_value: int
    consensus_percentage: int = Field(..., ge=0, le=100)
    included_count: int = Field(..., ge=1)
    total_count: int = Field(..., ge=1)
    resolved_at: int
    thresholds_version: int = 0
    snapshot_digest: Optional[str] = None

    @computed_field
    @property
    def rejected_count(self) -> int:
        """Fresh submissions dropped as outliers."""
        return self.total_count - self.included_count


class OracleStats(BaseModel):
    """Aggregate oracle activity, derived from the journal."""
    total_submissions: int = 0
    facts_with_submissions: int = 0
    total_consensus_reached: int = 0
    average_submissions_per_fact: int = 0
