"""
Claim Schema

A Claim asks the risk pool to pay out against a policy.
It moves through exactly one path; Rejected and Settled are the ends.

    Submitted -> UnderReview -> Approved -> Settled
                             \\-> Rejected
"""

from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ClaimStatus(str, Enum):
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    SETTLED = "settled"

    @property
    def is_terminal(self) -> bool:
        return self in (ClaimStatus.REJECTED, ClaimStatus.SETTLED)


class ClaimAction(str, Enum):
    """Events that drive the claim state machine."""
    START_REVIEW = "start_review"
    APPROVE = "approve"
    REJECT = "reject"
    SETTLE = "settle"


class PolicyStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class PolicyInfo(BaseModel):
    """
    What the external policy registry tells us about a policy.
    Nothing else about policies is tracked here.
    """
    model_config = ConfigDict(frozen=True)

    policy_id: str
    coverage_amount: int = Field(..., ge=0)
    end_time: int = Field(..., description="UNIX seconds when coverage ends")
    status: PolicyStatus = PolicyStatus.ACTIVE


class Claim(BaseModel):
    """
    The atomic unit of the claim workflow.

    Instances are frozen; a transition produces a new Claim via model_copy.
    """
    model_config = ConfigDict(frozen=True)

    claim_id: int = Field(..., ge=1)
    policy_id: str
    claimant_id: UUID
    amount: int = Field(..., gt=0)
    status: ClaimStatus = ClaimStatus.SUBMITTED
    fact_id: Optional[str] = Field(
        default=None,
        description="Fact whose consensus value backs this claim",
    )
    submitted_at: int
    updated_at: int


class ClaimPage(BaseModel):
    """A page of claims plus the total number that matched."""
    claims: list[Claim]
    total_count: int
