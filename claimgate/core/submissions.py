"""
Submission Ledger

Append-only, per-fact store of oracle submissions.

- (fact_id, submitter_id) is unique
- submitted_at may not be in the future
- values are not range-checked here; the consensus resolver does that
- a fact's type is bound by its first submission
"""

from typing import Optional
from uuid import UUID

from ..schemas import DEFAULT_FACT_TYPE, Submission
from .errors import ClaimGateError, ErrorCode


class SubmissionLedger:

    def __init__(self):
        self._by_fact: dict[str, list[Submission]] = {}
        self._submitters: dict[str, set[UUID]] = {}
        self._fact_types: dict[str, str] = {}

    def validate(
        self,
        fact_id: str,
        submitter_id: UUID,
        submitted_at: int,
        now: int,
        fact_type: str = DEFAULT_FACT_TYPE,
    ) -> None:
        if not fact_id:
            raise ClaimGateError(ErrorCode.INVALID_INPUT, "fact_id must not be empty")

        if submitter_id in self._submitters.get(fact_id, ()):
            raise ClaimGateError(
                ErrorCode.DUPLICATE_SUBMISSION,
                f"Submitter {submitter_id} already reported fact '{fact_id}'",
                fact_id=fact_id,
                submitter_id=submitter_id,
            )

        if submitted_at > now:
            raise ClaimGateError(
                ErrorCode.INVALID_TIMESTAMP,
                f"submitted_at {submitted_at} is in the future (now={now})",
                fact_id=fact_id,
            )

        bound = self._fact_types.get(fact_id)
        if bound is not None and bound != fact_type:
            raise ClaimGateError(
                ErrorCode.INVALID_INPUT,
                f"Fact '{fact_id}' is of type '{bound}', not '{fact_type}'",
                fact_id=fact_id,
            )

    def append(self, submission: Submission, fact_type: str = DEFAULT_FACT_TYPE) -> Submission:
        """Record an already validated submission."""
        fact_id = submission.fact_id
        self._by_fact.setdefault(fact_id, []).append(submission)
        self._submitters.setdefault(fact_id, set()).add(submission.submitter_id)
        self._fact_types.setdefault(fact_id, fact_type)
        return submission

    def submit(
        self,
        fact_id: str,
        submitter_id: UUID,
        value: int,
        submitted_at: int,
        now: int,
        fact_type: str = DEFAULT_FACT_TYPE,
    ) -> Submission:
        """Validate and record one submission."""
        self.validate(fact_id, submitter_id, submitted_at, now, fact_type)
        submission = Submission(
            fact_id=fact_id,
            submitter_id=submitter_id,
            value=value,
            submitted_at=submitted_at,
        )
        return self.append(submission, fact_type)

    def snapshot(self, fact_id: str) -> tuple[Submission, ...]:
        """Immutable view of a fact's submissions, in admission order."""
        return tuple(self._by_fact.get(fact_id, ()))

    def count(self, fact_id: str) -> int:
        return len(self._by_fact.get(fact_id, ()))

    def fact_type(self, fact_id: str) -> Optional[str]:
        return self._fact_types.get(fact_id)

    def facts(self) -> list[str]:
        return list(self._by_fact)

    def total_submissions(self) -> int:
        return sum(len(subs) for subs in self._by_fact.values())
