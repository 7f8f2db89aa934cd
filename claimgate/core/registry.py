"""Write-once store of finalized consensus results, one per fact."""

from typing import Optional

from ..schemas import ConsensusResult
from .errors import ClaimGateError, ErrorCode


class FactRegistry:

    def __init__(self):
        self._results: dict[str, ConsensusResult] = {}

    def check_not_finalized(self, fact_id: str) -> None:
        if fact_id in self._results:
            raise ClaimGateError(
                ErrorCode.ALREADY_FINALIZED,
                f"Fact '{fact_id}' already has a consensus result",
                fact_id=fact_id,
            )

    def finalize(self, result: ConsensusResult) -> ConsensusResult:
        """Store a result. A second finalize for the same fact raises and changes nothing."""
        self.check_not_finalized(result.fact_id)
        self._results[result.fact_id] = result
        return result

    def get(self, fact_id: str) -> Optional[ConsensusResult]:
        return self._results.get(fact_id)

    def is_finalized(self, fact_id: str) -> bool:
        return fact_id in self._results

    def count(self) -> int:
        return len(self._results)
