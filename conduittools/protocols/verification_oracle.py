from typing import Protocol
from conduittools.models.models import VerificationResult

class VerificationOracle(Protocol):
    """Opaque, possibly slow, possibly failing decision function"""

    async def verify(self, condition_text: str, proof_content: str) -> VerificationResult:
        """
        Decide whether the proof satisfies the condition.

        Raises:
            OracleError: if no decision could be obtained. Callers must not
                attempt a ledger transition in that case.
        """
        ...
