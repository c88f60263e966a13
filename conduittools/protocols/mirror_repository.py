from typing import Protocol, List, Optional
from conduittools.models.models import MirrorPayment, MirrorPatch, PaymentStatus, Proof, Verification, ReviewItem

class MirrorRepository(Protocol):
    """Protocol for the read-optimized mirror of ledger state"""

    def upsert_payment(self, payment: MirrorPayment) -> None:
        """Insert a payment row; an existing row only gains a missing condition text"""
        ...

    def apply_patch(self, patch: MirrorPatch) -> None:
        """
        Apply the patch implied by one ledger transition. Idempotent.

        Raises:
            MirrorRecordNotFoundError: if the payment row does not exist yet
        """
        ...

    def record_proof(self, proof: Proof) -> None:
        """Store a proof keyed by its ledger event sequence. Idempotent."""
        ...

    def record_verification(self, verification: Verification) -> None:
        """Store a verification keyed by its ledger event sequence. Idempotent."""
        ...

    def get_payment(self, payment_id: int) -> Optional[MirrorPayment]:
        ...

    def list_payments(
        self,
        status: Optional[PaymentStatus] = None,
        principal: Optional[str] = None,
        worker: Optional[str] = None,
        limit: int = 50
    ) -> List[MirrorPayment]:
        """
        List payments newest first, filtered by any combination of status and parties.
        """
        ...

    def list_available(self, limit: int = 50) -> List[MirrorPayment]:
        """Payments still open for acceptance"""
        ...

    def list_submitted_with_proofs(self, limit: int = 50) -> List[ReviewItem]:
        """Submitted payments joined with their latest proof, oldest submission first"""
        ...

    def get_latest_proof(self, payment_id: int) -> Optional[Proof]:
        ...

    def get_latest_verification(self, payment_id: int) -> Optional[Verification]:
        ...

    def list_verifications(self, payment_id: int) -> List[Verification]:
        ...

    def get_cursor(self, cursor_name: str) -> Optional[int]:
        ...

    def save_cursor(self, cursor_name: str, sequence: int) -> None:
        ...
