from typing import Protocol, List, Optional
from decimal import Decimal
from conduittools.models.models import Payment, LedgerEvent, TransitionReceipt

class LedgerClient(Protocol):
    """Read surface of the authoritative ledger, as consumed by the reconciler"""

    def get_payment(self, payment_id: int) -> Payment:
        """Full record by id. Raises PaymentNotFoundError for unknown ids."""
        ...

    def latest_sequence(self) -> int:
        """Sequence number of the most recent event (0 when the trail is empty)"""
        ...

    def events_since(self, cursor: int, limit: Optional[int] = None) -> List[LedgerEvent]:
        """
        Events with sequence strictly greater than cursor, in emission order.

        Args:
            cursor: Last sequence the consumer has fully handled
            limit: Optional maximum number of events to return
        """
        ...

class PaymentLedger(LedgerClient, Protocol):
    """Full ledger surface: queries plus the six write operations"""

    def create_payment(self, caller: str, verifier: str, condition_digest: str, deadline: float, amount: Decimal) -> TransitionReceipt:
        ...

    def accept_payment(self, caller: str, payment_id: int) -> TransitionReceipt:
        ...

    def submit_proof(self, caller: str, payment_id: int, proof_digest: str) -> TransitionReceipt:
        ...

    def verify(self, caller: str, payment_id: int, approved: bool) -> TransitionReceipt:
        ...

    def refund_on_timeout(self, caller: str, payment_id: int) -> TransitionReceipt:
        ...

    def cancel_payment(self, caller: str, payment_id: int) -> TransitionReceipt:
        ...
