"""
Local-actor flow for conditional payments: each operation performs the ledger
transition and then writes the matching mirror rows.

The ledger result is authoritative. A mirror write that fails afterwards is
logged and left for the reconciler to repair; it never undoes or hides the
ledger outcome.
"""
from decimal import Decimal
from typing import Optional
import traceback

from loguru import logger

from conduittools.models.models import EventType, TransitionReceipt
from conduittools.protocols.ledger import PaymentLedger
from conduittools.protocols.mirror_repository import MirrorRepository
from conduittools.security.hash_tools import compute_digest
from conduittools.utilities.exceptions import InvalidInputError, MirrorRecordNotFoundError
from conduittools.utilities.projection import (
    created_event_to_mirror,
    project_event,
    proof_from_event,
    snapshot_to_mirror,
)

class PaymentOrchestrator:
    """Ledger first, mirror second"""

    def __init__(self, ledger: PaymentLedger, mirror: MirrorRepository):
        self.ledger = ledger
        self.mirror = mirror

    def _mirror_transition(self, receipt: TransitionReceipt, operation: str):
        """Apply every patch the receipt implies. Failures are logged as mirror staleness."""
        try:
            for event in receipt.events:
                if event.event_type == EventType.PAYMENT_CREATED:
                    continue
                patch = project_event(event)
                try:
                    self.mirror.apply_patch(patch)
                except MirrorRecordNotFoundError:
                    # Creation row never landed; repair from the ledger snapshot and retry
                    self.mirror.upsert_payment(snapshot_to_mirror(receipt.payment))
                    self.mirror.apply_patch(patch)
        except Exception as e:
            logger.error(
                f"PaymentOrchestrator.{operation}: Ledger succeeded but mirror update failed "
                f"for payment {receipt.payment_id}: {e}"
            )
            logger.error(traceback.format_exc())

    def create_payment(
            self,
            principal: str,
            verifier: str,
            condition_text: str,
            deadline: float,
            amount: Decimal
        ) -> TransitionReceipt:
        """Escrow funds against a free-text condition. Only its digest goes to the ledger."""
        if not condition_text or not condition_text.strip():
            raise InvalidInputError("Condition text must not be empty")

        receipt = self.ledger.create_payment(
            caller=principal,
            verifier=verifier,
            condition_digest=compute_digest(condition_text),
            deadline=deadline,
            amount=amount
        )
        created = receipt.event(EventType.PAYMENT_CREATED)
        try:
            self.mirror.upsert_payment(created_event_to_mirror(created, condition_text=condition_text))
        except Exception as e:
            logger.error(
                f"PaymentOrchestrator.create_payment: Ledger created payment {receipt.payment_id} "
                f"but mirror insert failed: {e}"
            )
            logger.error(traceback.format_exc())
        return receipt

    def accept_payment(self, worker: str, payment_id: int) -> TransitionReceipt:
        receipt = self.ledger.accept_payment(caller=worker, payment_id=payment_id)
        self._mirror_transition(receipt, 'accept_payment')
        return receipt

    def submit_proof(
            self,
            worker: str,
            payment_id: int,
            content: str,
            content_ref: Optional[str] = None,
            proof_type: str = 'text'
        ) -> TransitionReceipt:
        """Bind the digest of content to the payment on the ledger, and keep the content in the mirror"""
        if not content:
            raise InvalidInputError("Proof content must not be empty", payment_id)

        receipt = self.ledger.submit_proof(
            caller=worker,
            payment_id=payment_id,
            proof_digest=compute_digest(content)
        )
        self._mirror_transition(receipt, 'submit_proof')
        submitted = receipt.event(EventType.PROOF_SUBMITTED)
        try:
            self.mirror.record_proof(proof_from_event(
                submitted,
                content=content,
                content_ref=content_ref,
                proof_type=proof_type
            ))
        except Exception as e:
            logger.error(
                f"PaymentOrchestrator.submit_proof: Ledger accepted proof for payment {payment_id} "
                f"but mirror proof insert failed: {e}"
            )
            logger.error(traceback.format_exc())
        return receipt

    def cancel_payment(self, principal: str, payment_id: int) -> TransitionReceipt:
        receipt = self.ledger.cancel_payment(caller=principal, payment_id=payment_id)
        self._mirror_transition(receipt, 'cancel_payment')
        return receipt

    def refund_on_timeout(self, caller: str, payment_id: int) -> TransitionReceipt:
        receipt = self.ledger.refund_on_timeout(caller=caller, payment_id=payment_id)
        self._mirror_transition(receipt, 'refund_on_timeout')
        return receipt
