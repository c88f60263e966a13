"""
Authoritative payment ledger.

The ledger is the contract-equivalent state machine for conditional payments:

    Created --accept--> Accepted --submit--> Submitted --verify(true)--> Released
       |                   ^                    |
       |                   +----verify(false)---+
       +--cancel--> Refunded
    (any non-terminal) --refund_on_timeout, after deadline--> Refunded

Every operation is one all-or-nothing unit: preconditions are checked and the
record mutated while holding that payment's lock, and any fund movement is
performed before the status changes, so a failed transfer leaves the record
untouched. Operations on different payment ids never contend on the same lock.

Each successful transition appends one or more LedgerEvents to a replayable,
order-preserving trail that the mirror and reconciler consume.
"""
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, List, Optional, Iterator, Tuple, Any
import threading
import time

from loguru import logger

from conduittools.configuration.configuration import LedgerConfig
from conduittools.configuration.constants import ZERO_ADDRESS, MIN_PAYMENT_AMOUNT, RefundReason
from conduittools.models.models import Payment, PaymentStatus, EventType, LedgerEvent, TransitionReceipt
from conduittools.security.hash_tools import is_valid_digest
from conduittools.utilities.escrow_vault import EscrowVault
from conduittools.utilities.exceptions import (
    InvalidInputError,
    InvalidStateError,
    NotAuthorizedError,
    DeadlineExpiredError,
    DeadlineNotExpiredError,
    PaymentNotFoundError,
)

class PaymentLedger:
    """Holds the canonical payment records and enforces every transition rule"""

    def __init__(
            self,
            vault: Optional[EscrowVault] = None,
            clock: Callable[[], float] = time.time,
            config: Optional[LedgerConfig] = None
        ):
        self.vault = vault or EscrowVault()
        self.clock = clock
        self.config = config or LedgerConfig()

        self._payments: Dict[int, Payment] = {}
        self._payment_locks: Dict[int, threading.Lock] = {}
        self._registry_lock = threading.Lock()

        # Single-writer id sequence
        self._payment_counter = 0
        self._counter_lock = threading.Lock()

        self._events: List[LedgerEvent] = []
        self._event_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _locked_payment(self, payment_id: int) -> Iterator[Payment]:
        """Hold the payment's lock for the duration of one operation"""
        with self._registry_lock:
            lock = self._payment_locks.get(payment_id)
        if lock is None:
            raise PaymentNotFoundError(payment_id)
        with lock:
            yield self._payments[payment_id]

    def _emit(self, payment_id: int, caller: str, timestamp: float, *facts: Tuple[EventType, Dict[str, Any]]) -> List[LedgerEvent]:
        """Append the facts of one transition to the event trail, contiguously"""
        with self._event_lock:
            events = []
            for event_type, data in facts:
                event = LedgerEvent(
                    sequence=len(self._events) + 1,
                    event_type=event_type,
                    payment_id=payment_id,
                    caller=caller,
                    timestamp=timestamp,
                    data=data
                )
                self._events.append(event)
                events.append(event)
            return events

    @staticmethod
    def _require_status(payment: Payment, expected: PaymentStatus, operation: str):
        if payment.status != expected:
            raise InvalidStateError(payment.payment_id, payment.status, operation)

    @staticmethod
    def _parse_amount(amount) -> Decimal:
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            raise InvalidInputError(f"Amount {amount!r} is not a number")
        if not value.is_finite() or value <= MIN_PAYMENT_AMOUNT:
            raise InvalidInputError(f"Amount must be positive, got {amount}")
        return value

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def create_payment(
            self,
            caller: str,
            verifier: str,
            condition_digest: str,
            deadline: float,
            amount: Decimal
        ) -> TransitionReceipt:
        """Escrow amount from caller and open a payment in status Created"""
        now = self.clock()
        value = self._parse_amount(amount)
        if not verifier or verifier.lower() == ZERO_ADDRESS:
            raise InvalidInputError("Verifier address must be set")
        if not caller:
            raise InvalidInputError("Principal address must be set")
        if deadline is None or deadline <= now:
            raise InvalidInputError(f"Deadline {deadline} must be in the future (now={now})")
        if not is_valid_digest(condition_digest):
            raise InvalidInputError(f"Condition digest {condition_digest!r} is not a 32-byte hex fingerprint")

        with self._counter_lock:
            payment_id = self._payment_counter + 1

            # Escrow first: a failed transfer consumes no id and leaves no record
            self.vault.escrow(payment_id, caller, value)

            payment = Payment(
                payment_id=payment_id,
                principal=caller,
                verifier=verifier,
                amount=value,
                condition_digest=condition_digest,
                deadline=deadline,
                created_at=now
            )
            self._payment_counter = payment_id
            snapshot = payment.copy()

            # PaymentCreated must precede any fact about this id, so publish the record last
            events = self._emit(payment_id, caller, now, (EventType.PAYMENT_CREATED, {
                'principal': caller,
                'verifier': verifier,
                'amount': value,
                'condition_digest': condition_digest,
                'deadline': deadline,
            }))
            with self._registry_lock:
                self._payments[payment_id] = payment
                self._payment_locks[payment_id] = threading.Lock()

        logger.info(f"PaymentLedger.create_payment: Payment {payment_id} created by {caller} for {value}")
        return TransitionReceipt(payment=snapshot, events=events)

    def accept_payment(self, caller: str, payment_id: int) -> TransitionReceipt:
        """Caller becomes the worker of a Created payment"""
        with self._locked_payment(payment_id) as payment:
            now = self.clock()
            self._require_status(payment, PaymentStatus.CREATED, 'accept')
            if caller == payment.principal:
                raise NotAuthorizedError(payment_id, caller, 'worker')
            if payment.deadline <= now:
                raise DeadlineExpiredError(payment_id, payment.deadline)

            payment.worker = caller
            payment.status = PaymentStatus.ACCEPTED
            events = self._emit(payment_id, caller, now, (EventType.PAYMENT_ACCEPTED, {'worker': caller}))
            snapshot = payment.copy()

        logger.info(f"PaymentLedger.accept_payment: Payment {payment_id} accepted by {caller}")
        return TransitionReceipt(payment=snapshot, events=events)

    def submit_proof(self, caller: str, payment_id: int, proof_digest: str) -> TransitionReceipt:
        """Worker binds a proof fingerprint to an Accepted payment"""
        if not is_valid_digest(proof_digest):
            raise InvalidInputError(f"Proof digest {proof_digest!r} is not a 32-byte hex fingerprint", payment_id)

        with self._locked_payment(payment_id) as payment:
            now = self.clock()
            self._require_status(payment, PaymentStatus.ACCEPTED, 'submit proof for')
            if caller != payment.worker:
                raise NotAuthorizedError(payment_id, caller, 'worker')
            if payment.deadline <= now:
                raise DeadlineExpiredError(payment_id, payment.deadline)

            payment.status = PaymentStatus.SUBMITTED
            events = self._emit(payment_id, caller, now, (EventType.PROOF_SUBMITTED, {'proof_digest': proof_digest}))
            snapshot = payment.copy()

        logger.info(f"PaymentLedger.submit_proof: Proof {proof_digest[:10]}... submitted for payment {payment_id}")
        return TransitionReceipt(payment=snapshot, events=events)

    def verify(self, caller: str, payment_id: int, approved: bool) -> TransitionReceipt:
        """
        Verifier decides on the submitted proof.

        Approval releases the escrow to the worker. Rejection sends the payment back to
        Accepted for resubmission, unless the configured rejection cap is reached, in
        which case the escrow is refunded to the principal.
        """
        with self._locked_payment(payment_id) as payment:
            now = self.clock()
            self._require_status(payment, PaymentStatus.SUBMITTED, 'verify')
            if caller != payment.verifier:
                raise NotAuthorizedError(payment_id, caller, 'verifier')

            verified = (EventType.VERIFIED, {'approved': bool(approved)})

            if approved:
                self.vault.release(payment_id, payment.worker)
                payment.status = PaymentStatus.RELEASED
                events = self._emit(payment_id, caller, now, verified, (EventType.RELEASED, {
                    'worker': payment.worker,
                    'amount': payment.amount,
                }))
            else:
                rejection_count = payment.rejection_count + 1
                cap = self.config.max_rejections
                if cap is not None and rejection_count >= cap:
                    self.vault.release(payment_id, payment.principal)
                    payment.rejection_count = rejection_count
                    payment.status = PaymentStatus.REFUNDED
                    events = self._emit(payment_id, caller, now, verified, (EventType.REFUNDED, {
                        'principal': payment.principal,
                        'amount': payment.amount,
                        'reason': RefundReason.REJECTION_LIMIT.value,
                    }))
                    logger.warning(f"PaymentLedger.verify: Payment {payment_id} hit the rejection cap ({cap}), refunded")
                else:
                    payment.rejection_count = rejection_count
                    payment.status = PaymentStatus.ACCEPTED
                    events = self._emit(payment_id, caller, now, verified)
            snapshot = payment.copy()

        logger.info(f"PaymentLedger.verify: Payment {payment_id} {'approved' if approved else 'rejected'} -> {snapshot.status.value}")
        return TransitionReceipt(payment=snapshot, events=events)

    def refund_on_timeout(self, caller: str, payment_id: int) -> TransitionReceipt:
        """Anyone may return the escrow to the principal once the deadline has passed"""
        with self._locked_payment(payment_id) as payment:
            now = self.clock()
            if payment.status.is_terminal:
                raise InvalidStateError(payment_id, payment.status, 'refund')
            if payment.deadline > now:
                raise DeadlineNotExpiredError(payment_id, payment.deadline)

            receipt = self._refund(payment, caller, now, RefundReason.TIMEOUT)

        logger.info(f"PaymentLedger.refund_on_timeout: Payment {payment_id} refunded to {receipt.payment.principal}")
        return receipt

    def cancel_payment(self, caller: str, payment_id: int) -> TransitionReceipt:
        """Principal withdraws a payment nobody has accepted yet"""
        with self._locked_payment(payment_id) as payment:
            now = self.clock()
            self._require_status(payment, PaymentStatus.CREATED, 'cancel')
            if caller != payment.principal:
                raise NotAuthorizedError(payment_id, caller, 'principal')

            receipt = self._refund(payment, caller, now, RefundReason.CANCELLED)

        logger.info(f"PaymentLedger.cancel_payment: Payment {payment_id} cancelled by {caller}")
        return receipt

    def _refund(self, payment: Payment, caller: str, now: float, reason: RefundReason) -> TransitionReceipt:
        # Caller holds the payment lock
        self.vault.release(payment.payment_id, payment.principal)
        payment.status = PaymentStatus.REFUNDED
        events = self._emit(payment.payment_id, caller, now, (EventType.REFUNDED, {
            'principal': payment.principal,
            'amount': payment.amount,
            'reason': reason.value,
        }))
        return TransitionReceipt(payment=payment.copy(), events=events)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_payment(self, payment_id: int) -> Payment:
        """Full record by id"""
        with self._locked_payment(payment_id) as payment:
            return payment.copy()

    def payment_count(self) -> int:
        with self._counter_lock:
            return self._payment_counter

    def latest_sequence(self) -> int:
        with self._event_lock:
            return len(self._events)

    def events_since(self, cursor: int, limit: Optional[int] = None) -> List[LedgerEvent]:
        """Events with sequence > cursor, in order"""
        with self._event_lock:
            start = max(cursor, 0)
            end = None if limit is None else start + limit
            return self._events[start:end]
