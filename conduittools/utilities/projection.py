"""
Projection rules from ledger facts to mirror rows.

These functions are pure: every value they produce comes from the ledger event
or ledger snapshot they are given, never from the wall clock, so applying the
same event twice yields the same mirror state as applying it once.
"""
from typing import Optional

from conduittools.models.models import (
    EventType,
    LedgerEvent,
    MirrorPatch,
    MirrorPayment,
    Payment,
    PaymentStatus,
    Proof,
)

def snapshot_to_mirror(payment: Payment, condition_text: Optional[str] = None) -> MirrorPayment:
    """Mirror row for a ledger snapshot, as written at creation time or when repairing a missing row"""
    return MirrorPayment(
        payment_id=payment.payment_id,
        principal=payment.principal,
        verifier=payment.verifier,
        amount=payment.amount,
        condition_digest=payment.condition_digest,
        deadline=payment.deadline,
        created_at=payment.created_at,
        status=payment.status,
        condition_text=condition_text,
        worker=payment.worker,
    )

def created_event_to_mirror(event: LedgerEvent, condition_text: Optional[str] = None) -> MirrorPayment:
    """Mirror row from a PaymentCreated fact"""
    if event.event_type != EventType.PAYMENT_CREATED:
        raise ValueError(f"Expected PaymentCreated, got {event.kind}")
    return MirrorPayment(
        payment_id=event.payment_id,
        principal=event.data['principal'],
        verifier=event.data['verifier'],
        amount=event.data['amount'],
        condition_digest=event.data['condition_digest'],
        deadline=event.data['deadline'],
        created_at=event.timestamp,
        status=PaymentStatus.CREATED,
        condition_text=condition_text,
    )

def project_event(event: LedgerEvent) -> MirrorPatch:
    """Status and timestamp patch implied by a single ledger fact"""
    base = dict(payment_id=event.payment_id, source_sequence=event.sequence)

    match event.event_type:
        case EventType.PAYMENT_CREATED:
            return MirrorPatch(status=PaymentStatus.CREATED, **base)
        case EventType.PAYMENT_ACCEPTED:
            return MirrorPatch(
                status=PaymentStatus.ACCEPTED,
                worker=event.data['worker'],
                accepted_at=event.timestamp,
                **base
            )
        case EventType.PROOF_SUBMITTED:
            return MirrorPatch(status=PaymentStatus.SUBMITTED, submitted_at=event.timestamp, **base)
        case EventType.VERIFIED:
            status = PaymentStatus.RELEASED if event.data['approved'] else PaymentStatus.ACCEPTED
            return MirrorPatch(status=status, verified_at=event.timestamp, **base)
        case EventType.RELEASED:
            return MirrorPatch(status=PaymentStatus.RELEASED, released_at=event.timestamp, **base)
        case EventType.REFUNDED:
            return MirrorPatch(status=PaymentStatus.REFUNDED, refunded_at=event.timestamp, **base)
        case _:
            raise ValueError(f"No projection for event type {event.event_type}")

def expected_status(event: LedgerEvent) -> PaymentStatus:
    """
    Ledger status at which the event is still the frontier of its record.
    If the ledger has moved on, the event is superseded and must not be projected.
    """
    return project_event(event).status

def proof_from_event(
        event: LedgerEvent,
        content: Optional[str] = None,
        content_ref: Optional[str] = None,
        proof_type: str = 'text'
    ) -> Proof:
    """Proof row from a ProofSubmitted fact, optionally enriched with the submitted content"""
    if event.event_type != EventType.PROOF_SUBMITTED:
        raise ValueError(f"Expected ProofSubmitted, got {event.kind}")
    return Proof(
        event_sequence=event.sequence,
        payment_id=event.payment_id,
        proof_digest=event.data['proof_digest'],
        submitted_by=event.caller,
        submitted_at=event.timestamp,
        proof_type=proof_type,
        content=content,
        content_ref=content_ref,
    )
