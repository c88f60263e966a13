from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List
from enum import Enum
from decimal import Decimal
import copy

class PaymentStatus(Enum):
    CREATED = 'Created'
    ACCEPTED = 'Accepted'
    SUBMITTED = 'Submitted'
    RELEASED = 'Released'
    REFUNDED = 'Refunded'

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

TERMINAL_STATUSES = frozenset({PaymentStatus.RELEASED, PaymentStatus.REFUNDED})

class EventType(Enum):
    """Facts emitted by the ledger, one or more per successful transition"""
    PAYMENT_CREATED = 'PaymentCreated'
    PAYMENT_ACCEPTED = 'PaymentAccepted'
    PROOF_SUBMITTED = 'ProofSubmitted'
    VERIFIED = 'Verified'
    RELEASED = 'Released'
    REFUNDED = 'Refunded'

def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))

@dataclass
class Payment:
    """
    Authoritative ledger record of a conditional payment.
    Only the condition digest is held here; the condition text lives in the mirror.
    """
    payment_id: int
    principal: str
    verifier: str
    amount: Decimal
    condition_digest: str
    deadline: float
    created_at: float
    status: PaymentStatus = PaymentStatus.CREATED
    worker: Optional[str] = None
    rejection_count: int = 0

    def __post_init__(self):
        self.amount = _to_decimal(self.amount)
        if isinstance(self.status, str):
            self.status = PaymentStatus(self.status)

    def copy(self) -> 'Payment':
        """Create a deep copy of the Payment"""
        return copy.deepcopy(self)

@dataclass(frozen=True)
class LedgerEvent:
    """A single fact from the ledger's replayable, order-preserving event trail"""
    sequence: int
    event_type: EventType
    payment_id: int
    caller: str
    timestamp: float
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> str:
        return self.event_type.value

    @property
    def dedup_key(self) -> str:
        """Payment id + transition kind, qualified by sequence so each reject round is distinct"""
        return f"{self.payment_id}:{self.event_type.value}:{self.sequence}"

@dataclass
class TransitionReceipt:
    """Outcome of a successful ledger operation: the resulting record and the facts it emitted"""
    payment: Payment
    events: List[LedgerEvent]

    @property
    def payment_id(self) -> int:
        return self.payment.payment_id

    def event(self, event_type: EventType) -> Optional[LedgerEvent]:
        """Return the first emitted event of the given type, if any"""
        return next((e for e in self.events if e.event_type == event_type), None)

@dataclass
class MirrorPayment:
    """
    Mirror row for a payment.
    Corresponds to the payments table; enriched with the free-text condition.
    """
    payment_id: int
    principal: str
    verifier: str
    amount: Decimal
    condition_digest: str
    deadline: float
    created_at: float
    status: PaymentStatus = PaymentStatus.CREATED
    condition_text: Optional[str] = None
    worker: Optional[str] = None
    accepted_at: Optional[float] = None
    submitted_at: Optional[float] = None
    verified_at: Optional[float] = None
    released_at: Optional[float] = None
    refunded_at: Optional[float] = None

    def __post_init__(self):
        self.amount = _to_decimal(self.amount)
        if isinstance(self.status, str):
            self.status = PaymentStatus(self.status)

@dataclass(frozen=True)
class MirrorPatch:
    """Field changes a single ledger transition implies for the mirror row"""
    payment_id: int
    status: PaymentStatus
    source_sequence: int
    worker: Optional[str] = None
    accepted_at: Optional[float] = None
    submitted_at: Optional[float] = None
    verified_at: Optional[float] = None
    released_at: Optional[float] = None
    refunded_at: Optional[float] = None

@dataclass
class Proof:
    """
    Evidence submitted by a worker. Keyed by the ledger sequence of its ProofSubmitted event.
    Content is held by the mirror only.
    """
    event_sequence: int
    payment_id: int
    proof_digest: str
    submitted_by: str
    submitted_at: float
    proof_type: str = 'text'
    content: Optional[str] = None
    content_ref: Optional[str] = None

@dataclass
class VerificationResult:
    """Decision returned by the verification oracle"""
    approved: bool
    confidence: float
    reason: str
    issues: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.confidence = min(max(float(self.confidence), 0.0), 1.0)

@dataclass
class Verification:
    """One verification attempt. Keyed by the ledger sequence of its Verified event."""
    event_sequence: int
    payment_id: int
    approved: bool
    confidence: float
    reason: str
    verified_at: float
    issues: List[str] = field(default_factory=list)

    @classmethod
    def from_result(cls, event: LedgerEvent, result: VerificationResult) -> 'Verification':
        return cls(
            event_sequence=event.sequence,
            payment_id=event.payment_id,
            approved=event.data['approved'],
            confidence=result.confidence,
            reason=result.reason,
            verified_at=event.timestamp,
            issues=list(result.issues)
        )

@dataclass
class ReviewItem:
    """Join of a Submitted mirror payment with its latest proof, for verifier review queues"""
    payment: MirrorPayment
    proof: Optional[Proof]
