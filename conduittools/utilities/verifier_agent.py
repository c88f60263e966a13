from dataclasses import dataclass
from typing import Optional, List, Callable, Any
import asyncio
import traceback

from loguru import logger

from conduittools.configuration.configuration import VerifierAgentConfig
from conduittools.models.models import (
    EventType,
    PaymentStatus,
    ReviewItem,
    TransitionReceipt,
    Verification,
    VerificationResult,
)
from conduittools.protocols.ledger import PaymentLedger
from conduittools.protocols.mirror_repository import MirrorRepository
from conduittools.protocols.verification_oracle import VerificationOracle
from conduittools.security.hash_tools import digest_matches
from conduittools.utilities.exceptions import MirrorRecordNotFoundError
from conduittools.utilities.projection import project_event, snapshot_to_mirror
from conduittools.utilities.reconciler import call_mirror

@dataclass
class ReviewStats:
    """Outcome of one review pass"""
    reviewed: int = 0
    approved: int = 0
    rejected: int = 0
    skipped: int = 0
    failed: int = 0

class VerifierAgent:
    """
    Automated verifier: reviews submitted proofs against their conditions and
    records the decision on the ledger.

    The mirror only tells the agent what to look at; every decision is preceded by a
    ledger re-check, and nothing is sent to the ledger when the oracle cannot decide.
    """

    def __init__(
            self,
            ledger: PaymentLedger,
            mirror: MirrorRepository,
            oracle: VerificationOracle,
            config: VerifierAgentConfig
        ):
        self.ledger = ledger
        self.mirror = mirror
        self.oracle = oracle
        self.config = config

        self.monitor_task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

    @property
    def address(self) -> str:
        return self.config.verifier_address

    async def _mirror_call(self, func: Callable[..., Any], *args) -> Any:
        return await call_mirror(self.config.mirror_timeout, func, *args)

    async def decide(self, item: ReviewItem) -> Optional[VerificationResult]:
        """
        Decision for a review item, or None if no decision can be made now.
        Short proofs are rejected without consulting the oracle.
        """
        payment = item.payment
        proof = item.proof

        if proof is None or proof.content is None:
            logger.debug(f"VerifierAgent.decide: No proof content mirrored yet for payment {payment.payment_id}")
            return None

        if not digest_matches(proof.content, proof.proof_digest):
            return VerificationResult(
                approved=False,
                confidence=1.0,
                reason="Proof content does not match the digest bound on the ledger",
                issues=["proof digest mismatch"]
            )

        if len(proof.content.strip()) < self.config.min_proof_length:
            return VerificationResult(
                approved=False,
                confidence=1.0,
                reason=f"Proof is shorter than {self.config.min_proof_length} characters",
                issues=["proof too short"]
            )

        if not payment.condition_text or not digest_matches(payment.condition_text, payment.condition_digest):
            logger.warning(
                f"VerifierAgent.decide: Condition text for payment {payment.payment_id} is missing or "
                f"does not match its digest; cannot judge the proof"
            )
            return None

        try:
            result = await self.oracle.verify(payment.condition_text, proof.content)
        except Exception as e:
            logger.error(f"VerifierAgent.decide: Oracle failed for payment {payment.payment_id}: {e}")
            logger.error(traceback.format_exc())
            return None

        if result.approved and result.confidence < self.config.min_confidence:
            logger.info(
                f"VerifierAgent.decide: Oracle approved payment {payment.payment_id} with confidence "
                f"{result.confidence:.2f} below threshold {self.config.min_confidence:.2f}; rejecting"
            )
            return VerificationResult(
                approved=False,
                confidence=result.confidence,
                reason=f"Approval confidence below threshold: {result.reason}",
                issues=list(result.issues) + ["low confidence"]
            )
        return result

    async def _record_decision(self, receipt: TransitionReceipt, result: VerificationResult):
        """Mirror the ledger outcome and the decision rationale. Failures are logged as staleness."""
        try:
            for event in receipt.events:
                patch = project_event(event)
                try:
                    await self._mirror_call(self.mirror.apply_patch, patch)
                except MirrorRecordNotFoundError:
                    await self._mirror_call(self.mirror.upsert_payment, snapshot_to_mirror(receipt.payment))
                    await self._mirror_call(self.mirror.apply_patch, patch)
            verified = receipt.event(EventType.VERIFIED)
            await self._mirror_call(self.mirror.record_verification, Verification.from_result(verified, result))
        except Exception as e:
            logger.error(
                f"VerifierAgent._record_decision: Ledger verified payment {receipt.payment_id} "
                f"but mirror update failed: {e}"
            )
            logger.error(traceback.format_exc())

    async def review(self, item: ReviewItem) -> Optional[TransitionReceipt]:
        """Review one submitted payment and, if a decision is reached, record it on the ledger"""
        payment_id = item.payment.payment_id

        current = self.ledger.get_payment(payment_id)
        if current.status != PaymentStatus.SUBMITTED:
            logger.debug(f"VerifierAgent.review: Payment {payment_id} is {current.status.value} on the ledger, skipping")
            return None
        if current.verifier != self.address:
            return None

        if item.proof is not None:
            latest_verification = await self._mirror_call(self.mirror.get_latest_verification, payment_id)
            if latest_verification and latest_verification.event_sequence > item.proof.event_sequence:
                # Mirrored proof predates the last decision; the resubmitted proof has not landed yet
                logger.debug(f"VerifierAgent.review: Latest proof for payment {payment_id} not mirrored yet")
                return None

        result = await self.decide(item)
        if result is None:
            return None

        receipt = self.ledger.verify(caller=self.address, payment_id=payment_id, approved=result.approved)
        logger.info(
            f"VerifierAgent.review: Payment {payment_id} {'APPROVED' if result.approved else 'REJECTED'} "
            f"(confidence={result.confidence:.2f}) -> {receipt.payment.status.value}: {result.reason}"
        )
        await self._record_decision(receipt, result)
        return receipt

    async def run_once(self) -> ReviewStats:
        """Review every queued payment assigned to this verifier, isolating per-payment failures"""
        stats = ReviewStats()
        items: List[ReviewItem] = await self._mirror_call(
            self.mirror.list_submitted_with_proofs, self.config.review_batch_size
        )

        for item in items:
            if item.payment.verifier != self.address:
                continue
            stats.reviewed += 1
            try:
                receipt = await self.review(item)
            except Exception as e:
                stats.failed += 1
                logger.error(f"VerifierAgent.run_once: Error reviewing payment {item.payment.payment_id}: {e}")
                logger.error(traceback.format_exc())
                continue

            if receipt is None:
                stats.skipped += 1
            elif receipt.event(EventType.VERIFIED).data['approved']:
                stats.approved += 1
            else:
                stats.rejected += 1

        return stats

    def start(self) -> asyncio.Task:
        """Start the agent as an asyncio task"""
        self._shutdown_event.clear()
        self.monitor_task = asyncio.create_task(self.monitor(), name="VerifierAgent")
        return self.monitor_task

    def stop(self):
        self._shutdown_event.set()

    async def monitor(self):
        logger.info(f"VerifierAgent.monitor: Reviewing proofs as {self.address} every {self.config.poll_interval}s")
        try:
            while not self._shutdown_event.is_set():
                try:
                    stats = await self.run_once()
                    if stats.reviewed:
                        logger.debug(f"VerifierAgent.monitor: {stats}")
                except Exception as e:
                    logger.error(f"VerifierAgent.monitor: Review pass failed: {e}")
                    logger.error(traceback.format_exc())

                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.config.poll_interval)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.info("VerifierAgent.monitor: Shutdown requested")
            raise
        logger.info("VerifierAgent.monitor: Stopped")
