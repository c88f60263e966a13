"""
Propagates ledger transitions into the mirror.

The reconciler follows the ledger's event trail from a persisted cursor. Each event
is re-checked against the current ledger record before it is projected, so stale or
superseded facts never overwrite newer mirror state, and facts emitted by a caller
who does not hold the required role are ignored.
"""
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Dict, Optional, Callable, Any
import asyncio
import traceback

from loguru import logger

from conduittools.configuration.configuration import ReconcilerConfig
from conduittools.models.models import EventType, LedgerEvent, Payment
from conduittools.protocols.ledger import LedgerClient
from conduittools.protocols.mirror_repository import MirrorRepository
from conduittools.utilities.exceptions import MirrorRecordNotFoundError
from conduittools.utilities.projection import (
    created_event_to_mirror,
    expected_status,
    project_event,
    proof_from_event,
    snapshot_to_mirror,
)

async def call_mirror(timeout: float, func: Callable[..., Any], *args) -> Any:
    """Run a blocking mirror call off the event loop, bounded by timeout seconds"""
    async with asyncio.timeout(timeout):
        return await asyncio.to_thread(func, *args)

class BoundedKeySet:
    """Set of recently processed keys. Evicts the least recently seen key once full."""

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._keys: OrderedDict[str, None] = OrderedDict()

    def __contains__(self, key: str) -> bool:
        if key in self._keys:
            self._keys.move_to_end(key)
            return True
        return False

    def __len__(self) -> int:
        return len(self._keys)

    def add(self, key: str):
        self._keys[key] = None
        self._keys.move_to_end(key)
        while len(self._keys) > self.capacity:
            self._keys.popitem(last=False)

    def discard(self, key: str):
        self._keys.pop(key, None)

@dataclass
class ReconcileStats:
    """Outcome of one polling pass"""
    seen: int = 0
    applied: int = 0
    skipped: int = 0
    failed: int = 0
    cursor: int = 0

class LedgerReconciler:
    """Polls the ledger event trail and applies the matching mirror updates"""

    def __init__(
            self,
            ledger: LedgerClient,
            mirror: MirrorRepository,
            config: Optional[ReconcilerConfig] = None
        ):
        self.ledger = ledger
        self.mirror = mirror
        self.config = config or ReconcilerConfig()

        self.processed = BoundedKeySet(self.config.dedup_capacity)
        self._attempts: Dict[str, int] = {}
        self._cursor: Optional[int] = None

        self.monitor_task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

    @property
    def cursor(self) -> Optional[int]:
        return self._cursor

    async def _mirror_call(self, func: Callable[..., Any], *args) -> Any:
        return await call_mirror(self.config.mirror_timeout, func, *args)

    async def _load_cursor(self) -> int:
        """Persisted cursor, or a bounded lookback window behind the ledger head on first run"""
        if self._cursor is None:
            stored = await self._mirror_call(self.mirror.get_cursor, self.config.cursor_name)
            latest = self.ledger.latest_sequence()
            if stored is None:
                stored = max(0, latest - self.config.lookback_events)
                logger.info(f"LedgerReconciler._load_cursor: No saved cursor, starting from sequence {stored}")
            elif stored > latest:
                # Saved against a different ledger trail
                fallback = max(0, latest - self.config.lookback_events)
                logger.warning(
                    f"LedgerReconciler._load_cursor: Saved cursor {stored} is ahead of ledger head {latest}, "
                    f"restarting from sequence {fallback}"
                )
                stored = fallback
            self._cursor = stored
        return self._cursor

    @staticmethod
    def _caller_authorized(event: LedgerEvent, payment: Payment) -> bool:
        """Whether the event's caller holds the role its transition requires"""
        match event.event_type:
            case EventType.PAYMENT_CREATED:
                return event.caller == payment.principal
            case EventType.PAYMENT_ACCEPTED | EventType.PROOF_SUBMITTED:
                return event.caller == payment.worker
            case EventType.VERIFIED | EventType.RELEASED:
                return event.caller == payment.verifier
            case EventType.REFUNDED:
                # Timeout refunds may be triggered by anyone
                return True
            case _:
                return False

    async def _apply_patch(self, event: LedgerEvent, payment: Payment):
        patch = project_event(event)
        if patch.worker is None and payment.worker is not None:
            # The Accepted fact may have been superseded before this poll saw it
            patch = replace(patch, worker=payment.worker)
        try:
            await self._mirror_call(self.mirror.apply_patch, patch)
        except MirrorRecordNotFoundError:
            logger.warning(
                f"LedgerReconciler._apply_patch: Mirror is missing payment {event.payment_id}, "
                f"repairing from ledger snapshot"
            )
            await self._mirror_call(self.mirror.upsert_payment, snapshot_to_mirror(payment))
            await self._mirror_call(self.mirror.apply_patch, patch)

    async def reconcile_event(self, event: LedgerEvent) -> bool:
        """
        Project a single event into the mirror.

        Returns:
            bool: True if the mirror was updated, False if the event was superseded or unauthorized
        """
        payment = self.ledger.get_payment(event.payment_id)

        if payment.status != expected_status(event):
            logger.debug(
                f"LedgerReconciler.reconcile_event: Skipping {event.kind} #{event.sequence} for payment "
                f"{event.payment_id}; ledger has moved on to {payment.status.value}"
            )
            return False

        if not self._caller_authorized(event, payment):
            logger.warning(
                f"LedgerReconciler.reconcile_event: Ignoring {event.kind} #{event.sequence} for payment "
                f"{event.payment_id} from unauthorized caller {event.caller}"
            )
            return False

        match event.event_type:
            case EventType.PAYMENT_CREATED:
                await self._mirror_call(self.mirror.upsert_payment, created_event_to_mirror(event))
            case EventType.PROOF_SUBMITTED:
                await self._apply_patch(event, payment)
                await self._mirror_call(self.mirror.record_proof, proof_from_event(event))
            case _:
                await self._apply_patch(event, payment)

        logger.debug(
            f"LedgerReconciler.reconcile_event: Applied {event.kind} #{event.sequence} "
            f"for payment {event.payment_id}"
        )
        return True

    async def run_once(self) -> ReconcileStats:
        """
        Process the next batch of ledger events after the cursor.

        A failed event is retried on later polls; the cursor does not move past it until
        it succeeds or has failed max_event_attempts times. Events after it are still
        processed in this pass.
        """
        stats = ReconcileStats()
        cursor = await self._load_cursor()
        events = self.ledger.events_since(cursor, limit=self.config.batch_size)

        new_cursor = cursor
        blocked = False

        for event in events:
            stats.seen += 1
            key = event.dedup_key

            if key in self.processed:
                stats.skipped += 1
            else:
                try:
                    applied = await self.reconcile_event(event)
                    self.processed.add(key)
                    self._attempts.pop(key, None)
                    if applied:
                        stats.applied += 1
                    else:
                        stats.skipped += 1
                except Exception as e:
                    stats.failed += 1
                    attempts = self._attempts.get(key, 0) + 1
                    self._attempts[key] = attempts
                    logger.error(
                        f"LedgerReconciler.run_once: Failed to reconcile {event.kind} #{event.sequence} "
                        f"for payment {event.payment_id} (attempt {attempts}/{self.config.max_event_attempts}): {e}"
                    )
                    logger.error(traceback.format_exc())
                    if attempts >= self.config.max_event_attempts:
                        logger.error(
                            f"LedgerReconciler.run_once: Giving up on {event.kind} #{event.sequence}; "
                            f"mirror may be stale for payment {event.payment_id}"
                        )
                        self._attempts.pop(key, None)
                        self.processed.add(key)
                    else:
                        blocked = True

            if not blocked:
                new_cursor = event.sequence

        if new_cursor != cursor:
            await self._mirror_call(self.mirror.save_cursor, self.config.cursor_name, new_cursor)
            self._cursor = new_cursor

        stats.cursor = self._cursor
        return stats

    def start(self) -> asyncio.Task:
        """Start the reconciler as an asyncio task"""
        self._shutdown_event.clear()
        self.monitor_task = asyncio.create_task(self.monitor(), name="LedgerReconciler")
        return self.monitor_task

    def stop(self):
        """Signal the polling loop to stop after the current pass"""
        self._shutdown_event.set()

    async def monitor(self):
        """Poll until stopped. A failed pass is logged and retried on the next interval."""
        logger.info(f"LedgerReconciler.monitor: Starting with poll interval {self.config.poll_interval}s")
        try:
            while not self._shutdown_event.is_set():
                try:
                    stats = await self.run_once()
                    if stats.applied or stats.failed:
                        logger.info(
                            f"LedgerReconciler.monitor: Pass complete: seen={stats.seen} applied={stats.applied} "
                            f"skipped={stats.skipped} failed={stats.failed} cursor={stats.cursor}"
                        )
                except Exception as e:
                    logger.error(f"LedgerReconciler.monitor: Polling pass failed: {e}")
                    logger.error(traceback.format_exc())

                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.config.poll_interval)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.info("LedgerReconciler.monitor: Shutdown requested")
            raise
        logger.info("LedgerReconciler.monitor: Stopped")
