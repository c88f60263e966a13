import threading
import unittest
from decimal import Decimal

from conduittools.models.models import PaymentStatus, EventType
from conduittools.security.hash_tools import compute_digest
from conduittools.utilities.escrow_vault import EscrowVault
from conduittools.utilities.exceptions import InvalidStateError, PaymentLedgerError
from conduittools.utilities.ledger import PaymentLedger

PRINCIPAL = '0xPrincipal'
VERIFIER = '0xVerifier'

class MutableClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

class TestLedgerConcurrency(unittest.TestCase):
    def setUp(self):
        self.clock = MutableClock()
        self.vault = EscrowVault()
        self.vault.deposit(PRINCIPAL, Decimal('10000'))
        self.ledger = PaymentLedger(vault=self.vault, clock=self.clock)

    def _create(self) -> int:
        return self.ledger.create_payment(
            caller=PRINCIPAL,
            verifier=VERIFIER,
            condition_digest=compute_digest("Label 500 images"),
            deadline=self.clock.now + 3600,
            amount=Decimal('100')
        ).payment_id

    def _race(self, targets):
        """Start every target at the same moment and collect (result, error) per thread"""
        barrier = threading.Barrier(len(targets))
        outcomes = []
        outcomes_lock = threading.Lock()

        def run(target):
            barrier.wait()
            try:
                result, error = target(), None
            except PaymentLedgerError as e:
                result, error = None, e
            with outcomes_lock:
                outcomes.append((result, error))

        threads = [threading.Thread(target=run, args=(target,)) for target in targets]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return outcomes

    def test_concurrent_accepts_have_one_winner(self):
        payment_id = self._create()
        workers = [f'0xWorker{i}' for i in range(8)]

        outcomes = self._race([
            (lambda worker=worker: self.ledger.accept_payment(worker, payment_id)) for worker in workers
        ])

        successes = [result for result, error in outcomes if error is None]
        failures = [error for result, error in outcomes if error is not None]
        self.assertEqual(len(successes), 1)
        self.assertEqual(len(failures), len(workers) - 1)
        for error in failures:
            self.assertIsInstance(error, InvalidStateError)

        payment = self.ledger.get_payment(payment_id)
        self.assertEqual(payment.status, PaymentStatus.ACCEPTED)
        self.assertEqual(payment.worker, successes[0].payment.worker)

        accepted = [e for e in self.ledger.events_since(0) if e.event_type == EventType.PAYMENT_ACCEPTED]
        self.assertEqual(len(accepted), 1)

    def test_concurrent_creates_get_unique_ids_and_contiguous_events(self):
        outcomes = self._race([self._create for _ in range(20)])

        ids = sorted(payment_id for payment_id, error in outcomes)
        self.assertEqual(ids, list(range(1, 21)))
        self.assertEqual(
            [event.sequence for event in self.ledger.events_since(0)],
            list(range(1, 21))
        )
        self.assertEqual(self.vault.balance_of(PRINCIPAL), Decimal('8000'))

    def test_concurrent_timeout_refunds_pay_out_once(self):
        payment_id = self._create()
        self.clock.now += 7200

        outcomes = self._race([
            (lambda caller=caller: self.ledger.refund_on_timeout(caller, payment_id))
            for caller in ('0xKeeperA', '0xKeeperB', '0xKeeperC', PRINCIPAL)
        ])

        self.assertEqual(sum(1 for _, error in outcomes if error is None), 1)
        self.assertEqual(self.vault.disbursements(payment_id), [(PRINCIPAL, Decimal('100'))])
        self.assertEqual(self.vault.balance_of(PRINCIPAL), Decimal('10000'))

    def test_verify_races_refund_after_deadline(self):
        payment_id = self._create()
        self.ledger.accept_payment('0xWorker', payment_id)
        self.ledger.submit_proof('0xWorker', payment_id, compute_digest("labels.csv"))
        self.clock.now += 7200

        outcomes = self._race([
            lambda: self.ledger.verify(VERIFIER, payment_id, True),
            lambda: self.ledger.refund_on_timeout('0xKeeper', payment_id),
        ])

        self.assertEqual(sum(1 for _, error in outcomes if error is None), 1)
        self.assertEqual(len(self.vault.disbursements(payment_id)), 1)
        self.assertTrue(self.ledger.get_payment(payment_id).status.is_terminal)

    def test_operations_on_different_payments_do_not_interfere(self):
        payment_ids = [self._create() for _ in range(10)]

        outcomes = self._race([
            (lambda pid=pid: self.ledger.accept_payment(f'0xWorker{pid}', pid)) for pid in payment_ids
        ])

        self.assertTrue(all(error is None for _, error in outcomes))
        for pid in payment_ids:
            self.assertEqual(self.ledger.get_payment(pid).worker, f'0xWorker{pid}')

if __name__ == '__main__':
    unittest.main()
