import os
import tempfile
import unittest
from decimal import Decimal

import sqlalchemy

from conduittools.models.models import MirrorPatch, MirrorPayment, PaymentStatus, Proof, Verification
from conduittools.security.hash_tools import compute_digest
from conduittools.sql.sql_manager import SQLManager
from conduittools.utilities.db_manager import DBConnectionManager
from conduittools.utilities.exceptions import MirrorRecordNotFoundError, MirrorWriteError
from conduittools.utilities.mirror_repository import MirrorRepository, PAYMENT_COLUMNS
from conduittools.utilities.setup_utilities.init_db import create_schema, drop_schema, init_database

CONDITION = "Write a 500 word summary of the quarterly report"

def make_payment(payment_id=1, created_at=1000.0, principal='0xPrincipal', condition_text=CONDITION, **overrides):
    fields = dict(
        payment_id=payment_id,
        principal=principal,
        verifier='0xVerifier',
        amount=Decimal('100'),
        condition_digest=compute_digest(CONDITION),
        deadline=created_at + 86400,
        created_at=created_at,
        condition_text=condition_text,
    )
    fields.update(overrides)
    return MirrorPayment(**fields)

class MirrorTestCase(unittest.TestCase):
    """Temporary SQLite mirror with the schema applied"""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.url = f"sqlite:///{os.path.join(self.tmpdir.name, 'mirror.sqlite')}"
        self.db_manager = DBConnectionManager(url=self.url)
        self.engine = self.db_manager.spawn_sqlalchemy_db_connection()
        create_schema(self.engine)
        self.mirror = MirrorRepository(self.db_manager)

    def tearDown(self):
        self.db_manager.close()
        self.tmpdir.cleanup()

class TestSchema(MirrorTestCase):
    def test_create_schema_creates_tables(self):
        tables = set(sqlalchemy.inspect(self.engine).get_table_names())
        self.assertTrue({'payments', 'proofs', 'verifications', 'reconciler_cursors'} <= tables)

    def test_sql_manager_reads_packaged_scripts(self):
        sql_manager = SQLManager()
        self.assertEqual(
            sql_manager.get_table_names('init', 'create_tables'),
            ['payments', 'proofs', 'verifications', 'reconciler_cursors']
        )
        self.assertIs(sql_manager.load_query('queries', 'get_cursor'), sql_manager.load_query('queries', 'get_cursor'))
        with self.assertRaises(FileNotFoundError):
            sql_manager.load_query('queries', 'no_such_query')

    def test_create_schema_is_rerunnable(self):
        create_schema(self.engine)
        self.mirror.upsert_payment(make_payment())
        create_schema(self.engine)
        self.assertIsNotNone(self.mirror.get_payment(1))

    def test_drop_tables_recreates_empty_schema(self):
        self.mirror.upsert_payment(make_payment())
        create_schema(self.engine, drop_tables=True)
        self.assertIsNone(self.mirror.get_payment(1))

    def test_init_database_from_url(self):
        self.assertTrue(init_database(url=self.url))
        self.assertFalse(init_database(drop_tables=True, url=self.url, input_prompt=lambda prompt: 'n'))

        self.mirror.upsert_payment(make_payment())
        self.assertTrue(init_database(drop_tables=True, url=self.url, input_prompt=lambda prompt: 'y'))
        self.assertIsNone(self.mirror.get_payment(1))

class TestMirrorPayments(MirrorTestCase):
    def test_upsert_and_get_payment(self):
        self.mirror.upsert_payment(make_payment(amount=Decimal('12.5')))

        payment = self.mirror.get_payment(1)
        self.assertEqual(payment.status, PaymentStatus.CREATED)
        self.assertEqual(payment.amount, Decimal('12.5'))
        self.assertEqual(payment.principal, '0xPrincipal')
        self.assertEqual(payment.condition_text, CONDITION)
        self.assertEqual(payment.deadline, 1000.0 + 86400)
        self.assertIsNone(payment.worker)
        self.assertIsNone(self.mirror.get_payment(2))

    def test_upsert_does_not_overwrite_existing_row(self):
        self.mirror.upsert_payment(make_payment(condition_text=None))
        self.mirror.upsert_payment(make_payment(condition_text=CONDITION, status=PaymentStatus.REFUNDED))

        payment = self.mirror.get_payment(1)
        self.assertEqual(payment.condition_text, CONDITION)
        self.assertEqual(payment.status, PaymentStatus.CREATED)

        self.mirror.upsert_payment(make_payment(condition_text="something else"))
        self.assertEqual(self.mirror.get_payment(1).condition_text, CONDITION)

    def test_apply_patch_is_idempotent(self):
        self.mirror.upsert_payment(make_payment())
        patch = MirrorPatch(
            payment_id=1,
            status=PaymentStatus.ACCEPTED,
            source_sequence=2,
            worker='0xWorker',
            accepted_at=1100.0
        )

        self.mirror.apply_patch(patch)
        once = self.mirror.get_payment(1)
        self.mirror.apply_patch(patch)
        twice = self.mirror.get_payment(1)

        self.assertEqual(once, twice)
        self.assertEqual(twice.status, PaymentStatus.ACCEPTED)
        self.assertEqual(twice.worker, '0xWorker')
        self.assertEqual(twice.accepted_at, 1100.0)

    def test_older_patch_does_not_regress_status(self):
        self.mirror.upsert_payment(make_payment())
        self.mirror.apply_patch(MirrorPatch(payment_id=1, status=PaymentStatus.SUBMITTED, source_sequence=5, submitted_at=1300.0))
        self.mirror.apply_patch(MirrorPatch(
            payment_id=1,
            status=PaymentStatus.ACCEPTED,
            source_sequence=3,
            worker='0xWorker',
            accepted_at=1100.0
        ))

        payment = self.mirror.get_payment(1)
        self.assertEqual(payment.status, PaymentStatus.SUBMITTED)
        # Set-once fields still fill in from the late patch
        self.assertEqual(payment.worker, '0xWorker')
        self.assertEqual(payment.accepted_at, 1100.0)

    def test_derived_timestamps_are_set_once(self):
        self.mirror.upsert_payment(make_payment())
        self.mirror.apply_patch(MirrorPatch(payment_id=1, status=PaymentStatus.ACCEPTED, source_sequence=4, verified_at=1200.0))
        self.mirror.apply_patch(MirrorPatch(payment_id=1, status=PaymentStatus.RELEASED, source_sequence=6, verified_at=1400.0))

        payment = self.mirror.get_payment(1)
        self.assertEqual(payment.status, PaymentStatus.RELEASED)
        self.assertEqual(payment.verified_at, 1200.0)

    def test_apply_patch_to_missing_row(self):
        with self.assertRaises(MirrorRecordNotFoundError) as ctx:
            self.mirror.apply_patch(MirrorPatch(payment_id=99, status=PaymentStatus.ACCEPTED, source_sequence=2))
        self.assertEqual(ctx.exception.payment_id, 99)

    def test_list_payments_filters(self):
        self.mirror.upsert_payment(make_payment(payment_id=1, created_at=1000.0))
        self.mirror.upsert_payment(make_payment(payment_id=2, created_at=2000.0, principal='0xOtherPrincipal'))
        self.mirror.upsert_payment(make_payment(payment_id=3, created_at=3000.0))
        self.mirror.apply_patch(MirrorPatch(payment_id=3, status=PaymentStatus.ACCEPTED, source_sequence=4, worker='0xWorker'))

        self.assertEqual([p.payment_id for p in self.mirror.list_payments()], [3, 2, 1])
        self.assertEqual([p.payment_id for p in self.mirror.list_payments(status=PaymentStatus.CREATED)], [2, 1])
        self.assertEqual([p.payment_id for p in self.mirror.list_payments(principal='0xPrincipal')], [3, 1])
        self.assertEqual([p.payment_id for p in self.mirror.list_payments(worker='0xWorker')], [3])
        self.assertEqual([p.payment_id for p in self.mirror.list_payments(limit=1)], [3])
        self.assertEqual([p.payment_id for p in self.mirror.list_available()], [2, 1])

    def test_payments_dataframe(self):
        self.mirror.upsert_payment(make_payment(payment_id=1, created_at=1000.0))
        self.mirror.upsert_payment(make_payment(payment_id=2, created_at=2000.0))

        df = self.mirror.get_payments_dataframe()
        self.assertEqual(list(df.columns), list(PAYMENT_COLUMNS))
        self.assertEqual(df['payment_id'].tolist(), [2, 1])
        self.assertEqual(df['status'].tolist(), ['Created', 'Created'])

        empty = self.mirror.get_payments_dataframe(status=PaymentStatus.RELEASED)
        self.assertTrue(empty.empty)
        self.assertEqual(list(empty.columns), list(PAYMENT_COLUMNS))

    def test_write_failure_raises_mirror_write_error(self):
        drop_schema(self.engine)
        with self.assertRaises(MirrorWriteError) as ctx:
            self.mirror.upsert_payment(make_payment())
        self.assertEqual(ctx.exception.payment_id, 1)

class TestMirrorProofsAndVerifications(MirrorTestCase):
    def setUp(self):
        super().setUp()
        self.mirror.upsert_payment(make_payment())

    def _proof(self, sequence, content):
        return Proof(
            event_sequence=sequence,
            payment_id=1,
            proof_digest=compute_digest(content),
            submitted_by='0xWorker',
            submitted_at=1000.0 + sequence,
            content=content
        )

    def test_latest_proof(self):
        self.assertIsNone(self.mirror.get_latest_proof(1))
        self.mirror.record_proof(self._proof(3, "first draft"))
        self.mirror.record_proof(self._proof(5, "second draft"))

        latest = self.mirror.get_latest_proof(1)
        self.assertEqual(latest.event_sequence, 5)
        self.assertEqual(latest.content, "second draft")
        self.assertEqual(latest.submitted_by, '0xWorker')

    def test_record_proof_fills_missing_content_only(self):
        proof = self._proof(3, "first draft")
        bare = Proof(**{**proof.__dict__, 'content': None})

        self.mirror.record_proof(bare)
        self.assertIsNone(self.mirror.get_latest_proof(1).content)

        self.mirror.record_proof(proof)
        self.assertEqual(self.mirror.get_latest_proof(1).content, "first draft")

        self.mirror.record_proof(Proof(**{**proof.__dict__, 'content': "rewritten"}))
        self.assertEqual(self.mirror.get_latest_proof(1).content, "first draft")

    def test_review_queue_joins_latest_proof(self):
        self.mirror.upsert_payment(make_payment(payment_id=2, created_at=2000.0))
        self.mirror.record_proof(self._proof(3, "first draft"))
        self.mirror.record_proof(self._proof(5, "second draft"))
        self.mirror.apply_patch(MirrorPatch(payment_id=1, status=PaymentStatus.SUBMITTED, source_sequence=5, submitted_at=1005.0))
        self.mirror.apply_patch(MirrorPatch(payment_id=2, status=PaymentStatus.SUBMITTED, source_sequence=6, submitted_at=1006.0))

        items = self.mirror.list_submitted_with_proofs()
        self.assertEqual([item.payment.payment_id for item in items], [1, 2])
        self.assertEqual(items[0].proof.event_sequence, 5)
        self.assertEqual(items[0].proof.content, "second draft")
        self.assertEqual(items[0].proof.proof_digest, compute_digest("second draft"))
        self.assertIsNone(items[1].proof)

    def test_verifications_newest_first(self):
        self.assertIsNone(self.mirror.get_latest_verification(1))
        first = Verification(
            event_sequence=4, payment_id=1, approved=False, confidence=0.9,
            reason="Summary is too short", verified_at=1004.0, issues=["under 500 words"]
        )
        second = Verification(
            event_sequence=7, payment_id=1, approved=True, confidence=0.8,
            reason="Summary covers the report", verified_at=1007.0
        )
        self.mirror.record_verification(first)
        self.mirror.record_verification(second)
        self.mirror.record_verification(first)

        verifications = self.mirror.list_verifications(1)
        self.assertEqual([v.event_sequence for v in verifications], [7, 4])
        self.assertEqual(verifications[1], first)
        self.assertIs(verifications[0].approved, True)
        self.assertEqual(verifications[0].issues, [])
        self.assertEqual(self.mirror.get_latest_verification(1), second)

    def test_cursor_round_trip(self):
        self.assertIsNone(self.mirror.get_cursor('mirror_reconciler'))
        self.mirror.save_cursor('mirror_reconciler', 12)
        self.mirror.save_cursor('mirror_reconciler', 40)
        self.mirror.save_cursor('other', 3)

        self.assertEqual(self.mirror.get_cursor('mirror_reconciler'), 40)
        self.assertEqual(self.mirror.get_cursor('other'), 3)

if __name__ == '__main__':
    unittest.main()
