from typing import List, Dict, Any, Optional
from decimal import Decimal
import json
import time
import traceback

import pandas as pd
import sqlalchemy
from sqlalchemy import text
from loguru import logger

from conduittools.configuration.constants import DEFAULT_LIST_LIMIT
from conduittools.models.models import (
    MirrorPayment,
    MirrorPatch,
    PaymentStatus,
    Proof,
    Verification,
    ReviewItem,
)
from conduittools.sql.sql_manager import SQLManager
from conduittools.utilities.db_manager import DBConnectionManager
from conduittools.utilities.exceptions import MirrorRecordNotFoundError, MirrorWriteError

PAYMENT_COLUMNS = (
    'payment_id', 'principal', 'verifier', 'amount', 'condition_digest', 'deadline', 'created_at',
    'status', 'condition_text', 'worker', 'accepted_at', 'submitted_at', 'verified_at',
    'released_at', 'refunded_at',
)

class MirrorRepository:
    """
    SQL-backed mirror of ledger state.

    Every write corresponds to a ledger transition that already succeeded; nothing here
    decides a status on its own. Reads never touch the ledger.
    """

    def __init__(self, db_manager: DBConnectionManager, credential_key: Optional[str] = None):
        self.db_manager = db_manager
        self.credential_key = credential_key
        self.sql_manager = SQLManager()

    @property
    def engine(self) -> sqlalchemy.Engine:
        return self.db_manager.spawn_sqlalchemy_db_connection(self.credential_key)

    def _fetch(self, query_name: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Run a named query from sql/queries and return rows as dictionaries"""
        query = self.sql_manager.load_query('queries', query_name)
        try:
            with self.engine.connect() as conn:
                result = conn.execute(text(query), params)
                return [dict(row) for row in result.mappings()]
        except Exception as e:
            logger.error(f"MirrorRepository._fetch: Error executing {query_name}: {e}")
            logger.error(f"Params: {params}")
            logger.error(traceback.format_exc())
            raise

    def _write(self, query_name: str, params: Dict[str, Any], payment_id: int) -> int:
        """Run a named write query in its own transaction and return the affected row count"""
        query = self.sql_manager.load_query('queries', query_name)
        try:
            with self.engine.begin() as conn:
                result = conn.execute(text(query), params)
                return result.rowcount
        except sqlalchemy.exc.SQLAlchemyError as e:
            logger.error(f"MirrorRepository._write: Error executing {query_name} for payment {payment_id}: {e}")
            logger.error(traceback.format_exc())
            raise MirrorWriteError(query_name, payment_id, e) from e

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_payment(row: Dict[str, Any]) -> MirrorPayment:
        return MirrorPayment(
            payment_id=int(row['payment_id']),
            principal=row['principal'],
            verifier=row['verifier'],
            amount=Decimal(str(row['amount'])),
            condition_digest=row['condition_digest'],
            deadline=float(row['deadline']),
            created_at=float(row['created_at']),
            status=PaymentStatus(row['status']),
            condition_text=row['condition_text'],
            worker=row['worker'],
            accepted_at=row['accepted_at'],
            submitted_at=row['submitted_at'],
            verified_at=row['verified_at'],
            released_at=row['released_at'],
            refunded_at=row['refunded_at'],
        )

    @staticmethod
    def _row_to_proof(row: Dict[str, Any], prefix: str = '') -> Proof:
        return Proof(
            event_sequence=int(row[f'{prefix}event_sequence']),
            payment_id=int(row['payment_id']),
            proof_digest=row['proof_digest'],
            submitted_by=row[f'{prefix}submitted_by'],
            submitted_at=float(row[f'{prefix}submitted_at']),
            proof_type=row['proof_type'],
            content=row[f'{prefix}content'],
            content_ref=row[f'{prefix}content_ref'],
        )

    @staticmethod
    def _row_to_verification(row: Dict[str, Any]) -> Verification:
        return Verification(
            event_sequence=int(row['event_sequence']),
            payment_id=int(row['payment_id']),
            approved=bool(row['approved']),
            confidence=float(row['confidence']),
            reason=row['reason'],
            verified_at=float(row['verified_at']),
            issues=json.loads(row['issues']) if row['issues'] else [],
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_payment(self, payment: MirrorPayment) -> None:
        """Insert a payment row; an existing row only gains a missing condition text"""
        self._write('upsert_payment', {
            'payment_id': payment.payment_id,
            'principal': payment.principal,
            'verifier': payment.verifier,
            'worker': payment.worker,
            'amount': str(payment.amount),
            'condition_digest': payment.condition_digest,
            'condition_text': payment.condition_text,
            'status': payment.status.value,
            'deadline': payment.deadline,
            'created_at': payment.created_at,
        }, payment.payment_id)

    def apply_patch(self, patch: MirrorPatch) -> None:
        """Apply one transition's patch. Re-applying the same patch changes nothing."""
        updated = self._write('apply_patch', {
            'payment_id': patch.payment_id,
            'status': patch.status.value,
            'worker': patch.worker,
            'accepted_at': patch.accepted_at,
            'submitted_at': patch.submitted_at,
            'verified_at': patch.verified_at,
            'released_at': patch.released_at,
            'refunded_at': patch.refunded_at,
            'source_sequence': patch.source_sequence,
        }, patch.payment_id)
        if updated == 0:
            raise MirrorRecordNotFoundError(patch.payment_id)

    def record_proof(self, proof: Proof) -> None:
        self._write('insert_proof', {
            'event_sequence': proof.event_sequence,
            'payment_id': proof.payment_id,
            'proof_digest': proof.proof_digest,
            'proof_type': proof.proof_type,
            'content': proof.content,
            'content_ref': proof.content_ref,
            'submitted_by': proof.submitted_by,
            'submitted_at': proof.submitted_at,
        }, proof.payment_id)

    def record_verification(self, verification: Verification) -> None:
        self._write('insert_verification', {
            'event_sequence': verification.event_sequence,
            'payment_id': verification.payment_id,
            'approved': verification.approved,
            'confidence': verification.confidence,
            'reason': verification.reason,
            'issues': json.dumps(verification.issues) if verification.issues else None,
            'verified_at': verification.verified_at,
        }, verification.payment_id)

    def save_cursor(self, cursor_name: str, sequence: int) -> None:
        self._write('save_cursor', {
            'cursor_name': cursor_name,
            'last_sequence': sequence,
            'updated_at': time.time(),
        }, None)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_payment(self, payment_id: int) -> Optional[MirrorPayment]:
        rows = self._fetch('get_payment', {'payment_id': payment_id})
        return self._row_to_payment(rows[0]) if rows else None

    def list_payments(
            self,
            status: Optional[PaymentStatus] = None,
            principal: Optional[str] = None,
            worker: Optional[str] = None,
            limit: int = DEFAULT_LIST_LIMIT
        ) -> List[MirrorPayment]:
        """List payments newest first, filtered by any combination of status and parties"""
        rows = self._fetch('list_payments', {
            'status': status.value if status else None,
            'principal': principal,
            'worker': worker,
            'limit': limit,
        })
        return [self._row_to_payment(row) for row in rows]

    def list_available(self, limit: int = DEFAULT_LIST_LIMIT) -> List[MirrorPayment]:
        """Marketplace view: payments nobody has accepted yet"""
        return self.list_payments(status=PaymentStatus.CREATED, limit=limit)

    def list_submitted_with_proofs(self, limit: int = DEFAULT_LIST_LIMIT) -> List[ReviewItem]:
        """Review queue of Submitted payments with their latest proof"""
        rows = self._fetch('list_submitted_with_proofs', {'limit': limit})
        items = []
        for row in rows:
            proof = None
            if row['proof_event_sequence'] is not None:
                proof = self._row_to_proof(row, prefix='proof_')
            items.append(ReviewItem(payment=self._row_to_payment(row), proof=proof))
        return items

    def get_latest_proof(self, payment_id: int) -> Optional[Proof]:
        rows = self._fetch('get_latest_proof', {'payment_id': payment_id})
        return self._row_to_proof(rows[0]) if rows else None

    def list_verifications(self, payment_id: int) -> List[Verification]:
        """Verification attempts for a payment, newest first"""
        rows = self._fetch('list_verifications', {'payment_id': payment_id})
        return [self._row_to_verification(row) for row in rows]

    def get_latest_verification(self, payment_id: int) -> Optional[Verification]:
        verifications = self.list_verifications(payment_id)
        return verifications[0] if verifications else None

    def get_cursor(self, cursor_name: str) -> Optional[int]:
        rows = self._fetch('get_cursor', {'cursor_name': cursor_name})
        return int(rows[0]['last_sequence']) if rows else None

    def get_payments_dataframe(self, status: Optional[PaymentStatus] = None, limit: int = 1000) -> pd.DataFrame:
        """Payments as a DataFrame with a consistent column structure, for CLI listing"""
        payments = self.list_payments(status=status, limit=limit)
        records = []
        for payment in payments:
            record = {column: getattr(payment, column) for column in PAYMENT_COLUMNS}
            record['status'] = payment.status.value
            records.append(record)
        return pd.DataFrame(records, columns=list(PAYMENT_COLUMNS))
