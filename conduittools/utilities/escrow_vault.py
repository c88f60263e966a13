from decimal import Decimal
from typing import Dict, List, Tuple
import threading
from loguru import logger
from conduittools.utilities.exceptions import TransferFailureError, InsufficientFundsError

class EscrowVault:
    """
    Fund custody book backing the ledger.

    Tracks spendable balances per address and the amount held in escrow per payment.
    Each payment's escrow can be paid out exactly once, in full.
    """

    def __init__(self):
        self._balances: Dict[str, Decimal] = {}
        self._escrowed: Dict[int, Decimal] = {}
        self._disbursements: Dict[int, List[Tuple[str, Decimal]]] = {}
        self._lock = threading.Lock()

    def deposit(self, address: str, amount: Decimal) -> Decimal:
        """Credit spendable funds to an address and return the new balance"""
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError(f"Deposit amount must be positive, got {amount}")
        with self._lock:
            self._balances[address] = self._balances.get(address, Decimal('0')) + amount
            return self._balances[address]

    def balance_of(self, address: str) -> Decimal:
        with self._lock:
            return self._balances.get(address, Decimal('0'))

    def escrowed(self, payment_id: int) -> Decimal:
        with self._lock:
            return self._escrowed.get(payment_id, Decimal('0'))

    def disbursements(self, payment_id: int) -> List[Tuple[str, Decimal]]:
        with self._lock:
            return list(self._disbursements.get(payment_id, []))

    def total_disbursed(self, payment_id: int) -> Decimal:
        return sum((amount for _, amount in self.disbursements(payment_id)), Decimal('0'))

    def escrow(self, payment_id: int, owner: str, amount: Decimal) -> None:
        """Move amount from the owner's spendable balance into escrow for payment_id"""
        with self._lock:
            if payment_id in self._escrowed or payment_id in self._disbursements:
                raise TransferFailureError(f"Escrow already opened for payment {payment_id}", payment_id)
            available = self._balances.get(owner, Decimal('0'))
            if available < amount:
                raise InsufficientFundsError(owner, amount, available)
            self._balances[owner] = available - amount
            self._escrowed[payment_id] = amount
        logger.debug(f"EscrowVault.escrow: Locked {amount} from {owner} for payment {payment_id}")

    def release(self, payment_id: int, recipient: str) -> Decimal:
        """Pay the full escrowed amount to recipient. Fails if nothing is held."""
        with self._lock:
            amount = self._escrowed.get(payment_id)
            if amount is None:
                raise TransferFailureError(f"No funds held in escrow for payment {payment_id}", payment_id)
            del self._escrowed[payment_id]
            self._balances[recipient] = self._balances.get(recipient, Decimal('0')) + amount
            self._disbursements.setdefault(payment_id, []).append((recipient, amount))
        logger.debug(f"EscrowVault.release: Disbursed {amount} to {recipient} for payment {payment_id}")
        return amount
