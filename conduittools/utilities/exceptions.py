from enum import Enum

class ErrorKind(Enum):
    INVALID_INPUT = 'InvalidInput'
    INVALID_STATE = 'InvalidState'
    NOT_AUTHORIZED = 'NotAuthorized'
    DEADLINE_EXPIRED = 'DeadlineExpired'
    DEADLINE_NOT_EXPIRED = 'DeadlineNotExpired'
    NOT_FOUND = 'NotFound'
    TRANSFER_FAILURE = 'TransferFailure'

# Kinds where the same call may succeed later
RETRYABLE_KINDS = {
    ErrorKind.DEADLINE_NOT_EXPIRED,
    ErrorKind.TRANSFER_FAILURE,
}

# LEDGER EXCEPTIONS

class PaymentLedgerError(Exception):
    """ Base class for every rejected ledger operation. Carries the rejection kind. """
    kind: ErrorKind = None

    def __init__(self, message: str, payment_id: int = None):
        super().__init__(f"{self.kind.value}: {message}")
        self.payment_id = payment_id

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

class InvalidInputError(PaymentLedgerError):
    """ This exception is raised when createPayment or submitProof receives malformed arguments """
    kind = ErrorKind.INVALID_INPUT

class InvalidStateError(PaymentLedgerError):
    """ This exception is raised when the payment status does not permit the operation """
    kind = ErrorKind.INVALID_STATE

    def __init__(self, payment_id, status, operation):
        super().__init__(f"Cannot {operation} payment {payment_id} in status {status.value}", payment_id)
        self.status = status

class NotAuthorizedError(PaymentLedgerError):
    """ This exception is raised when the caller does not hold the role the operation requires """
    kind = ErrorKind.NOT_AUTHORIZED

    def __init__(self, payment_id, caller, role):
        super().__init__(f"{caller} is not allowed to act as {role} on payment {payment_id}", payment_id)
        self.caller = caller

class DeadlineExpiredError(PaymentLedgerError):
    """ This exception is raised when an operation requires the deadline to still be in the future """
    kind = ErrorKind.DEADLINE_EXPIRED

    def __init__(self, payment_id, deadline):
        super().__init__(f"Deadline {deadline} has passed for payment {payment_id}", payment_id)

class DeadlineNotExpiredError(PaymentLedgerError):
    """ This exception is raised when a timeout refund is attempted before the deadline """
    kind = ErrorKind.DEADLINE_NOT_EXPIRED

    def __init__(self, payment_id, deadline):
        super().__init__(f"Deadline {deadline} has not passed yet for payment {payment_id}", payment_id)

class PaymentNotFoundError(PaymentLedgerError):
    """ This exception is raised when the payment id does not exist """
    kind = ErrorKind.NOT_FOUND

    def __init__(self, payment_id):
        super().__init__(f"Payment {payment_id} not found", payment_id)

class TransferFailureError(PaymentLedgerError):
    """ This exception is raised when funds cannot be moved into or out of escrow """
    kind = ErrorKind.TRANSFER_FAILURE

class InsufficientFundsError(TransferFailureError):
    """ This exception is raised when the principal cannot cover the escrowed amount """
    def __init__(self, address, required, available):
        super().__init__(f"Insufficient balance for {address}: required {required}, available {available}")
        self.address = address

# MIRROR EXCEPTIONS

class MirrorWriteError(Exception):
    """ This exception is raised when a mirror write fails. The ledger result stands. """
    def __init__(self, operation, payment_id, cause):
        super().__init__(f"Mirror {operation} failed for payment {payment_id}: {cause}")
        self.payment_id = payment_id

class MirrorRecordNotFoundError(Exception):
    """ This exception is raised when a transition patch targets a payment the mirror has not seen """
    def __init__(self, payment_id):
        super().__init__(f"Mirror has no record for payment {payment_id}")
        self.payment_id = payment_id

# ORACLE EXCEPTIONS

class OracleError(Exception):
    """ Base class for verification oracle failures """
    pass

class OracleResponseError(OracleError):
    """ This exception is raised when the oracle output cannot be parsed into a decision """
    def __init__(self, raw_output):
        super().__init__(f"Unparseable oracle response: {raw_output!r:.200}")
        self.raw_output = raw_output

class OracleUnavailableError(OracleError):
    """ This exception is raised when every oracle credential is exhausted """
    def __init__(self, key_count):
        super().__init__(f"All {key_count} oracle credentials are exhausted")

# CREDENTIAL EXCEPTIONS

class CredentialsExpiredError(Exception):
    """Exception raised when the encryption key has expired"""
    pass
