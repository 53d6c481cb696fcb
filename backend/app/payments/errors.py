"""Error taxonomy for payment verification and settlement.

Every failure inside the engine is a ``PaymentError`` carrying:
- ``kind``: the coarse category callers branch on (retry, 4xx vs 5xx)
- ``code``: the verifier-specific reason (``MEMO_EXPIRED``, ``TX_REVERTED``, ...)
- ``retryable``: whether re-running the whole verification may succeed
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Coarse error categories."""

    parse_error = "PARSE_ERROR"
    already_used = "ALREADY_USED"
    unsupported_chain = "UNSUPPORTED_CHAIN"
    transaction_not_found = "TRANSACTION_NOT_FOUND"
    transaction_failed = "TRANSACTION_FAILED"
    insufficient_confirmations = "INSUFFICIENT_CONFIRMATIONS"
    amount_mismatch = "AMOUNT_MISMATCH"
    reference_mismatch = "REFERENCE_MISMATCH"
    rpc_timeout = "RPC_TIMEOUT"
    rpc_unavailable = "RPC_UNAVAILABLE"
    misconfigured_recipient = "MISCONFIGURED_RECIPIENT"
    internal_error = "INTERNAL_ERROR"


class PaymentError(Exception):
    """Base class for all payment verification failures."""

    kind: ErrorKind = ErrorKind.internal_error
    default_code: str = "INTERNAL_ERROR"
    retryable: bool = False

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "error_code": self.code,
            "error_kind": self.kind.value,
            "retryable": self.retryable,
        }


class ProofParseError(PaymentError):
    """Malformed or unsupported payment proof. Never reaches network or ledger."""

    kind = ErrorKind.parse_error
    default_code = "INVALID_PROOF"


class UnsupportedChainError(PaymentError):
    kind = ErrorKind.unsupported_chain
    default_code = "UNSUPPORTED_CHAIN"


class AlreadyUsedError(PaymentError):
    """The transaction is already present in the payment ledger."""

    kind = ErrorKind.already_used
    default_code = "TRANSACTION_ALREADY_USED"


class TransactionNotFoundError(PaymentError):
    kind = ErrorKind.transaction_not_found
    default_code = "TX_NOT_FOUND"
    retryable = True


class TransactionFailedError(PaymentError):
    """The transaction exists but failed or reverted on-chain."""

    kind = ErrorKind.transaction_failed
    default_code = "TX_FAILED"


class InsufficientConfirmationsError(PaymentError):
    """Found but not yet final. Retrying later is expected to succeed."""

    kind = ErrorKind.insufficient_confirmations
    default_code = "INSUFFICIENT_CONFIRMATIONS"
    retryable = True

    def __init__(self, message: str, code: str | None = None, confirmations: int | None = None):
        super().__init__(message, code)
        self.confirmations = confirmations


class AmountMismatchError(PaymentError):
    """Underpayment, wrong token, or no transfer to an expected recipient."""

    kind = ErrorKind.amount_mismatch
    default_code = "INSUFFICIENT_AMOUNT"


class ReferenceMismatchError(PaymentError):
    """Memo/reference missing, bound to another resource, or outside the validity window."""

    kind = ErrorKind.reference_mismatch
    default_code = "INVALID_REFERENCE"


class RpcTimeoutError(PaymentError):
    kind = ErrorKind.rpc_timeout
    default_code = "RPC_TIMEOUT"
    retryable = True


class RpcUnavailableError(PaymentError):
    kind = ErrorKind.rpc_unavailable
    default_code = "RPC_ERROR"
    retryable = True


class MisconfiguredRecipientError(PaymentError):
    """Operator error: the resource has no payout address on the paid chain."""

    kind = ErrorKind.misconfigured_recipient
    default_code = "MISCONFIGURED_RECIPIENT"
