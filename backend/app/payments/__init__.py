"""Cross-chain USDC payment verification and settlement."""

from .amounts import split_fee, split_settlement, to_major_units, to_raw_units
from .cache import (
    MemorySettlementCache,
    NullSettlementCache,
    RedisSettlementCache,
    SettlementCache,
    build_cache,
)
from .errors import ErrorKind, PaymentError
from .ledger import PAYMENT_EVENTS_TABLE, PaymentLedger
from .models import (
    PaymentChain,
    PaymentProof,
    PriceableResource,
    ResourceType,
    VerificationResult,
    VerifiedPayment,
)
from .options import build_payment_options, build_payment_required, spam_fee_resource
from .orchestrator import PaymentOrchestrator, build_networks, build_orchestrator
from .proof import parse_payment_proof

__all__ = [
    "ErrorKind",
    "MemorySettlementCache",
    "NullSettlementCache",
    "PAYMENT_EVENTS_TABLE",
    "PaymentChain",
    "PaymentError",
    "PaymentLedger",
    "PaymentOrchestrator",
    "PaymentProof",
    "PriceableResource",
    "RedisSettlementCache",
    "ResourceType",
    "SettlementCache",
    "VerificationResult",
    "VerifiedPayment",
    "build_cache",
    "build_networks",
    "build_orchestrator",
    "build_payment_options",
    "build_payment_required",
    "parse_payment_proof",
    "spam_fee_resource",
    "split_fee",
    "split_settlement",
    "to_major_units",
    "to_raw_units",
]
