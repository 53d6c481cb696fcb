"""Domain models for payment verification and settlement.

Amounts are raw integer units (6 decimals) everywhere except
``PriceableResource.price_usdc``, which is a Decimal in major units.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, model_validator

from .amounts import to_major_units, to_raw_units

# =============================================================================
# Enums
# =============================================================================


class PaymentChain(str, Enum):
    """Supported settlement chains."""

    solana = "solana"  # account-chain: SPL transfer + memo instruction
    base = "base"  # contract-chain: ERC-20 Transfer log + off-chain reference


class ResourceType(str, Enum):
    """What a payment buys."""

    post = "post"
    spam_fee = "spam_fee"  # anti-abuse publish fee, 100% to the platform


class PaymentStatus(str, Enum):
    """Ledger row status. This engine only ever writes ``confirmed``."""

    confirmed = "confirmed"
    failed = "failed"
    expired = "expired"


class VerificationState(str, Enum):
    """Orchestrator progress; a result reports the last state reached."""

    start = "start"
    replay_checked = "replay_checked"
    cache_checked = "cache_checked"
    chain_verified = "chain_verified"
    recorded = "recorded"
    done = "done"
    error = "error"


class VerificationStatus(str, Enum):
    settled = "settled"
    already_processed = "already_processed"
    failed = "failed"


# =============================================================================
# Inputs
# =============================================================================


class PaymentProof(BaseModel):
    """Client-submitted payment proof (X-Payment-Proof wire format)."""

    chain: PaymentChain
    transaction_signature: str
    payer_address: str
    timestamp: int  # advisory only, never used for freshness
    reference: str | None = None  # contract-chain reference from the 402 descriptor

    class Config:
        frozen = True


class PriceableResource(BaseModel):
    """A post or a flat spam fee that can be paid for."""

    resource_type: ResourceType
    resource_id: str
    price_usdc: Decimal = Field(ge=0)
    recipient_id: str | None = None
    recipient_address_by_chain: dict[PaymentChain, str] = Field(default_factory=dict)

    class Config:
        frozen = True

    @property
    def price_raw(self) -> int:
        return to_raw_units(self.price_usdc)

    @property
    def is_spam_fee(self) -> bool:
        return self.resource_type == ResourceType.spam_fee

    @property
    def binding_id(self) -> str:
        """Identifier embedded in memos and references for this resource."""
        if self.is_spam_fee:
            return f"spam_fee:{self.resource_id}"
        return self.resource_id

    def payout_address(self, chain: PaymentChain) -> str | None:
        address = self.recipient_address_by_chain.get(chain)
        return address or None


# =============================================================================
# Verified payment / ledger
# =============================================================================


@dataclass
class VerifiedPayment:
    """Trusted output of a chain verifier. Chain-agnostic apart from ``chain``."""

    transaction_signature: str
    payer_address: str
    recipient_address: str
    amount_raw: int
    chain: PaymentChain
    chain_id: str
    confirmations: int
    confirmation_status: str = "confirmed"
    block_number: int | None = None  # block height (Base) or slot (Solana)
    block_time: datetime | None = None
    token: str | None = None  # USDC mint or contract address
    reference: str | None = None  # memo (Solana) or reference (Base)

    @property
    def amount_usdc(self) -> str:
        return to_major_units(self.amount_raw)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "transaction_signature": self.transaction_signature,
            "payer_address": self.payer_address,
            "recipient_address": self.recipient_address,
            "amount_raw": self.amount_raw,
            "amount_usdc": self.amount_usdc,
            "chain": self.chain.value,
            "chain_id": self.chain_id,
            "confirmations": self.confirmations,
            "confirmation_status": self.confirmation_status,
            "block_number": self.block_number,
            "block_time": self.block_time.isoformat() if self.block_time else None,
            "token": self.token,
            "reference": self.reference,
        }

    @classmethod
    def from_dict(cls, data: dict) -> VerifiedPayment:
        block_time = data.get("block_time")
        return cls(
            transaction_signature=data["transaction_signature"],
            payer_address=data["payer_address"],
            recipient_address=data["recipient_address"],
            amount_raw=int(data["amount_raw"]),
            chain=PaymentChain(data["chain"]),
            chain_id=str(data["chain_id"]),
            confirmations=int(data.get("confirmations") or 0),
            confirmation_status=data.get("confirmation_status") or "confirmed",
            block_number=data.get("block_number"),
            block_time=datetime.fromisoformat(block_time) if block_time else None,
            token=data.get("token"),
            reference=data.get("reference"),
        )


class SettlementLedgerRow(BaseModel):
    """One row of the payment_events table."""

    resource_type: ResourceType
    resource_id: str
    chain: PaymentChain
    chain_id: str
    transaction_signature: str
    payer_address: str
    recipient_id: str | None = None
    recipient_address: str
    gross_amount_raw: int = Field(ge=0)
    platform_fee_raw: int = Field(ge=0)
    author_amount_raw: int = Field(ge=0)
    status: PaymentStatus = PaymentStatus.confirmed
    confirmations: int = 0
    block_number: int | None = None
    verified_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _split_adds_up(self) -> SettlementLedgerRow:
        if self.platform_fee_raw + self.author_amount_raw != self.gross_amount_raw:
            raise ValueError(
                f"fee split does not add up: {self.platform_fee_raw} + "
                f"{self.author_amount_raw} != {self.gross_amount_raw}"
            )
        return self

    def to_record(self) -> dict:
        """Row payload for a PostgREST insert."""
        return self.model_dump(mode="json")


@dataclass
class ExistingPayment:
    """Minimal view of a ledger row found by the replay guard."""

    id: str
    resource_type: str | None = None
    resource_id: str | None = None


@dataclass
class RecordOutcome:
    """Result of writing (or finding) the ledger row for a payment."""

    ledger_id: str
    already_recorded: bool
    gross_amount_raw: int
    platform_fee_raw: int
    author_amount_raw: int


# =============================================================================
# Result
# =============================================================================


@dataclass
class VerificationResult:
    """Uniform outcome of a verification attempt, whatever the chain."""

    success: bool
    status: VerificationStatus
    state: VerificationState
    chain: str | None = None
    transaction_signature: str | None = None

    # Populated on success
    payment: VerifiedPayment | None = None
    ledger_id: str | None = None
    already_recorded: bool = False
    from_cache: bool = False
    platform_fee_raw: int | None = None
    author_amount_raw: int | None = None

    # Populated on failure
    error: str | None = None
    error_code: str | None = None
    error_kind: str | None = None
    retryable: bool = False
    failed_at: VerificationState | None = None  # last state reached before the error

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "status": self.status.value,
            "state": self.state.value,
            "chain": self.chain,
            "transaction_signature": self.transaction_signature,
            "payment": self.payment.to_dict() if self.payment else None,
            "ledger_id": self.ledger_id,
            "already_recorded": self.already_recorded,
            "from_cache": self.from_cache,
            "platform_fee_raw": self.platform_fee_raw,
            "author_amount_raw": self.author_amount_raw,
            "error": self.error,
            "error_code": self.error_code,
            "error_kind": self.error_kind,
            "retryable": self.retryable,
            "failed_at": self.failed_at.value if self.failed_at else None,
        }


# =============================================================================
# Pre-payment descriptor (402 response)
# =============================================================================


class PaymentOption(BaseModel):
    """How to pay on one chain. Shape matches what the verifiers later check."""

    chain: PaymentChain
    chain_id: str
    recipient: str
    token_mint: str | None = None  # Solana
    token_contract: str | None = None  # Base
    token_symbol: str = "USDC"
    decimals: int = 6
    memo: str | None = None  # Solana
    reference: str | None = None  # Base


class PaymentRequiredResponse(BaseModel):
    """Body of an HTTP 402 Payment Required response."""

    error: str = "payment_required"
    resource_type: ResourceType
    resource_id: str
    price_usdc: str
    valid_until: datetime
    payment_options: list[PaymentOption]
