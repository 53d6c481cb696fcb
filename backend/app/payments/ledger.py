"""Durable payment ledger: replay guard and settlement recorder.

The ``payment_events`` table is the only place a transaction is ever marked
as used. ``UNIQUE (chain, transaction_signature)`` makes the insert the
arbiter between concurrent verifications of the same transaction.
"""

from __future__ import annotations

import asyncio

from postgrest.exceptions import APIError
from supabase import Client

from ..logging_config import get_logger
from .amounts import split_settlement
from .errors import MisconfiguredRecipientError
from .models import (
    ExistingPayment,
    PaymentChain,
    PaymentProof,
    PaymentStatus,
    PriceableResource,
    RecordOutcome,
    SettlementLedgerRow,
    VerifiedPayment,
)

logger = get_logger("settlement.payments.ledger")

# Keep in sync with supabase/migrations/001_payment_events.sql
PAYMENT_EVENTS_TABLE = "payment_events"

UNIQUE_VIOLATION = "23505"


def is_unique_violation(error: APIError) -> bool:
    return str(getattr(error, "code", "") or "") == UNIQUE_VIOLATION


def build_ledger_row(
    proof: PaymentProof,
    resource: PriceableResource,
    payment: VerifiedPayment,
    fee_bps: int,
) -> SettlementLedgerRow:
    """Compute the fee split and the row to insert for a verified payment.

    Raises:
        MisconfiguredRecipientError: a post has no payout address on the paid chain.
    """
    gross = payment.amount_raw

    if resource.is_spam_fee:
        # Spam fees go to the platform in full; there is no author
        return SettlementLedgerRow(
            resource_type=resource.resource_type,
            resource_id=resource.resource_id,
            chain=payment.chain,
            chain_id=payment.chain_id,
            transaction_signature=payment.transaction_signature,
            payer_address=payment.payer_address or proof.payer_address,
            recipient_id=None,
            recipient_address=payment.recipient_address,
            gross_amount_raw=gross,
            platform_fee_raw=gross,
            author_amount_raw=0,
            status=PaymentStatus.confirmed,
            confirmations=payment.confirmations,
            block_number=payment.block_number,
        )

    payout_address = resource.payout_address(payment.chain)
    if not payout_address:
        raise MisconfiguredRecipientError(
            f"{resource.resource_type.value} {resource.resource_id} has no "
            f"{payment.chain.value} payout address"
        )

    platform_fee, author_amount = split_settlement(gross, resource.price_raw, fee_bps)

    return SettlementLedgerRow(
        resource_type=resource.resource_type,
        resource_id=resource.resource_id,
        chain=payment.chain,
        chain_id=payment.chain_id,
        transaction_signature=payment.transaction_signature,
        payer_address=payment.payer_address or proof.payer_address,
        recipient_id=resource.recipient_id,
        recipient_address=payout_address,
        gross_amount_raw=gross,
        platform_fee_raw=platform_fee,
        author_amount_raw=author_amount,
        status=PaymentStatus.confirmed,
        confirmations=payment.confirmations,
        block_number=payment.block_number,
    )


class PaymentLedger:
    """Replay lookups and exactly-once inserts against ``payment_events``."""

    def __init__(self, db: Client):
        self.db = db

    async def check_replay(
        self, chain: PaymentChain, transaction_signature: str
    ) -> ExistingPayment | None:
        """Return the existing ledger row for this transaction, if any.

        Any row means the transaction is spent, whatever resource it paid for.
        """

        def _query():
            return (
                self.db.table(PAYMENT_EVENTS_TABLE)
                .select("id, resource_type, resource_id")
                .eq("chain", chain.value)
                .eq("transaction_signature", transaction_signature)
                .limit(1)
                .execute()
            )

        result = await asyncio.to_thread(_query)
        if not result.data:
            return None

        row = result.data[0]
        return ExistingPayment(
            id=str(row["id"]),
            resource_type=row.get("resource_type"),
            resource_id=row.get("resource_id"),
        )

    async def record(
        self,
        proof: PaymentProof,
        resource: PriceableResource,
        payment: VerifiedPayment,
        fee_bps: int,
    ) -> RecordOutcome:
        """Insert the settlement row for a verified payment, exactly once.

        If another request already recorded the same transaction, the
        existing row is returned with ``already_recorded=True``.

        Raises:
            MisconfiguredRecipientError: a post has no payout address on the paid chain.
            APIError: any database error other than the unique violation.
        """
        row = build_ledger_row(proof, resource, payment, fee_bps)
        data = row.to_record()

        def _insert():
            return self.db.table(PAYMENT_EVENTS_TABLE).insert(data).execute()

        try:
            result = await asyncio.to_thread(_insert)
        except APIError as e:
            if not is_unique_violation(e):
                raise
            existing = await self.check_replay(payment.chain, payment.transaction_signature)
            if existing is None:
                # Constraint fired but the row is not visible; surface the original error
                raise
            logger.info(
                "Payment %s:%s already recorded as %s",
                payment.chain.value,
                payment.transaction_signature,
                existing.id,
            )
            return RecordOutcome(
                ledger_id=existing.id,
                already_recorded=True,
                gross_amount_raw=row.gross_amount_raw,
                platform_fee_raw=row.platform_fee_raw,
                author_amount_raw=row.author_amount_raw,
            )

        if not result.data:
            raise RuntimeError(
                f"Failed to record payment {payment.chain.value}:{payment.transaction_signature}"
            )

        ledger_id = str(result.data[0]["id"])
        logger.info(
            "Recorded %s payment %s for %s %s: gross=%d fee=%d author=%d",
            payment.chain.value,
            payment.transaction_signature,
            resource.resource_type.value,
            resource.resource_id,
            row.gross_amount_raw,
            row.platform_fee_raw,
            row.author_amount_raw,
        )
        return RecordOutcome(
            ledger_id=ledger_id,
            already_recorded=False,
            gross_amount_raw=row.gross_amount_raw,
            platform_fee_raw=row.platform_fee_raw,
            author_amount_raw=row.author_amount_raw,
        )
