"""Tests for the payment ledger (replay guard + settlement recorder)."""

import asyncio
from decimal import Decimal

import pytest
from postgrest.exceptions import APIError

from app.payments.errors import MisconfiguredRecipientError
from app.payments.ledger import PAYMENT_EVENTS_TABLE, PaymentLedger, build_ledger_row
from app.payments.models import (
    PaymentChain,
    PaymentProof,
    PriceableResource,
    ResourceType,
    VerifiedPayment,
)

TX = "5" + "K" * 86


def _proof(chain=PaymentChain.solana, tx=TX):
    return PaymentProof(
        chain=chain, transaction_signature=tx, payer_address="Payer111", timestamp=1706959800
    )


def _payment(amount_raw=250_000, chain=PaymentChain.solana, tx=TX, recipient=None):
    return VerifiedPayment(
        transaction_signature=tx,
        payer_address="Payer111",
        recipient_address=recipient or "AuthorSo1ana11111111111111111111111111111111",
        amount_raw=amount_raw,
        chain=chain,
        chain_id="mainnet-beta" if chain == PaymentChain.solana else "8453",
        confirmations=32,
        block_number=12345,
    )


class TestBuildLedgerRow:
    def test_post_split_quarter_dollar(self, post_resource):
        row = build_ledger_row(_proof(), post_resource, _payment(), fee_bps=1000)

        assert row.gross_amount_raw == 250_000
        assert row.platform_fee_raw == 25_000
        assert row.author_amount_raw == 225_000
        assert row.recipient_id == post_resource.recipient_id
        assert row.recipient_address == "AuthorSo1ana11111111111111111111111111111111"

    def test_post_split_five_cents(self):
        resource = PriceableResource(
            resource_type=ResourceType.post,
            resource_id="post_cheap",
            price_usdc=Decimal("0.05"),
            recipient_id="author-1",
            recipient_address_by_chain={PaymentChain.solana: "AuthorWallet"},
        )
        row = build_ledger_row(_proof(), resource, _payment(50_000), fee_bps=1000)
        assert (row.platform_fee_raw, row.author_amount_raw) == (5_000, 45_000)

        row = build_ledger_row(_proof(), resource, _payment(50_000), fee_bps=500)
        assert (row.platform_fee_raw, row.author_amount_raw) == (2_500, 47_500)

    def test_spam_fee_goes_entirely_to_platform(self, spam_fee_resource):
        payment = _payment(100_000, recipient="TreasurySo1ana1111111111111111111111111111111")
        row = build_ledger_row(_proof(), spam_fee_resource, payment, fee_bps=1000)

        assert row.platform_fee_raw == 100_000
        assert row.author_amount_raw == 0
        assert row.recipient_id is None
        assert row.recipient_address == "TreasurySo1ana1111111111111111111111111111111"

    def test_missing_payout_address_is_misconfiguration(self, post_resource):
        resource = post_resource.model_copy(update={"recipient_address_by_chain": {}})
        with pytest.raises(MisconfiguredRecipientError):
            build_ledger_row(_proof(), resource, _payment(), fee_bps=1000)

    def test_row_record_is_json_ready(self, post_resource):
        record = build_ledger_row(_proof(), post_resource, _payment(), 1000).to_record()
        assert record["chain"] == "solana"
        assert record["resource_type"] == "post"
        assert record["status"] == "confirmed"
        assert isinstance(record["verified_at"], str)


class TestCheckReplay:
    @pytest.mark.asyncio
    async def test_unknown_transaction(self, fake_db):
        ledger = PaymentLedger(fake_db)
        assert await ledger.check_replay(PaymentChain.solana, TX) is None

    @pytest.mark.asyncio
    async def test_known_transaction_for_any_resource(self, fake_db):
        fake_db.tables[PAYMENT_EVENTS_TABLE].append(
            {
                "id": "row-1",
                "chain": "solana",
                "transaction_signature": TX,
                "resource_type": "post",
                "resource_id": "some_other_post",
            }
        )
        ledger = PaymentLedger(fake_db)

        existing = await ledger.check_replay(PaymentChain.solana, TX)

        assert existing.id == "row-1"
        assert existing.resource_id == "some_other_post"

    @pytest.mark.asyncio
    async def test_same_signature_on_other_chain_is_not_a_replay(self, fake_db):
        fake_db.tables[PAYMENT_EVENTS_TABLE].append(
            {"id": "row-1", "chain": "base", "transaction_signature": TX}
        )
        ledger = PaymentLedger(fake_db)
        assert await ledger.check_replay(PaymentChain.solana, TX) is None


class TestRecord:
    @pytest.mark.asyncio
    async def test_inserts_one_row(self, fake_db, post_resource):
        ledger = PaymentLedger(fake_db)

        outcome = await ledger.record(_proof(), post_resource, _payment(), fee_bps=1000)

        rows = fake_db.tables[PAYMENT_EVENTS_TABLE]
        assert len(rows) == 1
        assert outcome.ledger_id == rows[0]["id"]
        assert outcome.already_recorded is False
        assert rows[0]["gross_amount_raw"] == 250_000
        assert rows[0]["platform_fee_raw"] + rows[0]["author_amount_raw"] == 250_000
        assert rows[0]["block_number"] == 12345

    @pytest.mark.asyncio
    async def test_duplicate_insert_reports_already_recorded(self, fake_db, post_resource):
        ledger = PaymentLedger(fake_db)
        first = await ledger.record(_proof(), post_resource, _payment(), fee_bps=1000)

        second = await ledger.record(_proof(), post_resource, _payment(), fee_bps=1000)

        assert second.already_recorded is True
        assert second.ledger_id == first.ledger_id
        assert len(fake_db.tables[PAYMENT_EVENTS_TABLE]) == 1

    @pytest.mark.asyncio
    async def test_concurrent_records_write_exactly_one_row(self, fake_db, post_resource):
        ledger = PaymentLedger(fake_db)

        outcomes = await asyncio.gather(
            *[ledger.record(_proof(), post_resource, _payment(), fee_bps=1000) for _ in range(5)]
        )

        assert len(fake_db.tables[PAYMENT_EVENTS_TABLE]) == 1
        assert fake_db.insert_attempts == 5
        assert sum(1 for o in outcomes if not o.already_recorded) == 1
        assert len({o.ledger_id for o in outcomes}) == 1

    @pytest.mark.asyncio
    async def test_other_database_errors_propagate(self, fake_db, post_resource):
        fake_db.fail_with = APIError({"code": "08006", "message": "connection failure"})
        ledger = PaymentLedger(fake_db)

        with pytest.raises(APIError):
            await ledger.record(_proof(), post_resource, _payment(), fee_bps=1000)

    @pytest.mark.asyncio
    async def test_spam_fee_row(self, fake_db, spam_fee_resource):
        ledger = PaymentLedger(fake_db)
        payment = _payment(100_000, recipient="TreasurySo1ana1111111111111111111111111111111")

        outcome = await ledger.record(_proof(), spam_fee_resource, payment, fee_bps=1000)

        row = fake_db.tables[PAYMENT_EVENTS_TABLE][0]
        assert outcome.platform_fee_raw == 100_000
        assert outcome.author_amount_raw == 0
        assert row["resource_type"] == "spam_fee"
        assert row["recipient_id"] is None
