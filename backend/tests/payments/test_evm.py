"""Tests for Base USDC payment verification."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from app.payments.chains.evm import (
    TRANSFER_EVENT_SIGNATURE,
    EVMPaymentVerifier,
    _normalize_address,
    _parse_transfer_log,
    parse_usdc_transfers,
)
from app.payments.errors import (
    AmountMismatchError,
    InsufficientConfirmationsError,
    ReferenceMismatchError,
    TransactionFailedError,
    TransactionNotFoundError,
)
from app.payments.models import PaymentChain
from app.payments.networks import ChainNetwork

USDC = "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913"
OTHER_TOKEN = "0x1111111111111111111111111111111111111111"
PAYER = "0x00000000000000000000000000000000000000cc"
AUTHOR = "0x00000000000000000000000000000000000000bb"
TREASURY = "0x00000000000000000000000000000000000000aa"
STRANGER = "0x00000000000000000000000000000000000000dd"

TX_HASH = "0x" + "ab" * 32
NOW = 1_706_960_000
BLOCK = 1_000
REFERENCE = f"0xclawstack_post_abc_{NOW}"

NETWORK = ChainNetwork(
    chain=PaymentChain.base,
    network="base",
    chain_id="8453",
    rpc_urls=("https://rpc.example",),
    usdc_token=USDC,
    treasury_address=TREASURY,
    required_confirmations=12,
)


def _topic(address):
    return "0x" + "0" * 24 + address[2:]


def _log(amount, to=AUTHOR, token=USDC, sender=PAYER):
    return {
        "address": token,
        "topics": [TRANSFER_EVENT_SIGNATURE, _topic(sender), _topic(to)],
        "data": hex(amount),
        "logIndex": "0x0",
    }


def _receipt(logs, status="0x1", block=BLOCK):
    return {"status": status, "blockNumber": hex(block), "logs": logs}


def _rpc(receipt=None, tx=None, head=BLOCK + 12):
    responses = {
        "eth_getTransactionReceipt": receipt,
        "eth_getTransactionByHash": tx,
        "eth_blockNumber": hex(head),
        "eth_getBlockByNumber": {"timestamp": hex(NOW - 30)},
    }

    async def call(method, params=None):
        return responses[method]

    rpc = AsyncMock()
    rpc.call.side_effect = call
    return rpc


def _verifier(rpc, now=NOW):
    return EVMPaymentVerifier(rpc, NETWORK, reference_prefix="clawstack", clock=lambda: now)


async def _verify(verifier, amount_raw=250_000, reference=REFERENCE, recipients=(AUTHOR, TREASURY)):
    return await verifier.verify(
        TX_HASH, list(recipients), amount_raw, "post_abc", 300, reference=reference
    )


class TestNormalizeAddress:
    """Tests for address normalization."""

    def test_lowercase_with_prefix(self):
        assert _normalize_address("0xAbC123") == "0xabc123"

    def test_adds_prefix(self):
        assert _normalize_address("abc123") == "0xabc123"

    def test_handles_padded_address(self):
        # 32-byte padded address (common in event logs)
        padded = "0x000000000000000000000000833589fcd6edb6e08f4c7c32d4f71b54bda02913"
        assert _normalize_address(padded) == USDC

    def test_empty_string(self):
        assert _normalize_address("") == ""


class TestParseTransferLog:
    """Tests for ERC20 Transfer event parsing."""

    def test_parse_valid_transfer(self):
        transfer = _parse_transfer_log(_log(5_000_000))

        assert transfer is not None
        assert transfer.amount_raw == 5_000_000
        assert transfer.from_address == PAYER
        assert transfer.to_address == AUTHOR

    def test_parse_wrong_event_signature(self):
        log = _log(1)
        log["topics"][0] = "0xwrongsignature"
        assert _parse_transfer_log(log) is None

    def test_parse_insufficient_topics(self):
        log = {"topics": [TRANSFER_EVENT_SIGNATURE], "data": "0x1"}
        assert _parse_transfer_log(log) is None

    def test_only_usdc_contract_logs_count(self):
        receipt = _receipt([_log(1, token=OTHER_TOKEN), _log(2)])
        assert [t.amount_raw for t in parse_usdc_transfers(receipt, USDC)] == [2]


class TestEVMPaymentVerifier:
    @pytest.mark.asyncio
    async def test_valid_payment(self):
        verifier = _verifier(_rpc(receipt=_receipt([_log(250_000)])))

        payment = await _verify(verifier)

        assert payment.chain == PaymentChain.base
        assert payment.chain_id == "8453"
        assert payment.amount_raw == 250_000
        assert payment.payer_address == PAYER
        assert payment.recipient_address == AUTHOR
        assert payment.confirmations == 12
        assert payment.block_number == BLOCK
        assert payment.block_time == datetime.fromtimestamp(NOW - 30, tz=timezone.utc)
        assert payment.reference == REFERENCE
        assert payment.token == USDC

    @pytest.mark.asyncio
    async def test_checksummed_recipient_matches(self):
        verifier = _verifier(_rpc(receipt=_receipt([_log(250_000)])))
        payment = await _verify(verifier, recipients=[AUTHOR.upper().replace("0X", "0x")])
        assert payment.amount_raw == 250_000

    @pytest.mark.asyncio
    async def test_too_few_confirmations(self):
        verifier = _verifier(_rpc(receipt=_receipt([_log(250_000)]), head=BLOCK + 3))

        with pytest.raises(InsufficientConfirmationsError) as exc_info:
            await _verify(verifier)

        assert exc_info.value.confirmations == 3
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_retry_after_confirmations_accrue_succeeds(self):
        receipt = _receipt([_log(250_000)])

        with pytest.raises(InsufficientConfirmationsError):
            await _verify(_verifier(_rpc(receipt=receipt, head=BLOCK + 5)))

        payment = await _verify(_verifier(_rpc(receipt=receipt, head=BLOCK + 20)))
        assert payment.transaction_signature == TX_HASH
        assert payment.confirmations == 20

    @pytest.mark.asyncio
    async def test_pending_transaction(self):
        verifier = _verifier(_rpc(receipt=None, tx={"hash": TX_HASH, "blockNumber": None}))

        with pytest.raises(InsufficientConfirmationsError) as exc_info:
            await _verify(verifier)

        assert exc_info.value.code == "TX_PENDING"

    @pytest.mark.asyncio
    async def test_unknown_transaction(self):
        verifier = _verifier(_rpc(receipt=None, tx=None))

        with pytest.raises(TransactionNotFoundError) as exc_info:
            await _verify(verifier)

        assert exc_info.value.code == "TX_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_reverted(self):
        verifier = _verifier(_rpc(receipt=_receipt([_log(250_000)], status="0x0")))

        with pytest.raises(TransactionFailedError) as exc_info:
            await _verify(verifier)

        assert exc_info.value.code == "TX_REVERTED"

    @pytest.mark.asyncio
    async def test_no_usdc_transfer(self):
        verifier = _verifier(_rpc(receipt=_receipt([_log(250_000, token=OTHER_TOKEN)])))

        with pytest.raises(AmountMismatchError) as exc_info:
            await _verify(verifier)

        assert exc_info.value.code == "NO_USDC_TRANSFER"

    @pytest.mark.asyncio
    async def test_wrong_recipient(self):
        verifier = _verifier(_rpc(receipt=_receipt([_log(250_000, to=STRANGER)])))

        with pytest.raises(AmountMismatchError) as exc_info:
            await _verify(verifier)

        assert exc_info.value.code == "WRONG_RECIPIENT"

    @pytest.mark.asyncio
    async def test_underpayment(self):
        verifier = _verifier(_rpc(receipt=_receipt([_log(249_999)])))

        with pytest.raises(AmountMismatchError) as exc_info:
            await _verify(verifier)

        assert exc_info.value.code == "INSUFFICIENT_AMOUNT"

    @pytest.mark.asyncio
    async def test_picks_transfer_to_recipient_among_many(self):
        receipt = _receipt([_log(900_000, to=STRANGER), _log(250_000, to=TREASURY)])
        payment = await _verify(_verifier(_rpc(receipt=receipt)))
        assert payment.recipient_address == TREASURY

    @pytest.mark.asyncio
    async def test_missing_reference_checked_before_rpc(self):
        rpc = _rpc(receipt=_receipt([_log(250_000)]))

        with pytest.raises(ReferenceMismatchError) as exc_info:
            await _verify(_verifier(rpc), reference=None)

        assert exc_info.value.code == "INVALID_REFERENCE"
        rpc.call.assert_not_called()

    @pytest.mark.asyncio
    async def test_reference_for_other_resource(self):
        rpc = _rpc(receipt=_receipt([_log(250_000)]))

        with pytest.raises(ReferenceMismatchError):
            await _verify(_verifier(rpc), reference=f"0xclawstack_post_other_{NOW}")

    @pytest.mark.asyncio
    async def test_expired_reference(self):
        rpc = _rpc(receipt=_receipt([_log(250_000)]))

        with pytest.raises(ReferenceMismatchError) as exc_info:
            await _verify(_verifier(rpc), reference=f"0xclawstack_post_abc_{NOW - 301}")

        assert exc_info.value.code == "REFERENCE_EXPIRED"
