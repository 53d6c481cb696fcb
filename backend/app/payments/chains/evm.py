"""USDC payment verification on EVM chains (Base).

Verifies that a USDC transfer actually occurred on-chain by:
1. Checking the off-chain reference the client received with the quote
2. Fetching the transaction receipt via JSON-RPC
3. Parsing ERC20 Transfer event logs
4. Validating amount, recipient, and confirmation depth
"""

import time
from collections.abc import Callable, Collection
from dataclasses import dataclass
from datetime import datetime, timezone

from ...logging_config import get_logger
from ..errors import (
    AmountMismatchError,
    InsufficientConfirmationsError,
    TransactionFailedError,
    TransactionNotFoundError,
)
from ..models import PaymentChain, VerifiedPayment
from ..networks import ChainNetwork
from ..rpc import JsonRpcClient
from .common import check_binding, parse_reference

logger = get_logger("settlement.payments.evm")

# ERC20 Transfer event signature: Transfer(address indexed from, address indexed to, uint256 value)
TRANSFER_EVENT_SIGNATURE = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


@dataclass
class ERC20Transfer:
    from_address: str
    to_address: str
    amount_raw: int
    log_index: int | None = None


def _normalize_address(address: str) -> str:
    """Normalize an Ethereum address to lowercase with 0x prefix."""
    if not address:
        return ""
    address = address.lower()
    if not address.startswith("0x"):
        address = "0x" + address
    if len(address) == 66:  # 32-byte padded address from event log
        address = "0x" + address[-40:]
    return address


def _hex_to_int(value: str | int | None) -> int | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    try:
        return int(value, 16)
    except (TypeError, ValueError):
        return None


def _parse_transfer_log(log: dict) -> ERC20Transfer | None:
    """Parse an ERC20 Transfer event log.

    Transfer event: Transfer(address indexed from, address indexed to, uint256 value)
    - topics[0]: event signature
    - topics[1]: from address (indexed, padded to 32 bytes)
    - topics[2]: to address (indexed, padded to 32 bytes)
    - data: value (uint256)
    """
    topics = log.get("topics", [])

    if len(topics) < 3:
        return None

    if topics[0].lower() != TRANSFER_EVENT_SIGNATURE:
        return None

    amount_raw = _hex_to_int(log.get("data") or "0x0")
    if amount_raw is None:
        return None

    return ERC20Transfer(
        from_address=_normalize_address(topics[1]),
        to_address=_normalize_address(topics[2]),
        amount_raw=amount_raw,
        log_index=_hex_to_int(log.get("logIndex")),
    )


def parse_usdc_transfers(receipt: dict, usdc_address: str) -> list[ERC20Transfer]:
    """All Transfer events emitted by the USDC contract in ``receipt``."""
    usdc_address = _normalize_address(usdc_address)
    transfers = []
    for log in receipt.get("logs", []):
        if _normalize_address(log.get("address", "")) != usdc_address:
            continue
        transfer = _parse_transfer_log(log)
        if transfer:
            transfers.append(transfer)
    return transfers


class EVMPaymentVerifier:
    """Verifies USDC payments on Base."""

    chain = PaymentChain.base

    def __init__(
        self,
        rpc: JsonRpcClient,
        network: ChainNetwork,
        reference_prefix: str = "clawstack",
        clock: Callable[[], float] = time.time,
    ):
        self.rpc = rpc
        self.network = network
        self.reference_prefix = reference_prefix
        self.clock = clock

    async def _fetch_receipt(self, tx_hash: str) -> dict:
        receipt = await self.rpc.call("eth_getTransactionReceipt", [tx_hash])
        if receipt:
            return receipt

        # No receipt: either still in the mempool or unknown to the node
        tx = await self.rpc.call("eth_getTransactionByHash", [tx_hash])
        if tx and tx.get("blockNumber") is None:
            raise InsufficientConfirmationsError(
                "Transaction pending", "TX_PENDING", confirmations=0
            )
        raise TransactionNotFoundError(
            "Transaction not found or not yet mined", "TX_NOT_FOUND"
        )

    async def _block_time(self, block_number: int) -> datetime | None:
        block = await self.rpc.call("eth_getBlockByNumber", [hex(block_number), False])
        if block and "timestamp" in block:
            timestamp = _hex_to_int(block["timestamp"])
            if timestamp is not None:
                return datetime.fromtimestamp(timestamp, tz=timezone.utc)
        return None

    def _select_transfer(
        self,
        transfers: list[ERC20Transfer],
        expected_recipients: Collection[str],
        expected_amount_raw: int,
    ) -> ERC20Transfer:
        if not transfers:
            raise AmountMismatchError("No USDC transfer found in transaction", "NO_USDC_TRANSFER")

        recipients = {_normalize_address(r) for r in expected_recipients if r}
        to_recipient = [t for t in transfers if t.to_address in recipients]
        if not to_recipient:
            raise AmountMismatchError(
                f"Payment sent to wrong recipient: got {transfers[0].to_address}",
                "WRONG_RECIPIENT",
            )

        for transfer in to_recipient:
            if transfer.amount_raw >= expected_amount_raw:
                return transfer

        best = max(t.amount_raw for t in to_recipient)
        raise AmountMismatchError(
            f"Insufficient payment: expected {expected_amount_raw}, got {best}",
            "INSUFFICIENT_AMOUNT",
        )

    async def verify(
        self,
        transaction_signature: str,
        expected_recipients: Collection[str],
        expected_amount_raw: int,
        binding_id: str,
        validity_seconds: int,
        reference: str | None = None,
    ) -> VerifiedPayment:
        """Verify a Base USDC payment.

        The reference travels off-chain with the proof, so it is checked
        before any RPC call.

        Raises:
            PaymentError: a subclass describing the first failed check.
        """
        tx_hash = transaction_signature.lower()

        binding = parse_reference(reference, self.reference_prefix)
        check_binding(
            binding,
            binding_id,
            validity_seconds,
            self.clock(),
            mismatch_code="INVALID_REFERENCE",
            expired_code="REFERENCE_EXPIRED",
        )

        receipt = await self._fetch_receipt(tx_hash)

        # 1 = success, 0 = reverted
        if _hex_to_int(receipt.get("status", "0x0")) != 1:
            raise TransactionFailedError("Transaction reverted", "TX_REVERTED")

        transfer = self._select_transfer(
            parse_usdc_transfers(receipt, self.network.usdc_token),
            expected_recipients,
            expected_amount_raw,
        )

        block_number = _hex_to_int(receipt.get("blockNumber")) or 0
        current_block = _hex_to_int(await self.rpc.call("eth_blockNumber", [])) or 0
        confirmations = max(current_block - block_number, 0)

        required = self.network.required_confirmations
        if confirmations < required:
            raise InsufficientConfirmationsError(
                f"Insufficient confirmations: {confirmations} < {required}",
                "INSUFFICIENT_CONFIRMATIONS",
                confirmations=confirmations,
            )

        block_time = await self._block_time(block_number)
        logger.debug(
            "Verified Base transfer %s: %d raw to %s (%d confirmations)",
            tx_hash,
            transfer.amount_raw,
            transfer.to_address,
            confirmations,
        )

        return VerifiedPayment(
            transaction_signature=tx_hash,
            payer_address=transfer.from_address,
            recipient_address=transfer.to_address,
            amount_raw=transfer.amount_raw,
            chain=self.chain,
            chain_id=self.network.chain_id,
            confirmations=confirmations,
            confirmation_status="confirmed",
            block_number=block_number,
            block_time=block_time,
            token=self.network.usdc_token,
            reference=reference,
        )
