"""USDC payment verification on Solana (account-chain).

Verifies that an SPL token transfer actually occurred on-chain by:
1. Checking the signature status (not found / not yet confirmed / failed)
2. Fetching the transaction with ``jsonParsed`` encoding
3. Finding the USDC transfer to an expected recipient among all
   top-level and inner SPL token instructions
4. Validating amount and the ``<prefix>:<resource>:<ts>`` memo (other
   memos in the same transaction are ignored)
"""

import time
from collections.abc import Callable, Collection
from dataclasses import dataclass
from datetime import datetime, timezone

import base58

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
from .common import check_binding, parse_memo

logger = get_logger("settlement.payments.solana")

TOKEN_PROGRAM_IDS = {
    "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA",  # SPL Token
    "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb",  # Token-2022
}

MEMO_PROGRAM_IDS = {
    "MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr",  # Memo v2
    "Memo1UhkJRfHyvLMcVucJwxXeuD728EqVDDwQDxFMNo",  # Memo v1
}

ACCEPTED_STATUSES = {"confirmed", "finalized"}

# getSignatureStatuses reports confirmations=null once a slot is rooted
FINALIZED_CONFIRMATIONS = 32


@dataclass
class TokenTransfer:
    """One SPL transfer / transferChecked instruction."""

    source: str
    destination: str
    amount: int
    mint: str | None
    authority: str | None = None
    destination_owner: str | None = None


def _account_keys(tx: dict) -> list[str]:
    keys = tx.get("transaction", {}).get("message", {}).get("accountKeys", [])
    return [k.get("pubkey", "") if isinstance(k, dict) else str(k) for k in keys]


def _token_accounts(tx: dict) -> dict[str, dict]:
    """Map token account address -> {mint, owner} from the balance snapshots."""
    keys = _account_keys(tx)
    meta = tx.get("meta") or {}
    accounts: dict[str, dict] = {}
    for balance in (meta.get("preTokenBalances") or []) + (meta.get("postTokenBalances") or []):
        index = balance.get("accountIndex")
        if not isinstance(index, int) or index >= len(keys):
            continue
        accounts[keys[index]] = {"mint": balance.get("mint"), "owner": balance.get("owner")}
    return accounts


def _all_instructions(tx: dict) -> list[dict]:
    """Top-level instructions followed by inner (CPI) instructions."""
    instructions = list(tx.get("transaction", {}).get("message", {}).get("instructions", []))
    for inner in (tx.get("meta") or {}).get("innerInstructions") or []:
        instructions.extend(inner.get("instructions", []))
    return [ix for ix in instructions if isinstance(ix, dict)]


def parse_token_transfers(tx: dict) -> list[TokenTransfer]:
    """Parse all SPL token transfers from a ``jsonParsed`` transaction."""
    accounts = _token_accounts(tx)
    transfers = []

    for ix in _all_instructions(tx):
        if ix.get("programId") not in TOKEN_PROGRAM_IDS:
            continue
        parsed = ix.get("parsed")
        if not isinstance(parsed, dict):
            continue
        if parsed.get("type") not in ("transfer", "transferChecked"):
            continue

        info = parsed.get("info") or {}
        raw_amount = info.get("amount")
        if raw_amount is None:
            raw_amount = (info.get("tokenAmount") or {}).get("amount")
        try:
            amount = int(raw_amount)
        except (TypeError, ValueError):
            continue

        destination = info.get("destination", "")
        source = info.get("source", "")
        # Plain `transfer` carries no mint; recover it from the balance snapshots
        mint = (
            info.get("mint")
            or accounts.get(destination, {}).get("mint")
            or accounts.get(source, {}).get("mint")
        )

        transfers.append(
            TokenTransfer(
                source=source,
                destination=destination,
                amount=amount,
                mint=mint,
                authority=info.get("authority") or info.get("multisigAuthority"),
                destination_owner=accounts.get(destination, {}).get("owner"),
            )
        )

    return transfers


def _decode_memo_data(data: str) -> str | None:
    try:
        return base58.b58decode(data).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        return None


def parse_memo_instructions(tx: dict) -> list[str]:
    """Every decodable SPL memo in the transaction, in instruction order."""
    memos = []
    for ix in _all_instructions(tx):
        if ix.get("programId") not in MEMO_PROGRAM_IDS:
            continue
        parsed = ix.get("parsed")
        if isinstance(parsed, str):
            memos.append(parsed)
            continue
        data = ix.get("data")
        if isinstance(data, str):
            decoded = _decode_memo_data(data)
            if decoded is not None:
                memos.append(decoded)
    return memos


def parse_memo_instruction(tx: dict, prefix: str | None = None) -> str | None:
    """Return the memo carrying ``prefix``, else the first memo, else ``None``."""
    memos = parse_memo_instructions(tx)
    if prefix is not None:
        for memo in memos:
            if memo.startswith(f"{prefix}:"):
                return memo
    return memos[0] if memos else None


class SolanaPaymentVerifier:
    """Verifies USDC payments on Solana."""

    chain = PaymentChain.solana

    def __init__(
        self,
        rpc: JsonRpcClient,
        network: ChainNetwork,
        memo_prefix: str = "clawstack",
        clock: Callable[[], float] = time.time,
    ):
        self.rpc = rpc
        self.network = network
        self.memo_prefix = memo_prefix
        self.clock = clock

    async def _signature_status(self, signature: str) -> dict:
        result = await self.rpc.call(
            "getSignatureStatuses", [[signature], {"searchTransactionHistory": True}]
        )
        values = (result or {}).get("value") or [None]
        status = values[0]

        if status is None:
            raise TransactionNotFoundError("Transaction not found", "TX_NOT_FOUND")

        if status.get("err"):
            raise TransactionFailedError(
                f"Transaction failed on-chain: {status['err']}", "TX_FAILED"
            )

        confirmation_status = status.get("confirmationStatus")
        if confirmation_status not in ACCEPTED_STATUSES:
            raise InsufficientConfirmationsError(
                f"Transaction not yet confirmed: status is '{confirmation_status or 'pending'}'",
                "NOT_CONFIRMED",
                confirmations=status.get("confirmations") or 0,
            )

        return status

    async def _fetch_transaction(self, signature: str) -> dict:
        tx = await self.rpc.call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": "confirmed",
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if not tx:
            # Status exists but the node has not served the body yet
            raise TransactionNotFoundError("Transaction not yet available", "TX_NOT_FOUND")

        if (tx.get("meta") or {}).get("err"):
            raise TransactionFailedError(
                f"Transaction failed on-chain: {tx['meta']['err']}", "TX_FAILED"
            )
        return tx

    def _select_transfer(
        self,
        transfers: list[TokenTransfer],
        expected_recipients: Collection[str],
        expected_amount_raw: int,
    ) -> TokenTransfer:
        usdc_transfers = [t for t in transfers if t.mint == self.network.usdc_token]
        if not usdc_transfers:
            raise AmountMismatchError("No USDC transfer found in transaction", "NO_USDC_TRANSFER")

        recipients = set(expected_recipients)
        to_recipient = [
            t
            for t in usdc_transfers
            if t.destination in recipients or (t.destination_owner or "") in recipients
        ]
        if not to_recipient:
            raise AmountMismatchError(
                f"Payment sent to wrong recipient: got {usdc_transfers[0].destination}",
                "WRONG_RECIPIENT",
            )

        for transfer in to_recipient:
            if transfer.amount >= expected_amount_raw:
                return transfer

        best = max(t.amount for t in to_recipient)
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
        """Verify a Solana USDC payment.

        ``reference`` is ignored: Solana carries its binding in the memo.

        Raises:
            PaymentError: a subclass describing the first failed check.
        """
        status = await self._signature_status(transaction_signature)
        tx = await self._fetch_transaction(transaction_signature)

        transfer = self._select_transfer(
            parse_token_transfers(tx), expected_recipients, expected_amount_raw
        )

        memo = parse_memo_instruction(tx, self.memo_prefix)
        binding = parse_memo(memo, self.memo_prefix)
        check_binding(
            binding,
            binding_id,
            validity_seconds,
            self.clock(),
            mismatch_code="INVALID_MEMO",
            expired_code="MEMO_EXPIRED",
        )

        confirmations = status.get("confirmations")
        if confirmations is None:
            confirmations = FINALIZED_CONFIRMATIONS

        block_time = tx.get("blockTime")
        logger.debug(
            "Verified Solana transfer %s: %d raw to %s",
            transaction_signature,
            transfer.amount,
            transfer.destination,
        )

        return VerifiedPayment(
            transaction_signature=transaction_signature,
            payer_address=transfer.authority or transfer.source,
            recipient_address=transfer.destination_owner or transfer.destination,
            amount_raw=transfer.amount,
            chain=self.chain,
            chain_id=self.network.chain_id,
            confirmations=confirmations,
            confirmation_status=status.get("confirmationStatus", "confirmed"),
            block_number=tx.get("slot"),
            block_time=datetime.fromtimestamp(block_time, tz=timezone.utc) if block_time else None,
            token=transfer.mint,
            reference=memo,
        )
