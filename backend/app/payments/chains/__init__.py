"""Chain verifiers and the dispatch table the orchestrator routes through."""

from collections.abc import Callable, Collection
from typing import Protocol

import httpx

from ...config import Settings
from ..models import PaymentChain, VerifiedPayment
from ..networks import resolve_network
from ..rpc import JsonRpcClient
from .common import (
    PaymentBinding,
    check_binding,
    format_memo,
    format_reference,
    parse_memo,
    parse_reference,
)
from .evm import EVMPaymentVerifier
from .solana import SolanaPaymentVerifier


class ChainVerifier(Protocol):
    """Verifies that a transaction pays ``expected_amount_raw`` USDC to one of
    ``expected_recipients`` and is bound to ``binding_id``.

    Implementations raise a ``PaymentError`` subclass on any failed check and
    never write anything.
    """

    chain: PaymentChain

    async def verify(
        self,
        transaction_signature: str,
        expected_recipients: Collection[str],
        expected_amount_raw: int,
        binding_id: str,
        validity_seconds: int,
        reference: str | None = None,
    ) -> VerifiedPayment: ...


def build_verifiers(
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
    clock: Callable[[], float] | None = None,
) -> dict[PaymentChain, ChainVerifier]:
    """Build one verifier per supported chain from settings."""
    extra = {"clock": clock} if clock is not None else {}

    solana = resolve_network(PaymentChain.solana, settings)
    base = resolve_network(PaymentChain.base, settings)

    return {
        PaymentChain.solana: SolanaPaymentVerifier(
            JsonRpcClient(
                solana.rpc_urls,
                timeout=settings.rpc_timeout_seconds,
                http_client=http_client,
                name="solana",
            ),
            solana,
            memo_prefix=settings.payment_memo_prefix,
            **extra,
        ),
        PaymentChain.base: EVMPaymentVerifier(
            JsonRpcClient(
                base.rpc_urls,
                timeout=settings.rpc_timeout_seconds,
                http_client=http_client,
                name="base",
            ),
            base,
            reference_prefix=settings.payment_memo_prefix,
            **extra,
        ),
    }


__all__ = [
    "ChainVerifier",
    "EVMPaymentVerifier",
    "PaymentBinding",
    "SolanaPaymentVerifier",
    "build_verifiers",
    "check_binding",
    "format_memo",
    "format_reference",
    "parse_memo",
    "parse_reference",
]
