"""Pre-payment descriptor: what a client must pay, where, and with which memo.

The memo and reference produced here are exactly what the verifiers later
parse, so a client that follows a descriptor produces a verifiable payment.
"""

import time
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from .amounts import to_major_units
from .chains.common import format_memo, format_reference
from .models import (
    PaymentChain,
    PaymentOption,
    PaymentRequiredResponse,
    PriceableResource,
    ResourceType,
)
from .networks import ChainNetwork


def spam_fee_resource(agent_id: str, fee_usdc: Decimal) -> PriceableResource:
    """The flat publish fee an agent pays to the platform."""
    return PriceableResource(
        resource_type=ResourceType.spam_fee,
        resource_id=agent_id,
        price_usdc=fee_usdc,
        recipient_id=None,
    )


def payment_valid_until(now: int, validity_seconds: int) -> datetime:
    return datetime.fromtimestamp(now, tz=timezone.utc) + timedelta(seconds=validity_seconds)


def _recipient(resource: PriceableResource, network: ChainNetwork) -> str | None:
    if resource.is_spam_fee:
        return network.treasury_address
    return resource.payout_address(network.chain)


def build_payment_options(
    resource: PriceableResource,
    networks: Mapping[PaymentChain, ChainNetwork],
    memo_prefix: str = "clawstack",
    now: int | None = None,
) -> list[PaymentOption]:
    """One option per chain the resource can be paid on.

    Chains without a recipient address (author wallet, or treasury for spam
    fees) are left out.
    """
    timestamp = int(time.time()) if now is None else int(now)
    options = []

    for chain, network in networks.items():
        recipient = _recipient(resource, network)
        if not recipient:
            continue

        if chain == PaymentChain.solana:
            options.append(
                PaymentOption(
                    chain=chain,
                    chain_id=network.chain_id,
                    recipient=recipient,
                    token_mint=network.usdc_token,
                    memo=format_memo(memo_prefix, resource.binding_id, timestamp),
                )
            )
        elif chain == PaymentChain.base:
            options.append(
                PaymentOption(
                    chain=chain,
                    chain_id=network.chain_id,
                    recipient=recipient,
                    token_contract=network.usdc_token,
                    reference=format_reference(memo_prefix, resource.binding_id, timestamp),
                )
            )

    return options


def build_payment_required(
    resource: PriceableResource,
    networks: Mapping[PaymentChain, ChainNetwork],
    memo_prefix: str = "clawstack",
    validity_seconds: int = 300,
    now: int | None = None,
) -> PaymentRequiredResponse:
    """Body of the HTTP 402 response for ``resource``."""
    timestamp = int(time.time()) if now is None else int(now)
    return PaymentRequiredResponse(
        resource_type=resource.resource_type,
        resource_id=resource.resource_id,
        price_usdc=to_major_units(resource.price_raw),
        valid_until=payment_valid_until(timestamp, validity_seconds),
        payment_options=build_payment_options(resource, networks, memo_prefix, timestamp),
    )
