"""Verification orchestrator: the single entry point for settling a payment.

    Start -> ReplayChecked -> CacheChecked -> ChainVerified -> Recorded -> Done
                                          \\-> (cache hit) -------------^

Any step may end in Error(kind). The durable ledger is consulted before the
cache, and the cache before any chain RPC. Callers always get a
``VerificationResult``; nothing is raised past ``verify``.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx
from supabase import Client

from ..config import Settings
from ..logging_config import get_logger, log_payment_event
from .cache import SettlementCache, build_cache
from .chains import ChainVerifier, build_verifiers
from .errors import (
    AlreadyUsedError,
    ErrorKind,
    MisconfiguredRecipientError,
    PaymentError,
    UnsupportedChainError,
)
from .ledger import PaymentLedger
from .models import (
    PaymentChain,
    PaymentProof,
    PriceableResource,
    VerificationResult,
    VerificationState,
    VerificationStatus,
    VerifiedPayment,
)
from .networks import ChainNetwork, resolve_network
from .proof import parse_payment_proof

logger = get_logger("settlement.payments.orchestrator")


@dataclass
class _Attempt:
    proof: PaymentProof
    resource: PriceableResource
    state: VerificationState = VerificationState.start
    from_cache: bool = False


class PaymentOrchestrator:
    """Runs one verification attempt end to end."""

    def __init__(
        self,
        ledger: PaymentLedger,
        cache: SettlementCache,
        verifiers: Mapping[PaymentChain, ChainVerifier],
        networks: Mapping[PaymentChain, ChainNetwork],
        fee_bps: int = 1000,
        validity_seconds: int = 300,
    ):
        self.ledger = ledger
        self.cache = cache
        self.verifiers = dict(verifiers)
        self.networks = dict(networks)
        self.fee_bps = fee_bps
        self.validity_seconds = validity_seconds

    def expected_recipients(self, chain: PaymentChain, resource: PriceableResource) -> list[str]:
        """Addresses a valid payment for ``resource`` on ``chain`` may pay.

        Spam fees pay the treasury only; posts pay the author's wallet or
        the treasury.

        Raises:
            MisconfiguredRecipientError: nothing on this chain can receive the payment.
        """
        network = self.networks.get(chain)
        treasury = network.treasury_address if network else None

        if resource.is_spam_fee:
            recipients = [treasury]
        else:
            payout = resource.payout_address(chain)
            if not payout:
                raise MisconfiguredRecipientError(
                    f"{resource.resource_type.value} {resource.resource_id} has no "
                    f"{chain.value} payout address"
                )
            recipients = [payout, treasury]

        recipients = [r for r in recipients if r]
        if not recipients:
            raise MisconfiguredRecipientError(f"No {chain.value} treasury address configured")
        return recipients

    async def _verify_on_chain(self, attempt: _Attempt) -> VerifiedPayment:
        proof, resource = attempt.proof, attempt.resource

        verifier = self.verifiers.get(proof.chain)
        if verifier is None:
            raise UnsupportedChainError(f"No verifier configured for {proof.chain.value}")

        return await verifier.verify(
            proof.transaction_signature,
            self.expected_recipients(proof.chain, resource),
            resource.price_raw,
            resource.binding_id,
            self.validity_seconds,
            reference=proof.reference,
        )

    async def _run(self, attempt: _Attempt) -> VerificationResult:
        proof, resource = attempt.proof, attempt.resource

        existing = await self.ledger.check_replay(proof.chain, proof.transaction_signature)
        if existing is not None:
            raise AlreadyUsedError(
                f"Transaction already used for {existing.resource_type or 'resource'} "
                f"{existing.resource_id or existing.id}"
            )
        attempt.state = VerificationState.replay_checked

        cached = await self.cache.get_cached(proof.chain, proof.transaction_signature)
        attempt.state = VerificationState.cache_checked

        if cached is not None and cached.matches(resource):
            payment = cached.payment
            attempt.from_cache = True
        else:
            payment = await self._verify_on_chain(attempt)
            attempt.state = VerificationState.chain_verified
            await self.cache.mark_cached(
                proof.chain, proof.transaction_signature, payment, resource
            )

        outcome = await self.ledger.record(proof, resource, payment, self.fee_bps)
        attempt.state = VerificationState.recorded

        attempt.state = VerificationState.done
        return VerificationResult(
            success=True,
            status=VerificationStatus.settled,
            state=attempt.state,
            chain=proof.chain.value,
            transaction_signature=proof.transaction_signature,
            payment=payment,
            ledger_id=outcome.ledger_id,
            already_recorded=outcome.already_recorded,
            from_cache=attempt.from_cache,
            platform_fee_raw=outcome.platform_fee_raw,
            author_amount_raw=outcome.author_amount_raw,
        )

    @staticmethod
    def _failure(attempt: _Attempt, error: PaymentError) -> VerificationResult:
        status = (
            VerificationStatus.already_processed
            if error.kind == ErrorKind.already_used
            else VerificationStatus.failed
        )
        return VerificationResult(
            success=False,
            status=status,
            state=VerificationState.error,
            chain=attempt.proof.chain.value,
            transaction_signature=attempt.proof.transaction_signature,
            error=error.message,
            error_code=error.code,
            error_kind=error.kind.value,
            retryable=error.retryable,
            failed_at=attempt.state,
        )

    async def verify(self, proof: PaymentProof, resource: PriceableResource) -> VerificationResult:
        """Verify and settle ``proof`` as payment for ``resource``."""
        started = time.perf_counter()
        attempt = _Attempt(proof=proof, resource=resource)

        try:
            result = await self._run(attempt)
        except PaymentError as e:
            result = self._failure(attempt, e)
        except Exception:
            logger.exception(
                "Unexpected error verifying %s transaction %s for %s %s (state=%s)",
                proof.chain.value,
                proof.transaction_signature,
                resource.resource_type.value,
                resource.resource_id,
                attempt.state.value,
            )
            result = self._failure(
                attempt, PaymentError("Internal error during payment verification")
            )

        log_payment_event(
            "verify",
            result.chain,
            result.transaction_signature,
            resource.resource_type.value,
            resource.resource_id,
            result.success,
            code=result.error_code,
            latency_ms=(time.perf_counter() - started) * 1000,
            status=result.status.value,
            cached=result.from_cache,
        )
        return result

    async def parse_and_verify(
        self, raw_proof: str | bytes | Mapping[str, Any] | None, resource: PriceableResource
    ) -> VerificationResult:
        """Parse an untrusted proof, then ``verify`` it.

        A malformed proof fails here without touching the network or the ledger.
        """
        try:
            proof = parse_payment_proof(raw_proof)
        except PaymentError as e:
            log_payment_event(
                "verify",
                None,
                None,
                resource.resource_type.value,
                resource.resource_id,
                False,
                code=e.code,
            )
            return VerificationResult(
                success=False,
                status=VerificationStatus.failed,
                state=VerificationState.error,
                error=e.message,
                error_code=e.code,
                error_kind=e.kind.value,
                retryable=e.retryable,
                failed_at=VerificationState.start,
            )
        return await self.verify(proof, resource)


def build_networks(settings: Settings) -> dict[PaymentChain, ChainNetwork]:
    return {chain: resolve_network(chain, settings) for chain in PaymentChain}


def build_orchestrator(
    settings: Settings,
    db: Client,
    http_client: httpx.AsyncClient | None = None,
    cache: SettlementCache | None = None,
) -> PaymentOrchestrator:
    """Wire an orchestrator from settings."""
    if cache is None:
        cache = build_cache(settings.redis_url, settings.payment_cache_ttl_seconds)

    return PaymentOrchestrator(
        ledger=PaymentLedger(db),
        cache=cache,
        verifiers=build_verifiers(settings, http_client),
        networks=build_networks(settings),
        fee_bps=settings.platform_fee_bps,
        validity_seconds=settings.payment_validity_seconds,
    )
