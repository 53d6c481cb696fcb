"""Payment verification and pre-payment descriptor routes."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..auth import AdminAuth
from ..config import Settings, get_settings
from ..database import Database, get_agent_exists, get_post, post_to_resource
from ..logging_config import get_logger
from ..payments import (
    PaymentOrchestrator,
    PriceableResource,
    ResourceType,
    VerificationResult,
    build_networks,
    build_orchestrator,
    build_payment_required,
    spam_fee_resource,
    to_major_units,
)
from ..payments.errors import ErrorKind
from ..payments.models import PaymentRequiredResponse, VerificationStatus
from ..rate_limit import PAYMENT_OPTIONS_LIMIT, VERIFY_PAYMENT_LIMIT, limiter

logger = get_logger("settlement.routes.payments")

router = APIRouter(prefix="/api/v1", tags=["payments"])

PROOF_FIELDS = {"chain", "transaction_signature", "payer_address", "timestamp", "reference"}

# Transient infrastructure failures; the client should retry the same proof
SERVICE_UNAVAILABLE_KINDS = {ErrorKind.rpc_timeout.value, ErrorKind.rpc_unavailable.value}
BAD_REQUEST_KINDS = {ErrorKind.parse_error.value, ErrorKind.unsupported_chain.value}
SERVER_ERROR_KINDS = {
    ErrorKind.misconfigured_recipient.value,
    ErrorKind.internal_error.value,
}


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class VerifyPaymentRequest(BaseModel):
    """Payment proof plus the resource it pays for.

    Proof fields are validated by the proof parser, not here, so malformed
    proofs get the same error codes as the X-Payment-Proof header.
    """

    chain: Any = None
    transaction_signature: Any = None
    payer_address: Any = None
    timestamp: Any = None
    reference: Any = Field(None, description="Base payment reference from the 402 response")
    resource_type: ResourceType
    resource_id: str = Field(..., min_length=1, max_length=128)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_orchestrator(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    db: Database,
) -> PaymentOrchestrator:
    """Build a request-scoped orchestrator around the app's shared clients."""
    return build_orchestrator(
        settings,
        db,
        http_client=getattr(request.app.state, "http_client", None),
        cache=getattr(request.app.state, "settlement_cache", None),
    )


Orchestrator = Annotated[PaymentOrchestrator, Depends(get_orchestrator)]


async def resolve_resource(
    db, settings: Settings, resource_type: ResourceType, resource_id: str
) -> PriceableResource:
    """Look up what is being paid for.

    Raises:
        HTTPException: 404 if it does not exist, 400 if it is free.
    """
    if resource_type == ResourceType.spam_fee:
        if not await get_agent_exists(db, resource_id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Agent not found",
            )
        return spam_fee_resource(resource_id, settings.spam_fee_usdc)

    post = await get_post(db, resource_id)
    if post is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Post not found",
        )
    if not post.get("is_paid"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Post is free and does not require payment",
        )
    return post_to_resource(post)


def status_code_for(result: VerificationResult) -> int:
    if result.success:
        return status.HTTP_200_OK
    if result.status == VerificationStatus.already_processed:
        return status.HTTP_409_CONFLICT
    if result.error_kind in BAD_REQUEST_KINDS:
        return status.HTTP_400_BAD_REQUEST
    if result.error_kind in SERVICE_UNAVAILABLE_KINDS:
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if result.error_kind in SERVER_ERROR_KINDS:
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_402_PAYMENT_REQUIRED


def response_body(result: VerificationResult) -> dict:
    body = result.to_dict()

    if result.success and result.payment is not None:
        body["amount_usdc"] = result.payment.amount_usdc
        body["platform_fee_usdc"] = to_major_units(result.platform_fee_raw or 0)
        body["author_amount_usdc"] = to_major_units(result.author_amount_raw or 0)
    elif result.error_kind in SERVER_ERROR_KINDS:
        # Do not leak configuration or stack details to the caller
        body["error"] = "Internal server error"

    return body


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/verify-payment")
@limiter.limit(VERIFY_PAYMENT_LIMIT)
async def verify_payment(
    request: Request,
    body: VerifyPaymentRequest,
    _admin: AdminAuth,
    db: Database,
    orchestrator: Orchestrator,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Verify an on-chain payment and record its settlement.

    Internal endpoint: requires the admin bearer token.
    """
    resource = await resolve_resource(db, settings, body.resource_type, body.resource_id)

    raw_proof = body.model_dump(include=PROOF_FIELDS, exclude_none=True)
    result = await orchestrator.parse_and_verify(raw_proof, resource)

    code = status_code_for(result)
    if code >= 500:
        logger.error(
            "Payment verification failed for %s %s: %s (%s)",
            resource.resource_type.value,
            resource.resource_id,
            result.error_code,
            result.error,
        )

    return JSONResponse(status_code=code, content=response_body(result))


@router.get(
    "/payment-options/{resource_type}/{resource_id}",
    response_model=PaymentRequiredResponse,
)
@limiter.limit(PAYMENT_OPTIONS_LIMIT)
async def get_payment_options(
    request: Request,
    resource_type: ResourceType,
    resource_id: str,
    db: Database,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Where and how to pay for a post or a spam fee (the 402 descriptor)."""
    resource = await resolve_resource(db, settings, resource_type, resource_id)

    descriptor = build_payment_required(
        resource,
        build_networks(settings),
        memo_prefix=settings.payment_memo_prefix,
        validity_seconds=settings.payment_validity_seconds,
    )
    if not descriptor.payment_options:
        logger.warning(
            "No payment options for %s %s: no recipient configured on any chain",
            resource_type.value,
            resource_id,
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payments are not available for this resource",
        )
    return descriptor
