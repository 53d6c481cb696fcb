"""Parsing of client-submitted payment proofs.

Expected wire format (X-Payment-Proof header or JSON body)::

    {"chain": "solana", "transaction_signature": "5xK3v...",
     "payer_address": "7sK9x...", "timestamp": 1706959800}

Pure validation: nothing in here touches the network or the database.
"""

import json
import math
import re
import time
from collections.abc import Mapping
from typing import Any

from .errors import ProofParseError
from .models import PaymentChain, PaymentProof

# EVM tx hashes are 66 chars: 0x + 64 hex
EVM_TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")

# Solana signatures are 64-byte ed25519 signatures, base58 encoded (87-88 chars)
SOLANA_SIGNATURE_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{64,100}$")

MAX_REFERENCE_LENGTH = 256


def is_valid_evm_tx_hash(value: str) -> bool:
    return bool(value) and EVM_TX_HASH_RE.fullmatch(value) is not None


def is_valid_solana_signature(value: str) -> bool:
    return bool(value) and SOLANA_SIGNATURE_RE.fullmatch(value) is not None


def _required_string(payload: Mapping, field: str) -> str:
    value = payload.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ProofParseError(f"Payment proof missing or invalid {field}", "INVALID_PROOF")
    return value.strip()


def _coerce_timestamp(value: Any) -> int:
    # bool is an int subclass; it is not a timestamp
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return int(time.time())
    if isinstance(value, float) and not math.isfinite(value):
        return int(time.time())
    return int(value)


def parse_payment_proof(raw: str | bytes | Mapping | None) -> PaymentProof:
    """Validate and normalise an untrusted payment proof.

    Args:
        raw: The raw header value (JSON text) or an already-decoded mapping.

    Returns:
        A canonical ``PaymentProof``.

    Raises:
        ProofParseError: for anything malformed, incomplete or on an
            unsupported chain (code ``UNSUPPORTED_CHAIN``).
    """
    if raw is None:
        raise ProofParseError("Missing payment proof", "MISSING_PROOF")

    if isinstance(raw, (str, bytes)):
        try:
            payload = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise ProofParseError(f"Payment proof is not valid JSON: {e}", "INVALID_PROOF") from e
    else:
        payload = raw

    if not isinstance(payload, Mapping):
        raise ProofParseError("Payment proof must be a JSON object", "INVALID_PROOF")

    chain_value = _required_string(payload, "chain")
    signature = _required_string(payload, "transaction_signature")
    payer = _required_string(payload, "payer_address")

    try:
        chain = PaymentChain(chain_value.lower())
    except ValueError:
        raise ProofParseError(
            f"Unsupported payment chain: {chain_value}", "UNSUPPORTED_CHAIN"
        ) from None

    if chain == PaymentChain.base:
        if not is_valid_evm_tx_hash(signature):
            raise ProofParseError("Invalid EVM transaction hash format", "INVALID_TX_HASH")
        signature = signature.lower()
    elif chain == PaymentChain.solana:
        if not is_valid_solana_signature(signature):
            raise ProofParseError(
                "Invalid Solana transaction signature format", "INVALID_SIGNATURE"
            )

    reference = payload.get("reference")
    if reference is not None:
        if not isinstance(reference, str) or len(reference) > MAX_REFERENCE_LENGTH:
            raise ProofParseError("Invalid payment reference", "INVALID_PROOF")
        reference = reference.strip() or None

    return PaymentProof(
        chain=chain,
        transaction_signature=signature,
        payer_address=payer,
        timestamp=_coerce_timestamp(payload.get("timestamp")),
        reference=reference,
    )
