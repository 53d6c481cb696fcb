"""Memo / reference formats shared by the chain verifiers and the 402 descriptor.

Solana memo:    ``<prefix>:<binding_id>:<unix_ts>``   e.g. ``clawstack:post_abc:1706960000``
Base reference: ``0x<prefix>_<binding_id>_<unix_ts>`` e.g. ``0xclawstack_post_abc_1706960000``

The binding id may itself contain the separator (``spam_fee:agent_1``), so
both formats are split on the first and last separator only.
"""

import re
from dataclasses import dataclass

from ..errors import ReferenceMismatchError


@dataclass(frozen=True)
class PaymentBinding:
    """Resource id and quote timestamp a payment was made for."""

    prefix: str
    binding_id: str
    timestamp: int


def format_memo(prefix: str, binding_id: str, timestamp: int) -> str:
    return f"{prefix}:{binding_id}:{int(timestamp)}"


def format_reference(prefix: str, binding_id: str, timestamp: int) -> str:
    return f"0x{prefix}_{binding_id}_{int(timestamp)}"


def parse_memo(memo: str | None, prefix: str) -> PaymentBinding:
    """Parse a Solana payment memo.

    Raises:
        ReferenceMismatchError: (``INVALID_MEMO``) if missing or malformed.
    """
    if not memo:
        raise ReferenceMismatchError("Missing payment memo", "INVALID_MEMO")

    head, sep, rest = memo.partition(":")
    if not sep:
        raise ReferenceMismatchError(f"Invalid memo format: {memo!r}", "INVALID_MEMO")
    if head != prefix:
        raise ReferenceMismatchError(
            f"Invalid memo prefix: expected {prefix!r}, got {head!r}", "INVALID_MEMO"
        )

    binding_id, sep, timestamp = rest.rpartition(":")
    if not sep or not binding_id:
        raise ReferenceMismatchError(f"Invalid memo format: {memo!r}", "INVALID_MEMO")
    if not timestamp.isdigit():
        raise ReferenceMismatchError(f"Invalid memo timestamp: {timestamp!r}", "INVALID_MEMO")

    return PaymentBinding(prefix=head, binding_id=binding_id, timestamp=int(timestamp))


def parse_reference(reference: str | None, prefix: str) -> PaymentBinding:
    """Parse a Base payment reference.

    Raises:
        ReferenceMismatchError: (``INVALID_REFERENCE``) if missing or malformed.
    """
    if not reference:
        raise ReferenceMismatchError("Missing payment reference", "INVALID_REFERENCE")

    match = re.fullmatch(rf"0x{re.escape(prefix)}_(.+)_(\d+)", reference)
    if match is None:
        raise ReferenceMismatchError(
            f"Invalid reference format: {reference!r}", "INVALID_REFERENCE"
        )

    return PaymentBinding(
        prefix=f"0x{prefix}",
        binding_id=match.group(1),
        timestamp=int(match.group(2)),
    )


def check_binding(
    binding: PaymentBinding,
    expected_binding_id: str,
    validity_seconds: int,
    now: float,
    mismatch_code: str,
    expired_code: str,
) -> None:
    """Check a parsed memo/reference against the resource and the clock.

    Freshness is measured against the verifier's own clock, never the
    client-supplied proof timestamp.
    """
    if binding.binding_id != expected_binding_id:
        raise ReferenceMismatchError(
            f"Payment is bound to {binding.binding_id!r}, expected {expected_binding_id!r}",
            mismatch_code,
        )

    age = abs(int(now) - binding.timestamp)
    if age > validity_seconds:
        raise ReferenceMismatchError(
            f"Payment reference expired: {age}s difference exceeds {validity_seconds}s limit",
            expired_code,
        )
