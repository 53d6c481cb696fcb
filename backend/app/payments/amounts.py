"""USDC amount conversion and fee splitting.

All arithmetic is integer arithmetic on raw units (1 USDC = 1,000,000 raw).
Major-unit amounts go through ``Decimal``, never float multiplication.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation

USDC_DECIMALS = 6
RAW_PER_USDC = 10**USDC_DECIMALS
BPS_DENOMINATOR = 10_000

_DISPLAY_QUANTUM = Decimal("0.01")


def as_decimal(amount: Decimal | int | str | float) -> Decimal:
    if isinstance(amount, bool):
        raise TypeError("Amount must be a number, not bool")
    if isinstance(amount, Decimal):
        return amount
    if isinstance(amount, float):
        # Supabase returns NUMERIC columns as JSON numbers; go through the
        # shortest decimal repr rather than the binary value.
        return Decimal(repr(amount))
    try:
        return Decimal(amount)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e


def to_raw_units(amount: Decimal | int | str | float) -> int:
    """Convert a major-unit amount (e.g. ``Decimal("0.25")``) to raw units.

    Truncates toward zero below the sixth decimal digit.

    Raises:
        ValueError: for negative or non-finite amounts.
    """
    value = as_decimal(amount)
    if not value.is_finite():
        raise ValueError(f"Amount must be finite: {amount!r}")
    if value < 0:
        raise ValueError(f"Amount must be non-negative: {amount!r}")
    return int((value * RAW_PER_USDC).to_integral_value(rounding=ROUND_DOWN))


def to_major_units(raw: int) -> str:
    """Format raw units as a 2-decimal display string (``250000`` -> ``"0.25"``).

    Display only; the ledger keeps the full 6-digit raw value.
    """
    value = Decimal(int(raw)) / RAW_PER_USDC
    return str(value.quantize(_DISPLAY_QUANTUM, rounding=ROUND_HALF_UP))


def raw_to_decimal(raw: int) -> Decimal:
    """Exact major-unit value of a raw amount."""
    return Decimal(int(raw)) / RAW_PER_USDC


def split_fee(gross: int, fee_bps: int) -> tuple[int, int]:
    """Split ``gross`` into ``(platform_fee, remainder)``.

    ``fee = floor(gross * fee_bps / 10000)``; the remainder takes everything
    else, so ``fee + remainder == gross`` always holds.
    """
    if isinstance(gross, bool) or not isinstance(gross, int):
        raise TypeError("gross must be an integer number of raw units")
    if gross < 0:
        raise ValueError(f"gross must be non-negative, got {gross}")
    if not 0 <= fee_bps <= BPS_DENOMINATOR:
        raise ValueError(f"fee_bps must be within [0, {BPS_DENOMINATOR}], got {fee_bps}")

    fee = gross * fee_bps // BPS_DENOMINATOR
    return fee, gross - fee


def split_settlement(gross: int, expected: int, fee_bps: int) -> tuple[int, int]:
    """Split a verified payment that may exceed the expected price.

    The author share is computed from ``expected`` only; any excess paid on
    top of the price is credited to the platform fee.
    """
    if expected < 0:
        raise ValueError(f"expected must be non-negative, got {expected}")
    if gross <= expected:
        return split_fee(gross, fee_bps)

    fee, author_amount = split_fee(expected, fee_bps)
    return fee + (gross - expected), author_amount
