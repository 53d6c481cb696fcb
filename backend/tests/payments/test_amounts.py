"""Tests for USDC amount conversion and fee splitting."""

from decimal import Decimal

import pytest

from app.payments.amounts import (
    RAW_PER_USDC,
    as_decimal,
    raw_to_decimal,
    split_fee,
    split_settlement,
    to_major_units,
    to_raw_units,
)


class TestToRawUnits:
    """Tests for major -> raw conversion."""

    def test_decimal(self):
        assert to_raw_units(Decimal("0.25")) == 250_000

    def test_string(self):
        assert to_raw_units("1.5") == 1_500_000

    def test_int(self):
        assert to_raw_units(5) == 5_000_000

    def test_float_goes_through_decimal_repr(self):
        # 0.1 * 1e6 as binary floats is 100000.00000000001
        assert to_raw_units(0.1) == 100_000
        assert to_raw_units(0.29) == 290_000

    def test_truncates_below_sixth_decimal(self):
        assert to_raw_units(Decimal("0.0000019")) == 1

    def test_zero(self):
        assert to_raw_units(0) == 0

    def test_negative_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            to_raw_units(Decimal("-0.01"))

    def test_non_finite_rejected(self):
        with pytest.raises(ValueError):
            to_raw_units(Decimal("Infinity"))

    def test_garbage_rejected(self):
        with pytest.raises(ValueError):
            to_raw_units("not-a-number")

    def test_bool_rejected(self):
        with pytest.raises(TypeError):
            as_decimal(True)

    def test_two_decimal_amounts_round_trip(self):
        """Every cent value survives raw conversion and display formatting."""
        for cents in [1, 5, 10, 25, 99, 100, 1234, 99_999, 123_456_78, 99_999_999]:
            amount = Decimal(cents) / 100
            raw = to_raw_units(amount)
            assert raw == cents * 10_000
            assert Decimal(to_major_units(raw)) == amount


class TestToMajorUnits:
    def test_two_decimals(self):
        assert to_major_units(250_000) == "0.25"
        assert to_major_units(5_000_000) == "5.00"

    def test_rounds_half_up_for_display(self):
        assert to_major_units(5_000) == "0.01"
        assert to_major_units(4_999) == "0.00"

    def test_raw_to_decimal_is_exact(self):
        assert raw_to_decimal(1) == Decimal("0.000001")
        assert raw_to_decimal(RAW_PER_USDC) == Decimal("1")


class TestSplitFee:
    """Fee split: fee = floor(gross * bps / 10000), remainder gets the rest."""

    def test_quarter_dollar_at_ten_percent(self):
        assert split_fee(250_000, 1000) == (25_000, 225_000)

    def test_five_cents_at_ten_percent(self):
        assert split_fee(50_000, 1000) == (5_000, 45_000)

    def test_five_cents_at_five_percent(self):
        assert split_fee(50_000, 500) == (2_500, 47_500)

    def test_floor_rounding_favours_remainder(self):
        fee, remainder = split_fee(1, 1000)
        assert (fee, remainder) == (0, 1)

    @pytest.mark.parametrize("bps", [0, 1, 250, 999, 1000, 3333, 9999, 10_000])
    @pytest.mark.parametrize("gross", [0, 1, 7, 99, 50_000, 250_000, 10**12 + 3])
    def test_split_always_adds_up(self, gross, bps):
        fee, remainder = split_fee(gross, bps)
        assert fee + remainder == gross
        assert fee >= 0
        assert remainder >= 0

    def test_full_fee(self):
        assert split_fee(100_000, 10_000) == (100_000, 0)

    def test_negative_gross_rejected(self):
        with pytest.raises(ValueError):
            split_fee(-1, 1000)

    @pytest.mark.parametrize("bps", [-1, 10_001])
    def test_bps_out_of_range_rejected(self, bps):
        with pytest.raises(ValueError):
            split_fee(100, bps)

    def test_non_integer_gross_rejected(self):
        with pytest.raises(TypeError):
            split_fee(Decimal("1.5"), 1000)


class TestSplitSettlement:
    """Overpayment: the excess is credited to the platform."""

    def test_exact_payment_is_a_plain_split(self):
        assert split_settlement(250_000, 250_000, 1000) == (25_000, 225_000)

    def test_overpayment_excess_goes_to_fee(self):
        fee, author = split_settlement(300_000, 250_000, 1000)
        assert author == 225_000
        assert fee == 75_000
        assert fee + author == 300_000

    def test_underpayment_is_still_split_exactly(self):
        assert split_settlement(200_000, 250_000, 1000) == (20_000, 180_000)
