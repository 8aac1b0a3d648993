# tests/services/test_fee_calculator.py
"""Tests for the nano-TON fee calculator."""

from __future__ import annotations

from decimal import Decimal

import pytest

from showpls.core.errors import InvalidAmount
from showpls.services.fees import (
    DEFAULT_PLATFORM_FEE_BPS,
    MAXIMUM_AMOUNT_TON,
    MINIMUM_ORDER_NANO,
    NANO_PER_TON,
    compute_fees,
    escrow_amounts,
    format_ton,
    nano_to_ton,
    split_nano,
    to_nano,
    validate_minimum,
)


class TestToNano:
    """Conversion of TON amounts into integer nano units."""

    def test_decimal_strings_are_exact(self) -> None:
        assert to_nano("2.5") == 2_500_000_000
        assert to_nano("0.000000001") == 1

    def test_floats_use_their_shortest_representation(self) -> None:
        assert to_nano(0.1) == 100_000_000
        assert to_nano(1.1) == 1_100_000_000

    def test_sub_nano_precision_rounds_down(self) -> None:
        assert to_nano("0.0000000019") == 1
        assert to_nano(Decimal("1.9999999999")) == 1_999_999_999

    def test_integers_are_whole_ton(self) -> None:
        assert to_nano(3) == 3 * NANO_PER_TON

    def test_very_large_budgets_keep_precision(self) -> None:
        assert to_nano("123456789012.123456789") == 123456789012123456789

    def test_more_digits_than_the_decimal_context_still_floor(self) -> None:
        assert to_nano("12345678901234567890.123456789") == 12345678901234567890123456789
        assert to_nano("99999999999999999999.999999999") == 99999999999999999999999999999
        assert to_nano("1.0000000009999999999999999999999") == 1_000_000_000
        assert to_nano("0.00000000099999999999999999999999999") == 0

    def test_tiny_amounts_are_zero_nano(self) -> None:
        assert to_nano("1e-100000000") == 0

    @pytest.mark.parametrize(
        "amount",
        ["-1", -0.5, "NaN", "Infinity", float("inf"), float("nan"), "abc", "", True, None, [1]],
    )
    def test_invalid_amounts_are_rejected(self, amount) -> None:
        with pytest.raises(InvalidAmount):
            to_nano(amount)

    @pytest.mark.parametrize("amount", ["1e21", "1e5000", "1e100000000", 10**30, 1e300])
    def test_absurdly_large_amounts_are_rejected(self, amount) -> None:
        with pytest.raises(InvalidAmount, match="too large"):
            to_nano(amount)

    def test_largest_accepted_amount(self) -> None:
        assert MAXIMUM_AMOUNT_TON == Decimal("1e21")
        assert to_nano(Decimal("999999999999999999999.999999999")) == 10**30 - 1


class TestComputeFees:
    """Fee split of a TON budget."""

    def test_default_rate_on_two_and_a_half_ton(self) -> None:
        calc = compute_fees("2.5")

        assert calc.fee_bps == DEFAULT_PLATFORM_FEE_BPS
        assert calc.budget_nano == 2_500_000_000
        assert calc.platform_fee_nano == 62_500_000
        assert calc.payee_amount_nano == 2_437_500_000
        assert calc.display == {
            "budget": "2.5",
            "platform_fee": "0.0625",
            "payee_amount": "2.4375",
        }

    def test_fee_and_payee_always_sum_to_budget(self) -> None:
        for budget in ("0.000000001", "0.1", "1.23456789", "7", "99999.999999999"):
            for bps in (0, 1, 250, 333, 9999, 10000):
                calc = compute_fees(budget, bps)
                assert calc.platform_fee_nano + calc.payee_amount_nano == calc.budget_nano
                assert calc.platform_fee_nano == calc.budget_nano * bps // 10_000

    def test_fee_rounds_down(self) -> None:
        calc = compute_fees("0.000000039", 250)
        assert calc.platform_fee_nano == 0
        assert calc.payee_amount_nano == 39

    def test_zero_and_full_rates(self) -> None:
        assert compute_fees("1", 0).platform_fee_nano == 0
        assert compute_fees("1", 10_000).payee_amount_nano == 0

    def test_wide_budget_is_not_rounded_up(self) -> None:
        calc = compute_fees("99999999999999999999.999999999", 250)
        assert calc.budget_nano == 99999999999999999999999999999
        assert calc.platform_fee_nano + calc.payee_amount_nano == calc.budget_nano

    def test_zero_budget(self) -> None:
        calc = compute_fees(0)
        assert (calc.budget_nano, calc.platform_fee_nano, calc.payee_amount_nano) == (0, 0, 0)

    @pytest.mark.parametrize("bps", [-1, 10_001, 2.5, True])
    def test_invalid_fee_rates(self, bps) -> None:
        with pytest.raises(InvalidAmount):
            compute_fees("1", bps)

    def test_as_dict_serialises_nano_as_strings(self) -> None:
        payload = compute_fees("2.5").as_dict()
        assert payload["budget_nano"] == "2500000000"
        assert payload["platform_fee_nano"] == "62500000"
        assert payload["payee_amount_nano"] == "2437500000"
        assert payload["fee_bps"] == 250


class TestEscrowAmounts:
    """Splitting a stored nano budget."""

    def test_matches_compute_fees(self) -> None:
        amounts = escrow_amounts(2_500_000_000, 250)
        assert amounts.total_escrow_nano == 2_500_000_000
        assert amounts.platform_fee_nano == 62_500_000
        assert amounts.provider_amount_nano == 2_437_500_000

    def test_split_rejects_negative_budget(self) -> None:
        with pytest.raises(InvalidAmount):
            split_nano(-1, 250)


class TestFormatting:
    """Human-facing renderings of nano amounts."""

    def test_nano_to_ton_has_nine_decimals(self) -> None:
        assert nano_to_ton(2_437_500_000) == "2.437500000"
        assert nano_to_ton(1) == "0.000000001"

    def test_format_ton_strips_trailing_zeros(self) -> None:
        assert format_ton(2_437_500_000) == "2.4375"
        assert format_ton(3 * NANO_PER_TON) == "3"
        assert format_ton(0) == "0"

    def test_format_round_trips_through_to_nano(self) -> None:
        for nano in (0, 1, 62_500_000, 2_437_500_000, 10**21 + 7):
            text = format_ton(nano)
            assert format_ton(to_nano(text)) == text

    def test_minimum_order(self) -> None:
        assert MINIMUM_ORDER_NANO == 100_000_000
        assert validate_minimum("0.1") is True
        assert validate_minimum("0.099999999") is False
