"""Tests for commission calculation."""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from retreat_billing.services.commission_calculator import compute_commission, to_money


def partner(mode="percentage", rate=None, flat=None):
    return SimpleNamespace(commission_mode=mode, commission_rate=rate, flat_rate_amount=flat)


class TestPercentageCommission:

    def test_uses_partner_rate(self):
        result = compute_commission(partner(rate=Decimal("20")), Decimal("1000"))
        assert result.amount == Decimal("200")
        assert result.mode == "percentage"
        assert result.rate == Decimal("20")
        assert result.flat_amount is None

    def test_falls_back_to_default_rate(self):
        result = compute_commission(partner(), Decimal("1000"))
        assert result.amount == Decimal("150")
        assert result.rate == Decimal("15")

    def test_explicit_default_rate_overrides_setting(self):
        result = compute_commission(partner(), Decimal("1000"), default_rate=10)
        assert result.amount == Decimal("100")

    def test_amount_is_not_rounded(self):
        result = compute_commission(partner(rate=Decimal("12.5")), Decimal("333.33"))
        assert result.amount == Decimal("41.66625")
        assert to_money(result.amount) == Decimal("41.67")

    def test_missing_revenue_counts_as_zero(self):
        assert compute_commission(partner(rate=Decimal("15")), None).amount == 0

    def test_missing_mode_is_percentage(self):
        result = compute_commission(partner(mode=None, rate=Decimal("10")), Decimal("500"))
        assert result.mode == "percentage"
        assert result.amount == Decimal("50")


class TestFlatRateCommission:

    def test_flat_amount_ignores_revenue(self):
        flat_partner = partner(mode="flat_rate", rate=Decimal("50"), flat=Decimal("75.00"))
        for revenue in (Decimal("0"), Decimal("100"), Decimal("99999")):
            result = compute_commission(flat_partner, revenue)
            assert result.amount == Decimal("75.00")
            assert result.mode == "flat_rate"
            assert result.flat_amount == Decimal("75.00")
            assert result.rate is None

    @pytest.mark.parametrize("flat", [None, Decimal("0")])
    def test_flat_mode_without_amount_falls_back_to_percentage(self, flat):
        result = compute_commission(partner(mode="flat_rate", flat=flat), Decimal("1000"))
        assert result.mode == "percentage"
        assert result.amount == Decimal("150")


class TestToMoney:

    @pytest.mark.parametrize("value,expected", [
        (Decimal("0.005"), Decimal("0.01")),
        (Decimal("2.675"), Decimal("2.68")),
        (10, Decimal("10.00")),
        ("19.999", Decimal("20.00")),
        (None, Decimal("0.00")),
    ])
    def test_rounds_half_up_to_cents(self, value, expected):
        assert to_money(value) == expected
