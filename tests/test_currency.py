"""
Tests for Money and amount parsing
"""

import pytest
from decimal import Decimal

from quickpe.currency import Currency, Money, currency_from_code, parse_amount
from quickpe.errors import ValidationError


class TestMoney:

    def test_rounds_to_currency_precision(self):
        assert Money(Decimal("10.005"), Currency.INR).amount == Decimal("10.01")
        assert Money(Decimal("10.004"), Currency.INR).amount == Decimal("10.00")

    def test_arithmetic(self):
        a = Money(Decimal("100.50"), Currency.INR)
        b = Money(Decimal("0.50"), Currency.INR)
        assert (a + b).amount == Decimal("101.00")
        assert (a - b).amount == Decimal("100.00")
        assert (-b).amount == Decimal("-0.50")

    def test_comparisons(self):
        small = Money(Decimal("1"), Currency.INR)
        large = Money(Decimal("2"), Currency.INR)
        assert small < large
        assert large >= small
        assert small == Money(Decimal("1.00"), Currency.INR)

    def test_mixed_currencies_rejected(self):
        with pytest.raises(ValueError):
            Money(Decimal("1"), Currency.INR) + Money(Decimal("1"), Currency.USD)

    def test_to_string(self):
        assert Money(Decimal("1250"), Currency.INR).to_string() == "₹1,250.00"

    def test_sign_helpers(self):
        assert Money.zero(Currency.INR).is_zero()
        assert Money(Decimal("0.01"), Currency.INR).is_positive()
        assert Money(Decimal("-0.01"), Currency.INR).is_negative()


class TestParseAmount:

    @pytest.mark.parametrize("value", ["100", 100, Decimal("100.00"), "100.5", 99.99])
    def test_valid_amounts(self, value):
        money = parse_amount(value, Currency.INR)
        assert money.is_positive()
        assert money.currency == Currency.INR

    @pytest.mark.parametrize("value", [None, True, "", "abc", "0", -5, "NaN", "Infinity", "1.001"])
    def test_invalid_amounts(self, value):
        with pytest.raises(ValidationError) as exc_info:
            parse_amount(value, Currency.INR)
        assert exc_info.value.code == "INVALID_AMOUNT"

    @pytest.mark.parametrize("value", ["1e30", "1" * 29, Decimal("9.99E+40")])
    def test_amounts_beyond_decimal_precision(self, value):
        with pytest.raises(ValidationError) as exc_info:
            parse_amount(value, Currency.INR)
        assert exc_info.value.code == "INVALID_AMOUNT"

    def test_currency_from_code(self):
        assert currency_from_code("inr") == Currency.INR
        with pytest.raises(ValidationError):
            currency_from_code("XYZ")
