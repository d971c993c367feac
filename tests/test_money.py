"""
Test suite for money helpers

All monetary math must stay in Decimal and round to cents deterministically.
"""

import pytest
from decimal import Decimal

from microfinance.money import (
    ZERO, decimal_from_string, divide_with_remainder, format_money,
    percentage, quantize_money, to_decimal
)


class TestToDecimal:
    """Test conversion of incoming amounts"""

    def test_decimal_passthrough(self):
        value = Decimal('12.34')
        assert to_decimal(value) is value

    def test_int_and_string(self):
        assert to_decimal(1000) == Decimal('1000')
        assert to_decimal('250.50') == Decimal('250.50')

    def test_float_rejected(self):
        """Binary floats cannot represent cents exactly"""
        with pytest.raises(TypeError):
            to_decimal(0.1)

    def test_bool_rejected(self):
        with pytest.raises(TypeError):
            to_decimal(True)

    def test_garbage_string_rejected(self):
        with pytest.raises(ValueError):
            to_decimal('abc')


class TestDecimalFromString:

    def test_currency_symbol_and_thousands(self):
        assert decimal_from_string('$1,234.56') == Decimal('1234.56')

    def test_comma_decimal_separator(self):
        assert decimal_from_string('12,50') == Decimal('12.50')

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            decimal_from_string('')

    def test_infinity_rejected(self):
        with pytest.raises(ValueError):
            decimal_from_string('Infinity')


class TestRounding:
    """Test cent rounding and splitting"""

    def test_quantize_half_up(self):
        assert quantize_money(Decimal('0.125')) == Decimal('0.13')
        assert quantize_money(Decimal('0.124')) == Decimal('0.12')

    def test_divide_evenly(self):
        share, remainder = divide_with_remainder(Decimal('1000'), 10)
        assert share == Decimal('100.00')
        assert remainder == ZERO

    def test_divide_floors_and_reports_remainder(self):
        share, remainder = divide_with_remainder(Decimal('100'), 3)
        assert share == Decimal('33.33')
        assert remainder == Decimal('0.01')

    def test_divide_by_zero_parts(self):
        with pytest.raises(ValueError):
            divide_with_remainder(Decimal('100'), 0)


class TestPercentage:

    def test_percentage(self):
        assert percentage(Decimal('250'), Decimal('1000')) == "25.00"

    def test_percentage_of_empty_whole(self):
        assert percentage(Decimal('10'), ZERO) == "0.00"

    def test_format_money(self):
        assert format_money(Decimal('1234567.5')) == "1,234,567.50"
