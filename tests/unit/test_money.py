"""
Unit tests for MoneyAmount.

Verifies:
- Integer-only construction (no float, no Decimal, no bool)
- 64-bit overflow detection on every arithmetic path
- Half-even rounding from major units
- Presentation formatting
"""

from decimal import Decimal

import pytest

from ledger_kernel.domain.money import MoneyAmount, format_major
from ledger_kernel.exceptions import ArithmeticOverflowError

INT64_MAX = 2**63 - 1
INT64_MIN = -(2**63)


class TestConstruction:
    def test_int_is_accepted(self):
        assert MoneyAmount(15050).minor == 15050

    @pytest.mark.parametrize("bad", [1.5, Decimal("1"), "100", True, None])
    def test_non_int_is_rejected(self, bad):
        with pytest.raises(TypeError):
            MoneyAmount(bad)

    def test_bounds_are_inclusive(self):
        assert MoneyAmount(INT64_MAX).minor == INT64_MAX
        assert MoneyAmount(INT64_MIN).minor == INT64_MIN

    def test_beyond_bounds_raises(self):
        with pytest.raises(ArithmeticOverflowError):
            MoneyAmount(INT64_MAX + 1)


class TestArithmetic:
    def test_add_and_subtract(self):
        a, b = MoneyAmount(1000), MoneyAmount(250)
        assert a.add(b) == MoneyAmount(1250)
        assert a - b == MoneyAmount(750)
        assert b.subtract(a) == MoneyAmount(-750)

    def test_operations_return_new_values(self):
        a = MoneyAmount(100)
        a.add(MoneyAmount(1))
        assert a.minor == 100

    def test_add_overflow(self):
        with pytest.raises(ArithmeticOverflowError) as exc_info:
            MoneyAmount(INT64_MAX).add(MoneyAmount(1))
        assert exc_info.value.operation == "add"

    def test_subtract_underflow(self):
        with pytest.raises(ArithmeticOverflowError):
            MoneyAmount(INT64_MIN).subtract(MoneyAmount(1))

    def test_multiply_by_integer(self):
        assert MoneyAmount(500).multiply_by_integer(12) == MoneyAmount(6000)
        assert 3 * MoneyAmount(7) == MoneyAmount(21)

    def test_multiply_overflow(self):
        with pytest.raises(ArithmeticOverflowError):
            MoneyAmount(2**40).multiply_by_integer(2**30)

    def test_multiply_rejects_non_int_factor(self):
        with pytest.raises(TypeError):
            MoneyAmount(10).multiply_by_integer(1.5)

    def test_negate_min_overflows(self):
        with pytest.raises(ArithmeticOverflowError):
            MoneyAmount(INT64_MIN).negate()

    def test_sum_of(self):
        total = MoneyAmount.sum_of([MoneyAmount(1), MoneyAmount(2), MoneyAmount(3)])
        assert total == MoneyAmount(6)
        assert MoneyAmount.sum_of([]) == MoneyAmount.zero()

    def test_mixing_with_plain_int_is_rejected(self):
        with pytest.raises(TypeError):
            MoneyAmount(1).add(1)


class TestFromMajor:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("150.50", 15050),
            (Decimal("0.01"), 1),
            (42, 4200),
            ("-3.10", -310),
        ],
    )
    def test_conversion(self, value, expected):
        assert MoneyAmount.from_major(value).minor == expected

    @pytest.mark.parametrize(
        "value, expected",
        [("0.125", 12), ("0.135", 14), ("-0.125", -12)],
    )
    def test_half_even_rounding(self, value, expected):
        assert MoneyAmount.from_major(value).minor == expected

    def test_zero_decimal_places(self):
        assert MoneyAmount.from_major("1500", decimal_places=0).minor == 1500

    def test_float_is_rejected(self):
        with pytest.raises(TypeError):
            MoneyAmount.from_major(1.10)

    def test_garbage_is_rejected(self):
        with pytest.raises(ValueError):
            MoneyAmount.from_major("twelve")

    @pytest.mark.parametrize(
        "value",
        ["1e17", "1e26", "123456789012345678901234567", "-1e40", Decimal("9" * 40)],
    )
    def test_out_of_range_raises_overflow(self, value):
        with pytest.raises(ArithmeticOverflowError) as exc_info:
            MoneyAmount.from_major(value)
        assert exc_info.value.operation == "from_major"

    def test_range_edges(self):
        assert MoneyAmount.from_major("92233720368547758.07").minor == 2**63 - 1
        assert MoneyAmount.from_major("-92233720368547758.08").minor == -(2**63)
        with pytest.raises(ArithmeticOverflowError):
            MoneyAmount.from_major("92233720368547758.08")

    def test_zero_with_large_exponent(self):
        assert MoneyAmount.from_major("0E+30").is_zero

    def test_long_fraction_rounds_once(self):
        # 29 significant digits: beyond the default Decimal precision
        assert MoneyAmount.from_major("1234567890.1250000000000000000001").minor == 123456789013


class TestFormatting:
    def test_format_major(self):
        assert format_major(MoneyAmount(15050)) == "150.50"
        assert format_major(MoneyAmount(-5)) == "-0.05"
        assert format_major(MoneyAmount(7), decimal_places=0) == "7"

    def test_ordering_and_predicates(self):
        assert MoneyAmount(1) < MoneyAmount(2)
        assert MoneyAmount(0).is_zero
        assert MoneyAmount(-1).is_negative
        assert abs(MoneyAmount(-9)) == MoneyAmount(9)
