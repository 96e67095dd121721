"""Tests for Q16.16 arithmetic primitives."""

import math

import pytest

from neural_fp.fixed.arith import (
    EXP_INT_TABLE,
    FP_EXP_MAX,
    FP_ONE,
    INT32_MAX,
    INT32_MIN,
    MAX_WEIGHT_VALUE,
    MIN_WEIGHT_VALUE,
    fp_div,
    fp_exp,
    fp_mul,
    fp_sqrt,
    from_fixed,
    in_bounds,
    saturate,
    to_fixed,
    validate_input,
    validate_weights,
)


class TestConversion:
    """to_fixed / from_fixed and integer helpers."""

    def test_one(self) -> None:
        """1.0 is 65536."""
        assert to_fixed(1.0) == FP_ONE == 65536

    def test_half(self) -> None:
        """0.5 round-trips exactly."""
        assert to_fixed(0.5) == 32768
        assert from_fixed(32768) == 0.5

    def test_negative(self) -> None:
        """Negative values keep their sign."""
        assert to_fixed(-2.25) == -147456

    def test_saturates_high(self) -> None:
        """Values past the int32 range clamp to INT32_MAX."""
        assert to_fixed(1e10) == INT32_MAX

    def test_saturates_low(self) -> None:
        """Values below the int32 range clamp to INT32_MIN."""
        assert to_fixed(-1e10) == INT32_MIN

    def test_saturate_passthrough(self) -> None:
        """In-range values are unchanged."""
        assert saturate(12345) == 12345


class TestFpMul:
    """Q16.16 multiplication."""

    def test_whole_numbers(self) -> None:
        """2.0 * 3.0 == 6.0."""
        assert fp_mul(to_fixed(2.0), to_fixed(3.0)) == to_fixed(6.0)

    def test_fraction(self) -> None:
        """0.5 * 0.5 == 0.25."""
        assert fp_mul(to_fixed(0.5), to_fixed(0.5)) == to_fixed(0.25)

    def test_negative_rounds_toward_minus_infinity(self) -> None:
        """The shift floors negative products."""
        assert fp_mul(-1, 32768) == -1

    def test_saturates(self) -> None:
        """Overflowing products clamp to the int32 range."""
        assert fp_mul(INT32_MAX, INT32_MAX) == INT32_MAX
        assert fp_mul(INT32_MAX, INT32_MIN) == INT32_MIN


class TestFpDiv:
    """Q16.16 division."""

    def test_exact(self) -> None:
        """6.0 / 2.0 == 3.0."""
        assert fp_div(to_fixed(6.0), to_fixed(2.0)) == to_fixed(3.0)

    def test_truncates_toward_zero(self) -> None:
        """-1/3 truncates toward zero rather than flooring."""
        assert fp_div(to_fixed(-1.0), to_fixed(3.0)) == -21845
        assert fp_div(to_fixed(1.0), to_fixed(3.0)) == 21845

    def test_by_zero(self) -> None:
        """Division by zero raises."""
        with pytest.raises(ZeroDivisionError):
            fp_div(FP_ONE, 0)

    def test_saturates(self) -> None:
        """Huge quotients clamp to INT32_MAX."""
        assert fp_div(INT32_MAX, 1) == INT32_MAX


class TestFpSqrt:
    """Newton square root."""

    @pytest.mark.parametrize("value", [0.25, 1.0, 2.0, 4.0, 100.0, 10000.0])
    def test_close_to_math_sqrt(self, value: float) -> None:
        """Result is within a few ulps of the real root."""
        result = fp_sqrt(to_fixed(value))
        assert abs(from_fixed(result) - math.sqrt(value)) < 1e-3

    def test_zero(self) -> None:
        """sqrt(0) == 0."""
        assert fp_sqrt(0) == 0

    def test_negative(self) -> None:
        """Negative input returns 0."""
        assert fp_sqrt(to_fixed(-4.0)) == 0

    def test_smallest_positive(self) -> None:
        """sqrt of one ulp is positive."""
        assert fp_sqrt(1) > 0


class TestFpExp:
    """Table plus Taylor exponential."""

    def test_zero(self) -> None:
        """exp(0) is exactly 1.0."""
        assert fp_exp(0) == FP_ONE

    def test_whole_numbers_use_table(self) -> None:
        """exp(1) comes straight from the table."""
        assert fp_exp(FP_ONE) == EXP_INT_TABLE[1]

    @pytest.mark.parametrize("value", [-4.5, -2.3, -0.7, 0.5, 1.25, 3.9])
    def test_close_to_math_exp(self, value: float) -> None:
        """Relative error stays small across the domain."""
        result = from_fixed(fp_exp(to_fixed(value)))
        assert result == pytest.approx(math.exp(value), rel=2e-3, abs=2e-4)

    def test_saturates_above_five(self) -> None:
        """Inputs above +5 return exp(5)."""
        assert fp_exp(to_fixed(6.0)) == FP_EXP_MAX
        assert fp_exp(to_fixed(50.0)) == FP_EXP_MAX

    def test_zero_below_minus_five(self) -> None:
        """Inputs below -5 return 0."""
        assert fp_exp(to_fixed(-6.0)) == 0

    def test_lower_edge_positive(self) -> None:
        """exp(-5) is still representable."""
        assert fp_exp(to_fixed(-5.0)) > 0

    def test_monotonic(self) -> None:
        """exp never decreases across the domain."""
        values = [fp_exp(x) for x in range(-5 * FP_ONE, 5 * FP_ONE, FP_ONE // 8)]
        assert values == sorted(values)


class TestBounds:
    """Security-bound checks."""

    def test_in_bounds_limits(self) -> None:
        """+-100.0 are inclusive limits."""
        assert in_bounds(MAX_WEIGHT_VALUE)
        assert in_bounds(MIN_WEIGHT_VALUE)
        assert not in_bounds(MAX_WEIGHT_VALUE + 1)
        assert not in_bounds(MIN_WEIGHT_VALUE - 1)

    def test_validate_input_size(self) -> None:
        """Vectors longer than max_size are rejected."""
        assert validate_input([0] * 4)
        assert not validate_input([0] * 4097)
        assert not validate_input([0] * 3, max_size=2)

    def test_validate_input_values(self) -> None:
        """Any out-of-bounds element rejects the vector."""
        assert not validate_input([0, to_fixed(101.0)])

    def test_validate_weights_empty(self) -> None:
        """An empty weight buffer is invalid."""
        assert not validate_weights([])

    def test_validate_weights(self) -> None:
        """In-range weights pass, out-of-range fail."""
        assert validate_weights([FP_ONE, -FP_ONE])
        assert not validate_weights([FP_ONE, to_fixed(-100.5)])
