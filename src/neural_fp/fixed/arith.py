"""Q16.16 fixed-point arithmetic: multiply, divide, sqrt, exp, bounds checks.

Every value handled by the engine is a Python int holding a signed 32-bit
Q16.16 number: 16 integer bits and 16 fractional bits, so 1.0 is 65536.
Products and quotients are computed on unbounded Python ints (the 64-bit
intermediate of the C formulation) and saturated back to the 32-bit range.
"""

from __future__ import annotations

import math
from typing import Iterable

# Q16.16: 1.0 is represented as 65536 (0x00010000)
FP_SHIFT: int = 16
FP_ONE: int = 1 << FP_SHIFT

INT32_MIN: int = -(1 << 31)
INT32_MAX: int = (1 << 31) - 1

# Security limits on weights and inputs (+-100.0)
MAX_WEIGHT_VALUE: int = 100 << FP_SHIFT
MIN_WEIGHT_VALUE: int = -(100 << FP_SHIFT)

MAX_INPUT_SIZE: int = 4096
MAX_OUTPUT_SIZE: int = 1024

# Newton iteration cap for fp_sqrt
_SQRT_MAX_ITERATIONS = 16

# Taylor terms used for exp of the fractional part in [0, 1)
_EXP_TAYLOR_TERMS = 8

# exp() is defined on [-5.0, 5.0]; outside it saturates
_EXP_MIN_INPUT: int = -5 << FP_SHIFT
_EXP_MAX_INPUT: int = 5 << FP_SHIFT


def to_fixed(value: float) -> int:
    """Convert a real number to Q16.16, rounding to nearest and saturating.

    Args:
        value: Real number.

    Returns:
        Q16.16 value clamped to the signed 32-bit range.
    """
    return saturate(round(value * FP_ONE))


def from_fixed(x: int) -> float:
    """Convert a Q16.16 value back to a real number."""
    return x / FP_ONE


def saturate(x: int) -> int:
    """Clamp an integer to the signed 32-bit range."""
    if x > INT32_MAX:
        return INT32_MAX
    if x < INT32_MIN:
        return INT32_MIN
    return x


def fp_mul(a: int, b: int) -> int:
    """Multiply two Q16.16 values: (a * b) >> 16, saturated.

    The shift is arithmetic, so negative products round toward -inf
    exactly as a signed 64-bit shift does.
    """
    return saturate((a * b) >> FP_SHIFT)


def fp_div(a: int, b: int) -> int:
    """Divide two Q16.16 values: (a << 16) / b, truncated toward zero.

    Raises:
        ZeroDivisionError: If b is zero.
    """
    if b == 0:
        raise ZeroDivisionError("Q16.16 division by zero")
    num = a << FP_SHIFT
    q = abs(num) // abs(b)
    if (num < 0) != (b < 0):
        q = -q
    return saturate(q)


def fp_sqrt(x: int) -> int:
    """Square root of a Q16.16 value by Newton's method.

    The first guess comes from the bit length of the raw value, which puts
    it within a factor of two of the root; at most 16 iterations follow,
    stopping early once successive estimates differ by at most one ulp.

    Args:
        x: Q16.16 value.

    Returns:
        Q16.16 square root, or 0 for non-positive input.
    """
    if x <= 0:
        return 0

    # sqrt(x / 2^16) * 2^16 == sqrt(x * 2^16)
    result = 1 << ((x.bit_length() + FP_SHIFT + 1) // 2)
    for _ in range(_SQRT_MAX_ITERATIONS):
        nxt = (result + fp_div(x, result)) >> 1
        if nxt <= 0:
            break
        if abs(nxt - result) <= 1:
            result = nxt
            break
        result = nxt
    return result


def _build_exp_table() -> dict[int, int]:
    """Precompute exp(k) in Q16.16 for whole k in [-5, 5]."""
    return {k: round(math.exp(k) * FP_ONE) for k in range(-5, 6)}


# Module-level precomputed table
EXP_INT_TABLE: dict[int, int] = _build_exp_table()

# exp(5.0), returned for every input above +5.0
FP_EXP_MAX: int = EXP_INT_TABLE[5]


def fp_exp(x: int) -> int:
    """Compute exp(x) for a Q16.16 input. Returns Q16.16.

    Splits x into a whole part n and a fraction f in [0, 1). exp(n) comes
    from a precomputed table and exp(f) from a Taylor series, which
    converges quickly on [0, 1). Inputs above +5.0 return exp(5); inputs
    below -5.0 return 0.

    Args:
        x: Q16.16 fixed-point value.

    Returns:
        Q16.16 result, always >= 0.
    """
    if x > _EXP_MAX_INPUT:
        return FP_EXP_MAX
    if x < _EXP_MIN_INPUT:
        return 0

    n = x >> FP_SHIFT  # floor
    frac = x - (n << FP_SHIFT)

    result = FP_ONE
    term = FP_ONE
    for i in range(1, _EXP_TAYLOR_TERMS + 1):
        term = fp_mul(term, frac) // i
        if term == 0:
            break
        result += term

    return fp_mul(EXP_INT_TABLE[n], result)


def in_bounds(x: int) -> bool:
    """Return True if x lies within the weight/input security limits."""
    return MIN_WEIGHT_VALUE <= x <= MAX_WEIGHT_VALUE


def validate_input(values: Iterable[int], max_size: int = MAX_INPUT_SIZE) -> bool:
    """Check an input vector against the size and value limits.

    Args:
        values: Q16.16 input vector.
        max_size: Largest accepted length.

    Returns:
        True if the vector has at most max_size elements, all within bounds.
    """
    values = list(values)
    if len(values) > max_size:
        return False
    return all(in_bounds(v) for v in values)


def validate_weights(values: Iterable[int]) -> bool:
    """Check a weight buffer: non-empty with every element within bounds."""
    values = list(values)
    if not values:
        return False
    return all(in_bounds(v) for v in values)
