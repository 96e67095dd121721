"""Activation functions over Q16.16 values.

Scalar activations map one Q16.16 value to another; softmax operates on a
whole vector. The integer codes of :class:`Activation` are the ones
written into serialized models.
"""

from __future__ import annotations

from enum import IntEnum

from .arith import FP_ONE, FP_SHIFT, fp_div, fp_exp, fp_mul

# 0.01 in Q16.16
LEAKY_SLOPE: int = 655

_SIGMOID_CLAMP: int = 8 << FP_SHIFT
_TANH_CLAMP: int = 4 << FP_SHIFT


class Activation(IntEnum):
    """Per-layer activation function codes."""

    RELU = 0
    SIGMOID = 1
    LINEAR = 2
    TANH = 3
    LEAKY_RELU = 4
    SOFTMAX = 5

    @classmethod
    def parse(cls, name: str) -> Activation:
        """Look up an activation by case-insensitive name (e.g. "leaky_relu").

        Raises:
            ValueError: If the name is unknown.
        """
        key = name.strip().upper().replace("-", "_")
        try:
            return cls[key]
        except KeyError:
            valid = ", ".join(a.name.lower() for a in cls)
            raise ValueError(f"Unknown activation '{name}' (expected one of: {valid})") from None


def relu(x: int) -> int:
    """max(x, 0)."""
    return x if x > 0 else 0


def leaky_relu(x: int) -> int:
    """x for positive x, 0.01 * x otherwise."""
    return x if x > 0 else fp_mul(x, LEAKY_SLOPE)


def _exp_neg(mag: int) -> int:
    """exp(-mag) for mag >= 0, computed as exp(-mag/2)^2.

    Squaring the half-angle value keeps the result non-zero out to
    mag = 10.0, past the +-5.0 domain of fp_exp.
    """
    half = fp_exp(-(mag >> 1))
    return fp_mul(half, half)


def sigmoid(x: int) -> int:
    """Logistic function 1 / (1 + exp(-x)).

    The input is clamped to [-8, 8]. Only exp of a non-positive argument is
    ever evaluated; the positive half uses sigmoid(x) = 1 - sigmoid(-x), so
    the curve is symmetric about 0.5, non-decreasing and stays in [0, 1].
    """
    x = max(-_SIGMOID_CLAMP, min(_SIGMOID_CLAMP, x))
    e = _exp_neg(abs(x))
    low = fp_div(e, FP_ONE + e)  # sigmoid(-|x|)
    return FP_ONE - low if x >= 0 else low


def tanh(x: int) -> int:
    """Hyperbolic tangent, input clamped to [-4, 4].

    Evaluated as (1 - e) / (1 + e) with e = exp(-2|x|), then signed.
    """
    x = max(-_TANH_CLAMP, min(_TANH_CLAMP, x))
    e = _exp_neg(abs(x) << 1)
    mag = fp_div(FP_ONE - e, FP_ONE + e)
    return mag if x >= 0 else -mag


def linear(x: int) -> int:
    """Identity."""
    return x


def softmax(values: list[int]) -> list[int]:
    """Normalized exponentials of a vector.

    The maximum element is subtracted first so every exponent is <= 0.
    If the exponentials all underflow to zero the result is uniform.

    Args:
        values: Q16.16 vector.

    Returns:
        Q16.16 probabilities, one per input element.
    """
    if not values:
        return []
    peak = max(values)
    exps = [fp_exp(v - peak) for v in values]
    total = sum(exps)
    if total == 0:
        uniform = fp_div(FP_ONE, len(values) << FP_SHIFT)
        return [uniform] * len(values)
    return [fp_div(e, total) for e in exps]


_SCALAR = {
    Activation.RELU: relu,
    Activation.SIGMOID: sigmoid,
    Activation.LINEAR: linear,
    Activation.TANH: tanh,
    Activation.LEAKY_RELU: leaky_relu,
}


def apply_activation(x: int, kind: Activation) -> int:
    """Apply a scalar activation to one value.

    Softmax is a vector operation; applied to a single value it is the
    identity, and unknown codes pass the value through unchanged.
    """
    fn = _SCALAR.get(kind)
    return fn(x) if fn is not None else x


def apply_activation_vector(values: list[int], kind: Activation) -> list[int]:
    """Apply an activation element-wise, or softmax across the vector."""
    if kind == Activation.SOFTMAX:
        return softmax(values)
    fn = _SCALAR.get(kind, linear)
    return [fn(v) for v in values]


def activation_derivative(output: int, kind: Activation) -> int:
    """Derivative of an activation expressed in terms of its output.

    Used by backpropagation. Softmax is treated as having unit derivative,
    which is exact when it is paired with a cross-entropy style error.
    """
    if kind == Activation.RELU:
        return FP_ONE if output > 0 else 0
    if kind == Activation.LEAKY_RELU:
        return FP_ONE if output > 0 else LEAKY_SLOPE
    if kind == Activation.SIGMOID:
        return fp_mul(output, FP_ONE - output)
    if kind == Activation.TANH:
        return FP_ONE - fp_mul(output, output)
    return FP_ONE
