"""Dense layer: output = activation(W . input + b) over Q16.16 values."""

from __future__ import annotations

import logging
import random
import struct
import zlib
from typing import Sequence

from ..fixed.activations import Activation, apply_activation_vector
from ..fixed.arith import (
    FP_ONE,
    FP_SHIFT,
    MAX_INPUT_SIZE,
    fp_div,
    fp_mul,
    fp_sqrt,
    in_bounds,
    saturate,
    to_fixed,
    validate_weights,
)
from .errors import InvalidInputError, InvalidLayerError, NeuralMemoryError, SecurityViolationError
from .rwlock import RWLock

logger = logging.getLogger(__name__)

# Bias given to ReLU neurons so they start out active (0.01)
RELU_INITIAL_BIAS: int = 655

# Batch-norm variance stabilizer (~1e-5, the smallest Q16.16 step)
BN_EPSILON: int = 1

# Weight of a new batch when folding it into the running statistics (0.1)
BN_RUNNING_FACTOR: int = to_fixed(0.1)

BYTES_PER_VALUE = 4


def buffer_checksum(values: Sequence[int]) -> int:
    """CRC32 of a Q16.16 buffer encoded as little-endian int32."""
    return zlib.crc32(struct.pack(f"<{len(values)}i", *values)) & 0xFFFFFFFF


def _xavier_scale(input_size: int) -> int:
    """Pre-computed 1/sqrt(fan_in) bucket, avoiding a runtime sqrt."""
    if input_size <= 1:
        return FP_ONE
    if input_size <= 4:
        return FP_ONE // 2
    if input_size <= 16:
        return FP_ONE // 4
    return FP_ONE // 8


class Layer:
    """One fully connected layer with its parameters, scratch and lock.

    Weights are a row-major ``output_size x input_size`` matrix flattened into
    a list, so the weight from input j to neuron i is
    ``weights[i * input_size + j]``.

    Forward passes hold the layer's lock shared; weight writes hold it
    exclusively, so no reader ever sees a half-written buffer.
    """

    def __init__(
        self,
        input_size: int,
        output_size: int,
        activation: Activation = Activation.RELU,
        *,
        dropout_rate: float = 0.0,
        batch_norm: bool = False,
        rng: random.Random | None = None,
    ) -> None:
        if input_size <= 0 or output_size <= 0:
            raise InvalidLayerError(
                f"Layer sizes must be positive, got {input_size}x{output_size}"
            )
        if input_size > MAX_INPUT_SIZE or output_size > MAX_INPUT_SIZE:
            raise InvalidLayerError(
                f"Layer {input_size}x{output_size} exceeds the size limit "
                f"({MAX_INPUT_SIZE})"
            )
        if not 0.0 <= dropout_rate < 1.0:
            raise InvalidLayerError(f"dropout_rate must be in [0, 1), got {dropout_rate}")

        self.input_size = input_size
        self.output_size = output_size
        self.activation = Activation(activation)
        self.dropout_rate = dropout_rate
        self.batch_norm = batch_norm
        self.lock = RWLock()
        self._rng = rng if rng is not None else random.Random()

        try:
            self.weights = self._init_weights()
            initial_bias = RELU_INITIAL_BIAS if self.activation == Activation.RELU else 0
            self.biases = [initial_bias] * output_size
            self.neurons = [0] * output_size
            if batch_norm:
                self.bn_gamma: list[int] | None = [FP_ONE] * output_size
                self.bn_beta: list[int] | None = [0] * output_size
                self.bn_mean: list[int] | None = [0] * output_size
                self.bn_var: list[int] | None = [FP_ONE] * output_size
            else:
                self.bn_gamma = self.bn_beta = self.bn_mean = self.bn_var = None
        except MemoryError as exc:
            raise NeuralMemoryError(
                f"Cannot allocate layer {input_size}x{output_size}"
            ) from exc

        # Training buffers are allocated on first use
        self.gradients: list[int] | None = None
        self.momentum: list[int] | None = None
        self.bias_momentum: list[int] | None = None

        self.checksum = buffer_checksum(self.weights)
        self.weights_validated = True

    def _init_weights(self) -> list[int]:
        """Uniform fill in [-1, 1) scaled by the Xavier bucket for fan-in."""
        scale = _xavier_scale(self.input_size)
        count = self.input_size * self.output_size
        return [
            fp_mul(self._rng.randrange(2 * FP_ONE) - FP_ONE, scale)
            for _ in range(count)
        ]

    @property
    def weights_size(self) -> int:
        return self.input_size * self.output_size

    def _check_input(self, inputs: Sequence[int], secure: bool) -> list[int]:
        """Return the input as Python ints after checking size and bounds."""
        values = [int(v) for v in inputs]
        if len(values) != self.input_size:
            raise InvalidInputError(
                f"Layer expects {self.input_size} inputs, got {len(values)}"
            )
        for idx, v in enumerate(values):
            if not in_bounds(v):
                msg = f"Input {idx} out of bounds: {v}"
                if secure:
                    raise SecurityViolationError(msg)
                raise InvalidInputError(msg)
        return values

    def affine(self, inputs: Sequence[int]) -> list[int]:
        """Compute W . input + b without activation. Caller holds the lock.

        Products are summed at full width and shifted once at the end.
        """
        n_in = self.input_size
        w = self.weights
        out: list[int] = []
        for i in range(self.output_size):
            row = i * n_in
            acc = self.biases[i] << FP_SHIFT
            for j in range(n_in):
                acc += inputs[j] * w[row + j]
            out.append(saturate(acc >> FP_SHIFT))
        return out

    def _bn_params(self) -> tuple[list[int], list[int], list[int], list[int]]:
        """(gamma, beta, running mean, running variance)."""
        if (self.bn_gamma is None or self.bn_beta is None
                or self.bn_mean is None or self.bn_var is None):
            raise InvalidLayerError("Layer was created without batch normalization")
        return self.bn_gamma, self.bn_beta, self.bn_mean, self.bn_var

    def normalize_inference(self, values: list[int]) -> list[int]:
        """Apply the running batch-norm statistics and gamma/beta."""
        if not self.batch_norm:
            return values
        gamma, beta, mean, var = self._bn_params()
        out = []
        for i, v in enumerate(values):
            std = fp_sqrt(var[i] + BN_EPSILON) or 1
            x_hat = fp_div(v - mean[i], std)
            out.append(saturate(fp_mul(gamma[i], x_hat) + beta[i]))
        return out

    def bn_scale(self, index: int) -> int:
        """gamma / std for one neuron: the slope of its batch-norm transform."""
        if not self.batch_norm:
            return FP_ONE
        gamma, _, _, var = self._bn_params()
        std = fp_sqrt(var[index] + BN_EPSILON) or 1
        return fp_div(gamma[index], std)

    def dropout_scales(self) -> list[int]:
        """Draw one dropout mask: 0 with probability dropout_rate, else 1/(1-rate)."""
        rate = to_fixed(self.dropout_rate)
        if rate <= 0:
            return [FP_ONE] * self.output_size
        keep_scale = fp_div(FP_ONE, FP_ONE - rate)
        return [
            0 if self._rng.randrange(FP_ONE) < rate else keep_scale
            for _ in range(self.output_size)
        ]

    def _dropout(self, values: list[int]) -> list[int]:
        """Zero each value with probability dropout_rate, rescale survivors."""
        if self.dropout_rate <= 0.0:
            return values
        return [fp_mul(v, s) for v, s in zip(values, self.dropout_scales())]

    def forward(
        self,
        inputs: Sequence[int],
        *,
        training: bool = False,
        secure: bool = False,
    ) -> list[int]:
        """Run the layer on one input vector.

        Args:
            inputs: Q16.16 vector of length input_size, every value in bounds.
            training: Apply dropout (and nothing else changes).
            secure: Report out-of-bounds values as security violations.

        Returns:
            The activated outputs; also stored in ``neurons``.

        Raises:
            InvalidInputError: Wrong length or out-of-bounds value.
            SecurityViolationError: Out-of-bounds value with secure set.
        """
        values = self._check_input(inputs, secure)
        with self.lock.read_locked():
            pre = self.normalize_inference(self.affine(values))
        out = apply_activation_vector(pre, self.activation)
        if training:
            out = self._dropout(out)
        self.neurons = out
        return list(out)

    def set_weights(
        self,
        weights: Sequence[int],
        biases: Sequence[int],
        *,
        secure: bool = False,
    ) -> None:
        """Replace weights and biases in place and refresh the checksum.

        Raises:
            InvalidLayerError: Buffer lengths do not match the layer shape.
            InvalidInputError: A value lies outside the weight bounds.
        """
        weights = [int(v) for v in weights]
        biases = [int(v) for v in biases]
        if len(weights) != self.weights_size or len(biases) != self.output_size:
            raise InvalidLayerError(
                f"Expected {self.weights_size} weights and {self.output_size} "
                f"biases, got {len(weights)} and {len(biases)}"
            )
        if not validate_weights(weights) or not validate_weights(biases):
            msg = "Weights or biases out of bounds"
            if secure:
                raise SecurityViolationError(msg)
            raise InvalidInputError(msg)
        with self.lock.write_locked():
            self.weights[:] = weights
            self.biases[:] = biases
            self.checksum = buffer_checksum(self.weights)
            self.weights_validated = True

    def snapshot(self) -> tuple[list[int], list[int]]:
        """Consistent copies of (weights, biases)."""
        with self.lock.read_locked():
            return list(self.weights), list(self.biases)

    def validate(self) -> bool:
        """Recompute the weight checksum; False means the buffer was corrupted."""
        with self.lock.read_locked():
            ok = buffer_checksum(self.weights) == self.checksum
        self.weights_validated = ok
        if not ok:
            logger.error(
                "Layer %dx%d checksum mismatch", self.input_size, self.output_size
            )
        return ok

    def check_limits(self) -> bool:
        """Sizes within limits and every weight within bounds."""
        if self.input_size > MAX_INPUT_SIZE or self.output_size > MAX_INPUT_SIZE:
            return False
        with self.lock.read_locked():
            return validate_weights(self.weights)

    def ensure_training_buffers(self) -> tuple[list[int], list[int], list[int]]:
        """Allocate gradient and momentum buffers on first use.

        Returns:
            (gradients, weight momentum, bias momentum).
        """
        if self.gradients is None:
            self.gradients = [0] * self.output_size
        if self.momentum is None:
            self.momentum = [0] * self.weights_size
        if self.bias_momentum is None:
            self.bias_momentum = [0] * self.output_size
        return self.gradients, self.momentum, self.bias_momentum

    def batch_normalize(self, batch: Sequence[Sequence[int]]) -> list[list[int]]:
        """Normalize a batch of pre-activation vectors per neuron.

        Computes each neuron's mean and variance across the batch, folds
        them into the running statistics used at inference time, and
        returns ``gamma * (x - mean) / sqrt(var + eps) + beta`` per sample.

        Raises:
            InvalidLayerError: The layer has no batch-norm parameters.
            InvalidInputError: Empty batch or vectors of the wrong length.
        """
        gamma, beta, running_mean, running_var = self._bn_params()
        if not batch:
            raise InvalidInputError("Empty batch")
        for row in batch:
            if len(row) != self.output_size:
                raise InvalidInputError(
                    f"Batch vectors must have {self.output_size} values, got {len(row)}"
                )

        n = len(batch)
        result = [[0] * self.output_size for _ in range(n)]
        with self.lock.write_locked():
            for i in range(self.output_size):
                column = [row[i] for row in batch]
                mean = sum(column) // n
                var = sum(fp_mul(v - mean, v - mean) for v in column) // n
                std = fp_sqrt(var + BN_EPSILON) or 1
                for k, v in enumerate(column):
                    x_hat = fp_div(v - mean, std)
                    result[k][i] = saturate(fp_mul(gamma[i], x_hat) + beta[i])
                running_mean[i] += fp_mul(BN_RUNNING_FACTOR, mean - running_mean[i])
                running_var[i] += fp_mul(BN_RUNNING_FACTOR, var - running_var[i])
        return result

    def memory_usage(self) -> int:
        """Bytes held by parameter, scratch and training buffers."""
        values = self.weights_size + 2 * self.output_size  # weights, biases, neurons
        for buf in (self.bn_gamma, self.bn_beta, self.bn_mean, self.bn_var,
                    self.gradients, self.momentum, self.bias_momentum):
            if buf is not None:
                values += len(buf)
        return values * BYTES_PER_VALUE

    def __repr__(self) -> str:
        return (
            f"Layer({self.input_size}, {self.output_size}, "
            f"{self.activation.name.lower()})"
        )
