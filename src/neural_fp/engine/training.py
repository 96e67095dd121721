"""Fixed-point SGD training: backpropagation of squared error, momentum.

Only the fixed dense-stack topology is supported; there is no general
autodiff. A step holds every layer's write lock, lowest index first, so
predictions wait for the update to finish layer by layer and never see a
partially updated weight buffer.
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

from ..fixed.activations import activation_derivative, apply_activation_vector
from ..fixed.arith import (
    FP_ONE,
    FP_SHIFT,
    MAX_WEIGHT_VALUE,
    MIN_WEIGHT_VALUE,
    fp_mul,
    in_bounds,
    saturate,
)
from .errors import InvalidInputError, NeuralError, SecurityViolationError
from .layer import buffer_checksum

if TYPE_CHECKING:
    from .network import Network

logger = logging.getLogger(__name__)


def _clamp_weight(x: int) -> int:
    return max(MIN_WEIGHT_VALUE, min(MAX_WEIGHT_VALUE, x))


@dataclass
class AdaptiveLearningRate:
    """Reduce-on-plateau learning-rate schedule (all rates Q16.16).

    Attributes:
        base_rate: Starting rate.
        decay_factor: Multiplier applied after ``patience`` flat steps.
        min_rate: Floor for the decayed rate.
        max_rate: Ceiling for the rate.
        patience: Steps without improvement before decaying.
        steps_without_improvement: Current plateau length.
        best_loss: Lowest loss seen (-1 before the first step).
        enabled: When False, step() always returns the current rate.
    """

    base_rate: int
    decay_factor: int = FP_ONE // 2
    min_rate: int = 1
    max_rate: int = FP_ONE
    patience: int = 10
    steps_without_improvement: int = 0
    best_loss: int = -1
    enabled: bool = True

    def __post_init__(self) -> None:
        self.rate = max(self.min_rate, min(self.max_rate, self.base_rate))

    def step(self, loss: int) -> int:
        """Feed the latest loss and return the rate to use next."""
        if not self.enabled:
            return self.rate
        if self.best_loss < 0 or loss < self.best_loss:
            self.best_loss = loss
            self.steps_without_improvement = 0
        else:
            self.steps_without_improvement += 1
            if self.steps_without_improvement >= self.patience:
                self.rate = max(self.min_rate, fp_mul(self.rate, self.decay_factor))
                self.steps_without_improvement = 0
                logger.info("Learning rate decayed to %d (Q16.16)", self.rate)
        return self.rate


def _check_vector(network: Network, values: Sequence[int], size: int, what: str) -> list[int]:
    values = [int(v) for v in values]
    if len(values) != size:
        raise InvalidInputError(f"Expected {size} {what} values, got {len(values)}")
    for idx, v in enumerate(values):
        if not in_bounds(v):
            msg = f"{what.capitalize()} {idx} out of bounds: {v}"
            if network.secure_mode:
                raise SecurityViolationError(msg)
            raise InvalidInputError(msg)
    return values


def _step_locked(network: Network, inputs: list[int], target: list[int]) -> int:
    """Forward, backward and update. Caller holds every layer's write lock."""
    layers = network.layers

    # Forward pass, keeping what backprop needs
    activations = [inputs]
    masks: list[list[int]] = []
    for layer in layers:
        pre = layer.normalize_inference(layer.affine(activations[-1]))
        out = apply_activation_vector(pre, layer.activation)
        mask = layer.dropout_scales()
        out = [fp_mul(v, m) for v, m in zip(out, mask)]
        masks.append(mask)
        activations.append(out)

    output = activations[-1]
    errors = [o - t for o, t in zip(output, target)]
    loss = sum(fp_mul(e, e) for e in errors) // len(errors)

    # Backward pass
    delta = errors
    lr = network.learning_rate
    momentum = network.config.momentum
    decay = network.config.weight_decay
    for idx in range(len(layers) - 1, -1, -1):
        layer = layers[idx]
        gradients, weight_momentum, bias_momentum = layer.ensure_training_buffers()
        x = activations[idx]
        out = activations[idx + 1]

        for i in range(layer.output_size):
            d = fp_mul(delta[i], activation_derivative(out[i], layer.activation))
            d = fp_mul(d, masks[idx][i])
            gradients[i] = fp_mul(d, layer.bn_scale(i))

        # Propagate through the pre-update weights
        if idx > 0:
            n_in = layer.input_size
            prev = [0] * n_in
            for i in range(layer.output_size):
                g = gradients[i]
                if g == 0:
                    continue
                row = i * n_in
                for j in range(n_in):
                    prev[j] += layer.weights[row + j] * g
            delta = [saturate(p >> FP_SHIFT) for p in prev]

        n_in = layer.input_size
        for i in range(layer.output_size):
            g = gradients[i]
            row = i * n_in
            for j in range(n_in):
                k = row + j
                w = layer.weights[k]
                grad = fp_mul(g, x[j]) + fp_mul(decay, w)
                v = fp_mul(momentum, weight_momentum[k]) - fp_mul(lr, grad)
                weight_momentum[k] = v
                layer.weights[k] = _clamp_weight(w + v)
            bv = fp_mul(momentum, bias_momentum[i]) - fp_mul(lr, g)
            bias_momentum[i] = bv
            layer.biases[i] = _clamp_weight(layer.biases[i] + bv)

        layer.checksum = buffer_checksum(layer.weights)
        layer.weights_validated = True

    return loss


def train_step(network: Network, inputs: Sequence[int], target: Sequence[int]) -> int:
    """One SGD-with-momentum step on a single (input, target) pair.

    Dropout is applied during the forward pass regardless of the network's
    training flag. The prediction cache is invalidated afterwards.

    Returns:
        Mean squared error of the pre-update output, Q16.16.

    Raises:
        InvalidInputError: Input or target has the wrong size or range.
    """
    try:
        network.ensure_alive()
        x = _check_vector(network, inputs, network.input_size, "input")
        t = _check_vector(network, target, network.output_size, "target")
        with network.mutation_lock(), ExitStack() as stack:
            network.cache.invalidate()
            for layer in network.layers:
                stack.enter_context(layer.lock.write_locked())
            loss = _step_locked(network, x, t)
            network.cache.invalidate()
    except NeuralError as exc:
        network.record_error(exc)
        raise
    return loss


def _update_batch_norm(network: Network, batch: Sequence[Sequence[int]]) -> None:
    """Refresh running batch-norm statistics from one batch of inputs."""
    current = [list(x) for x in batch]
    for layer in network.layers:
        with layer.lock.read_locked():
            pre = [layer.affine(x) for x in current]
        if layer.batch_norm:
            normalized = layer.batch_normalize(pre)
        else:
            normalized = pre
        current = [apply_activation_vector(v, layer.activation) for v in normalized]


def train_epoch(
    network: Network,
    samples: Sequence[tuple[Sequence[int], Sequence[int]]],
) -> int:
    """Train on every sample once, in batches of at most max_batch_size.

    With batch normalization enabled each batch first refreshes the running
    statistics. With adaptive learning enabled the epoch's mean loss drives
    the learning-rate schedule.

    Returns:
        Mean loss over the epoch, Q16.16.
    """
    if not samples:
        exc = InvalidInputError("No training samples")
        network.record_error(exc)
        raise exc

    batch_size = network.config.max_batch_size
    total = 0
    for start in range(0, len(samples), batch_size):
        batch = samples[start:start + batch_size]
        if network.config.use_batch_norm:
            try:
                inputs = [
                    _check_vector(network, x, network.input_size, "input")
                    for x, _ in batch
                ]
                with network.mutation_lock():
                    _update_batch_norm(network, inputs)
            except NeuralError as exc:
                network.record_error(exc)
                raise
        for x, t in batch:
            total += train_step(network, x, t)

    mean_loss = total // len(samples)
    network.counters.record_epoch()
    if network.adaptive_lr is not None:
        network.learning_rate = network.adaptive_lr.step(mean_loss)
    logger.debug(
        "Epoch %d: mean loss %d (Q16.16)", network.counters.epoch_count, mean_loss
    )
    return mean_loss
