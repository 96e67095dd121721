"""Network configuration and engine-wide limits."""

from __future__ import annotations

from dataclasses import dataclass

from ..fixed.arith import FP_ONE, to_fixed
from .errors import InvalidInputError

MAX_LAYERS = 16
MAX_BATCH_SIZE = 64
CACHE_TIMEOUT_NS = 1_000_000_000  # 1 second

# Default hyperparameters in Q16.16
DEFAULT_LEARNING_RATE = FP_ONE // 1000  # 0.001
DEFAULT_MOMENTUM = to_fixed(0.9)


@dataclass
class NetworkConfig:
    """Options for building a Network.

    Attributes:
        cache_timeout_ns: Lifetime of the single prediction-cache entry.
        secure_mode: Report out-of-bounds values as security violations.
        dropout_rate: Per-neuron drop probability in training mode, [0, 1).
        use_batch_norm: Give hidden layers batch-norm scale/shift vectors.
        learning_rate: SGD step size, Q16.16.
        momentum: SGD momentum coefficient, Q16.16.
        weight_decay: L2 decay applied per update, Q16.16.
        adaptive_learning: Decay the learning rate when the loss plateaus.
        numa_node: Preferred NUMA node hint (-1 for any). Recorded only.
        seed: Seed for weight initialization and dropout; None for entropy.
        max_batch_size: Largest batch accepted by predict_batch/train_epoch.
    """

    cache_timeout_ns: int = CACHE_TIMEOUT_NS
    secure_mode: bool = False
    dropout_rate: float = 0.0
    use_batch_norm: bool = False
    learning_rate: int = DEFAULT_LEARNING_RATE
    momentum: int = DEFAULT_MOMENTUM
    weight_decay: int = 0
    adaptive_learning: bool = False
    numa_node: int = -1
    seed: int | None = None
    max_batch_size: int = MAX_BATCH_SIZE

    def validate(self) -> None:
        """Reject out-of-range options.

        Raises:
            InvalidInputError: If any option is outside its valid range.
        """
        if not 0.0 <= self.dropout_rate < 1.0:
            raise InvalidInputError(
                f"dropout_rate must be in [0, 1), got {self.dropout_rate}"
            )
        if self.cache_timeout_ns < 0:
            raise InvalidInputError(
                f"cache_timeout_ns must be >= 0, got {self.cache_timeout_ns}"
            )
        if not 1 <= self.max_batch_size <= MAX_BATCH_SIZE:
            raise InvalidInputError(
                f"max_batch_size must be in 1..{MAX_BATCH_SIZE}, "
                f"got {self.max_batch_size}"
            )
        if self.learning_rate < 0 or self.momentum < 0 or self.weight_decay < 0:
            raise InvalidInputError("learning_rate, momentum and weight_decay must be >= 0")
