"""Network: an ordered stack of dense layers plus orchestration state.

Concurrency model:
    * Predictions take each layer's lock shared while that layer runs, so
      any number of threads may predict at once.
    * Structural mutation (set_weights, load_model, training) is serialized
      by the network's mutation lock and takes each affected layer's lock
      exclusively, so it never interleaves with a forward pass on that layer.
    * The prediction cache and the statistics have their own short-held locks.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from typing import Callable, Sequence

from ..fixed.activations import Activation, softmax
from ..fixed.arith import MAX_INPUT_SIZE, MAX_OUTPUT_SIZE, in_bounds, validate_input
from ..loader import model as model_codec
from .cache import PredictionCache, hash_input
from .config import MAX_LAYERS, NetworkConfig
from .diagnostics import recovery_attempt, self_test, validate_network
from .errors import (
    InvalidInputError,
    InvalidLayerError,
    NeuralError,
    SecurityViolationError,
)
from .layer import Layer
from .stats import NetworkStats, Profiler, StatsSnapshot
from .training import AdaptiveLearningRate, train_epoch, train_step

logger = logging.getLogger(__name__)


def _default_activations(num_layers: int) -> list[Activation]:
    """ReLU on hidden layers, linear on the output layer."""
    return [Activation.RELU] * (num_layers - 1) + [Activation.LINEAR]


class Network:
    """A linear stack of dense layers with caching, stats and ref-counting.

    Args:
        layer_sizes: Widths from input to output, e.g. ``[4, 8, 4]`` builds
            a 4->8 layer and an 8->4 layer.
        activations: One activation per layer (``len(layer_sizes) - 1``).
            Defaults to ReLU hidden layers and a linear output layer.
        config: Hyperparameters and runtime options.
        clock: Monotonic nanosecond clock for the prediction cache.

    Raises:
        InvalidInputError: Sizes outside the security limits, too many
            layers, or an invalid configuration. Nothing stays allocated.
        InvalidLayerError: Activation count does not match the layer count.
        NeuralMemoryError: A layer could not be allocated.
    """

    def __init__(
        self,
        layer_sizes: Sequence[int],
        activations: Sequence[Activation] | None = None,
        config: NetworkConfig | None = None,
        *,
        clock: Callable[[], int] = time.monotonic_ns,
    ) -> None:
        self.config = config or NetworkConfig()
        self.config.validate()

        sizes = [int(s) for s in layer_sizes]
        if len(sizes) < 2:
            raise InvalidInputError("A network needs at least an input and an output size")
        if len(sizes) - 1 > MAX_LAYERS:
            raise InvalidInputError(
                f"{len(sizes) - 1} layers exceeds the limit of {MAX_LAYERS}"
            )
        if any(s <= 0 for s in sizes):
            raise InvalidInputError(f"Layer sizes must be positive: {sizes}")
        if sizes[0] > MAX_INPUT_SIZE:
            raise InvalidInputError(
                f"Input size {sizes[0]} exceeds the limit of {MAX_INPUT_SIZE}"
            )
        if sizes[-1] > MAX_OUTPUT_SIZE:
            raise InvalidInputError(
                f"Output size {sizes[-1]} exceeds the limit of {MAX_OUTPUT_SIZE}"
            )
        if any(s > MAX_INPUT_SIZE for s in sizes[1:-1]):
            raise InvalidInputError(
                f"Hidden layer sizes must not exceed {MAX_INPUT_SIZE}: {sizes}"
            )

        num_layers = len(sizes) - 1
        if activations is None:
            acts = _default_activations(num_layers)
        else:
            acts = [Activation(a) for a in activations]
        if len(acts) != num_layers:
            raise InvalidLayerError(
                f"Expected {num_layers} activations, got {len(acts)}"
            )

        self._rng = random.Random(self.config.seed)
        self.layers: list[Layer] = self._build_layers(sizes, acts)

        self.initialized = False
        self.training_mode = False
        self.learning_rate = self.config.learning_rate
        self.creation_time_ns = time.time_ns()
        self.numa_node = self.config.numa_node

        self._refcount = 1
        self._ref_lock = threading.Lock()
        self._mutation_lock = threading.RLock()
        self._last_output: list[int] = []

        self.cache = PredictionCache(self.config.cache_timeout_ns, clock=clock)
        self._stats = NetworkStats()

        self.adaptive_lr = (
            AdaptiveLearningRate(base_rate=self.learning_rate)
            if self.config.adaptive_learning else None
        )

        try:
            self_test(self)
        except NeuralError:
            self.layers = []
            raise
        self.initialized = True
        logger.info(
            "Created network %s (%d layers, %d bytes)",
            sizes, num_layers, self.memory_usage(),
        )

    def _build_layers(self, sizes: list[int], acts: list[Activation]) -> list[Layer]:
        """Allocate every layer, dropping the partial stack on failure."""
        layers: list[Layer] = []
        last = len(acts) - 1
        try:
            for i, act in enumerate(acts):
                hidden = i != last
                layers.append(Layer(
                    sizes[i], sizes[i + 1], act,
                    dropout_rate=self.config.dropout_rate if hidden else 0.0,
                    batch_norm=self.config.use_batch_norm and hidden,
                    rng=self._rng,
                ))
        except NeuralError:
            logger.debug("Rolling back %d allocated layers", len(layers))
            layers.clear()
            raise
        return layers

    @classmethod
    def from_sizes(
        cls,
        input_size: int,
        hidden_size: int,
        output_size: int,
        config: NetworkConfig | None = None,
    ) -> Network:
        """Three-layer network: input->hidden, hidden->hidden, hidden->output.

        All three layers use ReLU.
        """
        return cls(
            [input_size, hidden_size, hidden_size, output_size],
            [Activation.RELU] * 3,
            config,
        )

    # ------------------------------------------------------------------
    # Shape
    # ------------------------------------------------------------------

    @property
    def num_layers(self) -> int:
        return len(self.layers)

    @property
    def input_size(self) -> int:
        return self.layers[0].input_size if self.layers else 0

    @property
    def output_size(self) -> int:
        return self.layers[-1].output_size if self.layers else 0

    @property
    def layer_sizes(self) -> list[int]:
        if not self.layers:
            return []
        return [self.layers[0].input_size] + [l.output_size for l in self.layers]

    @property
    def secure_mode(self) -> bool:
        return self.config.secure_mode

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def record_error(self, error: Exception | str) -> None:
        """Store an error in the stats' last-error slot."""
        self._stats.record_error(
            str(error), security=isinstance(error, SecurityViolationError)
        )
        logger.debug("Recorded error: %s", error)

    def ensure_alive(self) -> None:
        if not self.layers:
            raise InvalidLayerError("Network has been released")

    def validate_input(self, inputs: Sequence[int]) -> list[int]:
        """Check an input vector against the network's input contract.

        Returns:
            The input as a list.

        Raises:
            InvalidInputError: Wrong length or out-of-range value.
            SecurityViolationError: Out-of-range value in secure mode.
        """
        values = [int(v) for v in inputs]
        try:
            self.ensure_alive()
            if len(values) != self.input_size:
                raise InvalidInputError(
                    f"Expected {self.input_size} inputs, got {len(values)}"
                )
            if not validate_input(values, self.input_size):
                idx = next(i for i, v in enumerate(values) if not in_bounds(v))
                msg = f"Input {idx} out of bounds: {values[idx]}"
                if self.secure_mode:
                    raise SecurityViolationError(msg)
                raise InvalidInputError(msg)
        except NeuralError as exc:
            self.record_error(exc)
            raise
        return values

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def _forward(self, values: list[int]) -> list[int]:
        current = values
        for layer in self.layers:
            current = layer.forward(
                current, training=self.training_mode, secure=self.secure_mode
            )
        return current

    def predict(self, inputs: Sequence[int]) -> list[int]:
        """Run one input through every layer and return the final output.

        Timing is recorded for every pass that reaches the layers, even one
        that fails part-way. Input rejected up front only records the error.

        Raises:
            InvalidInputError: The input or an intermediate vector is invalid.
            SecurityViolationError: Out-of-range value in secure mode.
        """
        values = self.validate_input(inputs)
        prof = Profiler()
        try:
            with prof:
                output = self._forward(values)
        except NeuralError as exc:
            self.record_error(exc)
            raise
        finally:
            self._stats.record_prediction(prof.elapsed_ns)
        self._last_output = output
        return list(output)

    def predict_cached(self, inputs: Sequence[int]) -> list[int]:
        """Predict through the single-slot cache.

        A valid, unexpired entry for exactly this input is returned without
        recomputation (hit); otherwise the prediction is computed and
        stored, replacing the previous entry (miss). In training mode the
        cache is bypassed because dropout makes outputs non-repeatable.
        """
        values = self.validate_input(inputs)
        if self.training_mode:
            return self.predict(values)

        key = hash_input(values)
        cached = self.cache.lookup(key, values)
        if cached is not None:
            self._stats.record_cache_hit()
            logger.debug("Prediction cache hit %08x", key)
            self._last_output = cached
            return cached

        self._stats.record_cache_miss()
        generation = self.cache.generation
        output = self.predict(values)
        self.cache.store(key, values, output, generation)
        return output

    def predict_batch(self, inputs: Sequence[Sequence[int]]) -> list[list[int]]:
        """Predict each input of a batch of at most max_batch_size vectors."""
        if not inputs or len(inputs) > self.config.max_batch_size:
            exc = InvalidInputError(
                f"Batch size must be 1..{self.config.max_batch_size}, got {len(inputs)}"
            )
            self.record_error(exc)
            raise exc
        return [self.predict(x) for x in inputs]

    def confidence(self) -> int:
        """Largest softmax probability of the latest output (Q16.16)."""
        if not self._last_output:
            return 0
        return max(softmax(list(self._last_output)))

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def set_weights(
        self,
        layer_index: int,
        weights: Sequence[int],
        biases: Sequence[int],
    ) -> None:
        """Replace one layer's parameters under its write lock.

        Raises:
            InvalidLayerError: Index out of range or wrong buffer lengths.
            InvalidInputError: A value lies outside the weight bounds.
        """
        try:
            self.ensure_alive()
            if not 0 <= layer_index < len(self.layers):
                raise InvalidLayerError(
                    f"Layer index {layer_index} out of range (0..{len(self.layers) - 1})"
                )
            with self._mutation_lock:
                self.cache.invalidate()
                self.layers[layer_index].set_weights(
                    weights, biases, secure=self.secure_mode
                )
                self.cache.invalidate()
        except NeuralError as exc:
            self.record_error(exc)
            raise

    def set_training_mode(self, enabled: bool) -> None:
        """Toggle dropout (and cache bypass) for subsequent predictions."""
        self.training_mode = enabled
        self.cache.invalidate()

    def clear_cache(self) -> None:
        self.cache.invalidate()

    def save_model(self) -> bytes:
        """Serialize learned parameters (see neural_fp.loader.model)."""
        self.ensure_alive()
        return model_codec.save_model(self)

    def load_model(self, data: bytes) -> int:
        """Load parameters from a model blob; returns the layers loaded."""
        return model_codec.load_model(self, data)

    def mutation_lock(self) -> threading.RLock:
        """The lock serializing structural mutation of this network."""
        return self._mutation_lock

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train_step(self, inputs: Sequence[int], target: Sequence[int]) -> int:
        """One SGD step on a single sample; returns the loss (Q16.16)."""
        return train_step(self, inputs, target)

    def train_epoch(self, samples: Sequence[tuple[Sequence[int], Sequence[int]]]) -> int:
        """One pass over the samples; returns the mean loss (Q16.16)."""
        return train_epoch(self, samples)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def self_test(self) -> None:
        self_test(self)

    def recover(self) -> None:
        recovery_attempt(self)

    def validate(self) -> bool:
        return validate_network(self)

    def memory_usage(self) -> int:
        """Bytes held by layer buffers and the cache entry."""
        total = sum(layer.memory_usage() for layer in self.layers)
        cache = getattr(self, "cache", None)
        if cache is not None:
            total += cache.memory_usage()
        return total

    def stats(self) -> StatsSnapshot:
        """Structured snapshot of the performance counters."""
        return self._stats.snapshot(memory_usage=self.memory_usage())

    @property
    def counters(self) -> NetworkStats:
        """Live counters (prefer stats() for reading)."""
        return self._stats

    # ------------------------------------------------------------------
    # Lifetime
    # ------------------------------------------------------------------

    @property
    def refcount(self) -> int:
        with self._ref_lock:
            return self._refcount

    def acquire(self) -> Network | None:
        """Take another reference.

        Returns:
            This network, or None if it is already being torn down.
        """
        with self._ref_lock:
            if self._refcount == 0:
                return None
            self._refcount += 1
            return self

    def release(self) -> None:
        """Drop a reference; the last one tears the network down.

        Raises:
            RuntimeError: The network was already released.
        """
        with self._ref_lock:
            if self._refcount == 0:
                raise RuntimeError("Network released more times than acquired")
            self._refcount -= 1
            last = self._refcount == 0
        if last:
            self._teardown()

    def _teardown(self) -> None:
        with self._mutation_lock:
            for layer in self.layers:
                with layer.lock.write_locked():
                    layer.weights = []
                    layer.biases = []
                    layer.neurons = []
            self.layers = []
            self.cache.clear()
            self._last_output = []
            self.initialized = False
        logger.info("Network released")

    def __enter__(self) -> Network:
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"Network({self.layer_sizes}, initialized={self.initialized})"


def create_network(
    layer_sizes: Sequence[int],
    activations: Sequence[Activation] | None = None,
    use_batch_norm: bool = False,
    dropout_rate: float = 0.0,
    **options: object,
) -> Network:
    """Build a Network; extra keyword options go to NetworkConfig.

    Example:
        >>> net = create_network([4, 8, 4], seed=1)
        >>> len(net.predict([0, 0, 0, 0]))
        4
    """
    config = NetworkConfig(
        use_batch_norm=use_batch_norm,
        dropout_rate=dropout_rate,
        **options,  # type: ignore[arg-type]
    )
    return Network(layer_sizes, activations, config)
