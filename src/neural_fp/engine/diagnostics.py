"""Self-test, validation and error recovery for a Network."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .config import MAX_LAYERS
from .errors import InvalidLayerError, NeuralError

if TYPE_CHECKING:
    from .network import Network

logger = logging.getLogger(__name__)


def self_test(network: Network) -> None:
    """Verify every layer's weight checksum and probe connectivity.

    The probe pushes an all-zero vector through the stack (without dropout,
    statistics or caching) to confirm that adjacent layer sizes chain.

    Raises:
        InvalidLayerError: A checksum mismatch or a broken layer chain.
        InvalidInputError: The probe produced an out-of-range value.
    """
    try:
        if not network.layers:
            raise InvalidLayerError("Network has no layers")
        for idx, layer in enumerate(network.layers):
            if not layer.validate():
                raise InvalidLayerError(f"Layer {idx} weight checksum mismatch")
            if idx > 0 and network.layers[idx - 1].output_size != layer.input_size:
                raise InvalidLayerError(
                    f"Layer {idx - 1} outputs {network.layers[idx - 1].output_size} "
                    f"values but layer {idx} expects {layer.input_size}"
                )

        probe = [0] * network.layers[0].input_size
        for layer in network.layers:
            probe = layer.forward(probe, training=False, secure=network.secure_mode)
    except NeuralError as exc:
        logger.error("Self-test failed: %s", exc)
        network.record_error(exc)
        raise
    logger.debug("Self-test passed (%d layers)", len(network.layers))


def validate_network(network: Network) -> bool:
    """Structural check: layer count, per-layer limits, bounds and checksums."""
    if not network.layers or len(network.layers) > MAX_LAYERS:
        return False
    return all(layer.check_limits() and layer.validate() for layer in network.layers)


def recovery_attempt(network: Network) -> None:
    """Drop the cached prediction, reset the error count and re-run self_test.

    This is the one operation that absorbs earlier errors rather than
    propagating them. If the self-test itself fails, that failure is raised.
    """
    logger.info("Attempting recovery")
    network.clear_cache()
    network.counters.reset_errors()
    self_test(network)
    logger.info("Recovery succeeded")
