"""Fixed-point (Q16.16) neural-network inference engine."""

from .engine.errors import (
    InvalidInputError,
    InvalidLayerError,
    InvalidModelError,
    NeuralError,
    NeuralMemoryError,
    SecurityViolationError,
)
from .engine.config import NetworkConfig
from .engine.network import Network, create_network
from .fixed.activations import Activation
from .fixed.arith import FP_ONE, from_fixed, to_fixed
from .loader.model import load_model, save_model

__all__ = [
    "Activation",
    "FP_ONE",
    "InvalidInputError",
    "InvalidLayerError",
    "InvalidModelError",
    "Network",
    "NetworkConfig",
    "NeuralError",
    "NeuralMemoryError",
    "SecurityViolationError",
    "create_network",
    "from_fixed",
    "load_model",
    "save_model",
    "to_fixed",
]
