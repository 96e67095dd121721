"""Engine exception hierarchy.

Each class carries a numeric status code so callers bridging to a C-style
interface can map exceptions back to return codes.
"""

from __future__ import annotations


class NeuralError(Exception):
    """Base class for every error raised by the engine."""

    code: int = -1


class InvalidInputError(NeuralError, ValueError):
    """Input vector has the wrong size or an out-of-range value."""

    code = -1


class NeuralMemoryError(NeuralError, MemoryError):
    """A layer or buffer could not be allocated."""

    code = -2


class InvalidLayerError(NeuralError, ValueError):
    """Layer index out of range or dimensions that do not chain."""

    code = -3


class InvalidModelError(NeuralError, ValueError):
    """Serialized model has a bad magic, version, size or checksum."""

    code = -4


class SecurityViolationError(InvalidInputError):
    """Value outside the configured weight/input bounds in secure mode."""

    code = -7
