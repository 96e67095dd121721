"""Float <-> Q16.16 conversion of weight matrices and model blobs.

Weights trained elsewhere (numpy, torch) are float32 matrices shaped
``(out_features, in_features)``, the same row-major order the engine uses,
so a matrix flattens straight into a layer's weight buffer.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from ..engine.errors import InvalidModelError
from ..fixed.activations import Activation
from ..fixed.arith import FP_ONE, INT32_MAX, INT32_MIN, MAX_WEIGHT_VALUE, MIN_WEIGHT_VALUE
from ..loader.model import LayerRecord, ModelBlob, encode_model


def quantize(values: np.ndarray, *, clip: bool = True) -> np.ndarray:
    """Convert a float array to Q16.16 int32 with round-to-nearest.

    Args:
        values: Float array of any shape.
        clip: Clip to the weight bounds (+-100.0); otherwise saturate to int32.

    Returns:
        int32 array of the same shape.
    """
    scaled = np.round(np.asarray(values, dtype=np.float64) * FP_ONE)
    if clip:
        scaled = np.clip(scaled, MIN_WEIGHT_VALUE, MAX_WEIGHT_VALUE)
    else:
        scaled = np.clip(scaled, INT32_MIN, INT32_MAX)
    return scaled.astype(np.int32)


def dequantize(values: np.ndarray | Sequence[int]) -> np.ndarray:
    """Convert Q16.16 integers back to float32."""
    return (np.asarray(values, dtype=np.float64) / FP_ONE).astype(np.float32)


def layer_record(
    weight: np.ndarray,
    bias: np.ndarray,
    activation: Activation | str = Activation.RELU,
) -> LayerRecord:
    """Build a LayerRecord from a float weight matrix and bias vector.

    Args:
        weight: Shape (out_features, in_features).
        bias: Shape (out_features,).
        activation: Activation code or name ("relu", "linear", ...).

    Raises:
        InvalidModelError: Shapes do not agree.
    """
    weight = np.asarray(weight)
    bias = np.asarray(bias)
    if weight.ndim != 2:
        raise InvalidModelError(f"Weight must be 2-D, got shape {weight.shape}")
    out_features, in_features = weight.shape
    if bias.shape != (out_features,):
        raise InvalidModelError(
            f"Bias shape {bias.shape} does not match {out_features} outputs"
        )
    if isinstance(activation, str):
        activation = Activation.parse(activation)
    return LayerRecord(
        input_size=in_features,
        output_size=out_features,
        activation_type=Activation(activation),
        weights=tuple(int(v) for v in quantize(weight).ravel()),
        biases=tuple(int(v) for v in quantize(bias)),
    )


def encode_float_model(
    layers: Sequence[tuple[np.ndarray, np.ndarray, Activation | str]],
    timestamp: int | None = None,
) -> bytes:
    """Quantize (weight, bias, activation) triples into a model blob.

    Raises:
        InvalidModelError: A layer's shape, or the chaining between layers,
            is wrong.
    """
    records = [layer_record(w, b, act) for w, b, act in layers]
    for i in range(1, len(records)):
        if records[i - 1].output_size != records[i].input_size:
            raise InvalidModelError(
                f"Layer {i - 1} outputs {records[i - 1].output_size} values "
                f"but layer {i} expects {records[i].input_size}"
            )
    return encode_model(records, timestamp)


def blob_to_arrays(blob: ModelBlob) -> list[tuple[np.ndarray, np.ndarray]]:
    """Float (weight, bias) arrays for each layer of a parsed model."""
    arrays = []
    for rec in blob.layers:
        weight = dequantize(rec.weights).reshape(rec.output_size, rec.input_size)
        arrays.append((weight, dequantize(rec.biases)))
    return arrays
