"""Model blob codec: serialize and load a Network's learned parameters.

Layout (all fields little-endian)::

    Header (28 bytes):
        magic:u32  version:u32  num_layers:u32  total_weights:u32
        checksum:u32 (CRC32 of every byte after the header)  timestamp:u64
    Per layer:
        input_size:u32  output_size:u32  activation_type:u32
        weights: input_size * output_size x i32 (Q16.16, row-major)
        biases:  output_size x i32 (Q16.16)
"""

from __future__ import annotations

import logging
import struct
import time
import zlib
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..engine.config import MAX_LAYERS
from ..engine.errors import InvalidModelError, NeuralError
from ..engine.layer import buffer_checksum
from ..fixed.activations import Activation
from ..fixed.arith import validate_weights

if TYPE_CHECKING:
    from ..engine.network import Network

logger = logging.getLogger(__name__)

# 'NEUR' in ASCII
MODEL_MAGIC = 0x4E455552
MODEL_VERSION = 2

_HEADER_FMT = "<IIIIIQ"
_HEADER_SIZE = struct.calcsize(_HEADER_FMT)  # 28
_LAYER_FMT = "<III"
_LAYER_SIZE = struct.calcsize(_LAYER_FMT)  # 12


@dataclass(frozen=True)
class ModelHeader:
    """Fixed-size header at the start of every model blob."""

    magic: int
    version: int
    num_layers: int
    total_weights: int
    checksum: int
    timestamp: int


@dataclass(frozen=True)
class LayerRecord:
    """One serialized layer."""

    input_size: int
    output_size: int
    activation_type: int
    weights: tuple[int, ...]
    biases: tuple[int, ...]


@dataclass(frozen=True)
class ModelBlob:
    """Parsed model: header plus layer records in network order."""

    header: ModelHeader
    layers: list[LayerRecord]


def encode_model(records: list[LayerRecord], timestamp: int | None = None) -> bytes:
    """Build a model blob from layer records.

    Args:
        records: Layers in network order.
        timestamp: Creation time in ns since the epoch (defaults to now).

    Returns:
        The complete blob, header checksum filled in.
    """
    payload = bytearray()
    total_weights = 0
    for rec in records:
        payload += struct.pack(
            _LAYER_FMT, rec.input_size, rec.output_size, int(rec.activation_type)
        )
        payload += struct.pack(f"<{len(rec.weights)}i", *rec.weights)
        payload += struct.pack(f"<{len(rec.biases)}i", *rec.biases)
        total_weights += len(rec.weights)

    checksum = zlib.crc32(payload) & 0xFFFFFFFF
    if timestamp is None:
        timestamp = time.time_ns()
    header = struct.pack(
        _HEADER_FMT, MODEL_MAGIC, MODEL_VERSION, len(records), total_weights,
        checksum, timestamp,
    )
    return header + bytes(payload)


def read_header(data: bytes) -> ModelHeader:
    """Parse and check the header's magic and version.

    Raises:
        InvalidModelError: Blob too short, bad magic or unsupported version.
    """
    if len(data) < _HEADER_SIZE:
        raise InvalidModelError(
            f"Model too small for header: {len(data)} bytes "
            f"(need at least {_HEADER_SIZE})"
        )
    header = ModelHeader(*struct.unpack_from(_HEADER_FMT, data, 0))
    if header.magic != MODEL_MAGIC:
        raise InvalidModelError(
            f"Bad model magic: 0x{header.magic:08X} (expected 0x{MODEL_MAGIC:08X})"
        )
    if header.version != MODEL_VERSION:
        raise InvalidModelError(
            f"Unsupported model version: {header.version} (expected {MODEL_VERSION})"
        )
    return header


def parse_model(data: bytes) -> ModelBlob:
    """Validate and decode a complete model blob.

    Checks the header, the CRC32 of the payload, every layer record's
    bounds within the blob, and the header's layer/weight counts.

    Raises:
        InvalidModelError: Any structural or checksum problem.
    """
    header = read_header(data)

    payload = data[_HEADER_SIZE:]
    actual = zlib.crc32(payload) & 0xFFFFFFFF
    if actual != header.checksum:
        raise InvalidModelError(
            f"Model checksum mismatch: stored 0x{header.checksum:08X}, "
            f"computed 0x{actual:08X}"
        )
    if header.num_layers > MAX_LAYERS:
        raise InvalidModelError(
            f"Model has {header.num_layers} layers (limit {MAX_LAYERS})"
        )

    layers: list[LayerRecord] = []
    offset = _HEADER_SIZE
    total_weights = 0
    for i in range(header.num_layers):
        if offset + _LAYER_SIZE > len(data):
            raise InvalidModelError(
                f"Layer {i} header extends beyond model "
                f"(offset {offset}, model size {len(data)})"
            )
        in_size, out_size, act = struct.unpack_from(_LAYER_FMT, data, offset)
        offset += _LAYER_SIZE
        n_weights = in_size * out_size
        end = offset + 4 * (n_weights + out_size)
        if in_size == 0 or out_size == 0 or end > len(data):
            raise InvalidModelError(
                f"Layer {i} ({in_size}x{out_size}) extends beyond model "
                f"(offset {offset}, model size {len(data)})"
            )
        try:
            activation = Activation(act)
        except ValueError:
            raise InvalidModelError(f"Layer {i} has unknown activation {act}") from None
        weights = struct.unpack_from(f"<{n_weights}i", data, offset)
        biases = struct.unpack_from(f"<{out_size}i", data, offset + 4 * n_weights)
        offset = end
        total_weights += n_weights
        layers.append(LayerRecord(in_size, out_size, activation, weights, biases))

    if offset != len(data):
        raise InvalidModelError(f"{len(data) - offset} trailing bytes after last layer")
    if total_weights != header.total_weights:
        raise InvalidModelError(
            f"Header declares {header.total_weights} weights, layers hold {total_weights}"
        )
    return ModelBlob(header=header, layers=layers)


def save_model(network: Network, timestamp: int | None = None) -> bytes:
    """Serialize every layer of a network.

    Each layer is copied under its read lock, so a concurrent weight
    update is never captured half-written.
    """
    records = []
    for layer in network.layers:
        weights, biases = layer.snapshot()
        records.append(LayerRecord(
            layer.input_size, layer.output_size, layer.activation,
            tuple(weights), tuple(biases),
        ))
    return encode_model(records, timestamp)


def load_model(network: Network, data: bytes) -> int:
    """Load parameters from a blob into a live network.

    The whole blob is validated before any layer is touched. A blob layer
    is applied only when its (input_size, output_size) matches the live
    layer at the same index; other layers are skipped, so models survive
    minor topology changes. The prediction cache is invalidated.

    Returns:
        Number of layers loaded.

    Raises:
        InvalidModelError: Bad magic, version, checksum, structure, or a
            matching layer holding out-of-bounds values.
    """
    try:
        network.ensure_alive()
        blob = parse_model(data)
        with network.mutation_lock():
            plan = []
            for i, rec in enumerate(blob.layers):
                if i >= len(network.layers):
                    logger.warning("Model layer %d has no counterpart; skipped", i)
                    continue
                layer = network.layers[i]
                if (rec.input_size, rec.output_size) != (layer.input_size, layer.output_size):
                    logger.warning(
                        "Model layer %d is %dx%d but network layer is %dx%d; skipped",
                        i, rec.input_size, rec.output_size,
                        layer.input_size, layer.output_size,
                    )
                    continue
                if not validate_weights(rec.weights) or not validate_weights(rec.biases):
                    raise InvalidModelError(f"Model layer {i} has out-of-bounds values")
                if rec.activation_type != layer.activation:
                    logger.warning(
                        "Model layer %d activation %s differs from network's %s",
                        i, Activation(rec.activation_type).name, layer.activation.name,
                    )
                plan.append((layer, rec))

            network.cache.invalidate()
            for layer, rec in plan:
                with layer.lock.write_locked():
                    layer.weights[:] = rec.weights
                    layer.biases[:] = rec.biases
                    layer.checksum = buffer_checksum(layer.weights)
                    layer.weights_validated = True
            network.cache.invalidate()
    except NeuralError as exc:
        network.record_error(exc)
        raise

    logger.info("Loaded %d of %d model layers", len(plan), len(blob.layers))
    return len(plan)


def save_model_file(network: Network, path: str) -> int:
    """Write a network's model blob to a file; returns bytes written."""
    data = save_model(network)
    with open(path, "wb") as f:
        f.write(data)
    return len(data)


def load_model_file(network: Network, path: str) -> int:
    """Load a model blob from a file into a network; returns layers loaded."""
    with open(path, "rb") as f:
        data = f.read()
    return load_model(network, data)
