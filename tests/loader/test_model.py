"""Tests for the model blob codec."""

import struct
import zlib

import pytest

from neural_fp.engine.cache import CacheState
from neural_fp.engine.config import MAX_LAYERS, NetworkConfig
from neural_fp.engine.errors import InvalidModelError
from neural_fp.engine.network import Network
from neural_fp.fixed.activations import Activation
from neural_fp.fixed.arith import FP_ONE, MAX_WEIGHT_VALUE, to_fixed
from neural_fp.loader.model import (
    MODEL_MAGIC,
    MODEL_VERSION,
    LayerRecord,
    encode_model,
    load_model,
    load_model_file,
    parse_model,
    read_header,
    save_model,
    save_model_file,
)

X = [to_fixed(1.0), to_fixed(0.5), to_fixed(-0.5), 0]


def _net(sizes=(4, 8, 4), seed: int = 1, activations=None) -> Network:
    return Network(list(sizes), activations, NetworkConfig(seed=seed))


def _record(n_in: int, n_out: int, value: int = 0) -> LayerRecord:
    return LayerRecord(n_in, n_out, Activation.LINEAR,
                       (value,) * (n_in * n_out), (0,) * n_out)


class TestEncode:
    """Blob layout."""

    def test_size(self) -> None:
        """Header plus per-layer header, weights and biases."""
        blob = save_model(_net())
        assert len(blob) == 28 + (12 + 4 * (32 + 8)) + (12 + 4 * (32 + 4))

    def test_header_fields(self) -> None:
        """Header records magic, version, counts and timestamp."""
        blob = save_model(_net(), timestamp=123456789)
        header = read_header(blob)
        assert header.magic == MODEL_MAGIC
        assert header.version == MODEL_VERSION
        assert header.num_layers == 2
        assert header.total_weights == 64
        assert header.timestamp == 123456789

    def test_magic_bytes(self) -> None:
        """The blob starts with the little-endian magic."""
        assert save_model(_net())[:4] == struct.pack("<I", MODEL_MAGIC)

    def test_parse_layers(self) -> None:
        """Parsed records match the network's parameters."""
        net = _net()
        blob = parse_model(save_model(net))
        assert [(r.input_size, r.output_size) for r in blob.layers] == [(4, 8), (8, 4)]
        assert blob.layers[0].activation_type == Activation.RELU
        assert blob.layers[1].activation_type == Activation.LINEAR
        assert list(blob.layers[0].weights) == net.layers[0].weights
        assert list(blob.layers[1].biases) == net.layers[1].biases


class TestLoad:
    """Loading into a live network."""

    def test_roundtrip_predictions(self) -> None:
        """A loaded network predicts exactly like the saved one."""
        src = _net(seed=1)
        dst = _net(seed=2)
        assert dst.predict(X) != src.predict(X)
        assert load_model(dst, save_model(src)) == 2
        assert dst.predict(X) == src.predict(X)
        assert dst.validate()

    def test_method_delegates(self) -> None:
        """Network.save_model / load_model use the codec."""
        src = _net(seed=3)
        dst = _net(seed=4)
        assert dst.load_model(src.save_model()) == 2
        assert dst.predict(X) == src.predict(X)

    def test_invalidates_cache(self) -> None:
        """Loading drops the cached prediction."""
        dst = _net(seed=2)
        dst.predict_cached(X)
        load_model(dst, save_model(_net(seed=1)))
        assert dst.cache.state == CacheState.INVALIDATED

    def test_partial_topology(self) -> None:
        """Only layers whose shape matches are loaded."""
        src = _net((4, 8, 4), seed=1)
        dst = _net((4, 8, 2), seed=2)
        untouched = dst.layers[1].snapshot()
        assert load_model(dst, save_model(src)) == 1
        assert dst.layers[0].weights == src.layers[0].weights
        assert dst.layers[1].snapshot() == untouched

    def test_extra_model_layers_skipped(self) -> None:
        """Model layers past the network's depth are ignored."""
        src = _net((4, 4, 4, 4), seed=1)
        dst = _net((4, 4), seed=2)
        assert load_model(dst, save_model(src)) == 1

    def test_file_roundtrip(self, tmp_path) -> None:
        """Files written by save_model_file load back."""
        src = _net(seed=1)
        path = tmp_path / "model.bin"
        written = save_model_file(src, str(path))
        assert written == path.stat().st_size
        dst = _net(seed=2)
        assert load_model_file(dst, str(path)) == 2
        assert dst.predict(X) == src.predict(X)


class TestCorruption:
    """Malformed blobs are rejected before anything changes."""

    def test_bad_checksum(self) -> None:
        """A flipped payload byte fails the CRC and leaves weights alone."""
        dst = _net(seed=2)
        before = [l.snapshot() for l in dst.layers]
        blob = bytearray(save_model(_net(seed=1)))
        blob[60] ^= 0xFF
        with pytest.raises(InvalidModelError, match="checksum"):
            load_model(dst, bytes(blob))
        assert [l.snapshot() for l in dst.layers] == before
        assert dst.stats().errors == 1

    def test_bad_magic(self) -> None:
        """Wrong magic is rejected."""
        blob = bytearray(save_model(_net()))
        blob[0] ^= 0xFF
        with pytest.raises(InvalidModelError, match="magic"):
            parse_model(bytes(blob))

    def test_bad_version(self) -> None:
        """Unsupported versions are rejected."""
        blob = bytearray(save_model(_net()))
        struct.pack_into("<I", blob, 4, MODEL_VERSION + 1)
        with pytest.raises(InvalidModelError, match="version"):
            parse_model(bytes(blob))

    def test_too_short(self) -> None:
        """Blobs shorter than the header are rejected."""
        with pytest.raises(InvalidModelError, match="too small"):
            parse_model(b"\x00" * 10)

    def test_truncated_layer(self) -> None:
        """A layer running past the end of the blob is rejected."""
        blob = encode_model([_record(2, 2)])
        header = bytearray(blob[:28])
        payload = blob[28:-4]
        struct.pack_into("<I", header, 16, zlib.crc32(payload) & 0xFFFFFFFF)
        with pytest.raises(InvalidModelError, match="beyond"):
            parse_model(bytes(header) + payload)

    def test_too_many_layers(self) -> None:
        """More than MAX_LAYERS layers is rejected."""
        blob = encode_model([_record(1, 1)] * (MAX_LAYERS + 1))
        with pytest.raises(InvalidModelError, match="layers"):
            parse_model(blob)

    def test_unknown_activation(self) -> None:
        """Activation codes outside the enum are rejected."""
        rec = LayerRecord(1, 1, 9, (0,), (0,))
        with pytest.raises(InvalidModelError, match="activation"):
            parse_model(encode_model([rec]))

    def test_out_of_bounds_weights(self) -> None:
        """Weights past +-100 are rejected on load."""
        dst = _net((2, 2), activations=[Activation.LINEAR])
        before = dst.layers[0].snapshot()
        blob = encode_model([_record(2, 2, MAX_WEIGHT_VALUE + 1)])
        with pytest.raises(InvalidModelError, match="out-of-bounds"):
            load_model(dst, blob)
        assert dst.layers[0].snapshot() == before

    def test_encode_then_load_identity(self) -> None:
        """A hand-built identity model loads and predicts the input."""
        rec = LayerRecord(2, 2, Activation.LINEAR, (FP_ONE, 0, 0, FP_ONE), (0, 0))
        dst = _net((2, 2), activations=[Activation.LINEAR])
        load_model(dst, encode_model([rec]))
        assert dst.predict([FP_ONE, -FP_ONE]) == [FP_ONE, -FP_ONE]
