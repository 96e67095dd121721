"""Tests for numpy <-> Q16.16 conversion."""

import numpy as np
import pytest

from neural_fp.engine.config import NetworkConfig
from neural_fp.engine.errors import InvalidModelError
from neural_fp.engine.network import Network
from neural_fp.fixed.activations import Activation
from neural_fp.fixed.arith import FP_ONE, MAX_WEIGHT_VALUE, from_fixed, to_fixed
from neural_fp.loader.model import load_model, parse_model
from neural_fp.tools.convert import (
    blob_to_arrays,
    dequantize,
    encode_float_model,
    layer_record,
    quantize,
)


class TestQuantize:
    """Float to Q16.16."""

    def test_values(self) -> None:
        """Exact values convert exactly."""
        assert quantize(np.array([1.0, -0.5, 0.0])).tolist() == [FP_ONE, -FP_ONE // 2, 0]

    def test_dtype_and_shape(self) -> None:
        """Output is int32 with the input shape."""
        q = quantize(np.zeros((3, 2)))
        assert q.dtype == np.int32
        assert q.shape == (3, 2)

    def test_clipped_to_weight_bounds(self) -> None:
        """Values past +-100 clip by default."""
        assert quantize(np.array([1000.0, -1000.0])).tolist() == [
            MAX_WEIGHT_VALUE, -MAX_WEIGHT_VALUE,
        ]

    def test_saturate_without_clip(self) -> None:
        """Without clipping, values saturate at the int32 range."""
        assert quantize(np.array([1e6]), clip=False)[0] == np.iinfo(np.int32).max

    def test_matches_to_fixed(self) -> None:
        """Rounding agrees with the scalar converter for typical values."""
        values = [0.1, -0.3, 2.75, 12.3456]
        assert quantize(np.array(values)).tolist() == [to_fixed(v) for v in values]

    def test_dequantize(self) -> None:
        """Q16.16 converts back to float32."""
        out = dequantize([FP_ONE, -FP_ONE // 4])
        assert out.dtype == np.float32
        assert out.tolist() == [1.0, -0.25]


class TestLayerRecord:
    """Building layer records from arrays."""

    def test_shapes(self) -> None:
        """Sizes come from the weight matrix."""
        rec = layer_record(np.zeros((3, 5)), np.zeros(3), "tanh")
        assert (rec.input_size, rec.output_size) == (5, 3)
        assert rec.activation_type == Activation.TANH
        assert len(rec.weights) == 15

    def test_row_major(self) -> None:
        """weight[i, j] lands at index i * in_features + j."""
        w = np.array([[1.0, 2.0], [3.0, 4.0]])
        rec = layer_record(w, np.zeros(2))
        assert [from_fixed(v) for v in rec.weights] == [1.0, 2.0, 3.0, 4.0]

    def test_bias_mismatch(self) -> None:
        """Bias length must equal out_features."""
        with pytest.raises(InvalidModelError):
            layer_record(np.zeros((3, 5)), np.zeros(4))

    def test_not_matrix(self) -> None:
        """Weights must be 2-D."""
        with pytest.raises(InvalidModelError):
            layer_record(np.zeros(4), np.zeros(4))


class TestEncodeFloatModel:
    """Whole-model export."""

    def test_loads_and_predicts(self) -> None:
        """A float model predicts like its numpy reference."""
        w = np.array([[1.0, 0.0], [0.5, -1.0]])
        b = np.array([0.5, -0.5])
        blob = encode_float_model([(w, b, Activation.LINEAR)])
        net = Network([2, 2], [Activation.LINEAR], NetworkConfig(seed=0))
        assert load_model(net, blob) == 1
        x = np.array([1.0, 2.0])
        expected = w @ x + b
        out = net.predict([to_fixed(v) for v in x])
        assert [from_fixed(v) for v in out] == pytest.approx(expected.tolist(), abs=1e-4)

    def test_chain_mismatch(self) -> None:
        """Adjacent layers must chain."""
        layers = [
            (np.zeros((4, 2)), np.zeros(4), "relu"),
            (np.zeros((1, 3)), np.zeros(1), "linear"),
        ]
        with pytest.raises(InvalidModelError, match="expects"):
            encode_float_model(layers)

    def test_blob_to_arrays(self) -> None:
        """Parsed blobs convert back to float arrays."""
        w = np.array([[0.25, -0.75, 1.5]])
        blob = parse_model(encode_float_model([(w, np.array([2.0]), "linear")]))
        [(w2, b2)] = blob_to_arrays(blob)
        assert w2.shape == (1, 3)
        np.testing.assert_allclose(w2, w)
        np.testing.assert_allclose(b2, [2.0])
