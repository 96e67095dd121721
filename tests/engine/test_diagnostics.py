"""Tests for self-test, validation and recovery."""

import pytest

from neural_fp.engine.errors import InvalidInputError, InvalidLayerError
from neural_fp.fixed.arith import MAX_WEIGHT_VALUE


class TestSelfTest:
    """Checksum and connectivity checks."""

    def test_fresh_network_passes(self, make_network) -> None:
        """A new network self-tests cleanly."""
        net = make_network()
        net.self_test()
        assert net.stats().errors == 0

    def test_corrupted_weights(self, make_network) -> None:
        """A flipped weight bit fails the self-test and is recorded."""
        net = make_network()
        net.layers[1].weights[3] ^= 0x10
        with pytest.raises(InvalidLayerError, match="checksum"):
            net.self_test()
        assert net.stats().errors == 1
        assert "checksum" in net.stats().last_error

    def test_broken_chain(self, make_network) -> None:
        """Layers that do not chain fail the self-test."""
        net = make_network([4, 8, 4])
        other = make_network([4, 5, 4])
        net.layers[1] = other.layers[1]
        with pytest.raises(InvalidLayerError, match="expects"):
            net.self_test()

    def test_released(self, make_network) -> None:
        """A released network has nothing to test."""
        net = make_network()
        net.release()
        with pytest.raises(InvalidLayerError):
            net.self_test()


class TestValidate:
    """Structural validation."""

    def test_fresh(self, make_network) -> None:
        """A new network is valid."""
        assert make_network().validate()

    def test_out_of_bounds_weight(self, make_network) -> None:
        """A weight past the bounds invalidates the network."""
        net = make_network()
        net.layers[0].weights[0] = MAX_WEIGHT_VALUE * 2
        assert not net.validate()

    def test_released(self, make_network) -> None:
        """A released network is not valid."""
        net = make_network()
        net.release()
        assert not net.validate()


class TestRecovery:
    """Error recovery."""

    def test_resets_errors_and_cache(self, make_network, example_input) -> None:
        """Recovery clears the error count and the cache entry."""
        net = make_network()
        net.predict_cached(example_input)
        with pytest.raises(InvalidInputError):
            net.predict([0])
        assert net.stats().errors == 1
        net.recover()
        assert net.stats().errors == 0
        assert net.cache.entry is None

    def test_fails_on_corruption(self, make_network) -> None:
        """Recovery re-runs the self-test and propagates its failure."""
        net = make_network()
        net.layers[0].weights[0] += 1
        with pytest.raises(InvalidLayerError):
            net.recover()
        assert net.stats().errors == 1

    def test_repair_then_recover(self, make_network) -> None:
        """Restoring the weights lets recovery succeed."""
        net = make_network()
        original = net.layers[0].weights[0]
        net.layers[0].weights[0] += 1
        with pytest.raises(InvalidLayerError):
            net.self_test()
        net.layers[0].weights[0] = original
        net.recover()
        assert net.stats().errors == 0
