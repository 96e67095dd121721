"""Shared fixtures for engine tests."""

from __future__ import annotations

import pytest

from neural_fp.engine.config import NetworkConfig
from neural_fp.engine.network import Network
from neural_fp.fixed.activations import Activation
from neural_fp.fixed.arith import FP_ONE, to_fixed

# The worked example: 4 inputs, 8 hidden (ReLU), 4 outputs (linear)
EXAMPLE_INPUT = [to_fixed(1.0), to_fixed(0.5), to_fixed(-0.5), to_fixed(0.0)]


class FakeClock:
    """Manually advanced nanosecond clock."""

    def __init__(self, start: int = 1_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ns: int) -> None:
        self.now += ns


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_network():
    """Factory fixture: builds a seeded network; extra kwargs go to NetworkConfig."""
    def _make(
        sizes: list[int] | None = None,
        activations: list[Activation] | None = None,
        clock=None,
        **options,
    ) -> Network:
        options.setdefault("seed", 1234)
        config = NetworkConfig(**options)
        kwargs = {"clock": clock} if clock is not None else {}
        return Network(sizes or [4, 8, 4], activations, config, **kwargs)
    return _make


@pytest.fixture
def identity_network(make_network):
    """Factory fixture: single linear layer whose weights are scale * identity."""
    def _make(size: int = 2, scale: int = FP_ONE, **options) -> Network:
        net = make_network([size, size], [Activation.LINEAR], **options)
        weights = [scale if i == j else 0 for i in range(size) for j in range(size)]
        net.set_weights(0, weights, [0] * size)
        return net
    return _make


@pytest.fixture
def example_input() -> list[int]:
    """[1.0, 0.5, -0.5, 0.0] in Q16.16."""
    return list(EXAMPLE_INPUT)
