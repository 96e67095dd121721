"""Layer tables for live networks and parsed model blobs."""

from __future__ import annotations

import datetime
from typing import TYPE_CHECKING

from rich.table import Table

from ..fixed.activations import Activation
from ..fixed.arith import from_fixed

if TYPE_CHECKING:
    from ..engine.network import Network
    from ..loader.model import ModelBlob


def _range_text(values: tuple[int, ...] | list[int]) -> str:
    """min..max of a Q16.16 buffer as real numbers."""
    if not values:
        return "-"
    return f"{from_fixed(min(values)):.4f}..{from_fixed(max(values)):.4f}"


def network_table(network: Network) -> Table:
    """One row per layer: shape, activation, checksum and weight range."""
    table = Table(title=f"Network {network.layer_sizes}")
    table.add_column("#", justify="right")
    table.add_column("Shape")
    table.add_column("Activation")
    table.add_column("Checksum")
    table.add_column("Weights")
    table.add_column("Valid")
    for i, layer in enumerate(network.layers):
        weights, _ = layer.snapshot()
        valid = layer.validate()
        table.add_row(
            str(i),
            f"{layer.input_size}x{layer.output_size}",
            layer.activation.name.lower(),
            f"0x{layer.checksum:08X}",
            _range_text(weights),
            "[green]yes[/green]" if valid else "[bold red]NO[/bold red]",
        )
    return table


def model_table(blob: ModelBlob) -> Table:
    """Header summary as the title, one row per serialized layer."""
    header = blob.header
    created = datetime.datetime.fromtimestamp(header.timestamp / 1e9)
    table = Table(
        title=(
            f"Model v{header.version}: {header.num_layers} layers, "
            f"{header.total_weights:,} weights, crc 0x{header.checksum:08X}, "
            f"created {created:%Y-%m-%d %H:%M:%S}"
        )
    )
    table.add_column("#", justify="right")
    table.add_column("Shape")
    table.add_column("Activation")
    table.add_column("Weights")
    table.add_column("Biases")
    for i, rec in enumerate(blob.layers):
        table.add_row(
            str(i),
            f"{rec.input_size}x{rec.output_size}",
            Activation(rec.activation_type).name.lower(),
            _range_text(rec.weights),
            _range_text(rec.biases),
        )
    return table
