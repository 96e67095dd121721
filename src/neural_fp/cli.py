"""Command-line interface for the fixed-point neural network engine."""

from __future__ import annotations

import argparse
import logging
import sys

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from .display.layers import model_table, network_table
from .display.stats import format_stats
from .engine.config import NetworkConfig
from .engine.errors import InvalidModelError, NeuralError
from .engine.network import Network
from .fixed.activations import Activation
from .fixed.arith import from_fixed, to_fixed
from .loader.model import load_model, parse_model, save_model_file

logger = logging.getLogger(__name__)


def _parse_sizes(value: str) -> list[int]:
    """Parse a comma-separated size list such as "4,8,4".

    Raises:
        argparse.ArgumentTypeError: If an entry is not a positive integer.
    """
    try:
        sizes = [int(v) for v in value.split(",") if v.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"invalid sizes '{value}', expected e.g. 4,8,4"
        ) from None
    if len(sizes) < 2 or any(s <= 0 for s in sizes):
        raise argparse.ArgumentTypeError(
            f"invalid sizes '{value}', need at least two positive sizes"
        )
    return sizes


def _parse_activations(value: str) -> list[Activation]:
    """Parse a comma-separated activation list such as "relu,linear"."""
    try:
        return [Activation.parse(v) for v in value.split(",") if v.strip()]
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def _parse_vector(value: str) -> list[float]:
    """Parse a comma-separated list of real numbers."""
    try:
        return [float(v) for v in value.split(",") if v.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"invalid vector '{value}', expected e.g. 1.0,0.5,-0.5"
        ) from None


def _read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def _load_network(path: str, sizes: list[int] | None) -> Network:
    """Build a network for a model file and load its parameters.

    Without explicit sizes the topology and activations are taken from the
    model itself.

    Args:
        path: Model blob file.
        sizes: Layer widths to build instead of the model's own.

    Returns:
        The loaded network (caller releases it).
    """
    data = _read_file(path)
    blob = parse_model(data)
    if not blob.layers:
        raise InvalidModelError(f"{path} holds no layers")
    if sizes is None:
        sizes = [blob.layers[0].input_size] + [rec.output_size for rec in blob.layers]
        activations = [Activation(rec.activation_type) for rec in blob.layers]
    else:
        activations = None
    network = Network(sizes, activations)
    try:
        load_model(network, data)
    except NeuralError:
        network.release()
        raise
    logger.debug("Loaded %s into %r", path, network)
    return network


def cmd_create(args: argparse.Namespace, console: Console) -> None:
    """Build a freshly initialized network and write its model blob."""
    config = NetworkConfig(seed=args.seed)
    with Network(args.sizes, args.activations, config) as network:
        written = save_model_file(network, args.output)
        console.print(network_table(network))
    console.print(f"Wrote {written:,} bytes to {escape(args.output)}")


def cmd_info(args: argparse.Namespace, console: Console) -> None:
    """Show a model file's header and layers without building a network."""
    blob = parse_model(_read_file(args.model))
    console.print(model_table(blob))


def cmd_predict(args: argparse.Namespace, console: Console) -> None:
    """Load a model and print the prediction for one input vector."""
    with _load_network(args.model, args.sizes) as network:
        output = network.predict_cached([to_fixed(v) for v in args.input])
        values = ", ".join(f"{from_fixed(v):.4f}" for v in output)
        console.print(f"output: {escape('[' + values + ']')}")
        console.print(f"confidence: {from_fixed(network.confidence()):.4f}")
        if args.stats:
            console.print(Panel(format_stats(network.stats()), title="Stats"))


def cmd_selftest(args: argparse.Namespace, console: Console) -> None:
    """Load a model, run the self-test and print the layer and stats panels."""
    with _load_network(args.model, args.sizes) as network:
        network.self_test()
        console.print(network_table(network))
        console.print(Panel(format_stats(network.stats()), title="Stats"))
        console.print("[green]Self-test passed[/green]")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fixed-point neural network engine")
    parser.add_argument(
        "-v", "--verbose", action="count", default=0,
        help="Log engine activity (-v info, -vv debug)",
    )
    sub = parser.add_subparsers(dest="command")

    create_parser = sub.add_parser("create", help="Create a network and save its model")
    create_parser.add_argument("sizes", type=_parse_sizes, help="Layer widths, e.g. 4,8,4")
    create_parser.add_argument(
        "--activations", type=_parse_activations, default=None,
        help="One activation per layer, e.g. relu,linear",
    )
    create_parser.add_argument("-o", "--output", required=True, help="Model file to write")
    create_parser.add_argument("--seed", type=int, default=None, help="Weight init seed")

    info_parser = sub.add_parser("info", help="Describe a model file")
    info_parser.add_argument("model", help="Path to model file")

    predict_parser = sub.add_parser("predict", help="Run one prediction")
    predict_parser.add_argument("model", help="Path to model file")
    predict_parser.add_argument(
        "--input", type=_parse_vector, required=True,
        help="Comma-separated input values, e.g. 1.0,0.5,-0.5,0.0",
    )
    predict_parser.add_argument(
        "--sizes", type=_parse_sizes, default=None,
        help="Network layer widths (default: taken from the model)",
    )
    predict_parser.add_argument("--stats", action="store_true", help="Print statistics")

    selftest_parser = sub.add_parser("selftest", help="Load a model and self-test it")
    selftest_parser.add_argument("model", help="Path to model file")
    selftest_parser.add_argument(
        "--sizes", type=_parse_sizes, default=None,
        help="Network layer widths (default: taken from the model)",
    )
    return parser


COMMANDS = {
    "create": cmd_create,
    "info": cmd_info,
    "predict": cmd_predict,
    "selftest": cmd_selftest,
}


def main(argv: list[str] | None = None) -> None:
    """Entry point for the neural-fp CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        level = logging.DEBUG if args.verbose > 1 else logging.INFO
        logging.basicConfig(
            level=level, format="%(levelname)s %(name)s: %(message)s"
        )

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    console = Console()
    try:
        handler(args, console)
    except (NeuralError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
