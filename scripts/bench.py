#!/usr/bin/env python3
"""Engine performance profiler.

Runs micro-benchmarks of the fixed-point primitives and whole-network
workloads, reporting throughput and cache behaviour.

Usage:
    uv run python scripts/bench.py                  # all workloads
    uv run python scripts/bench.py wide             # single workload
    uv run python scripts/bench.py --cprofile deep  # cProfile dump
    uv run python scripts/bench.py --micro-only     # just micro-benchmarks
    uv run python scripts/bench.py --threads 4      # concurrent predictions
"""

from __future__ import annotations

import argparse
import cProfile
import io
import pstats
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

# Add project to path so we can import without installing
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from neural_fp.engine.config import NetworkConfig
from neural_fp.engine.network import Network
from neural_fp.fixed.activations import sigmoid, softmax
from neural_fp.fixed.arith import FP_ONE, fp_div, fp_exp, fp_mul, fp_sqrt, to_fixed

# Workloads: (name, layer_sizes, iterations, description)
WORKLOADS: list[tuple[str, list[int], int, str]] = [
    ("tiny", [4, 8, 4], 20_000, "Worked example topology"),
    ("mnist", [784, 32, 10], 200, "MNIST-shaped MLP"),
    ("wide", [256, 256, 16], 200, "Wide hidden layer"),
    ("deep", [32] * 9, 1_000, "Eight 32x32 layers"),
]


def make_input(size: int) -> list[int]:
    """Deterministic input vector in [-1, 1)."""
    return [to_fixed(((i * 37) % 200 - 100) / 100) for i in range(size)]


def run_timed(net: Network, x: list[int], n: int, cached: bool) -> dict[str, Any]:
    """Run n predictions and return timing + stats."""
    predict = net.predict_cached if cached else net.predict
    start = time.perf_counter()
    for _ in range(n):
        predict(x)
    elapsed = time.perf_counter() - start
    return {
        "ops": n,
        "elapsed": elapsed,
        "ops_per_sec": n / elapsed if elapsed > 0 else 0,
        "stats": net.stats(),
    }


def run_threaded(net: Network, x: list[int], n: int, threads: int) -> dict[str, Any]:
    """Split n uncached predictions across a thread pool."""
    per_thread = max(1, n // threads)

    def work(_: int) -> None:
        for _ in range(per_thread):
            net.predict(x)

    start = time.perf_counter()
    with ThreadPoolExecutor(max_workers=threads) as pool:
        list(pool.map(work, range(threads)))
    elapsed = time.perf_counter() - start
    ops = per_thread * threads
    return {"ops": ops, "elapsed": elapsed, "ops_per_sec": ops / elapsed}


def run_cprofile(net: Network, x: list[int], n: int) -> pstats.Stats:
    """Run under cProfile and return stats."""
    pr = cProfile.Profile()
    pr.enable()
    for _ in range(n):
        net.predict(x)
    pr.disable()
    return pstats.Stats(pr)


# ---------------------------------------------------------------------------
# Hot-path micro-benchmarks (isolated from the network)
# ---------------------------------------------------------------------------

MICRO_N = 200_000


def _bench(fn, n: int = MICRO_N) -> dict[str, Any]:
    start = time.perf_counter()
    for i in range(n):
        fn(i)
    elapsed = time.perf_counter() - start
    return {"ops": n, "elapsed": elapsed, "ops_per_sec": n / elapsed}


def bench_fp_mul(n: int = MICRO_N) -> dict[str, Any]:
    """Benchmark fp_mul()."""
    a = to_fixed(1.2345)
    return _bench(lambda i: fp_mul(a, i), n)


def bench_fp_div(n: int = MICRO_N) -> dict[str, Any]:
    """Benchmark fp_div() with a non-zero divisor."""
    return _bench(lambda i: fp_div(FP_ONE, i + 1), n)


def bench_fp_sqrt(n: int = MICRO_N // 4) -> dict[str, Any]:
    """Benchmark fp_sqrt() (Newton iterations)."""
    return _bench(lambda i: fp_sqrt(i * 97 + 1), n)


def bench_fp_exp(n: int = MICRO_N // 4) -> dict[str, Any]:
    """Benchmark fp_exp() across its domain."""
    return _bench(lambda i: fp_exp((i % 640 - 320) << 10), n)


def bench_sigmoid(n: int = MICRO_N // 4) -> dict[str, Any]:
    """Benchmark sigmoid()."""
    return _bench(lambda i: sigmoid((i % 1024 - 512) << 10), n)


def bench_softmax(n: int = MICRO_N // 40) -> dict[str, Any]:
    """Benchmark a 10-way softmax."""
    logits = make_input(10)
    return _bench(lambda i: softmax(logits), n)


# ---------------------------------------------------------------------------
# Output formatting
# ---------------------------------------------------------------------------

def fmt_rate(ops: float) -> str:
    """Format operations per second."""
    if ops >= 1_000_000:
        return f"{ops / 1_000_000:.2f}M"
    if ops >= 1_000:
        return f"{ops / 1_000:.1f}K"
    return f"{ops:.0f}"


def print_workload_result(name: str, label: str, result: dict[str, Any]) -> None:
    """Print results for a network workload."""
    line = (f"  {name:<8} {label:<10} {result['elapsed']:7.3f}s  "
            f"{fmt_rate(result['ops_per_sec']):>8}/s  ({result['ops']:,} predictions)")
    stats = result.get("stats")
    if stats is not None and stats.cache_hits + stats.cache_misses:
        line += f"  hit rate {stats.cache_hit_rate * 100:.1f}%"
    print(line)


def print_micro_result(name: str, result: dict[str, Any]) -> None:
    """Print results for a micro-benchmark."""
    print(f"  {name:<20} {result['elapsed']:7.3f}s  "
          f"{fmt_rate(result['ops_per_sec']):>8}/s  "
          f"({result['ops']:,} ops)")


def print_cprofile_report(stats: pstats.Stats, top_n: int = 25) -> None:
    """Print a cProfile report focused on the hot path."""
    stream = io.StringIO()
    stats.stream = stream
    stats.sort_stats("tottime")
    stats.print_stats(top_n)
    print(stream.getvalue())


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> None:
    parser = argparse.ArgumentParser(description="Profile the fixed-point engine")
    parser.add_argument("workload", nargs="?", default=None,
                        help="Run a specific workload (substring match)")
    parser.add_argument("--cprofile", action="store_true",
                        help="Run under cProfile and print hot functions")
    parser.add_argument("--micro-only", action="store_true",
                        help="Only run micro-benchmarks (no networks)")
    parser.add_argument("--no-micro", action="store_true",
                        help="Skip micro-benchmarks")
    parser.add_argument("--threads", type=int, default=0,
                        help="Also run uncached predictions on N threads")
    args = parser.parse_args()

    if args.workload:
        selected = [(n, s, c, d) for n, s, c, d in WORKLOADS
                    if args.workload.lower() in n.lower()]
        if not selected:
            print(f"No workload matching '{args.workload}'")
            print(f"Available: {', '.join(n for n, *_ in WORKLOADS)}")
            sys.exit(1)
    else:
        selected = WORKLOADS

    if not args.no_micro:
        print("Micro-benchmarks (fixed-point primitives)")
        print("-" * 65)
        print_micro_result("fp_mul", bench_fp_mul())
        print_micro_result("fp_div", bench_fp_div())
        print_micro_result("fp_sqrt", bench_fp_sqrt())
        print_micro_result("fp_exp", bench_fp_exp())
        print_micro_result("sigmoid", bench_sigmoid())
        print_micro_result("softmax (10)", bench_softmax())
        print()

    if args.micro_only:
        return

    print("Network workloads")
    print("-" * 65)

    for name, sizes, iterations, desc in selected:
        x = make_input(sizes[0])
        if args.cprofile:
            print(f"\ncProfile: {name} ({desc})")
            print("=" * 65)
            net = Network(sizes, config=NetworkConfig(seed=0))
            print_cprofile_report(run_cprofile(net, x, iterations))
            continue
        with Network(sizes, config=NetworkConfig(seed=0)) as net:
            print_workload_result(name, "predict", run_timed(net, x, iterations, False))
        with Network(sizes, config=NetworkConfig(seed=0)) as net:
            print_workload_result(name, "cached", run_timed(net, x, iterations, True))
        if args.threads > 0:
            with Network(sizes, config=NetworkConfig(seed=0)) as net:
                result = run_threaded(net, x, iterations, args.threads)
                print_workload_result(name, f"{args.threads} thr", result)
    print()


if __name__ == "__main__":
    main()
