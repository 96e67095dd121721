"""Statistics panel: formats a StatsSnapshot as Rich markup."""

from __future__ import annotations

import datetime

from ..engine.stats import StatsSnapshot


def format_duration(ns: int) -> str:
    """Render a nanosecond duration with a readable unit.

    Args:
        ns: Duration in nanoseconds.

    Returns:
        e.g. "850 ns", "12.5 us", "3.20 ms", "1.50 s".
    """
    if ns < 1_000:
        return f"{ns} ns"
    if ns < 1_000_000:
        return f"{ns / 1_000:.1f} us"
    if ns < 1_000_000_000:
        return f"{ns / 1_000_000:.2f} ms"
    return f"{ns / 1_000_000_000:.2f} s"


def format_stats(stats: StatsSnapshot) -> str:
    """Format a stats snapshot for display in a Rich panel.

    Errors are highlighted in bold red when any have been recorded, and
    the last error line is only shown when there is one.

    Args:
        stats: Snapshot from Network.stats().

    Returns:
        A multi-line string with Rich markup.
    """
    lines: list[str] = []

    lines.append("Inference")
    lines.append(f"  predictions: {stats.predictions:,}")
    if stats.predictions:
        lines.append(
            f"  time avg/min/max: {format_duration(stats.avg_inference_ns)} / "
            f"{format_duration(stats.min_inference_ns)} / "
            f"{format_duration(stats.max_inference_ns)}"
        )
        lines.append(f"  total time: {format_duration(stats.total_inference_ns)}")

    lines.append("")
    lines.append("Cache")
    lines.append(
        f"  hits: {stats.cache_hits:,}  misses: {stats.cache_misses:,}  "
        f"({stats.cache_hit_rate * 100:.1f}% hit rate)"
    )

    lines.append("")
    err_line = f"  errors: {stats.errors:,}  security violations: {stats.security_violations:,}"
    if stats.errors or stats.security_violations:
        err_line = f"[bold red]{err_line}[/bold red]"
    lines.append("Errors")
    lines.append(err_line)
    if stats.last_error:
        when = datetime.datetime.fromtimestamp(stats.last_error_ns / 1e9)
        lines.append(f"  last: {stats.last_error} ({when:%Y-%m-%d %H:%M:%S})")

    lines.append("")
    lines.append(f"Memory: {stats.memory_usage:,} bytes   Epochs: {stats.epoch_count}")

    if len(stats.per_thread) > 1:
        parts = [f"{name}: {count}" for name, count in sorted(stats.per_thread.items())]
        lines.append("Threads: " + ", ".join(parts))

    return "\n".join(lines)
