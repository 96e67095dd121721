"""Per-network performance counters, error log and a small profiler."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

# Distinct thread names counted individually; later threads share one bucket
MAX_TRACKED_THREADS = 64
OTHER_THREADS = "<other>"


@dataclass(frozen=True)
class StatsSnapshot:
    """Point-in-time copy of a network's counters.

    Attributes:
        predictions: Completed (uncached) forward passes.
        total_inference_ns: Sum of forward-pass durations.
        min_inference_ns: Fastest forward pass (0 before the first one).
        max_inference_ns: Slowest forward pass.
        cache_hits: predict_cached calls served from the cache.
        cache_misses: predict_cached calls that had to compute.
        errors: Errors recorded since creation or the last recovery.
        security_violations: Out-of-bounds values seen in secure mode.
        last_error: Message of the most recent error ("" if none).
        last_error_ns: time.time_ns() of the most recent error (0 if none).
        epoch_count: Completed training epochs.
        memory_usage: Bytes held by all layer buffers.
        per_thread: Forward passes per calling thread name. At most
            MAX_TRACKED_THREADS names are kept; passes from threads beyond
            that are counted under OTHER_THREADS.
    """

    predictions: int = 0
    total_inference_ns: int = 0
    min_inference_ns: int = 0
    max_inference_ns: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    errors: int = 0
    security_violations: int = 0
    last_error: str = ""
    last_error_ns: int = 0
    epoch_count: int = 0
    memory_usage: int = 0
    per_thread: dict[str, int] = field(default_factory=dict)

    @property
    def avg_inference_ns(self) -> int:
        """Mean forward-pass duration."""
        if self.predictions == 0:
            return 0
        return self.total_inference_ns // self.predictions

    @property
    def cache_hit_rate(self) -> float:
        total = self.cache_hits + self.cache_misses
        if total == 0:
            return 0.0
        return self.cache_hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary, derived values included."""
        return {
            "predictions": self.predictions,
            "total_inference_ns": self.total_inference_ns,
            "avg_inference_ns": self.avg_inference_ns,
            "min_inference_ns": self.min_inference_ns,
            "max_inference_ns": self.max_inference_ns,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "cache_hit_rate": self.cache_hit_rate,
            "errors": self.errors,
            "security_violations": self.security_violations,
            "last_error": self.last_error,
            "last_error_ns": self.last_error_ns,
            "epoch_count": self.epoch_count,
            "memory_usage": self.memory_usage,
            "per_thread": dict(self.per_thread),
        }


class NetworkStats:
    """Thread-safe counters behind a single short-held lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        """Zero every counter and clear the error slot."""
        with self._lock:
            self._predictions = 0
            self._total_ns = 0
            self._min_ns = 0
            self._max_ns = 0
            self._cache_hits = 0
            self._cache_misses = 0
            self._errors = 0
            self._security_violations = 0
            self._last_error = ""
            self._last_error_ns = 0
            self._epochs = 0
            self._per_thread: dict[str, int] = {}

    def record_prediction(self, duration_ns: int) -> None:
        name = threading.current_thread().name
        with self._lock:
            self._predictions += 1
            self._total_ns += duration_ns
            if self._min_ns == 0 or duration_ns < self._min_ns:
                self._min_ns = duration_ns
            if duration_ns > self._max_ns:
                self._max_ns = duration_ns
            if name not in self._per_thread and len(self._per_thread) >= MAX_TRACKED_THREADS:
                name = OTHER_THREADS
            self._per_thread[name] = self._per_thread.get(name, 0) + 1

    def record_cache_hit(self) -> None:
        with self._lock:
            self._cache_hits += 1

    def record_cache_miss(self) -> None:
        with self._lock:
            self._cache_misses += 1

    def record_error(self, message: str, *, security: bool = False) -> None:
        """Count an error and remember it as the most recent one."""
        with self._lock:
            self._errors += 1
            if security:
                self._security_violations += 1
            self._last_error = message[:127]
            self._last_error_ns = time.time_ns()

    def reset_errors(self) -> None:
        with self._lock:
            self._errors = 0

    def record_epoch(self) -> None:
        with self._lock:
            self._epochs += 1

    @property
    def epoch_count(self) -> int:
        with self._lock:
            return self._epochs

    def snapshot(self, memory_usage: int = 0) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                predictions=self._predictions,
                total_inference_ns=self._total_ns,
                min_inference_ns=self._min_ns,
                max_inference_ns=self._max_ns,
                cache_hits=self._cache_hits,
                cache_misses=self._cache_misses,
                errors=self._errors,
                security_violations=self._security_violations,
                last_error=self._last_error,
                last_error_ns=self._last_error_ns,
                epoch_count=self._epochs,
                memory_usage=memory_usage,
                per_thread=dict(self._per_thread),
            )


class Profiler:
    """Context manager timing a block in nanoseconds.

    Example:
        >>> with Profiler() as prof:
        ...     net.predict(x)
        >>> prof.elapsed_ns > 0
        True
    """

    def __init__(self, clock: Callable[[], int] = time.perf_counter_ns) -> None:
        self._clock = clock
        self.start_ns = 0
        self.end_ns = 0
        self.active = False

    def __enter__(self) -> Profiler:
        self.start_ns = self._clock()
        self.active = True
        return self

    def __exit__(self, *exc: object) -> None:
        self.end_ns = self._clock()
        self.active = False

    @property
    def elapsed_ns(self) -> int:
        """Duration of the timed block (so far, if still running)."""
        end = self._clock() if self.active else self.end_ns
        return end - self.start_ns
