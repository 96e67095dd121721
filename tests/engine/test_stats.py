"""Tests for network statistics and the profiler."""

import threading

from neural_fp.engine.stats import (
    MAX_TRACKED_THREADS,
    OTHER_THREADS,
    NetworkStats,
    Profiler,
    StatsSnapshot,
)


class TestStatsSnapshot:
    """Derived values on the snapshot."""

    def test_empty(self) -> None:
        """Averages and rates are zero with no data."""
        snap = StatsSnapshot()
        assert snap.avg_inference_ns == 0
        assert snap.cache_hit_rate == 0.0

    def test_derived(self) -> None:
        """Average duration and hit rate."""
        snap = StatsSnapshot(predictions=4, total_inference_ns=1000,
                             cache_hits=3, cache_misses=1)
        assert snap.avg_inference_ns == 250
        assert snap.cache_hit_rate == 0.75

    def test_to_dict(self) -> None:
        """to_dict includes raw and derived values."""
        d = StatsSnapshot(predictions=2, total_inference_ns=10).to_dict()
        assert d["predictions"] == 2
        assert d["avg_inference_ns"] == 5
        assert "cache_hit_rate" in d
        assert d["per_thread"] == {}


class TestNetworkStats:
    """Counter updates."""

    def test_record_prediction(self) -> None:
        """Min, max and total track every duration."""
        stats = NetworkStats()
        for ns in (300, 100, 200):
            stats.record_prediction(ns)
        snap = stats.snapshot()
        assert snap.predictions == 3
        assert snap.total_inference_ns == 600
        assert snap.min_inference_ns == 100
        assert snap.max_inference_ns == 300
        assert sum(snap.per_thread.values()) == 3

    def test_per_thread_map_is_capped(self) -> None:
        """Threads past the tracking limit share one bucket."""
        stats = NetworkStats()
        extra = 5
        for i in range(MAX_TRACKED_THREADS + extra):
            t = threading.Thread(
                target=stats.record_prediction, args=(1,), name=f"req-{i}"
            )
            t.start()
            t.join()
        per_thread = stats.snapshot().per_thread
        assert len(per_thread) == MAX_TRACKED_THREADS + 1
        assert per_thread[OTHER_THREADS] == extra
        assert per_thread["req-0"] == 1
        assert sum(per_thread.values()) == MAX_TRACKED_THREADS + extra

    def test_cache_counters(self) -> None:
        """Hits and misses are counted separately."""
        stats = NetworkStats()
        stats.record_cache_hit()
        stats.record_cache_miss()
        stats.record_cache_miss()
        snap = stats.snapshot()
        assert (snap.cache_hits, snap.cache_misses) == (1, 2)

    def test_record_error(self) -> None:
        """The last error message is kept with a timestamp."""
        stats = NetworkStats()
        stats.record_error("first")
        stats.record_error("second")
        snap = stats.snapshot()
        assert snap.errors == 2
        assert snap.last_error == "second"
        assert snap.last_error_ns > 0
        assert snap.security_violations == 0

    def test_error_truncated(self) -> None:
        """Messages are truncated to 127 characters."""
        stats = NetworkStats()
        stats.record_error("x" * 500)
        assert len(stats.snapshot().last_error) == 127

    def test_security_violation(self) -> None:
        """Security errors count in both counters."""
        stats = NetworkStats()
        stats.record_error("bad", security=True)
        snap = stats.snapshot()
        assert snap.errors == 1
        assert snap.security_violations == 1

    def test_reset_errors(self) -> None:
        """reset_errors zeroes only the error count."""
        stats = NetworkStats()
        stats.record_prediction(5)
        stats.record_error("bad")
        stats.reset_errors()
        snap = stats.snapshot()
        assert snap.errors == 0
        assert snap.predictions == 1

    def test_epochs(self) -> None:
        """Epochs are counted."""
        stats = NetworkStats()
        stats.record_epoch()
        stats.record_epoch()
        assert stats.epoch_count == 2
        assert stats.snapshot().epoch_count == 2

    def test_memory_passed_through(self) -> None:
        """snapshot carries the caller's memory figure."""
        assert NetworkStats().snapshot(memory_usage=512).memory_usage == 512

    def test_reset(self) -> None:
        """reset zeroes everything."""
        stats = NetworkStats()
        stats.record_prediction(5)
        stats.record_error("bad")
        stats.reset()
        assert stats.snapshot() == StatsSnapshot()


class TestProfiler:
    """Block timing."""

    def test_elapsed(self) -> None:
        """elapsed_ns is end minus start."""
        ticks = iter([100, 350])
        with Profiler(clock=lambda: next(ticks)) as prof:
            assert prof.active
        assert not prof.active
        assert prof.elapsed_ns == 250

    def test_running(self) -> None:
        """While active, elapsed_ns reads the clock."""
        ticks = iter([100, 180])
        prof = Profiler(clock=lambda: next(ticks))
        prof.__enter__()
        assert prof.elapsed_ns == 80
