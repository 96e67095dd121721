"""Single-slot prediction memo keyed by a hash of the input vector.

Only the most recent input is remembered. The dominant calling pattern is
bursts of identical inputs, so one entry catches nearly every repeat.

States::

    EMPTY --store--> VALID --lookup after timeout--> EXPIRED
                       |  --invalidate------------> INVALIDATED
                       +--store (new input)-------> VALID

Any state accepts a fresh store. Expiry is checked lazily on lookup.
"""

from __future__ import annotations

import enum
import logging
import struct
import threading
import time
import zlib
from dataclasses import dataclass
from typing import Callable, Sequence

logger = logging.getLogger(__name__)


class CacheState(enum.Enum):
    EMPTY = "empty"
    VALID = "valid"
    EXPIRED = "expired"
    INVALIDATED = "invalidated"


def hash_input(values: Sequence[int]) -> int:
    """32-bit hash of a Q16.16 vector: CRC32 of its little-endian int32 bytes."""
    return zlib.crc32(struct.pack(f"<{len(values)}i", *values)) & 0xFFFFFFFF


@dataclass
class PredictionCacheEntry:
    """The one remembered prediction.

    Attributes:
        input_hash: hash_input() of the input that produced the output.
        inputs: Copy of that input, compared on lookup to rule out collisions.
        cached_output: Copy of the output vector.
        cache_time: Clock reading when the entry was stored.
        timeout: Lifetime of the entry in the clock's units.
        valid: Cleared on expiry or invalidation.
    """

    input_hash: int
    inputs: tuple[int, ...]
    cached_output: tuple[int, ...]
    cache_time: int
    timeout: int
    valid: bool = True


class PredictionCache:
    """Thread-safe single-entry cache with lazy time-based expiry.

    Args:
        timeout_ns: Lifetime of an entry.
        clock: Monotonic nanosecond clock; injectable for tests.
    """

    def __init__(
        self,
        timeout_ns: int,
        clock: Callable[[], int] = time.monotonic_ns,
    ) -> None:
        self.timeout_ns = timeout_ns
        self._clock = clock
        self._lock = threading.Lock()
        self._entry: PredictionCacheEntry | None = None
        self._state = CacheState.EMPTY
        self._generation = 0

    @property
    def state(self) -> CacheState:
        with self._lock:
            return self._state

    @property
    def generation(self) -> int:
        """Token that changes on every invalidation.

        Read it before computing a prediction and pass it to store(); a
        result computed across an invalidation is then discarded.
        """
        with self._lock:
            return self._generation

    def lookup(self, input_hash: int, inputs: Sequence[int]) -> list[int] | None:
        """Return the cached output for this input, or None.

        A hit needs a valid, unexpired entry whose hash and stored input
        both match. An expired entry is marked EXPIRED here.
        """
        with self._lock:
            entry = self._entry
            if entry is None or not entry.valid or self._state != CacheState.VALID:
                return None
            if self._clock() - entry.cache_time >= entry.timeout:
                entry.valid = False
                self._state = CacheState.EXPIRED
                logger.debug("Prediction cache entry %08x expired", entry.input_hash)
                return None
            if entry.input_hash != input_hash or entry.inputs != tuple(inputs):
                return None
            return list(entry.cached_output)

    def store(
        self,
        input_hash: int,
        inputs: Sequence[int],
        output: Sequence[int],
        generation: int | None = None,
    ) -> bool:
        """Replace the entry with a new prediction.

        Args:
            input_hash: hash_input(inputs).
            inputs: The input vector.
            output: The output computed for it.
            generation: Value of ``generation`` read before computing; if an
                invalidation happened since, the store is skipped.

        Returns:
            True if the entry was stored.
        """
        with self._lock:
            if generation is not None and generation != self._generation:
                logger.debug("Discarding prediction computed before invalidation")
                return False
            self._entry = PredictionCacheEntry(
                input_hash=input_hash,
                inputs=tuple(inputs),
                cached_output=tuple(output),
                cache_time=self._clock(),
                timeout=self.timeout_ns,
            )
            self._state = CacheState.VALID
            return True

    def invalidate(self) -> None:
        """Drop the entry because the weights changed or recovery was requested."""
        with self._lock:
            self._generation += 1
            if self._entry is not None:
                self._entry = None
                self._state = CacheState.INVALIDATED

    def clear(self) -> None:
        """Drop the entry and return to EMPTY."""
        with self._lock:
            self._generation += 1
            self._entry = None
            self._state = CacheState.EMPTY

    @property
    def entry(self) -> PredictionCacheEntry | None:
        with self._lock:
            return self._entry

    def memory_usage(self) -> int:
        """Bytes held by the cached input and output copies."""
        with self._lock:
            if self._entry is None:
                return 0
            return 4 * (len(self._entry.inputs) + len(self._entry.cached_output))
