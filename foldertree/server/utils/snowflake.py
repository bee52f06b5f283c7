"""Snowflake style id generation.

Ids are 64 bit integers made of a millisecond timestamp, a worker id and a
per-millisecond sequence, so they are unique across tables and roughly
ordered by creation time.
"""

import threading
import time

EPOCH_MS = 1704067200000  # 2024-01-01T00:00:00Z

_WORKER_BITS = 10
_SEQUENCE_BITS = 12
_MAX_WORKER_ID = (1 << _WORKER_BITS) - 1
_MAX_SEQUENCE = (1 << _SEQUENCE_BITS) - 1


def _now_ms() -> int:
    return int(time.time() * 1000)


class SnowflakeGenerator:
    """Thread safe generator of snowflake ids."""

    def __init__(self, worker_id: int = 1) -> None:
        """Create a generator for the given worker id."""
        if not 0 <= worker_id <= _MAX_WORKER_ID:
            raise ValueError(f"worker_id must be between 0 and {_MAX_WORKER_ID}")
        self._worker_id = worker_id
        self._lock = threading.Lock()
        self._last_ms = -1
        self._sequence = 0

    def next_id(self) -> int:
        """Return the next unique id."""
        with self._lock:
            now = _now_ms()
            if now < self._last_ms:
                # Clock moved backwards, keep issuing ids from the last timestamp.
                now = self._last_ms
            if now == self._last_ms:
                self._sequence = (self._sequence + 1) & _MAX_SEQUENCE
                if self._sequence == 0:
                    while now <= self._last_ms:
                        now = _now_ms()
            else:
                self._sequence = 0
            self._last_ms = now
            return (
                ((now - EPOCH_MS) << (_WORKER_BITS + _SEQUENCE_BITS))
                | (self._worker_id << _SEQUENCE_BITS)
                | self._sequence
            )


_generator = SnowflakeGenerator()


def next_id() -> int:
    """Return the next id from the module level generator."""
    return _generator.next_id()
