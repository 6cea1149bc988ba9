"""
scanner/cursor.py - Height partitioning and the commit cursor.

PARTITIONING:
    worker i of n handles start+i, start+i+n, start+i+2n, ... <= end
    (full coverage, no overlap, independent of worker speed)

COMMIT CURSOR:
    A boolean arena indexed by (height - start) plus one mutex. Marking a
    height done advances the cursor across the contiguous completed prefix
    and persists it inside the same critical section, so the persisted value
    is always a safe resume point.
"""

import threading
from typing import Callable, Optional


def worker_heights(start: int, end: int, worker: int, workers: int) -> range:
    """Heights assigned to one worker."""
    if workers < 1:
        raise ValueError("workers must be >= 1")
    if not 0 <= worker < workers:
        raise ValueError(f"worker index {worker} out of range for {workers} workers")
    return range(start + worker, end + 1, workers)


def partition_heights(start: int, end: int, workers: int) -> list[range]:
    """Round-robin assignment of [start, end] across workers."""
    return [worker_heights(start, end, i, workers) for i in range(workers)]


class CommitCursor:
    """Tracks done heights and the highest contiguously committed height."""

    def __init__(
        self,
        start: int,
        end: int,
        on_advance: Optional[Callable[[int], None]] = None,
    ):
        if end < start:
            raise ValueError(f"empty range [{start}, {end}]")
        self.start = start
        self.end = end
        self._done = [False] * (end - start + 1)
        self._next = start
        self._lock = threading.Lock()
        self._on_advance = on_advance

    @property
    def committed(self) -> Optional[int]:
        """Highest height h such that every height in [start, h] is done."""
        with self._lock:
            return self._next - 1 if self._next > self.start else None

    @property
    def complete(self) -> bool:
        with self._lock:
            return self._next > self.end

    def mark_done(self, height: int) -> Optional[int]:
        """
        Flag a height done and advance over the completed prefix.

        Returns the newly committed height if the cursor moved, else None.
        """
        if not self.start <= height <= self.end:
            raise ValueError(f"height {height} outside [{self.start}, {self.end}]")
        with self._lock:
            self._done[height - self.start] = True
            moved = False
            while self._next <= self.end and self._done[self._next - self.start]:
                self._next += 1
                moved = True
            if not moved:
                return None
            committed = self._next - 1
            if self._on_advance is not None:
                self._on_advance(committed)
            return committed
