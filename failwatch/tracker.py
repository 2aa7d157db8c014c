from __future__ import annotations

from bisect import insort
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Optional


@dataclass(frozen=True)
class ThresholdCrossing:
    origin: str
    count_at_crossing: int
    detected_at: float


class _Shard:
    __slots__ = ("lock", "windows")

    def __init__(self) -> None:
        self.lock = Lock()
        self.windows: dict[str, deque[float]] = {}


class WindowTracker:
    """Per-origin rolling window of failure timestamps.

    Origins are spread over a fixed number of shards, each guarded by its own
    lock. An origin always hashes to the same shard, so every
    read-prune-append-decide step for one origin is serialized while other
    origins only contend when they share a shard. Nothing under a lock does I/O.

    An entry exactly ``window_seconds`` old is already expired.
    """

    def __init__(self, max_attempts: int = 5, window_seconds: float = 600.0, shards: int = 16) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._shards = [_Shard() for _ in range(max(1, shards))]

    def _shard(self, origin: str) -> _Shard:
        return self._shards[hash(origin) % len(self._shards)]

    def _prune(self, events: deque[float], now: float) -> None:
        while events and now - events[0] >= self.window_seconds:
            events.popleft()

    def _insert(self, events: deque[float], ts: float) -> None:
        # writes can finish out of order, keep the window sorted
        if not events or events[-1] <= ts:
            events.append(ts)
        else:
            insort(events, ts)

    def record_failure(self, origin: str, now: float) -> bool:
        """Append a failure and report whether the window reached the threshold."""
        shard = self._shard(origin)
        with shard.lock:
            events = shard.windows.setdefault(origin, deque())
            self._prune(events, now)
            self._insert(events, now)
            return len(events) >= self.max_attempts

    def record_and_check(self, origin: str, now: float) -> Optional[ThresholdCrossing]:
        """Like record_failure, but clears the window in the same critical section
        when the threshold is reached, so each burst yields one crossing."""
        shard = self._shard(origin)
        with shard.lock:
            events = shard.windows.setdefault(origin, deque())
            self._prune(events, now)
            self._insert(events, now)
            count = len(events)
            if count < self.max_attempts:
                return None
            events.clear()
        return ThresholdCrossing(origin=origin, count_at_crossing=count, detected_at=now)

    def reset(self, origin: str) -> None:
        shard = self._shard(origin)
        with shard.lock:
            events = shard.windows.get(origin)
            if events:
                events.clear()

    def prune(self, origin: str, now: float) -> list[float]:
        shard = self._shard(origin)
        with shard.lock:
            events = shard.windows.get(origin)
            if events is None:
                return []
            self._prune(events, now)
            return list(events)

    def count(self, origin: str, now: float) -> int:
        return len(self.prune(origin, now))

    def sweep(self, now: float) -> int:
        """Drop origins with no failure left inside the window."""
        evicted = 0
        for shard in self._shards:
            with shard.lock:
                stale = []
                for origin, events in shard.windows.items():
                    self._prune(events, now)
                    if not events:
                        stale.append(origin)
                for origin in stale:
                    del shard.windows[origin]
                evicted += len(stale)
        return evicted

    def tracked_origins(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.windows)
        return total
