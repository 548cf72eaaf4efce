"""
In-Memory Buffers
Bounded sample storage for rolling statistics.

Purpose:
- Percentiles need the most recent N latencies
- Revenue comparison needs timestamped amounts
- Nothing here ever grows without bound

Not thread-safe on their own: MetricsCollector guards them with its lock.
"""

import math
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Tuple

import numpy as np


# =============================================================================
# Latency Buffer
# =============================================================================

@dataclass(frozen=True)
class LatencySummary:
    average: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    count: int = 0


def discrete_percentile(sorted_samples: np.ndarray, q: float) -> float:
    """
    Value at index floor(n * q) of an ascending array.

    Always one of the recorded samples, never an interpolation.
    """
    n = len(sorted_samples)
    if n == 0:
        return 0.0
    index = min(int(np.floor(n * q)), n - 1)
    return float(sorted_samples[index])


def summarize(samples: np.ndarray) -> LatencySummary:
    """Average, p95 and p99 over a copy of the buffer"""
    if len(samples) == 0:
        return LatencySummary()

    ordered = np.sort(samples)
    return LatencySummary(
        average=float(np.mean(ordered)),
        p95=discrete_percentile(ordered, 0.95),
        p99=discrete_percentile(ordered, 0.99),
        count=len(ordered),
    )


class LatencyBuffer:
    """
    Ring of the most recent request durations (ms).

    - O(1) append, oldest sample evicted at capacity
    - copy() hands out an independent numpy array for sorting

    Usage:
        buffer = LatencyBuffer(maxlen=10000)
        buffer.append(120.0)
        summary = summarize(buffer.copy())
    """

    def __init__(self, maxlen: int = 10000):
        self.maxlen = maxlen
        self._data: Deque[float] = deque(maxlen=maxlen)

    def append(self, duration_ms: float) -> None:
        self._data.append(duration_ms)

    def copy(self) -> np.ndarray:
        return np.fromiter(self._data, dtype=float, count=len(self._data))

    def __len__(self) -> int:
        return len(self._data)

    def clear(self) -> None:
        self._data.clear()

    def stats(self) -> dict:
        return {"samples": len(self._data), "capacity": self.maxlen}


# =============================================================================
# Revenue Log
# =============================================================================

class RevenueLog:
    """
    Payment totals per minute, for trailing-window comparison.

    One bucket per minute that saw a payment, so memory depends on the
    window length only, never on payment volume. Buckets older than two
    windows are dropped on every append. Comparison is at minute
    resolution: a bucket belongs to the window its start falls in.
    """

    BUCKET_SECONDS = 60

    def __init__(self, window_seconds: float):
        self.window_seconds = window_seconds
        max_buckets = 2 * math.ceil(window_seconds / self.BUCKET_SECONDS) + 2
        self._buckets: Deque[List[float]] = deque(maxlen=max_buckets)

    def append(self, ts: float, amount: float) -> None:
        start = ts // self.BUCKET_SECONDS * self.BUCKET_SECONDS
        for bucket in reversed(self._buckets):
            if bucket[0] == start:
                bucket[1] += amount
                break
            if bucket[0] < start:
                self._insert(start, amount)
                break
        else:
            self._insert(start, amount)
        self._prune(ts)

    def _insert(self, start: float, amount: float) -> None:
        if not self._buckets or self._buckets[-1][0] < start:
            self._buckets.append([start, amount])
            return
        # late payment from an earlier minute that had none
        buckets = sorted([*self._buckets, [start, amount]], key=lambda b: b[0])
        self._buckets.clear()
        self._buckets.extend(buckets[-self._buckets.maxlen:])

    def _prune(self, now: float) -> None:
        horizon = now - 2 * self.window_seconds
        while self._buckets and self._buckets[0][0] < horizon:
            self._buckets.popleft()

    def window_totals(self, now: float) -> Tuple[float, float]:
        """(current window total, previous window total)"""
        current = previous = 0.0
        boundary = now - self.window_seconds
        horizon = now - 2 * self.window_seconds
        for start, amount in self._buckets:
            if start > boundary:
                current += amount
            elif start > horizon:
                previous += amount
        return current, previous

    def drop_rate(self, now: float) -> float:
        """Percent drop of the current window against the previous one, 0..100"""
        current, previous = self.window_totals(now)
        if previous <= 0:
            return 0.0
        return max(0.0, min(100.0, (previous - current) / previous * 100))

    def __len__(self) -> int:
        return len(self._buckets)
