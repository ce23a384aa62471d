"""
Windowing utilities for stream processing.

Sliding event-time windows keyed by an arbitrary value, used for the rolling
5-minute counts behind suspicious-activity snapshots.
"""

from collections import defaultdict, deque
from typing import Deque, Dict, Hashable, Optional


class SlidingWindow:
    """Timestamps seen in the last `window_size_ms` of event time."""

    def __init__(self, window_size_ms: int):
        """
        Initialize sliding window.

        Args:
            window_size_ms: Window size in milliseconds; an event at exactly
                `current - window_size_ms` is still inside the window
        """
        self.window_size_ms = window_size_ms
        self.timestamps: Deque[int] = deque()

    def add(self, timestamp: int):
        """Record an event and drop the ones that fell out of the window."""
        self.timestamps.append(timestamp)
        self._expire(timestamp)

    def _expire(self, current_timestamp: int):
        cutoff = current_timestamp - self.window_size_ms
        while self.timestamps and self.timestamps[0] < cutoff:
            self.timestamps.popleft()

    @property
    def newest(self) -> Optional[int]:
        return self.timestamps[-1] if self.timestamps else None

    def size(self) -> int:
        return len(self.timestamps)


class KeyedSlidingWindows:
    """One SlidingWindow per key, created on first use."""

    def __init__(self, window_size_ms: int):
        self.window_size_ms = window_size_ms
        self.windows: Dict[Hashable, SlidingWindow] = defaultdict(
            lambda: SlidingWindow(window_size_ms)
        )

    def add(self, key: Hashable, timestamp: int) -> int:
        """Record one occurrence for `key` and return the key's count in the window."""
        window = self.windows[key]
        window.add(timestamp)
        return window.size()

    def count(self, key: Hashable) -> int:
        return self.windows[key].size() if key in self.windows else 0

    def evict_idle(self, current_timestamp: int) -> int:
        """Drop keys whose newest event has fallen out of the window."""
        cutoff = current_timestamp - self.window_size_ms
        idle = [k for k, w in self.windows.items() if w.newest is None or w.newest < cutoff]
        for key in idle:
            del self.windows[key]
        return len(idle)

    def __len__(self) -> int:
        return len(self.windows)
