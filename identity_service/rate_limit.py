"""
Sign-in rate limiting. In-memory sliding window per key (client IP).
"""
import math
import threading
import time


class SlidingWindowLimiter:
    """Allow at most `limit` attempts per key within `window_seconds`."""

    def __init__(self, limit: int, window_seconds: int = 60):
        self.limit = limit
        self.window_seconds = window_seconds
        self._hits: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def attempt(self, key: str) -> tuple[bool, int | None]:
        """
        Record an attempt for key if allowed.
        Returns (allowed, retry_after_seconds); retry_after is >= 1 when not allowed.
        """
        if self.limit <= 0:
            return True, None
        now = time.monotonic()
        with self._lock:
            hits = [t for t in self._hits.get(key, []) if t > now - self.window_seconds]
            self._hits[key] = hits
            if len(hits) >= self.limit:
                retry_after = max(1, math.ceil(self.window_seconds - (now - hits[0])))
                return False, retry_after
            hits.append(now)
            return True, None

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
