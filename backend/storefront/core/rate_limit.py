import threading
import time
from dataclasses import dataclass


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int | None = None


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """
    In-memory fixed-window counter keyed by client.

    State lives in the process, so limits are per worker.
    """

    def __init__(self) -> None:
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        now = time.time()
        with self._lock:
            window = self._windows.get(key)
            if window is None or window.reset_at <= now:
                window = _Window(count=0, reset_at=now + window_seconds)
                self._windows[key] = window
            window.count += 1
            count, reset_at = window.count, window.reset_at
            if len(self._windows) > 10_000:
                self._prune(now)

        allowed = count <= limit
        return RateLimitResult(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=reset_at,
            retry_after=None if allowed else max(1, int(reset_at - now + 0.999)),
        )

    def _prune(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if w.reset_at <= now]
        for k in expired:
            del self._windows[k]

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


limiter = RateLimiter()
