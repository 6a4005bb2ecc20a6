import math
import os
import threading
import time
from dataclasses import dataclass
from typing import Optional, Set

from limits import RateLimitItemPerSecond
from limits.storage import Storage, storage_from_string
from limits.strategies import FixedWindowRateLimiter

from appdrop.errors import RateLimited

RATE_LIMIT_MAX_DOWNLOADS = int(os.getenv("RATE_LIMIT_MAX_DOWNLOADS", "50"))
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "3600"))
RATE_LIMIT_SWEEP_SECONDS = float(os.getenv("RATE_LIMIT_SWEEP_SECONDS", "600"))
# "memory://" keeps counters in this process; use "redis://host:6379" when
# several workers serve downloads.
RATE_LIMIT_STORAGE_URI = os.getenv("RATE_LIMIT_STORAGE_URI", "memory://")


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    # seconds until the current window closes
    reset_in: float

    @property
    def retry_after(self) -> int:
        return max(1, math.ceil(self.reset_in))

    def raise_for_limit(self) -> "RateLimitDecision":
        if not self.allowed:
            raise RateLimited(self)
        return self


class RateLimiter:
    """Fixed-window download counter per client key.

    Counting and window expiry live in a ``limits`` storage backend. The
    limiter only remembers which keys it has seen so ``sweep`` can forget
    the ones whose window has closed.
    """

    namespace = "downloads"

    def __init__(
        self,
        limit: int = RATE_LIMIT_MAX_DOWNLOADS,
        window: int = RATE_LIMIT_WINDOW_SECONDS,
        storage: Optional[Storage] = None,
    ):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self.window = window
        self.item = RateLimitItemPerSecond(limit, window)
        self.storage = storage or storage_from_string(RATE_LIMIT_STORAGE_URI)
        self.strategy = FixedWindowRateLimiter(self.storage)
        self._keys: Set[str] = set()
        self._lock = threading.Lock()

    def check(self, key: str) -> RateLimitDecision:
        with self._lock:
            self._keys.add(key)
        allowed = self.strategy.hit(self.item, self.namespace, key)
        stats = self.strategy.get_window_stats(self.item, self.namespace, key)
        reset_in = max(0.0, stats.reset_time - time.time())
        remaining = stats.remaining if allowed else 0
        return RateLimitDecision(allowed, self.limit, remaining, reset_in)

    def sweep(self) -> int:
        with self._lock:
            keys = list(self._keys)
        expired = [
            key for key in keys
            if self.storage.get(self.item.key_for(self.namespace, key)) == 0
        ]
        with self._lock:
            self._keys.difference_update(expired)
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)


download_limiter = RateLimiter()


def get_download_limiter() -> RateLimiter:
    return download_limiter
