# hrm_keys/ratelimit.py
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from .errors import RateLimitedError
from .logger import get_logger

log = get_logger("HRM.Keys.RateLimit")


class SubjectRateLimiter:
    """
    Fixed-window counter per subject.

    Windows expire lazily on access; ``sweep()`` drops expired entries so the
    map stays bounded by the number of recently active subjects. A daemon
    sweeper thread can be started for long-running hosts.
    """

    def __init__(self, max_requests: int, window_s: float, clock: Callable[[], float] = time.monotonic):
        self.max_requests = int(max_requests)
        self.window_s = float(window_s)
        self._clock = clock
        self._windows: Dict[Any, Tuple[int, float]] = {}  # key -> (count, reset_at)
        self._lock = threading.Lock()
        self._sweeper: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def allow(self, key: Any) -> bool:
        now = self._clock()
        with self._lock:
            count, reset_at = self._windows.get(key, (0, now + self.window_s))
            if now > reset_at:
                count, reset_at = 0, now + self.window_s
            if count >= self.max_requests:
                self._windows[key] = (count, reset_at)
                return False
            self._windows[key] = (count + 1, reset_at)
            return True

    def check(self, key: Any) -> None:
        if not self.allow(key):
            log.warning(f"[RATE] limit exceeded for {key}")
            raise RateLimitedError(f"rate limit exceeded for {key}")

    def remaining(self, key: Any) -> int:
        now = self._clock()
        with self._lock:
            count, reset_at = self._windows.get(key, (0, now))
            if now > reset_at:
                return self.max_requests
            return max(0, self.max_requests - count)

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, reset_at) in self._windows.items() if now > reset_at]
            for k in expired:
                del self._windows[k]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def start_sweeper(self, interval_s: Optional[float] = None) -> None:
        if self._sweeper is not None:
            return
        interval = interval_s or self.window_s
        self._stop.clear()

        def _loop():
            while not self._stop.wait(interval):
                dropped = self.sweep()
                if dropped:
                    log.debug(f"[RATE] swept {dropped} expired window(s)")

        self._sweeper = threading.Thread(target=_loop, name="hrm-keys-rate-sweeper", daemon=True)
        self._sweeper.start()

    def stop_sweeper(self) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1.0)
            self._sweeper = None
