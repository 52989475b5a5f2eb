import threading
import time


class RateLimiter:
    """
    Fixed-window limiter di memori proses.
    Hanya berlaku untuk satu proses (tidak dibagi antar worker).
    """

    def __init__(self, limit=100, window=60, clock=time.time):
        self.limit = limit
        self.window = window
        self._clock = clock
        self._entries = {}
        self._lock = threading.Lock()

    def _purge(self, now):
        expired = [key for key, (_, reset_at) in self._entries.items() if reset_at <= now]
        for key in expired:
            del self._entries[key]

    def check(self, key):
        """Return (allowed, remaining, reset_at)."""
        with self._lock:
            now = self._clock()
            self._purge(now)

            count, reset_at = self._entries.get(key, (0, now + self.window))
            if count >= self.limit:
                return False, 0, reset_at

            count += 1
            self._entries[key] = (count, reset_at)
            return True, self.limit - count, reset_at

    def reset(self):
        with self._lock:
            self._entries.clear()
