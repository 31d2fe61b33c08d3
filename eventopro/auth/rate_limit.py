from __future__ import annotations

import threading
import time
from collections import defaultdict
from typing import Dict, List, Tuple


class RateLimiter:
    """
    In-memory sliding-window limiter for login attempts.

    Keyed by username. Every attempt is counted when it starts; a successful
    login clears the counter. Login handlers run in the thread pool, so every
    operation takes the lock.
    """

    def __init__(self, max_attempts: int = 5, window_seconds: int = 300):
        self._attempts: Dict[str, List[float]] = defaultdict(list)
        self._max_attempts = max_attempts
        self._window = float(window_seconds)
        self._lock = threading.Lock()

    def _prune(self, identifier: str, now: float) -> List[float]:
        recent = [t for t in self._attempts.get(identifier, []) if now - t < self._window]
        if recent:
            self._attempts[identifier] = recent
        else:
            self._attempts.pop(identifier, None)
        return recent

    def check_and_increment(self, identifier: str) -> Tuple[bool, int]:
        """
        Check whether identifier may attempt a login and, if so, count the attempt.

        Returns:
            Tuple of (is_allowed, attempts_remaining)
        """
        with self._lock:
            now = time.monotonic()
            recent = self._prune(identifier, now)
            if len(recent) >= self._max_attempts:
                return False, 0
            recent.append(now)
            self._attempts[identifier] = recent
            return True, self._max_attempts - len(recent)

    def reset(self, identifier: str) -> None:
        """Forget counted attempts (after a successful login)."""
        with self._lock:
            self._attempts.pop(identifier, None)
