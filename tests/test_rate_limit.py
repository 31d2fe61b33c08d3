from __future__ import annotations

import threading

from eventopro.auth import rate_limit
from eventopro.auth.rate_limit import RateLimiter


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_blocks_after_max_attempts(monkeypatch) -> None:
    clock = _Clock()
    monkeypatch.setattr(rate_limit.time, "monotonic", clock)
    limiter = RateLimiter(max_attempts=3, window_seconds=60)

    assert limiter.check_and_increment("alice") == (True, 2)
    assert limiter.check_and_increment("alice") == (True, 1)
    assert limiter.check_and_increment("alice") == (True, 0)
    assert limiter.check_and_increment("alice") == (False, 0)
    # Refused attempts are not counted.
    assert limiter.check_and_increment("alice") == (False, 0)
    # Other identifiers are unaffected.
    assert limiter.check_and_increment("bob") == (True, 2)


def test_window_slides(monkeypatch) -> None:
    clock = _Clock()
    monkeypatch.setattr(rate_limit.time, "monotonic", clock)
    limiter = RateLimiter(max_attempts=2, window_seconds=60)

    limiter.check_and_increment("alice")
    clock.now += 30
    limiter.check_and_increment("alice")
    assert limiter.check_and_increment("alice")[0] is False

    clock.now += 31
    assert limiter.check_and_increment("alice") == (True, 0)


def test_reset_clears_attempts() -> None:
    limiter = RateLimiter(max_attempts=1, window_seconds=60)
    assert limiter.check_and_increment("alice") == (True, 0)
    assert limiter.check_and_increment("alice")[0] is False
    limiter.reset("alice")
    assert limiter.check_and_increment("alice") == (True, 0)


def test_concurrent_attempts_never_exceed_limit() -> None:
    limiter = RateLimiter(max_attempts=5, window_seconds=60)
    workers = 40
    barrier = threading.Barrier(workers)
    results = []
    results_lock = threading.Lock()

    def attempt() -> None:
        barrier.wait()
        allowed, _ = limiter.check_and_increment("alice")
        with results_lock:
            results.append(allowed)

    threads = [threading.Thread(target=attempt) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert len(results) == workers
    assert results.count(True) == 5
