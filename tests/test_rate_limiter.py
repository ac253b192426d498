from __future__ import annotations

import threading

import pytest  # type: ignore[import]

from svn_review.utils import RateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_allows_up_to_max_requests_then_denies() -> None:
    clock = FakeClock()
    limiter = RateLimiter(max_requests=3, window_ms=60000, clock=clock)

    results = [limiter.check("10.0.0.1") for _ in range(5)]

    assert [r.allowed for r in results] == [True, True, True, False, False]
    assert results[3].reset_time == pytest.approx(1060.0)
    assert results[0].reset_time is None


def test_new_window_after_reset_time() -> None:
    clock = FakeClock()
    limiter = RateLimiter(max_requests=1, window_ms=1000, clock=clock)

    assert limiter.check("client").allowed
    assert not limiter.check("client").allowed

    clock.advance(1.0)

    assert limiter.check("client").allowed
    assert not limiter.check("client").allowed


def test_clients_are_counted_independently() -> None:
    limiter = RateLimiter(max_requests=1, clock=FakeClock())

    assert limiter.check("a").allowed
    assert limiter.check("b").allowed
    assert not limiter.check("a").allowed


def test_reset_clears_one_client() -> None:
    limiter = RateLimiter(max_requests=1, clock=FakeClock())
    limiter.check("a")
    limiter.check("b")

    limiter.reset("a")

    assert limiter.check("a").allowed
    assert not limiter.check("b").allowed


def test_cleanup_removes_only_expired_windows() -> None:
    clock = FakeClock()
    limiter = RateLimiter(max_requests=5, window_ms=1000, clock=clock)
    limiter.check("old")
    clock.advance(0.5)
    limiter.check("new")
    clock.advance(0.6)

    removed = limiter.cleanup()

    assert removed == 1
    assert len(limiter) == 1


def test_concurrent_checks_never_exceed_limit() -> None:
    limiter = RateLimiter(max_requests=25, window_ms=60000, clock=FakeClock())
    allowed = []
    barrier = threading.Barrier(8)

    def worker() -> None:
        barrier.wait()
        for _ in range(10):
            if limiter.check("shared").allowed:
                allowed.append(1)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(allowed) == 25


def test_start_and_stop_sweeper() -> None:
    limiter = RateLimiter(sweep_interval_ms=10)

    limiter.start()
    assert limiter.running

    limiter.stop()
    assert not limiter.running


@pytest.mark.parametrize("kwargs", [{"max_requests": 0}, {"window_ms": 0}])
def test_invalid_configuration_rejected(kwargs) -> None:
    with pytest.raises(ValueError):
        RateLimiter(**kwargs)
