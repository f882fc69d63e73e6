import random
import threading

import pytest

from keyword_crawl.ratelimit import Throttle, TokenBucket


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_bucket_starts_full_and_waits_for_refill() -> None:
    clock = FakeClock()
    bucket = TokenBucket(2, 0.5, clock=clock, sleep=clock.sleep)

    assert bucket.acquire() == 0.0
    assert bucket.acquire() == 0.0
    assert bucket.acquire() == pytest.approx(2.0)
    assert clock.now == pytest.approx(2.0)


def test_bucket_refills_with_elapsed_time() -> None:
    clock = FakeClock()
    bucket = TokenBucket(1, 1.0, clock=clock, sleep=clock.sleep)
    bucket.acquire()

    clock.now += 5
    assert bucket.available() == pytest.approx(1.0)
    assert bucket.acquire() == 0.0


def test_bucket_rejects_bad_arguments() -> None:
    with pytest.raises(ValueError):
        TokenBucket(0, 1.0)
    with pytest.raises(ValueError):
        TokenBucket(1, 0)
    with pytest.raises(ValueError):
        TokenBucket(1, 1.0).acquire(2)


def test_throttle_jitter_stays_in_window() -> None:
    clock = FakeClock()
    throttle = Throttle(jitter=(10.0, 20.0), rng=random.Random(7), sleep=clock.sleep)

    for _ in range(20):
        throttle.wait()

    assert len(clock.sleeps) == 20
    assert all(10.0 <= pause <= 20.0 for pause in clock.sleeps)


def test_throttle_rejects_inverted_window() -> None:
    with pytest.raises(ValueError):
        Throttle(jitter=(5.0, 1.0))


def test_bucket_wait_ends_when_sleep_is_interrupted() -> None:
    clock = FakeClock()
    stop = threading.Event()
    stop.set()
    bucket = TokenBucket(1, 1 / 15, clock=clock, sleep=stop.wait)
    bucket.acquire()

    assert bucket.acquire() == 0.0
    assert bucket.available() < 1.0
