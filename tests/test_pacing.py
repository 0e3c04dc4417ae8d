from __future__ import annotations

import threading
import time

import pytest

from treasury.pacing import FixedIntervalPacer, NoDelayPacer, TokenBucketPacer


class _FakeTime:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_no_delay_pacer_counts_calls() -> None:
    pacer = NoDelayPacer()
    pacer.wait()
    pacer.wait()
    assert pacer.calls == 2


def test_fixed_interval_pacer_sleeps_each_time() -> None:
    fake = _FakeTime()
    pacer = FixedIntervalPacer(0.25, sleep=fake.sleep)

    pacer.wait()
    pacer.wait()

    assert fake.sleeps == [0.25, 0.25]


def test_fixed_interval_pacer_zero_interval_never_sleeps() -> None:
    fake = _FakeTime()
    FixedIntervalPacer(0, sleep=fake.sleep).wait()
    assert fake.sleeps == []


def test_token_bucket_allows_burst_then_paces_at_rate() -> None:
    fake = _FakeTime()
    pacer = TokenBucketPacer(2.0, burst=3, sleep=fake.sleep, monotonic=fake.monotonic)

    pacer.wait()
    pacer.wait()
    assert fake.sleeps == []

    pacer.wait()
    pacer.wait()
    assert fake.sleeps == [pytest.approx(0.5), pytest.approx(0.5)]


def test_token_bucket_refills_while_idle() -> None:
    fake = _FakeTime()
    pacer = TokenBucketPacer(1.0, burst=1, sleep=fake.sleep, monotonic=fake.monotonic)

    fake.now += 5.0
    pacer.wait()

    assert fake.sleeps == []



class _YieldingTime(_FakeTime):
    """Fake clock whose sleep also yields the GIL so waiters can interleave."""

    def sleep(self, seconds: float) -> None:
        time.sleep(0.005)
        super().sleep(seconds)


def test_token_bucket_serializes_concurrent_waiters() -> None:
    fake = _YieldingTime()
    pacer = TokenBucketPacer(2.0, burst=1, sleep=fake.sleep, monotonic=fake.monotonic)
    start = threading.Barrier(4)

    def _waiter() -> None:
        start.wait()
        pacer.wait()

    threads = [threading.Thread(target=_waiter) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)

    assert fake.sleeps == [pytest.approx(0.5)] * 4
    assert fake.now == pytest.approx(2.0)

@pytest.mark.parametrize("kwargs", [{"rate_per_sec": 0}, {"rate_per_sec": 1, "burst": 0.5}])
def test_token_bucket_rejects_bad_parameters(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        TokenBucketPacer(**kwargs)


def test_fixed_interval_rejects_negative_interval() -> None:
    with pytest.raises(ValueError):
        FixedIntervalPacer(-1)
