"""Tests for between-page pacers."""

import pytest

from bucketops.transfer.pacing import FixedDelayPacer, TokenBucketPacer, create_pacer


class FakeTime:
    """A clock whose sleep advances the clock instead of blocking."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class TestFixedDelayPacer:
    """Tests for FixedDelayPacer."""

    async def test_sleeps_fixed_delay(self):
        fake = FakeTime()
        pacer = FixedDelayPacer(0.3, sleep=fake.sleep)
        await pacer.wait()
        await pacer.wait()
        assert fake.sleeps == [0.3, 0.3]

    async def test_zero_delay_never_sleeps(self):
        fake = FakeTime()
        await FixedDelayPacer(0.0, sleep=fake.sleep).wait()
        assert fake.sleeps == []

    async def test_retry_after_extends_next_wait_only(self):
        fake = FakeTime()
        pacer = FixedDelayPacer(0.3, sleep=fake.sleep)
        pacer.throttled(retry_after=5.0)
        await pacer.wait()
        await pacer.wait()
        assert fake.sleeps == [5.0, 0.3]

    async def test_backoff_doubles_without_hint(self):
        fake = FakeTime()
        pacer = FixedDelayPacer(0.0, sleep=fake.sleep)
        pacer.throttled()
        await pacer.wait()
        pacer.throttled()
        await pacer.wait()
        assert fake.sleeps == [1.0, 2.0]


class TestTokenBucketPacer:
    """Tests for TokenBucketPacer."""

    async def test_burst_then_rate(self):
        fake = FakeTime()
        pacer = TokenBucketPacer(rate=2.0, capacity=2.0, clock=fake.clock, sleep=fake.sleep)
        await pacer.wait()
        await pacer.wait()
        assert fake.sleeps == []
        await pacer.wait()
        assert fake.sleeps == [pytest.approx(0.5)]

    async def test_refills_over_time(self):
        fake = FakeTime()
        pacer = TokenBucketPacer(rate=1.0, capacity=1.0, clock=fake.clock, sleep=fake.sleep)
        await pacer.wait()
        fake.now += 1.0
        await pacer.wait()
        assert fake.sleeps == []

    async def test_throttle_drains_bucket(self):
        fake = FakeTime()
        pacer = TokenBucketPacer(rate=4.0, capacity=4.0, clock=fake.clock, sleep=fake.sleep)
        pacer.throttled(retry_after=2.0)
        await pacer.wait()
        # the backoff sleep also refills the bucket
        assert fake.sleeps == [2.0]

    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            TokenBucketPacer(rate=0, capacity=1)

    def test_rejects_capacity_below_one_token(self):
        with pytest.raises(ValueError):
            TokenBucketPacer(rate=5.0, capacity=0.5)


class TestCreatePacer:
    """Tests for create_pacer()."""

    def test_strategies(self):
        assert isinstance(create_pacer("fixed"), FixedDelayPacer)
        assert isinstance(create_pacer("token_bucket"), TokenBucketPacer)

    def test_unknown(self):
        with pytest.raises(ValueError):
            create_pacer("yolo")
