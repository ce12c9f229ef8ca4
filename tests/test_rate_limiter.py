from __future__ import annotations

import asyncio

import pytest

from deepdive.search.rate_limiter import RateGate


class FakeClock:
    """Manual clock; sleeping advances it instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_gate(capacity=2, window=1.0):
    clock = FakeClock()
    return RateGate(capacity=capacity, window_seconds=window, clock=clock, sleep=clock.sleep), clock


@pytest.mark.asyncio
async def test_third_acquire_waits_for_oldest_to_expire():
    gate, clock = make_gate(capacity=2, window=1.0)

    await gate.acquire()
    await gate.acquire()
    assert clock.sleeps == []

    await gate.acquire()

    assert clock.sleeps == [pytest.approx(1.0)]
    assert clock.now == pytest.approx(1.0)
    assert gate.in_window == 1


@pytest.mark.asyncio
async def test_wait_is_measured_from_oldest_admission():
    gate, clock = make_gate(capacity=2, window=1.0)

    await gate.acquire()
    clock.now = 0.4
    await gate.acquire()
    clock.now = 0.5
    await gate.acquire()

    assert clock.sleeps == [pytest.approx(0.5)]
    # The 0.4 admission is still inside the window at t=1.0
    assert gate.in_window == 2


@pytest.mark.asyncio
async def test_concurrent_acquires_never_over_admit():
    gate, clock = make_gate(capacity=2, window=1.0)

    await asyncio.gather(*(gate.acquire() for _ in range(5)))

    stats = gate.get_statistics()
    assert stats["admitted"] == 5
    assert stats["waits"] >= 2
    assert clock.now >= 2.0


@pytest.mark.asyncio
async def test_admissions_expire_after_window():
    gate, clock = make_gate(capacity=1, window=10.0)

    await gate.acquire()
    clock.now = 10.0
    await gate.acquire()

    assert clock.sleeps == []


@pytest.mark.parametrize("capacity,window", [(0, 1.0), (1, 0), (1, -5)])
def test_invalid_configuration(capacity, window):
    with pytest.raises(ValueError):
        RateGate(capacity=capacity, window_seconds=window)
