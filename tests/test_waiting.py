"""Tests for the polling and pause primitives."""

from __future__ import annotations

import asyncio
import time

import pytest

from marketplace_chat_agent.waiting import cancellable_pause, countdown_seconds, wait_until

SLACK = 0.15


class TestWaitUntil:
    @pytest.mark.asyncio
    async def test_resolves_true_once_predicate_holds(self) -> None:
        start = time.monotonic()
        ready_at = start + 0.1

        ok = await wait_until(lambda: time.monotonic() >= ready_at, poll_interval=0.02, timeout=1.0)

        elapsed = time.monotonic() - start
        assert ok is True
        assert elapsed >= 0.1
        assert elapsed < 0.1 + 0.02 + SLACK

    @pytest.mark.asyncio
    async def test_times_out_with_false(self) -> None:
        start = time.monotonic()
        ok = await wait_until(lambda: False, poll_interval=0.05, timeout=0.1)
        elapsed = time.monotonic() - start
        assert ok is False
        assert elapsed <= 0.1 + 0.05 + SLACK

    @pytest.mark.asyncio
    async def test_throwing_predicate_counts_as_false(self) -> None:
        calls = []

        def flaky() -> bool:
            calls.append(1)
            if len(calls) < 3:
                raise RuntimeError("element detached")
            return True

        assert await wait_until(flaky, poll_interval=0.01, timeout=1.0) is True
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_accepts_async_predicate(self) -> None:
        async def probe() -> bool:
            return True

        assert await wait_until(probe, poll_interval=0.01, timeout=0.1) is True


class TestCancellablePause:
    @pytest.mark.asyncio
    async def test_full_duration_without_cancel(self) -> None:
        ticks: list[float] = []
        start = time.monotonic()
        done = await cancellable_pause(0.2, lambda: False, ticks.append, tick_interval=0.05)
        assert done is True
        assert time.monotonic() - start >= 0.2
        assert ticks[0] > ticks[-1]
        assert ticks[-1] == 0.0

    @pytest.mark.asyncio
    async def test_returns_within_one_tick_of_cancel(self) -> None:
        flag = {"stop": False}
        start = time.monotonic()

        async def stop_later() -> None:
            await asyncio.sleep(0.3)
            flag["stop"] = True

        stopper = asyncio.create_task(stop_later())
        done = await cancellable_pause(5.0, lambda: flag["stop"], tick_interval=0.1)
        await stopper

        elapsed = time.monotonic() - start
        assert done is False
        assert elapsed < 0.3 + 0.1 + SLACK

    @pytest.mark.asyncio
    async def test_already_cancelled_returns_immediately(self) -> None:
        ticks: list[float] = []
        assert await cancellable_pause(5.0, lambda: True, ticks.append) is False
        assert ticks == []


def test_countdown_rounds_up() -> None:
    assert countdown_seconds(4.2) == 5
    assert countdown_seconds(0) == 0
    assert countdown_seconds(-1) == 0
