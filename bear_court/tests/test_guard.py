"""
Tests for the Adjudication Guard
================================

Debounce, cooldown after provider throttling, and cancellation of a
superseded in-flight request. Time is driven by a fake clock.
"""

import asyncio

import pytest

from bear_court.errors import AdjudicationRateLimited, AdjudicationTransportError, PreconditionFailed


async def answer(value):
    return value


class TestCooldown:
    """A provider 429 blocks the case locally for the cooldown period"""

    @pytest.mark.asyncio
    async def test_throttle_starts_cooldown(self, guard):
        async def throttled():
            raise AdjudicationRateLimited()

        with pytest.raises(AdjudicationRateLimited) as exc_info:
            await guard.run("C1", throttled)

        assert exc_info.value.retry_after == 60
        assert guard.cooldown_remaining("C1") == 60

    @pytest.mark.asyncio
    async def test_trigger_during_cooldown_never_reaches_provider(self, guard, clock):
        calls = []

        async def throttled():
            raise AdjudicationRateLimited()

        async def provider():
            calls.append(1)
            return "verdict"

        with pytest.raises(AdjudicationRateLimited):
            await guard.run("C1", throttled)

        clock.advance(30)
        with pytest.raises(AdjudicationRateLimited) as exc_info:
            await guard.run("C1", provider)
        assert exc_info.value.retry_after == 30
        assert calls == []

        clock.advance(31)
        assert guard.cooldown_remaining("C1") == 0
        assert await guard.run("C1", provider) == "verdict"
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_cooldown_is_per_case(self, guard):
        async def throttled():
            raise AdjudicationRateLimited()

        with pytest.raises(AdjudicationRateLimited):
            await guard.run("C1", throttled)

        assert await guard.run("C2", lambda: answer("ok")) == "ok"

    @pytest.mark.asyncio
    async def test_other_failures_do_not_start_cooldown(self, guard):
        async def broken():
            raise AdjudicationTransportError()

        with pytest.raises(AdjudicationTransportError):
            await guard.run("C1", broken)

        assert guard.cooldown_remaining("C1") == 0
        assert await guard.run("C1", lambda: answer("ok")) == "ok"


class TestDebounce:
    """Triggers within the debounce window of an in-flight request are rejected"""

    @pytest.mark.asyncio
    async def test_trigger_while_in_flight_is_debounced(self, guard):
        gate = asyncio.Event()

        async def slow():
            await gate.wait()
            return "first"

        first = asyncio.create_task(guard.run("C1", slow))
        await asyncio.sleep(0)
        assert guard.is_in_flight("C1")

        with pytest.raises(PreconditionFailed):
            await guard.run("C1", lambda: answer("second"))

        gate.set()
        assert await first == "first"
        assert not guard.is_in_flight("C1")

    @pytest.mark.asyncio
    async def test_completion_ends_debounce_window(self, guard):
        assert await guard.run("C1", lambda: answer("first")) == "first"
        assert await guard.run("C1", lambda: answer("second")) == "second"

    @pytest.mark.asyncio
    async def test_check_reports_without_running(self, guard):
        guard.check("C1")

        gate = asyncio.Event()

        async def slow():
            await gate.wait()

        task = asyncio.create_task(guard.run("C1", slow))
        await asyncio.sleep(0)
        with pytest.raises(PreconditionFailed):
            guard.check("C1")

        gate.set()
        await task


class TestCancellation:
    """A newer accepted request cancels the older in-flight one"""

    @pytest.mark.asyncio
    async def test_newer_request_supersedes_older(self, guard, clock):
        gate = asyncio.Event()

        async def slow():
            await gate.wait()
            return "old"

        first = asyncio.create_task(guard.run("C1", slow))
        await asyncio.sleep(0)

        clock.advance(6)
        assert await guard.run("C1", lambda: answer("new")) == "new"

        with pytest.raises(PreconditionFailed):
            await first

    @pytest.mark.asyncio
    async def test_cancel_all(self, guard):
        gate = asyncio.Event()

        async def slow():
            await gate.wait()

        tasks = [asyncio.create_task(guard.run(case_id, slow)) for case_id in ("C1", "C2")]
        await asyncio.sleep(0)
        assert guard.is_in_flight("C1") and guard.is_in_flight("C2")

        guard.cancel_all()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, PreconditionFailed) for r in results)
        assert not guard.is_in_flight("C1")
        assert not guard.is_in_flight("C2")

    @pytest.mark.asyncio
    async def test_cancel_without_in_flight_is_noop(self, guard):
        assert guard.cancel("C1") is False
