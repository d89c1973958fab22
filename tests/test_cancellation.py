"""Tests for CancellationToken."""

import asyncio

import pytest

from copilot_sdk.cancellation import CancellationToken, run_cancellable
from copilot_sdk.errors import OperationCancelled


class TestCancellationToken:
    def test_initial_state(self):
        token = CancellationToken()
        assert not token.cancelled
        token.raise_if_cancelled()

    def test_first_reason_wins(self):
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        assert token.cancelled
        assert token.reason == "first"
        with pytest.raises(OperationCancelled, match="first"):
            token.raise_if_cancelled()

    @pytest.mark.asyncio
    async def test_run_returns_result(self):
        token = CancellationToken()

        async def work():
            await asyncio.sleep(0)
            return 42

        assert await token.run(work()) == 42

    @pytest.mark.asyncio
    async def test_run_abandons_pending_work(self):
        token = CancellationToken()
        finished = False

        async def forever():
            nonlocal finished
            await asyncio.sleep(3600)
            finished = True

        asyncio.get_running_loop().call_later(0.01, token.cancel)
        with pytest.raises(OperationCancelled):
            await token.run(forever())
        assert not finished

    @pytest.mark.asyncio
    async def test_run_when_already_cancelled(self):
        token = CancellationToken()
        token.cancel()
        coro = asyncio.sleep(0)
        with pytest.raises(OperationCancelled):
            await token.run(coro)
        coro.close()

    @pytest.mark.asyncio
    async def test_errors_propagate(self):
        token = CancellationToken()

        async def boom():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await token.run(boom())

    @pytest.mark.asyncio
    async def test_wait(self):
        token = CancellationToken()
        asyncio.get_running_loop().call_soon(token.cancel)
        await asyncio.wait_for(token.wait(), timeout=1)
        assert token.cancelled


class TestRunCancellable:
    @pytest.mark.asyncio
    async def test_without_token(self):
        async def work():
            return "ok"

        assert await run_cancellable(work(), None) == "ok"
