from __future__ import annotations

import asyncio

import pytest

from snapsolve.pipeline.cancellation import CancellationController, CancellationToken
from snapsolve.utils.error_taxonomy import OperationCanceledError


def test_guard_returns_result_when_not_cancelled() -> None:
    async def scenario() -> str:
        token = CancellationToken("initial")

        async def request() -> str:
            await asyncio.sleep(0)
            return "done"

        return await token.guard(request())

    assert asyncio.run(scenario()) == "done"


def test_guard_cancels_in_flight_request() -> None:
    async def scenario() -> bool:
        token = CancellationToken("debug")
        started = asyncio.Event()
        interrupted = asyncio.Event()

        async def slow_request() -> str:
            started.set()
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                interrupted.set()
                raise
            return "late"

        task = asyncio.create_task(token.guard(slow_request()))
        await started.wait()
        assert token.cancel() is True

        with pytest.raises(OperationCanceledError):
            await task
        return interrupted.is_set()

    assert asyncio.run(scenario()) is True


def test_guard_on_already_cancelled_token_never_runs_request() -> None:
    calls: list[str] = []

    async def scenario() -> None:
        token = CancellationToken("initial")
        token.cancel()

        async def request() -> str:
            calls.append("called")
            return "x"

        with pytest.raises(OperationCanceledError):
            await token.guard(request())

    asyncio.run(scenario())
    assert calls == []


def test_token_cancel_is_single_use() -> None:
    token = CancellationToken("initial")

    assert token.cancel() is True
    assert token.cancel() is False
    assert token.cancelled is True
    with pytest.raises(OperationCanceledError):
        token.raise_if_cancelled()


def test_begin_supersedes_previous_token_for_same_mode() -> None:
    controller = CancellationController()

    first = controller.begin("initial")
    debug = controller.begin("debug")
    second = controller.begin("initial")

    assert first.cancelled is True
    assert second.cancelled is False
    assert debug.cancelled is False
    assert controller.active("initial") is second


def test_cancel_all_reports_whether_anything_was_running() -> None:
    controller = CancellationController()
    assert controller.cancel_all() is False

    initial = controller.begin("initial")
    debug = controller.begin("debug")

    assert controller.cancel_all() is True
    assert initial.cancelled is True
    assert debug.cancelled is True
    assert controller.active("initial") is None
    assert controller.cancel_all() is False


def test_release_only_clears_current_token() -> None:
    controller = CancellationController()
    stale = controller.begin("debug")
    current = controller.begin("debug")

    controller.release("debug", stale)
    assert controller.active("debug") is current

    controller.release("debug", current)
    assert controller.active("debug") is None
    assert controller.cancel("debug") is False
