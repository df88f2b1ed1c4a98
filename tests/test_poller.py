"""TestStatusPoller: tick loop, failure budget and completion.

The poller's sleep is injected so every test runs with no real delay.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from workflow_copilot.assistant.poller import TestStatusPoller
from workflow_copilot.assistant.state import AssistantState
from workflow_copilot.errors import AssistantError, ErrorCode
from workflow_copilot.notify import RecordingNotifier


async def _no_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


def _network_error() -> AssistantError:
    return AssistantError(ErrorCode.NETWORK_ERROR, "fetch failed", retryable=True)


def _poller(client, state=None, on_complete=None, notifier=None, max_failures=3):
    return TestStatusPoller(
        client,
        state or AssistantState(),
        on_complete or AsyncMock(),
        notifier=notifier or RecordingNotifier(),
        interval=0,
        max_failures=max_failures,
        sleep=_no_sleep,
    )


class TestFailureBudget:
    """Consecutive failures stop the loop with exactly one error."""

    @pytest.mark.asyncio
    async def test_three_failures_one_error(self):
        client = AsyncMock()
        client.get_test_status.side_effect = _network_error()
        state = AssistantState()
        notifier = RecordingNotifier()
        on_complete = AsyncMock()
        poller = _poller(client, state, on_complete, notifier)

        await poller.start("ex1")

        assert client.get_test_status.await_count == 3
        assert notifier.of_level("error") == [
            "Test status polling stopped: Network error. Please check your connection.",
        ]
        assert state.is_test_running is False
        assert [m.message_type for m in state.messages] == ["error"]
        on_complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fatal_status_stops_immediately(self):
        client = AsyncMock()
        client.get_test_status.side_effect = AssistantError(ErrorCode.NOT_FOUND, "gone", status_code=404)
        state = AssistantState()
        notifier = RecordingNotifier()

        await _poller(client, state, notifier=notifier).start("ex1")

        assert client.get_test_status.await_count == 1
        assert len(notifier.of_level("error")) == 1
        assert state.is_test_running is False

    @pytest.mark.asyncio
    async def test_success_resets_counter(self):
        client = AsyncMock()
        client.get_test_status.side_effect = [
            _network_error(),
            _network_error(),
            {"completed": False, "nodeResults": [{"nodeId": "a", "status": "running"}]},
            _network_error(),
            _network_error(),
            {"completed": True, "success": True},
        ]
        state = AssistantState()
        notifier = RecordingNotifier()
        on_complete = AsyncMock()

        await _poller(client, state, on_complete, notifier).start("ex1")

        assert notifier.of_level("error") == []
        on_complete.assert_awaited_once_with({"executionId": "ex1", "completed": True, "success": True})

    @pytest.mark.asyncio
    async def test_non_object_record_counts_as_failure(self):
        client = AsyncMock()
        client.get_test_status.return_value = ["unexpected"]
        state = AssistantState()
        notifier = RecordingNotifier()
        on_complete = AsyncMock()

        await _poller(client, state, on_complete, notifier).start("ex1")

        assert client.get_test_status.await_count == 3
        assert len(notifier.of_level("error")) == 1
        assert state.is_test_running is False
        on_complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_exception_surfaced_once(self):
        client = AsyncMock()
        client.get_test_status.side_effect = RuntimeError("decoder blew up")
        state = AssistantState()
        notifier = RecordingNotifier()

        await _poller(client, state, notifier=notifier).start("ex1")

        assert client.get_test_status.await_count == 1
        assert len(notifier.of_level("error")) == 1
        assert state.is_test_running is False
        assert [m.message_type for m in state.messages] == ["error"]

    @pytest.mark.asyncio
    async def test_completion_callback_error_surfaced(self):
        client = AsyncMock()
        client.get_test_status.return_value = {"completed": True, "success": True}
        state = AssistantState()
        notifier = RecordingNotifier()
        on_complete = AsyncMock(side_effect=KeyError("testResult"))
        poller = _poller(client, state, on_complete, notifier)

        task = poller.start("ex1")
        await task

        assert task.exception() is None
        assert notifier.of_level("error")[0].startswith("Handling the test result failed: ")
        assert len(notifier.of_level("error")) == 1
        assert state.is_test_running is False

    @pytest.mark.asyncio
    async def test_max_failures_configurable(self):
        client = AsyncMock()
        client.get_test_status.side_effect = _network_error()
        await _poller(client, max_failures=1).start("ex1")
        assert client.get_test_status.await_count == 1


class TestProgress:
    """Successful ticks update state until completion."""

    @pytest.mark.asyncio
    async def test_node_results_mirrored_then_complete(self):
        client = AsyncMock()
        seen_nodes = []
        state = AssistantState()

        async def status(execution_id):
            seen_nodes.append(list(state.testing_nodes))
            if len(seen_nodes) == 1:
                return {"completed": False, "nodeResults": [{"nodeId": "a", "status": "running"}, "junk"]}
            return {"completed": True, "success": False, "error": "boom"}

        client.get_test_status.side_effect = status
        on_complete = AsyncMock()
        poller = _poller(client, state, on_complete)

        task = poller.start("ex1")
        assert state.is_test_running is True
        assert state.current_execution_id == "ex1"
        await task

        assert seen_nodes[1] == [{"nodeId": "a", "status": "running"}]
        assert state.is_test_running is False
        on_complete.assert_awaited_once()
        assert on_complete.await_args.args[0]["executionId"] == "ex1"
        assert not poller.running

    @pytest.mark.asyncio
    async def test_superseded_execution_stops(self):
        client = AsyncMock()
        state = AssistantState()
        poller = _poller(client, state)

        task = poller.start("ex1")
        state.current_execution_id = "ex2"
        await task

        client.get_test_status.assert_not_awaited()


class TestStartStop:
    @pytest.mark.asyncio
    async def test_restart_cancels_previous(self):
        gate = asyncio.Event()
        client = AsyncMock()

        async def status(execution_id):
            await gate.wait()
            return {"completed": True}

        client.get_test_status.side_effect = status
        on_complete = AsyncMock()
        poller = _poller(client, on_complete=on_complete)

        first = poller.start("ex1")
        await asyncio.sleep(0)
        second = poller.start("ex2")
        gate.set()
        await second

        assert first.cancelled()
        on_complete.assert_awaited_once_with({"executionId": "ex2", "completed": True})

    @pytest.mark.asyncio
    async def test_stop(self):
        client = AsyncMock()

        async def status(execution_id):
            await asyncio.Event().wait()

        client.get_test_status.side_effect = status
        state = AssistantState()
        poller = _poller(client, state)

        task = poller.start("ex1")
        await asyncio.sleep(0)
        await poller.stop()

        assert task.cancelled()
        assert state.is_test_running is False
        assert not poller.running

    @pytest.mark.asyncio
    async def test_stop_without_task(self):
        state = AssistantState()
        await _poller(AsyncMock(), state).stop()
        assert state.is_test_running is False
