"""Background poll loop for a running test execution.

TestStatusPoller owns one asyncio.Task per execution. Each tick fetches the
execution record. Failures are counted, and a run of ``max_failures``
consecutive failures (or a first failure that can never recover: 401, 403,
404, 410) stops the loop and surfaces exactly one error. A successful tick
resets the counter. A ``completed: true`` record stops the loop and is handed
to the completion callback. Any other failure, including one raised by the
callback, also ends the loop with a single surfaced error.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from workflow_copilot.assistant.state import AssistantState
from workflow_copilot.errors import AssistantError, ErrorCode
from workflow_copilot.notify import LoggingNotifier, Notifier

logger = logging.getLogger("workflow_copilot.assistant.poller")

DEFAULT_POLL_INTERVAL: float = 2.0
DEFAULT_MAX_FAILURES: int = 3
# Statuses that stop polling on the first failure
FATAL_STATUS_CODES = frozenset({401, 403, 404, 410})

CompletionCallback = Callable[[dict[str, Any]], Awaitable[None]]


class TestStatusPoller:
    __test__ = False  # not a pytest class

    def __init__(
        self,
        client: Any,
        state: AssistantState,
        on_complete: CompletionCallback,
        notifier: Notifier | None = None,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_failures: int = DEFAULT_MAX_FAILURES,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._state = state
        self._on_complete = on_complete
        self._notifier = notifier or LoggingNotifier()
        self._interval = interval
        self._max_failures = max(1, max_failures)
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self.consecutive_failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def start(self, execution_id: str) -> asyncio.Task:
        """Start polling ``execution_id``; a previous loop is cancelled first."""
        self._cancel_previous()
        self.consecutive_failures = 0
        self._state.current_execution_id = execution_id
        self._state.is_test_running = True
        logger.info("Polling test execution %s every %.1fs", execution_id, self._interval)
        self._task = asyncio.create_task(self._run(execution_id), name=f"test-poll-{execution_id}")
        return self._task

    async def stop(self) -> None:
        """Cancel the loop (if any) and mark the test as no longer running."""
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                if asyncio.current_task().cancelling():
                    raise
            logger.info("Test polling stopped")
        self._state.is_test_running = False

    def _cancel_previous(self) -> None:
        # The completion callback may start a new run from inside the old task
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run(self, execution_id: str) -> None:
        while True:
            await self._sleep(self._interval)
            if self._state.current_execution_id != execution_id:
                logger.info("Execution %s superseded; polling stopped", execution_id)
                return

            try:
                record = await self._client.get_test_status(execution_id)
                if not isinstance(record, dict):
                    raise AssistantError(
                        ErrorCode.INVALID_JSON_RESPONSE,
                        f"test status returned {type(record).__name__}, expected an object",
                        retryable=True,
                    )
            except AssistantError as e:
                self.consecutive_failures += 1
                logger.warning(
                    "Test status poll failed (%d/%d) for %s: %s",
                    self.consecutive_failures, self._max_failures, execution_id, e,
                )
                fatal = self.consecutive_failures == 1 and e.status_code in FATAL_STATUS_CODES
                if fatal or self.consecutive_failures >= self._max_failures:
                    self._fail(e)
                    return
                continue
            except Exception as e:
                logger.exception("Test status poll for %s raised", execution_id)
                self._fail(AssistantError(ErrorCode.UNKNOWN_ERROR, str(e) or type(e).__name__))
                return

            self.consecutive_failures = 0
            node_results = record.get("nodeResults")
            if isinstance(node_results, list):
                self._state.testing_nodes = [n for n in node_results if isinstance(n, dict)]

            if record.get("completed") is True:
                logger.info("Test execution %s completed (success=%s)", execution_id, record.get("success"))
                self._state.is_test_running = False
                try:
                    await self._on_complete({"executionId": execution_id, **record})
                except Exception as e:
                    logger.exception("Handling the result of %s failed", execution_id)
                    self._fail(
                        AssistantError(ErrorCode.UNKNOWN_ERROR, str(e) or type(e).__name__),
                        prefix="Handling the test result failed",
                    )
                return

    def _fail(self, error: AssistantError, prefix: str = "Test status polling stopped") -> None:
        self._state.is_test_running = False
        text = f"{prefix}: {error.user_message}"
        logger.error("%s (%s)", text, error)
        self._notifier.error(text)
        self._state.add_message("assistant", text, message_type="error")
