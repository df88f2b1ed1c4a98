"""Conversation and test orchestration for the workflow assistant.

ConversationOrchestrator is the state machine between the user, the chat
endpoint and the workflow store:

  send_message ─► chat endpoint ─► parse_chat_reply ─► _dispatch
                                                         │
        ┌────────────────────────────────────────────────┤
        ▼                                                ▼
  apply_actions (store mutation,               TestStatusPoller
  forces workflow phase to testing)            (completed ─► result message
                                                ─► one test_analysis request)

The server's ``phase`` tag drives transitions, with one local override: any
graph change made through apply_actions sets the workflow phase to
``testing`` whatever the server said, so an unverified edit is never hidden.

A chat request cancelled through cancel() ends silently. Every other failure
becomes one error notification plus one assistant message.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, assert_never

from workflow_copilot.assistant.actions import NodeAction, actions_from_payload
from workflow_copilot.assistant.applier import ApplyReport, apply_node_actions
from workflow_copilot.assistant.phases import (
    ChatReply,
    ContentReply,
    FixSuggestionReply,
    NodeDiagnosisReply,
    NodeSelectionReply,
    PlanningReply,
    QuestionReply,
    RequestNodeConfigReply,
    RequirementConfirmationReply,
    TaskPhase,
    TestingPendingReply,
    WorkflowPhase,
    as_task_phase,
    as_workflow_phase,
    parse_chat_reply,
)
from workflow_copilot.assistant.poller import TestStatusPoller
from workflow_copilot.assistant.state import FIX_APPLIED, FIX_PENDING, FIX_REJECTED, AssistantState
from workflow_copilot.client.config import AssistantSettings
from workflow_copilot.client.workflow_service import WorkflowServiceClient, flush_graph
from workflow_copilot.context import build_workflow_context
from workflow_copilot.errors import AssistantError, ErrorCode, is_retryable_network_error
from workflow_copilot.graph.store import WorkflowStore
from workflow_copilot.notify import LoggingNotifier, Notifier

logger = logging.getLogger("workflow_copilot.assistant.orchestrator")


def format_test_result(result: dict[str, Any]) -> str:
    """Human-readable summary of a finished test execution."""
    ok = bool(result.get("success"))
    lines = [f"{'✅' if ok else '❌'} Test {'passed' if ok else 'failed'}", ""]
    duration = result.get("duration")
    if isinstance(duration, (int, float)) and duration:
        lines.append(f"Duration: {duration / 1000:.2f}s")
    if result.get("totalTokens"):
        lines.append(f"Tokens: {result['totalTokens']}")
    if result.get("error"):
        lines.append(f"\nError: {result['error']}")
    if result.get("analysis"):
        lines.append(f"\nAnalysis:\n{result['analysis']}")
    output = result.get("output")
    if isinstance(output, dict) and output:
        dumped = json.dumps(output, ensure_ascii=False, indent=2, default=str)
        lines.append(f"\nOutput:\n```json\n{dumped}\n```")
    return "\n".join(lines).strip()


def _is_final_test_record(result: dict[str, Any]) -> bool:
    # A synchronous trigger answers with the full result; an async one with a pending execution
    return result.get("completed") is True or ("success" in result and "pendingNodes" not in result)


class ConversationOrchestrator:
    """Drives one assistant conversation against one workflow."""

    def __init__(
        self,
        client: Any,
        store: WorkflowStore,
        state: AssistantState | None = None,
        workflow_id: str = "",
        notifier: Notifier | None = None,
        settings: AssistantSettings | None = None,
        workflow_service: WorkflowServiceClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.store = store
        self.state = state or AssistantState()
        self.workflow_id = workflow_id
        self.notifier = notifier or LoggingNotifier()
        self.settings = settings or AssistantSettings()
        self.workflow_service = workflow_service
        self._sleep = sleep
        self._chat_tasks: set[asyncio.Task] = set()
        # Requests started by send_message; internal follow-ups are not counted
        self._user_tasks: set[asyncio.Task] = set()
        self._analyzed_executions: set[str] = set()
        self.poller = TestStatusPoller(
            client,
            self.state,
            self._on_test_complete,
            notifier=self.notifier,
            interval=self.settings.poll_interval,
            max_failures=self.settings.poll_max_failures,
            sleep=sleep,
        )

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def _build_request(
        self,
        message: str,
        mode: str | None,
        history: list[dict[str, str]],
        extra: dict[str, Any],
    ) -> dict[str, Any]:
        request: dict[str, Any] = {
            "message": message,
            "model": self.state.selected_model or self.settings.model,
            "workflowContext": build_workflow_context(self.store.graph),
            "workflowId": self.workflow_id,
            "history": history,
        }
        if mode:
            request["mode"] = mode
        request.update(extra)
        return request

    async def send_message(self, text: str, mode: str | None = None, **extra: Any) -> ChatReply | None:
        """Send user text to the chat endpoint and dispatch the reply.

        Empty text or another user request already in flight is a no-op
        (returns None). Internal follow-ups such as test analysis do not block.
        ``extra`` is merged into the request body (camelCase keys).
        """
        text = (text or "").strip()
        if not text or self._user_tasks:
            return None
        # History is what the user saw before this message
        history = self.state.recent_history()
        self.state.add_message("user", text)
        return await self._chat(self._build_request(text, mode, history, extra), user_initiated=True)

    async def _internal_request(self, mode: str, **extra: Any) -> ChatReply | None:
        """Follow-up request without a user message (test_analysis, node_diagnosis)."""
        return await self._chat(self._build_request("", mode, self.state.recent_history(), extra))

    async def _chat(self, request: dict[str, Any], user_initiated: bool = False) -> ChatReply | None:
        task = asyncio.create_task(self.client.chat(request))
        self._chat_tasks.add(task)
        if user_initiated:
            self._user_tasks.add(task)
        self.state.is_loading = True
        try:
            payload = await task
        except asyncio.CancelledError:
            if asyncio.current_task().cancelling():
                raise
            logger.info("Chat request cancelled by the user")
            return None
        except AssistantError as e:
            self._report_error(e)
            return None
        finally:
            self._chat_tasks.discard(task)
            self._user_tasks.discard(task)
            self.state.is_loading = bool(self._chat_tasks)

        reply = parse_chat_reply(payload)
        await self._dispatch(reply)
        return reply

    def cancel(self) -> bool:
        """Abort in-flight chat requests. Returns True if anything was cancelled."""
        pending = [t for t in self._chat_tasks if not t.done()]
        for task in pending:
            task.cancel()
        return bool(pending)

    def _report_error(self, error: AssistantError) -> None:
        logger.error("Assistant request failed [%s]: %s", error.code.value, error)
        self.notifier.error(error.user_message)
        self.state.add_message(
            "assistant",
            f"Sorry, the request failed: {error.user_message}",
            message_type="error",
        )

    # ------------------------------------------------------------------
    # Reply dispatch
    # ------------------------------------------------------------------

    def _track_phase(self, phase: Any) -> None:
        workflow_phase = as_workflow_phase(phase)
        if workflow_phase is not None:
            self.state.workflow_phase = workflow_phase
        task_phase = as_task_phase(phase)
        if task_phase is not None:
            self.state.current_phase = task_phase

    async def _dispatch(self, reply: ChatReply) -> None:
        if isinstance(reply, ContentReply):
            self._track_phase(reply.phase)
            self.state.add_message(
                "assistant",
                reply.content,
                node_actions=reply.node_actions or None,
                phase=reply.phase,
            )
            test_input = (reply.test_request or {}).get("testInput")
            if reply.test_request is not None:
                await self.start_test(test_input if isinstance(test_input, dict) else {})

        elif isinstance(reply, TestingPendingReply):
            self.state.current_phase = TaskPhase.TESTING_PENDING
            self.state.workflow_phase = WorkflowPhase.TESTING
            self.state.add_message("assistant", reply.content, phase=TaskPhase.TESTING_PENDING.value)
            self.state.testing_nodes = list(reply.pending_nodes)
            self.poller.start(reply.execution_id)

        elif isinstance(reply, FixSuggestionReply):
            self.state.current_phase = TaskPhase.FIX_SUGGESTION
            message = self.state.add_message(
                "assistant",
                reply.content,
                node_actions=reply.node_actions,
                pending_fix=True,
                fix_status=FIX_PENDING,
                phase=TaskPhase.FIX_SUGGESTION.value,
                diagnosis=reply.diagnosis or reply.analysis,
            )
            if not reply.require_confirmation:
                self.confirm_fix(message.id)

        elif isinstance(reply, RequirementConfirmationReply):
            self.state.current_phase = TaskPhase.REQUIREMENT_CONFIRMATION
            self.state.workflow_phase = WorkflowPhase.REQUIREMENT_CLARIFICATION
            self.state.pending_confirmation = reply.requirement_confirmation
            self.state.add_message(
                "assistant",
                reply.content,
                phase=TaskPhase.REQUIREMENT_CONFIRMATION.value,
                requirement_confirmation=reply.requirement_confirmation,
            )

        elif isinstance(reply, PlanningReply):
            self.state.current_phase = TaskPhase.PLANNING
            self.state.workflow_phase = WorkflowPhase.WORKFLOW_DESIGN
            self.state.add_message(
                "assistant",
                reply.content,
                phase=TaskPhase.PLANNING.value,
                interactive_questions=reply.interactive_questions or None,
                layout_preview=reply.layout_preview or None,
            )

        elif isinstance(reply, QuestionReply):
            self._track_phase(reply.phase.value)
            self.state.add_message(
                "assistant",
                reply.content,
                phase=reply.phase.value,
                interactive_questions=reply.interactive_questions or None,
                question_options=reply.question_options or None,
                selected_node=reply.selected_node,
            )

        elif isinstance(reply, NodeSelectionReply):
            self.state.current_phase = TaskPhase.NODE_SELECTION
            self.state.add_message(
                "assistant",
                reply.content,
                phase=TaskPhase.NODE_SELECTION.value,
                node_selection=reply.node_selection,
            )

        elif isinstance(reply, NodeDiagnosisReply):
            self.state.current_phase = TaskPhase.NODE_DIAGNOSIS
            self.state.add_message(
                "assistant",
                reply.content,
                phase=TaskPhase.NODE_DIAGNOSIS.value,
                diagnosis=reply.diagnosis,
                suggestions=reply.suggestions or None,
                node_actions=reply.node_actions or None,
            )

        elif isinstance(reply, RequestNodeConfigReply):
            self.state.current_phase = TaskPhase.REQUEST_NODE_CONFIG
            self.state.pending_node_config = {
                "nodeId": reply.failed_node_id,
                "nodeName": reply.failed_node_name,
            }
            self.state.add_message(
                "assistant",
                reply.content,
                phase=TaskPhase.REQUEST_NODE_CONFIG.value,
                interactive_questions=reply.interactive_questions or None,
            )

        else:
            assert_never(reply)

    # ------------------------------------------------------------------
    # User confirmations
    # ------------------------------------------------------------------

    def confirm_fix(self, message_id: str) -> ApplyReport | None:
        """Apply a pending fix suggestion and mark it applied."""
        message = self.state.get_message(message_id)
        if message is None or not message.pending_fix:
            logger.warning("No pending fix on message %s", message_id)
            return None
        report = self.apply_actions(message.node_actions or [])
        self.state.update_message_fix_status(message_id, FIX_APPLIED)
        return report

    def reject_fix(self, message_id: str) -> bool:
        message = self.state.get_message(message_id)
        if message is None or not message.pending_fix:
            return False
        return self.state.update_message_fix_status(message_id, FIX_REJECTED)

    async def confirm_requirement(self, edits: dict[str, Any] | None = None) -> ChatReply | None:
        """Send the (optionally edited) requirement summary back for generation."""
        pending = self.state.pending_confirmation
        if pending is None:
            return None
        confirmation = {**pending, **(edits or {})}
        self.state.pending_confirmation = None
        self.state.current_phase = TaskPhase.CREATING
        self.state.workflow_phase = WorkflowPhase.WORKFLOW_GENERATION
        dumped = json.dumps(confirmation, ensure_ascii=False, indent=2)
        return await self.send_message(
            f"Confirmed. Generate the workflow for these requirements:\n```json\n{dumped}\n```",
            requirementConfirmation=confirmation,
        )

    async def confirm_node_diagnosis(self) -> ChatReply | None:
        """Send the failed node's current config for a deeper diagnosis."""
        pending = self.state.pending_node_config
        if pending is None:
            return None
        self.state.pending_node_config = None
        node = self.store.get_node(pending.get("nodeId") or "")
        if node is None:
            self.notifier.error(f"Node not found: {pending.get('nodeId')}")
            return None
        node_config = {
            "nodeId": node.id,
            "nodeName": node.name,
            "nodeType": node.type,
            "config": node.config,
        }
        return await self._internal_request(
            "node_diagnosis", nodeConfig=node_config, testResult=self.state.last_test_result,
        )

    def decline_node_diagnosis(self) -> None:
        self.state.pending_node_config = None
        self.state.current_phase = TaskPhase.IDLE

    # ------------------------------------------------------------------
    # Graph mutation
    # ------------------------------------------------------------------

    def apply_actions(self, actions: list[NodeAction]) -> ApplyReport:
        report = apply_node_actions(actions, self.store, self.notifier)
        if report.graph_changed:
            self.state.workflow_phase = WorkflowPhase.TESTING
        return report

    def apply_message_actions(self, message_id: str) -> ApplyReport | None:
        """Apply the node actions (or layout preview) attached to a message."""
        message = self.state.get_message(message_id)
        if message is None:
            self.notifier.error(f"Message not found: {message_id}")
            return None
        actions = message.node_actions or message.layout_preview or []
        if not actions:
            self.notifier.warning("This message has no node actions")
            return None
        return self.apply_actions(actions)

    async def save(self) -> Any:
        """Flush the graph through the workflow service (no-op without one)."""
        if self.workflow_service is None:
            return None
        result = await flush_graph(self.workflow_service, self.workflow_id, self.store)
        if isinstance(result, dict) and "error" in result:
            self.notifier.error(f"Saving the workflow failed: {result.get('detail') or result['error']}")
        return result

    async def _save_if_dirty(self) -> None:
        # The server tests the stored workflow, not the local graph
        if self.store.is_dirty:
            await self.save()

    # ------------------------------------------------------------------
    # Testing
    # ------------------------------------------------------------------

    async def start_test(self, test_input: dict[str, Any] | None = None) -> dict[str, Any] | None:
        """Trigger a test run, then poll it or handle the result directly."""
        await self.poller.stop()
        await self._save_if_dirty()
        self.state.current_phase = TaskPhase.TESTING
        self.state.workflow_phase = WorkflowPhase.TESTING
        dumped = json.dumps(test_input or {}, ensure_ascii=False, indent=2)
        self.state.add_message(
            "system", f"Running workflow test...\nTest input: {dumped}", message_type="test_result",
        )
        self.state.is_test_running = True
        try:
            result = await self.client.trigger_test(self.workflow_id, test_input or {})
        except AssistantError as e:
            self.state.clear_test_state()
            self._report_error(e)
            return None

        if not isinstance(result, dict):
            self.state.clear_test_state()
            self._report_error(AssistantError(
                ErrorCode.INVALID_JSON_RESPONSE,
                f"test trigger returned {type(result).__name__}, expected an object",
                retryable=True,
            ))
            return None

        execution_id = result.get("executionId")
        if _is_final_test_record(result):
            await self._on_test_complete(result)
        elif isinstance(execution_id, str) and execution_id:
            pending = result.get("pendingNodes")
            self.state.testing_nodes = pending if isinstance(pending, list) else []
            self.state.current_phase = TaskPhase.TESTING_PENDING
            self.poller.start(execution_id)
        else:
            self.state.clear_test_state()
            self.notifier.warning("The test run returned no execution id")
        return result

    async def _on_test_complete(self, record: dict[str, Any]) -> None:
        execution_id = record.get("executionId")
        self.state.last_test_result = record
        self.state.is_test_running = False

        already_shown = execution_id is not None and any(
            m.test_result is not None and m.test_result.get("executionId") == execution_id
            for m in self.state.messages
        )
        if not already_shown:
            self.state.add_message(
                "assistant", format_test_result(record),
                test_result=record, message_type="test_result",
            )
            if record.get("success"):
                self.notifier.success("Workflow test passed")
            else:
                self.notifier.error("Workflow test failed")

        if execution_id is not None:
            if execution_id in self._analyzed_executions:
                return
            self._analyzed_executions.add(execution_id)
        await self._internal_request("test_analysis", testResult=record)

    # ------------------------------------------------------------------
    # Optimization
    # ------------------------------------------------------------------

    async def optimize(
        self,
        direction: str = "auto",
        target_criteria: str = "",
        multiple_schemes: bool = False,
        previous_optimizations: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any] | None:
        """Run a test, ask for an optimization and record the suggestion."""
        if not self.store.nodes:
            self.notifier.error("The workflow is empty; add nodes first")
            return None
        await self._save_if_dirty()
        self.state.workflow_phase = WorkflowPhase.OPTIMIZATION
        try:
            test_result = await self.client.trigger_test(self.workflow_id, {})
            payload = await self.client.optimize(
                self.workflow_id,
                test_result,
                target_criteria=target_criteria,
                model=self.state.selected_model or self.settings.model,
                direction=direction,
                multiple_schemes=multiple_schemes,
                previous_optimizations=previous_optimizations,
            )
        except AssistantError as e:
            self._report_error(e)
            return None

        optimization = payload.get("optimization") if isinstance(payload, dict) else None
        if not isinstance(optimization, dict):
            logger.warning("Optimize response carried no optimization object")
            self.notifier.error("The optimization analysis returned no result")
            return None

        self.state.last_test_result = test_result
        self.state.add_message(
            "assistant",
            f"Optimization analysis complete: {optimization.get('summary', '')}",
            node_actions=actions_from_payload(optimization.get("nodeActions")) or None,
            optimization=optimization,
            message_type="optimization",
        )
        if optimization.get("isGoalMet"):
            self.notifier.success("Goal met!")
        else:
            self.notifier.success("Optimization analysis complete")
        return optimization

    def apply_scheme(self, scheme: dict[str, Any]) -> ApplyReport | None:
        """Apply an optimization result or one of its ``schemes``."""
        actions = actions_from_payload(scheme.get("nodeActions"))
        if not actions:
            self.notifier.warning("This scheme has no actions")
            return None
        report = self.apply_actions(actions)
        self.notifier.success("Optimization scheme applied")
        self.state.workflow_phase = WorkflowPhase.TESTING
        return report

    async def auto_optimize(
        self,
        max_iterations: int = 3,
        direction: str = "auto",
        target_criteria: str = "",
    ) -> dict[str, Any] | None:
        """Optimize, apply, re-test until the server reports ``isGoalMet``.

        Stops early when a round fails, the goal is met, or a scheme changes
        nothing. Returns the last optimization result.
        """
        history: list[dict[str, Any]] = []
        last: dict[str, Any] | None = None
        for iteration in range(1, max_iterations + 1):
            last = await self.optimize(direction, target_criteria, previous_optimizations=history)
            if last is None:
                break
            if last.get("isGoalMet"):
                logger.info("Optimization goal met after %d iteration(s)", iteration)
                self.state.workflow_phase = WorkflowPhase.COMPLETED
                break
            schemes = last.get("schemes")
            scheme = schemes[0] if isinstance(schemes, list) and schemes and isinstance(schemes[0], dict) else last
            report = self.apply_scheme(scheme)
            if report is None or not report.graph_changed:
                logger.info("Optimization round %d changed nothing; stopping", iteration)
                break
            history.append({"iteration": iteration, "summary": last.get("summary", "")})
        return last

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    async def load_providers(self, modality: str | None = None) -> list[dict[str, Any]]:
        """Fetch provider configs and build the model list.

        Retries only timeout/network failures, with a fixed back-off.
        """
        attempts = self.settings.provider_retries + 1
        data: Any = None
        for attempt in range(attempts):
            try:
                data = await self.client.get_providers(modality)
                break
            except AssistantError as e:
                if attempt + 1 < attempts and is_retryable_network_error(e):
                    logger.warning(
                        "Provider fetch attempt %d failed (%s); retrying in %.1fs",
                        attempt + 1, e, self.settings.retry_backoff,
                    )
                    await self._sleep(self.settings.retry_backoff)
                    continue
                logger.error("Provider fetch failed after %d attempt(s): %s", attempt + 1, e)
                self.notifier.error(f"Failed to load AI providers: {e.user_message}")
                return []

        providers = data.get("providers") if isinstance(data, dict) else None
        providers = [p for p in providers or [] if isinstance(p, dict) and p.get("id")]
        models = [
            {
                "id": f"{p['id']}:{model}",
                "name": model,
                "provider": p.get("displayName") or p.get("name") or p["id"],
                "configId": p["id"],
            }
            for p in providers
            for model in p.get("models") or []
        ]
        self.state.available_models = models
        if not models:
            return models

        ids = {m["id"] for m in models}
        preferred = self.settings.model
        if preferred and preferred in ids:
            self.state.selected_model = preferred
            return models
        default = data.get("defaultProvider") if isinstance(data, dict) else None
        if isinstance(default, dict) and default.get("id") and default.get("models"):
            model = default.get("defaultModel") or default["models"][0]
            self.state.selected_model = f"{default['id']}:{model}"
        else:
            self.state.selected_model = models[0]["id"]
        return models

    async def close(self) -> None:
        self.cancel()
        await self.poller.stop()
