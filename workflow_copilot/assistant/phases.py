"""Conversation phases and the closed set of chat reply variants.

The chat endpoint answers with a ``phase`` discriminator plus phase-specific
fields. parse_chat_reply() turns that loose JSON into exactly one typed
reply so the orchestrator can dispatch with a single isinstance chain.

Anything it cannot map (no phase, unknown phase, required field missing)
degrades to ContentReply. A malformed reply is still shown to the user as
text; it never raises.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from workflow_copilot.assistant.actions import (
    NodeAction,
    actions_from_payload,
    extract_actions_block,
)

logger = logging.getLogger("workflow_copilot.assistant.phases")


class WorkflowPhase(str, Enum):
    """Coarse stage of building the workflow."""

    REQUIREMENT_GATHERING = "requirement_gathering"
    REQUIREMENT_CLARIFICATION = "requirement_clarification"
    WORKFLOW_DESIGN = "workflow_design"
    WORKFLOW_GENERATION = "workflow_generation"
    TESTING = "testing"
    OPTIMIZATION = "optimization"
    COMPLETED = "completed"


class TaskPhase(str, Enum):
    """Fine-grained sub-phase of the current assistant task."""

    IDLE = "idle"
    REQUIREMENT_CONFIRMATION = "requirement_confirmation"
    CREATING = "creating"
    TEST_DATA_SELECTION = "test_data_selection"
    TESTING = "testing"
    TESTING_PENDING = "testing_pending"
    FIX_SUGGESTION = "fix_suggestion"
    PLANNING = "planning"
    NODE_SELECTION = "node_selection"
    NODE_CONFIG = "node_config"
    NODE_DIAGNOSIS = "node_diagnosis"
    REQUEST_NODE_CONFIG = "request_node_config"
    COMPLETED = "completed"


def _enum_value(enum_cls: type[Enum], value: Any) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        return None


def as_workflow_phase(value: Any) -> WorkflowPhase | None:
    return _enum_value(WorkflowPhase, value)


def as_task_phase(value: Any) -> TaskPhase | None:
    return _enum_value(TaskPhase, value)


# ---------------------------------------------------------------------------
# Reply variants
# ---------------------------------------------------------------------------


@dataclass
class ContentReply:
    """Plain assistant text, optionally with node actions offered as suggestions.

    ``phase`` keeps the raw server phase (e.g. "workflow_generation") so the
    orchestrator can still track the workflow stage. ``test_request`` is set
    when the server asked for a test run it did not start itself.
    """

    content: str
    phase: str | None = None
    node_actions: list[NodeAction] = field(default_factory=list)
    require_confirmation: bool = False
    test_request: dict[str, Any] | None = None


@dataclass
class TestingPendingReply:
    __test__ = False  # not a pytest class

    content: str
    execution_id: str
    pending_nodes: list[dict[str, Any]] = field(default_factory=list)
    test_input: dict[str, Any] = field(default_factory=dict)


@dataclass
class FixSuggestionReply:
    content: str
    node_actions: list[NodeAction]
    analysis: dict[str, Any] | None = None
    diagnosis: dict[str, Any] | None = None
    require_confirmation: bool = True


@dataclass
class RequirementConfirmationReply:
    content: str
    requirement_confirmation: dict[str, Any]


@dataclass
class PlanningReply:
    """Interactive planning step, or the final layout preview when ``complete``."""

    content: str
    planning_step: int | None = None
    interactive_questions: list[dict[str, Any]] = field(default_factory=list)
    layout_preview: list[NodeAction] = field(default_factory=list)
    complete: bool = False


@dataclass
class QuestionReply:
    """Options for the user: test data selection, clarification, node config."""

    content: str
    phase: TaskPhase | WorkflowPhase
    interactive_questions: list[dict[str, Any]] = field(default_factory=list)
    question_options: list[dict[str, Any]] = field(default_factory=list)
    selected_node: dict[str, Any] | None = None


@dataclass
class NodeSelectionReply:
    content: str
    node_selection: list[dict[str, Any]]


@dataclass
class NodeDiagnosisReply:
    content: str
    diagnosis: dict[str, Any]
    suggestions: list[dict[str, Any]] = field(default_factory=list)
    node_actions: list[NodeAction] = field(default_factory=list)


@dataclass
class RequestNodeConfigReply:
    content: str
    failed_node_id: str
    failed_node_name: str | None = None
    interactive_questions: list[dict[str, Any]] = field(default_factory=list)


ChatReply = Union[
    ContentReply,
    TestingPendingReply,
    FixSuggestionReply,
    RequirementConfirmationReply,
    PlanningReply,
    QuestionReply,
    NodeSelectionReply,
    NodeDiagnosisReply,
    RequestNodeConfigReply,
]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _get(d: dict[str, Any], camel: str, snake: str | None = None) -> Any:
    if camel in d:
        return d[camel]
    return d.get(snake) if snake else None


def _as_list(value: Any) -> list[Any]:
    return [v for v in value if isinstance(v, dict)] if isinstance(value, list) else []


def _as_dict(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None


def unwrap_envelope(payload: Any) -> dict[str, Any]:
    """Strip a ``{"success": ..., "data": {...}}`` envelope when present."""
    if isinstance(payload, dict) and "success" in payload and isinstance(payload.get("data"), dict):
        return payload["data"]
    return payload if isinstance(payload, dict) else {}


def _degrade(data: dict[str, Any], content: str, phase: Any, reason: str) -> ContentReply:
    logger.warning("Chat reply phase %r degraded to plain content: %s", phase, reason)
    return ContentReply(
        content=content,
        phase=phase if isinstance(phase, str) else None,
        node_actions=actions_from_payload(_get(data, "nodeActions", "node_actions")),
    )


def parse_chat_reply(payload: Any) -> ChatReply:
    """Parse a chat endpoint response into one reply variant. Never raises."""
    data = unwrap_envelope(payload)
    content = data.get("content") if isinstance(data.get("content"), str) else ""

    # Server did not split the fenced block out of the text; do it here
    if "phase" not in data and "nodeActions" not in data:
        clean, block = extract_actions_block(content)
        if block is not None:
            data = {**block, **data, "content": clean}
            content = clean

    phase = data.get("phase")
    node_actions = actions_from_payload(_get(data, "nodeActions", "node_actions"))
    questions = _as_list(_get(data, "interactiveQuestions", "interactive_questions"))

    if phase is None:
        return ContentReply(
            content=content,
            node_actions=node_actions,
            require_confirmation=bool(_get(data, "requireConfirmation", "require_confirmation")),
        )

    if phase == TaskPhase.TESTING_PENDING.value:
        execution_id = _get(data, "executionId", "execution_id")
        if not isinstance(execution_id, str) or not execution_id:
            return _degrade(data, content, phase, "missing executionId")
        return TestingPendingReply(
            content=content,
            execution_id=execution_id,
            pending_nodes=_as_list(_get(data, "pendingNodes", "pending_nodes")),
            test_input=_as_dict(_get(data, "testInput", "test_input")) or {},
        )

    if phase == TaskPhase.FIX_SUGGESTION.value:
        if not node_actions:
            return _degrade(data, content, phase, "no nodeActions")
        confirm = _get(data, "requireConfirmation", "require_confirmation")
        return FixSuggestionReply(
            content=content,
            node_actions=node_actions,
            analysis=_as_dict(data.get("analysis")),
            diagnosis=_as_dict(data.get("diagnosis")),
            require_confirmation=True if confirm is None else bool(confirm),
        )

    if phase == TaskPhase.REQUIREMENT_CONFIRMATION.value:
        confirmation = _as_dict(_get(data, "requirementConfirmation", "requirement_confirmation"))
        if confirmation is None:
            return _degrade(data, content, phase, "missing requirementConfirmation")
        return RequirementConfirmationReply(content=content, requirement_confirmation=confirmation)

    if phase in ("planning", "planning_complete"):
        layout = actions_from_payload(_get(data, "layoutPreview", "layout_preview"))
        if not questions and not layout:
            return _degrade(data, content, phase, "no interactiveQuestions or layoutPreview")
        step = _get(data, "planningStep", "planning_step")
        return PlanningReply(
            content=content,
            planning_step=step if isinstance(step, int) else None,
            interactive_questions=questions,
            layout_preview=layout,
            complete=phase == "planning_complete",
        )

    if phase in (
        TaskPhase.TEST_DATA_SELECTION.value,
        TaskPhase.NODE_CONFIG.value,
        WorkflowPhase.REQUIREMENT_CLARIFICATION.value,
    ):
        options = _as_list(_get(data, "questionOptions", "question_options"))
        if not questions and not options:
            return _degrade(data, content, phase, "no questions")
        return QuestionReply(
            content=content,
            phase=as_task_phase(phase) or WorkflowPhase(phase),
            interactive_questions=questions,
            question_options=options,
            selected_node=_as_dict(_get(data, "selectedNode", "selected_node")),
        )

    if phase == TaskPhase.NODE_SELECTION.value:
        selection = _as_list(_get(data, "nodeSelection", "node_selection"))
        if not selection:
            return _degrade(data, content, phase, "empty nodeSelection")
        return NodeSelectionReply(content=content, node_selection=selection)

    if phase == TaskPhase.NODE_DIAGNOSIS.value:
        diagnosis = _as_dict(data.get("diagnosis"))
        if diagnosis is None:
            return _degrade(data, content, phase, "missing diagnosis")
        return NodeDiagnosisReply(
            content=content,
            diagnosis=diagnosis,
            suggestions=_as_list(data.get("suggestions")),
            node_actions=node_actions,
        )

    if phase == TaskPhase.REQUEST_NODE_CONFIG.value:
        node_id = _get(data, "failedNodeId", "failed_node_id")
        if not isinstance(node_id, str) or not node_id:
            return _degrade(data, content, phase, "missing failedNodeId")
        name = _get(data, "failedNodeName", "failed_node_name")
        return RequestNodeConfigReply(
            content=content,
            failed_node_id=node_id,
            failed_node_name=name if isinstance(name, str) else None,
            interactive_questions=questions,
        )

    if as_workflow_phase(phase) is not None or as_task_phase(phase) is not None:
        return ContentReply(
            content=content,
            phase=phase,
            node_actions=node_actions,
            require_confirmation=bool(_get(data, "requireConfirmation", "require_confirmation")),
            test_request=_as_dict(_get(data, "testRequest", "test_request")),
        )

    return _degrade(data, content, phase, "unknown phase")
