"""Workflow assistant: node actions, reply parsing and conversation orchestration.

Entry points:
    apply_node_actions(actions, store, notifier=None) → ApplyReport
    parse_chat_reply(payload) → ChatReply
    ConversationOrchestrator(client, store, state, workflow_id, notifier, settings)

Node actions:
    AddNodeAction, UpdateNodeAction, DeleteNodeAction, ConnectAction
    action_from_dict / action_to_dict / actions_from_payload — wire (camelCase) codec
    extract_actions_block — split a fenced json:actions block out of reply text
    validate_node_actions — advisory (errors, warnings) for a generated batch
"""

from workflow_copilot.assistant.actions import (
    AddNodeAction,
    ConnectAction,
    DeleteNodeAction,
    NodeAction,
    UpdateNodeAction,
    action_from_dict,
    action_to_dict,
    actions_from_payload,
    extract_actions_block,
    validate_node_actions,
)
from workflow_copilot.assistant.applier import ActionOutcome, AliasMap, ApplyReport, apply_node_actions
from workflow_copilot.assistant.orchestrator import ConversationOrchestrator
from workflow_copilot.assistant.phases import ChatReply, TaskPhase, WorkflowPhase, parse_chat_reply
from workflow_copilot.assistant.poller import TestStatusPoller
from workflow_copilot.assistant.state import AIMessage, AssistantState, Conversation

__all__ = [
    "AIMessage",
    "ActionOutcome",
    "AddNodeAction",
    "AliasMap",
    "ApplyReport",
    "AssistantState",
    "ChatReply",
    "ConnectAction",
    "Conversation",
    "ConversationOrchestrator",
    "DeleteNodeAction",
    "NodeAction",
    "TaskPhase",
    "TestStatusPoller",
    "UpdateNodeAction",
    "WorkflowPhase",
    "action_from_dict",
    "action_to_dict",
    "actions_from_payload",
    "apply_node_actions",
    "extract_actions_block",
    "parse_chat_reply",
    "validate_node_actions",
]
