"""Assistant application state: conversations, message log, task and test state.

The message log is append-only. The single in-place change is
update_message_fix_status(), which resolves a pending fix suggestion.
"""

from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from workflow_copilot.assistant.actions import NodeAction
from workflow_copilot.assistant.phases import TaskPhase, WorkflowPhase

DEFAULT_CONVERSATION_TITLE = "新对话"
TITLE_MAX_LENGTH = 20
HISTORY_LIMIT = 10

_ID_ALPHABET = string.digits + string.ascii_lowercase

FIX_PENDING = "pending"
FIX_APPLIED = "applied"
FIX_REJECTED = "rejected"


def _random_suffix(length: int = 7) -> str:
    return "".join(random.choice(_ID_ALPHABET) for _ in range(length))


@dataclass
class AIMessage:
    id: str
    role: str  # "user" | "assistant" | "system"
    content: str
    timestamp: int
    node_actions: list[NodeAction] | None = None
    test_result: dict[str, Any] | None = None
    pending_fix: bool = False
    fix_status: str | None = None
    phase: str | None = None
    requirement_confirmation: dict[str, Any] | None = None
    interactive_questions: list[dict[str, Any]] | None = None
    node_selection: list[dict[str, Any]] | None = None
    layout_preview: list[NodeAction] | None = None
    diagnosis: dict[str, Any] | None = None
    suggestions: list[dict[str, Any]] | None = None
    message_type: str | None = None
    question_options: list[dict[str, Any]] | None = None
    selected_node: dict[str, Any] | None = None
    optimization: dict[str, Any] | None = None


@dataclass
class Conversation:
    id: str
    workflow_id: str
    title: str = DEFAULT_CONVERSATION_TITLE
    messages: list[AIMessage] = field(default_factory=list)
    created_at: int = 0
    updated_at: int = 0


def generate_title(messages: list[AIMessage]) -> str:
    """First user message, cut to 20 chars with a trailing ellipsis."""
    for message in messages:
        if message.role == "user":
            text = message.content
            return text[:TITLE_MAX_LENGTH] + "..." if len(text) > TITLE_MAX_LENGTH else text
    return DEFAULT_CONVERSATION_TITLE


class AssistantState:
    """Mutable state shared by the orchestrator, the poller and the CLI."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock

        self.messages: list[AIMessage] = []
        self.conversations: list[Conversation] = []
        self.current_conversation_id: str | None = None
        self.is_loading = False
        self.selected_model = ""
        self.available_models: list[dict[str, Any]] = []

        self.current_phase = TaskPhase.IDLE
        self.workflow_phase = WorkflowPhase.REQUIREMENT_GATHERING
        self.pending_confirmation: dict[str, Any] | None = None
        self.pending_node_config: dict[str, Any] | None = None

        self.current_execution_id: str | None = None
        self.testing_nodes: list[dict[str, Any]] = []
        self.is_test_running = False
        self.last_test_result: dict[str, Any] | None = None

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def current_conversation(self) -> Conversation | None:
        for conversation in self.conversations:
            if conversation.id == self.current_conversation_id:
                return conversation
        return None

    def get_message(self, message_id: str) -> AIMessage | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def add_message(self, role: str, content: str, **extras: Any) -> AIMessage:
        """Append a message; extras are AIMessage fields (phase, node_actions ...)."""
        now = self._now_ms()
        message = AIMessage(
            id=f"msg_{now}_{_random_suffix()}",
            role=role,
            content=content,
            timestamp=now,
            **extras,
        )
        self.messages = [*self.messages, message]

        conversation = self.current_conversation
        if conversation is not None:
            if not conversation.messages and role == "user":
                conversation.title = generate_title([message])
            conversation.messages = self.messages
            conversation.updated_at = now
        return message

    def update_message_fix_status(self, message_id: str, status: str) -> bool:
        """Resolve a fix suggestion as ``applied`` or ``rejected``."""
        if status not in (FIX_APPLIED, FIX_REJECTED):
            raise ValueError(f"Invalid fix status: {status!r}")
        message = self.get_message(message_id)
        if message is None:
            return False
        message.fix_status = status
        message.pending_fix = False
        conversation = self.current_conversation
        if conversation is not None:
            conversation.updated_at = self._now_ms()
        return True

    def clear_messages(self) -> None:
        self.messages = []
        conversation = self.current_conversation
        if conversation is not None:
            conversation.messages = []
            conversation.title = DEFAULT_CONVERSATION_TITLE
            conversation.updated_at = self._now_ms()

    def recent_history(self, limit: int = HISTORY_LIMIT) -> list[dict[str, str]]:
        """Last ``limit`` messages as ``{role, content}`` for the chat request."""
        return [{"role": m.role, "content": m.content} for m in self.messages[-limit:]] if limit > 0 else []

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def create_conversation(self, workflow_id: str) -> str:
        now = self._now_ms()
        conversation = Conversation(
            id=f"conv_{now}_{_random_suffix()}",
            workflow_id=workflow_id,
            created_at=now,
            updated_at=now,
        )
        self.conversations = [conversation, *self.conversations]
        self.current_conversation_id = conversation.id
        self.messages = []
        return conversation.id

    def select_conversation(self, conversation_id: str) -> bool:
        for conversation in self.conversations:
            if conversation.id == conversation_id:
                self.current_conversation_id = conversation_id
                self.messages = conversation.messages
                return True
        return False

    def delete_conversation(self, conversation_id: str) -> None:
        self.conversations = [c for c in self.conversations if c.id != conversation_id]
        if self.current_conversation_id == conversation_id:
            self.current_conversation_id = None
            self.messages = []

    # ------------------------------------------------------------------
    # Task / test state
    # ------------------------------------------------------------------

    def reset_task_state(self) -> None:
        self.current_phase = TaskPhase.IDLE
        self.pending_confirmation = None
        self.pending_node_config = None

    def clear_test_state(self) -> None:
        self.current_execution_id = None
        self.testing_nodes = []
        self.is_test_running = False

    def update_testing_node(self, node_id: str, **data: Any) -> None:
        self.testing_nodes = [
            {**node, **data} if node.get("nodeId") == node_id else node
            for node in self.testing_nodes
        ]
