"""AssistantState: message log, conversations, fix status and test state."""

from __future__ import annotations

import pytest

from workflow_copilot.assistant.phases import TaskPhase
from workflow_copilot.assistant.state import (
    DEFAULT_CONVERSATION_TITLE,
    FIX_APPLIED,
    FIX_PENDING,
    FIX_REJECTED,
    AssistantState,
    generate_title,
)


def _state() -> AssistantState:
    return AssistantState(clock=lambda: 1700000000.0)


class TestMessages:
    """add_message and the append-only log."""

    def test_ids_and_timestamp(self):
        state = _state()
        a = state.add_message("user", "hi")
        b = state.add_message("assistant", "hello", phase="planning")
        assert a.id.startswith("msg_1700000000000_")
        assert a.id != b.id
        assert a.timestamp == 1700000000000
        assert b.phase == "planning"
        assert [m.id for m in state.messages] == [a.id, b.id]

    def test_unknown_extra_rejected(self):
        with pytest.raises(TypeError):
            _state().add_message("user", "x", not_a_field=1)

    def test_recent_history_limit(self):
        state = _state()
        for i in range(12):
            state.add_message("user" if i % 2 == 0 else "assistant", str(i))
        history = state.recent_history()
        assert len(history) == 10
        assert history[0] == {"role": "user", "content": "2"}
        assert state.recent_history(0) == []

    def test_clear_messages(self):
        state = _state()
        state.create_conversation("wf1")
        state.add_message("user", "something long enough to be cut for the title")
        state.clear_messages()
        assert state.messages == []
        assert state.current_conversation.title == DEFAULT_CONVERSATION_TITLE


class TestFixStatus:
    def test_apply(self):
        state = _state()
        msg = state.add_message("assistant", "fix", pending_fix=True, fix_status=FIX_PENDING)
        assert state.update_message_fix_status(msg.id, FIX_APPLIED) is True
        assert msg.fix_status == FIX_APPLIED
        assert msg.pending_fix is False

    def test_reject_missing_message(self):
        assert _state().update_message_fix_status("ghost", FIX_REJECTED) is False

    def test_invalid_status(self):
        state = _state()
        msg = state.add_message("assistant", "fix", pending_fix=True)
        with pytest.raises(ValueError):
            state.update_message_fix_status(msg.id, "maybe")


class TestConversations:
    """Conversation list management."""

    def test_title_from_first_user_message(self):
        state = _state()
        state.create_conversation("wf1")
        state.add_message("user", "Build me a translation workflow please")
        state.add_message("user", "second")
        conv = state.current_conversation
        assert conv.title == "Build me a translati..."
        assert len(conv.messages) == 2

    def test_generate_title_short(self):
        state = _state()
        msg = state.add_message("user", "short")
        assert generate_title([msg]) == "short"
        assert generate_title([]) == DEFAULT_CONVERSATION_TITLE

    def test_new_conversation_is_first_and_current(self):
        state = _state()
        first = state.create_conversation("wf1")
        state.add_message("user", "a")
        second = state.create_conversation("wf1")
        assert [c.id for c in state.conversations] == [second, first]
        assert state.current_conversation_id == second
        assert state.messages == []

    def test_select_restores_messages(self):
        state = _state()
        first = state.create_conversation("wf1")
        state.add_message("user", "a")
        state.create_conversation("wf1")
        assert state.select_conversation(first) is True
        assert [m.content for m in state.messages] == ["a"]
        assert state.select_conversation("ghost") is False

    def test_delete_current(self):
        state = _state()
        conv = state.create_conversation("wf1")
        state.add_message("user", "a")
        state.delete_conversation(conv)
        assert state.conversations == []
        assert state.current_conversation_id is None
        assert state.messages == []


class TestTaskAndTestState:
    def test_reset_task_state(self):
        state = _state()
        state.current_phase = TaskPhase.REQUEST_NODE_CONFIG
        state.pending_node_config = {"nodeId": "p"}
        state.reset_task_state()
        assert state.current_phase is TaskPhase.IDLE
        assert state.pending_node_config is None

    def test_update_testing_node(self):
        state = _state()
        state.testing_nodes = [{"nodeId": "a", "status": "running"}, {"nodeId": "b", "status": "pending"}]
        state.update_testing_node("b", status="completed", duration=12)
        assert state.testing_nodes[1] == {"nodeId": "b", "status": "completed", "duration": 12}
        assert state.testing_nodes[0]["status"] == "running"

    def test_clear_test_state(self):
        state = _state()
        state.current_execution_id = "ex1"
        state.is_test_running = True
        state.testing_nodes = [{"nodeId": "a"}]
        state.clear_test_state()
        assert state.current_execution_id is None
        assert state.is_test_running is False
        assert state.testing_nodes == []
