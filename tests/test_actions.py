"""Node action wire codec and advisory validation.

Covers:
  - action_from_dict camelCase mapping, unknown keys dropped, unknown action rejected
  - action_to_dict omits None values
  - actions_from_payload skips bad entries
  - extract_actions_block splits a fenced json:actions block out of prose
  - validate_node_actions errors (isolated adds, missing INPUT, bad alias)
    and warnings (missing fields)
"""

from __future__ import annotations

import pytest

from workflow_copilot.assistant.actions import (
    AddNodeAction,
    ConnectAction,
    DeleteNodeAction,
    UpdateNodeAction,
    action_from_dict,
    action_to_dict,
    actions_from_payload,
    alias_index,
    extract_actions_block,
    validate_node_actions,
)


class TestActionFromDict:
    """Wire dict → typed action."""

    def test_add(self):
        action = action_from_dict({
            "action": "add", "nodeType": "PROCESS", "nodeName": "Summarize",
            "position": {"x": 1, "y": 2}, "config": {"model": "m"},
        })
        assert action == AddNodeAction(
            node_type="PROCESS", node_name="Summarize",
            position={"x": 1, "y": 2}, config={"model": "m"},
        )

    def test_connect_handles(self):
        action = action_from_dict({
            "action": "connect", "source": "new_1", "target": "out", "sourceHandle": "true",
        })
        assert isinstance(action, ConnectAction)
        assert action.source_handle == "true"
        assert action.target_handle is None

    def test_unknown_keys_dropped(self):
        action = action_from_dict({"action": "delete", "nodeId": "x", "reason": "cleanup"})
        assert action == DeleteNodeAction(node_id="x")

    def test_update_non_dict_config_ignored(self):
        action = action_from_dict({"action": "update", "nodeId": "x", "config": "oops"})
        assert action.config == {}

    def test_unknown_action(self):
        with pytest.raises(ValueError, match="Unknown action"):
            action_from_dict({"action": "explode"})

    def test_non_dict(self):
        with pytest.raises(ValueError, match="Expected an action object"):
            action_from_dict(["add"])


class TestActionToDict:
    def test_camel_case_and_none_omitted(self):
        wire = action_to_dict(UpdateNodeAction(node_id="p", config={"a": 1}))
        assert wire == {"action": "update", "nodeId": "p", "config": {"a": 1}}

    def test_round_trip(self):
        original = {"action": "connect", "source": "a", "target": "b", "targetHandle": "in"}
        assert action_to_dict(action_from_dict(original)) == original


class TestActionsFromPayload:
    def test_skips_bad_entries(self):
        actions = actions_from_payload([
            {"action": "add", "nodeType": "INPUT", "nodeName": "In"},
            {"action": "bogus"},
            "not a dict",
            {"action": "delete", "nodeId": "x"},
        ])
        assert [a.action for a in actions] == ["add", "delete"]

    def test_non_list(self):
        assert actions_from_payload(None) == []
        assert actions_from_payload({"action": "add"}) == []


class TestAliasIndex:
    @pytest.mark.parametrize("ref,expected", [("new_1", 1), ("new_12", 12), ("new_0", None), ("new_x", None)])
    def test_parse(self, ref, expected):
        assert alias_index(ref) == expected


class TestExtractActionsBlock:
    """Fenced ```json:actions blocks inside assistant prose."""

    def test_block_extracted(self):
        content = (
            "Here is the plan.\n"
            "```json:actions\n"
            '{"nodeActions": [{"action": "delete", "nodeId": "x"}]}\n'
            "```\n"
            "Done."
        )
        clean, payload = extract_actions_block(content)
        assert payload == {"nodeActions": [{"action": "delete", "nodeId": "x"}]}
        assert "json:actions" not in clean
        assert clean.startswith("Here is the plan.")
        assert clean.endswith("Done.")

    def test_no_block(self):
        assert extract_actions_block("plain text") == ("plain text", None)

    def test_malformed_block_left_in_place(self):
        content = "```json:actions\n{not json}\n```"
        assert extract_actions_block(content) == (content, None)

    def test_non_object_payload(self):
        content = "```json:actions\n[1, 2]\n```"
        assert extract_actions_block(content) == (content, None)


class TestValidateNodeActions:
    """Advisory checks for generated batches."""

    def _workflow(self) -> list:
        return [
            AddNodeAction(node_type="INPUT", node_name="In"),
            AddNodeAction(node_type="PROCESS", node_name="Work"),
            ConnectAction(source="new_1", target="new_2"),
        ]

    def test_valid_batch(self):
        assert validate_node_actions(self._workflow()) == ([], [])

    def test_isolated_add(self):
        batch = self._workflow() + [AddNodeAction(node_type="OUTPUT", node_name="Out")]
        errors, _ = validate_node_actions(batch)
        assert errors == ["Node 'Out' (new_3) is isolated"]

    def test_missing_input(self):
        batch = [
            AddNodeAction(node_type="PROCESS", node_name="A"),
            AddNodeAction(node_type="OUTPUT", node_name="B"),
            ConnectAction(source="new_1", target="new_2"),
        ]
        errors, _ = validate_node_actions(batch)
        assert errors == ["Generated workflow has no INPUT node as its entry point"]

    def test_alias_out_of_range(self):
        batch = self._workflow() + [ConnectAction(source="new_2", target="new_5")]
        errors, _ = validate_node_actions(batch)
        assert len(errors) == 1
        assert "'new_5' does not match any added node (2 added)" in errors[0]

    def test_single_add_needs_no_connect(self):
        errors, warnings = validate_node_actions([AddNodeAction(node_type="CODE", node_name="C")])
        assert errors == []
        assert warnings == []

    def test_warnings(self):
        _, warnings = validate_node_actions([
            AddNodeAction(node_type="", node_name="X"),
            UpdateNodeAction(node_id=""),
            DeleteNodeAction(),
            ConnectAction(source="a"),
        ])
        assert warnings == [
            "actions[0] add: nodeType and nodeName are required",
            "actions[1] update: nodeId is required",
            "actions[1] update: config is empty",
            "actions[2] delete: nodeId is required",
            "actions[3] connect: source and target are required",
        ]
