"""Prompt slots and input bindings.

Covers:
  - slot extraction: annotation stripping, dedupe, length bound, idempotence
  - nearest slot before the cursor
  - sanitize_slot_key normalisation is idempotent
  - upsert resolution order and the unchanged-map identity contract
  - insert-and-bind at the cursor
"""

from __future__ import annotations

import pytest

from workflow_copilot.bindings import (
    DEFAULT_SLOT_KEY,
    MAX_SLOT_SUFFIX,
    bind_reference_at_cursor,
    derive_slot_key_from_reference,
    extract_slots_from_prompt,
    find_nearest_slot_before_cursor,
    get_input_binding_slots,
    insert_reference_at_cursor,
    sanitize_slot_key,
    upsert_input_binding_for_reference,
)

PROMPT = "【文章内容（可选）】\nhello\n【输出】\nworld\n"


class TestExtractSlots:
    """extract_slots_from_prompt."""

    def test_annotation_stripped(self):
        assert extract_slots_from_prompt(PROMPT) == ["文章内容", "输出"]

    def test_half_width_annotation(self):
        assert extract_slots_from_prompt("【Topic (optional)】") == ["Topic"]

    def test_dedupe_keeps_first_order_case_sensitive(self):
        text = "【B】【A】【B】【b】【A（可选）】"
        assert extract_slots_from_prompt(text) == ["B", "A", "b"]

    def test_overlong_run_ignored(self):
        assert extract_slots_from_prompt("【" + "x" * 81 + "】") == []
        assert extract_slots_from_prompt("【" + "x" * 80 + "】") == ["x" * 80]

    def test_empty(self):
        assert extract_slots_from_prompt("") == []
        assert extract_slots_from_prompt(None) == []

    def test_idempotent(self):
        assert extract_slots_from_prompt(PROMPT) == extract_slots_from_prompt(PROMPT)


class TestNearestSlot:
    """find_nearest_slot_before_cursor."""

    def test_cursor_under_second_heading(self):
        assert find_nearest_slot_before_cursor(PROMPT, PROMPT.index("world")) == "输出"

    def test_cursor_under_first_heading(self):
        assert find_nearest_slot_before_cursor(PROMPT, PROMPT.index("hello")) == "文章内容"

    def test_cursor_before_any_heading(self):
        assert find_nearest_slot_before_cursor(PROMPT, 0) is None

    def test_cursor_clamped(self):
        assert find_nearest_slot_before_cursor(PROMPT, 10_000) == "输出"


class TestSanitizeSlotKey:
    @pytest.mark.parametrize("raw,expected", [
        ("a.b", "a_b"),
        ("{{x}}", "x"),
        ("   ", DEFAULT_SLOT_KEY),
        (None, DEFAULT_SLOT_KEY),
        ("k" * 50, "k" * 40),
    ])
    def test_normalisation(self, raw, expected):
        assert sanitize_slot_key(raw) == expected

    @pytest.mark.parametrize("raw", ["a.b.c", " {x.y} ", "", "k" * 39 + " tail", "中文.字段"])
    def test_idempotent(self, raw):
        once = sanitize_slot_key(raw)
        assert sanitize_slot_key(once) == once


class TestDeriveSlotKey:
    def test_input_slot(self):
        assert derive_slot_key_from_reference("{{inputs.topic}}") == "topic"

    def test_node_field(self):
        assert derive_slot_key_from_reference("{{Node.Field}}") == "Node_Field"

    def test_whole_node(self):
        assert derive_slot_key_from_reference("{{Node}}") == "Node"


class TestUpsertBinding:
    """upsert_input_binding_for_reference resolution order."""

    def test_preferred_slot_overwrites(self):
        result = upsert_input_binding_for_reference(
            {"输出": "{{Upstream.结果}}"}, "{{Upstream.text}}", preferred_slot="输出",
        )
        assert result.slot == "输出"
        assert result.next_bindings == {"输出": "{{Upstream.text}}"}

    def test_preferred_slot_same_value_keeps_identity(self):
        bindings = {"输出": "{{Upstream.text}}"}
        result = upsert_input_binding_for_reference(bindings, "{{Upstream.text}}", preferred_slot="输出")
        assert result.next_bindings is bindings

    def test_already_bound_reuses_slot_and_identity(self):
        bindings = {"s": "{{A.x}}", "t": "{{B.y}}"}
        result = upsert_input_binding_for_reference(bindings, "{{B.y}}")
        assert result.slot == "t"
        assert result.next_bindings is bindings

    def test_bound_value_with_whitespace_keeps_identity(self):
        bindings = {"t": "  {{B.y}}\n"}
        result = upsert_input_binding_for_reference(bindings, " {{B.y}} ")
        assert result.slot == "t"
        assert result.next_bindings is bindings
        same = upsert_input_binding_for_reference(bindings, "{{B.y}}", preferred_slot="t")
        assert same.next_bindings is bindings

    def test_derived_key(self):
        bindings = {}
        result = upsert_input_binding_for_reference(bindings, "{{inputs.topic}}")
        assert result.slot == "topic"
        assert result.next_bindings == {"topic": "{{inputs.topic}}"}
        assert bindings == {}

    def test_collision_suffix(self):
        result = upsert_input_binding_for_reference(
            {"A_x": "{{other}}", "A_x_2": "{{other2}}"}, "{{A.x}}",
        )
        assert result.slot == "A_x_3"

    def test_suffixes_exhausted_use_timestamp(self):
        bindings = {"A_x": "{{o}}"}
        bindings.update({f"A_x_{i}": f"{{{{o{i}}}}}" for i in range(2, MAX_SLOT_SUFFIX + 1)})
        result = upsert_input_binding_for_reference(bindings, "{{A.x}}", clock=lambda: 12.0)
        assert result.slot == "A_x_12000"

    def test_none_bindings(self):
        result = upsert_input_binding_for_reference(None, "{{N}}")
        assert result.next_bindings == {"N": "{{N}}"}


class TestGetInputBindingSlots:
    def test_union_order(self):
        assert get_input_binding_slots("【A】\n{{inputs.A}}\n", {"B": "{{N.结果}}"}) == ["A", "B"]

    def test_binding_key_already_in_prompt(self):
        assert get_input_binding_slots("【A】【B】", {"B": "x", "C": "y"}) == ["A", "B", "C"]


class TestInsertAndBind:
    """Inserting references into prompt text."""

    def test_plain_insert(self):
        assert insert_reference_at_cursor("ab", 1, "{{X}}") == ("a{{X}}b", 6)

    def test_insert_clamps_cursor(self):
        assert insert_reference_at_cursor(None, 5, "{{X}}") == ("{{X}}", 5)

    def test_bind_under_slot(self):
        cursor = PROMPT.index("world")
        result = bind_reference_at_cursor(PROMPT, cursor, "{{Up.结果}}", {})
        assert result.binding.slot == "输出"
        assert result.binding.next_bindings == {"输出": "{{Up.结果}}"}
        assert result.text[cursor:].startswith("{{inputs.输出}}world")

    def test_no_slot_inserts_raw(self):
        result = bind_reference_at_cursor("plain", 0, "{{Up}}", {"a": "b"})
        assert result.text == "{{Up}}plain"
        assert result.binding is None

    def test_bypass(self):
        result = bind_reference_at_cursor(PROMPT, len(PROMPT), "{{Up}}", {}, bypass_auto_bind=True)
        assert result.binding is None
        assert result.text.endswith("{{Up}}")
