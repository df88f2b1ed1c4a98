"""Prompt slots and input bindings.

A PROCESS prompt can be written as a form with headings in lenticular
brackets::

    【文章内容（可选）】
    {{inputs.文章内容}}
    【输出】
    ...

Each bracketed heading is a *slot*. The node's ``inputBindings`` map binds a
slot name to an upstream reference (``{"文章内容": "{{Upstream.结果}}"}``), so
the prompt text stays readable while the data source is configured beside it.

All functions here are pure and never raise. Functions returning a bindings
map hand back the *same* dict object when nothing changed, so callers can use
identity to skip redundant re-renders and saves.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from workflow_copilot.references import parse_reference

MAX_SLOT_NAME_LENGTH = 80
MAX_SLOT_KEY_LENGTH = 40
DEFAULT_SLOT_KEY = "input"
# Collision suffixes _2 .. _99 before falling back to a timestamp suffix
MAX_SLOT_SUFFIX = 99

_SLOT_RE = re.compile(r"【([^【】\n]{1,%d})】" % MAX_SLOT_NAME_LENGTH)
# Trailing "(optional)" / "（可选）" style annotation, half- or full-width
_ANNOTATION_RE = re.compile(r"\s*[（(][^（）()]*[）)]\s*$")


@dataclass(frozen=True)
class BindingResult:
    """Outcome of an upsert: the slot used and the (possibly identical) bindings map."""

    slot: str
    next_bindings: Mapping[str, str]


def _canonical_slot_name(raw: str) -> str:
    return _ANNOTATION_RE.sub("", raw).strip()


def extract_slots_from_prompt(text: str | None) -> list[str]:
    """Slot names in ``text``, first-seen order, case-sensitive dedupe."""
    if not text:
        return []
    slots: list[str] = []
    seen: set[str] = set()
    for m in _SLOT_RE.finditer(text):
        name = _canonical_slot_name(m.group(1))
        if name and name not in seen:
            seen.add(name)
            slots.append(name)
    return slots


def find_nearest_slot_before_cursor(text: str | None, cursor: int) -> str | None:
    """Slot whose opening bracket is the last one starting before ``cursor``."""
    if not text:
        return None
    cursor = max(0, min(cursor, len(text)))
    nearest: str | None = None
    for m in _SLOT_RE.finditer(text):
        if m.start() >= cursor:
            break
        name = _canonical_slot_name(m.group(1))
        if name:
            nearest = name
    return nearest


def sanitize_slot_key(raw: str | None) -> str:
    """Normalise a slot name into a binding key.

    Braces are removed and dots become underscores so a key can never be
    mistaken for a nested path. Idempotent.
    """
    key = (raw or "").strip()
    key = key.replace("{", "").replace("}", "").replace(".", "_").strip()
    key = key[:MAX_SLOT_KEY_LENGTH].strip()
    return key or DEFAULT_SLOT_KEY


def derive_slot_key_from_reference(reference: str) -> str:
    """``{{inputs.X}}`` → ``X``; ``{{Node.Field}}`` → ``Node_Field``; ``{{Node}}`` → ``Node``."""
    parsed = parse_reference(reference)
    if parsed is None:
        return sanitize_slot_key(reference)
    if parsed.is_input_slot:
        return sanitize_slot_key(parsed.path)
    if parsed.path:
        return sanitize_slot_key(f"{parsed.node_name}.{parsed.path}")
    return sanitize_slot_key(parsed.node_name)


def _same_reference(bound: Any, ref: str) -> bool:
    # Stored values may carry whitespace from hand-edited configs
    return isinstance(bound, str) and bound.strip() == ref


def upsert_input_binding_for_reference(
    bindings: Mapping[str, str] | None,
    reference: str,
    preferred_slot: str | None = None,
    clock: Callable[[], float] = time.time,
) -> BindingResult:
    """Bind ``reference`` to a slot and return the slot plus the next bindings map.

    Resolution order:
      1. ``preferred_slot`` given → bind (or overwrite) under its sanitized key
      2. ``reference`` already bound → reuse that slot, map returned unchanged
      3. otherwise derive a key from the reference, suffixing ``_2``, ``_3`` …
         on collision and a millisecond timestamp once the suffixes run out
    """
    current: Mapping[str, str] = bindings if bindings is not None else {}
    ref = (reference or "").strip()

    if preferred_slot is not None and preferred_slot.strip():
        slot = sanitize_slot_key(preferred_slot)
        if _same_reference(current.get(slot), ref):
            return BindingResult(slot=slot, next_bindings=current)
        return BindingResult(slot=slot, next_bindings={**current, slot: ref})

    for slot, bound in current.items():
        if _same_reference(bound, ref):
            return BindingResult(slot=slot, next_bindings=current)

    base = derive_slot_key_from_reference(ref)
    slot = base
    suffix = 2
    while slot in current and suffix <= MAX_SLOT_SUFFIX:
        slot = f"{base}_{suffix}"
        suffix += 1
    if slot in current:
        slot = f"{base}_{int(clock() * 1000)}"
    return BindingResult(slot=slot, next_bindings={**current, slot: ref})


def get_input_binding_slots(prompt: str | None, bindings: Mapping[str, str] | None) -> list[str]:
    """Prompt-derived slots first, then slots that only exist in ``bindings``."""
    slots = extract_slots_from_prompt(prompt)
    seen = set(slots)
    for key in (bindings or {}):
        if key not in seen:
            seen.add(key)
            slots.append(key)
    return slots


# ---------------------------------------------------------------------------
# Insert-and-bind (prompt editor flow)
# ---------------------------------------------------------------------------


def insert_reference_at_cursor(text: str | None, cursor: int, reference: str) -> tuple[str, int]:
    """Insert ``reference`` at ``cursor``; returns (new_text, new_cursor)."""
    text = text or ""
    cursor = max(0, min(cursor, len(text)))
    return text[:cursor] + reference + text[cursor:], cursor + len(reference)


@dataclass(frozen=True)
class InsertResult:
    text: str
    cursor: int
    binding: BindingResult | None = None


def bind_reference_at_cursor(
    text: str | None,
    cursor: int,
    reference: str,
    bindings: Mapping[str, str] | None,
    bypass_auto_bind: bool = False,
) -> InsertResult:
    """Insert a reference where the user's cursor is, binding it to the slot above.

    When the cursor sits under a slot heading the upstream reference is bound
    to that slot and ``{{inputs.<slot>}}`` is inserted instead of the raw
    reference. Without a slot above the cursor (or with ``bypass_auto_bind``)
    the raw reference is inserted and bindings are left alone.
    """
    slot = None if bypass_auto_bind else find_nearest_slot_before_cursor(text, cursor)
    if slot is None:
        new_text, new_cursor = insert_reference_at_cursor(text, cursor, reference)
        return InsertResult(text=new_text, cursor=new_cursor)

    result = upsert_input_binding_for_reference(bindings, reference, preferred_slot=slot)
    token = f"{{{{inputs.{result.slot}}}}}"
    new_text, new_cursor = insert_reference_at_cursor(text, cursor, token)
    return InsertResult(text=new_text, cursor=new_cursor, binding=result)
