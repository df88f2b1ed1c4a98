"""Node actions — structured graph mutations emitted by the assistant back end.

Each action describes one change to the canvas:
  AddNodeAction     — add a node of a given type
  UpdateNodeAction  — shallow-merge new config keys into an existing node
  DeleteNodeAction  — remove a node (its edges go with it)
  ConnectAction     — connect two nodes

``ConnectAction.source``/``target`` may be a literal node ID or an alias
``new_<N>`` naming the N-th add (1-indexed) of the same batch; the applier
resolves aliases to the generated IDs.

Wire format is the back end's camelCase JSON:

  {"action": "add", "nodeType": "PROCESS", "nodeName": "Summarize",
   "position": {"x": 400, "y": 100}, "config": {...}}
  {"action": "connect", "source": "new_1", "target": "output_1"}
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Union

logger = logging.getLogger("workflow_copilot.assistant.actions")

NEW_NODE_PREFIX = "new_"

_ACTIONS_FENCE_RE = re.compile(r"```json:actions\s*([\s\S]*?)```")


@dataclass
class AddNodeAction:
    node_type: str = ""
    node_name: str = ""
    position: dict[str, float] | None = None
    config: dict[str, Any] | None = None
    action: str = "add"


@dataclass
class UpdateNodeAction:
    node_id: str = ""
    config: dict[str, Any] = field(default_factory=dict)
    node_name: str | None = None
    action: str = "update"


@dataclass
class DeleteNodeAction:
    node_id: str = ""
    node_name: str | None = None
    action: str = "delete"


@dataclass
class ConnectAction:
    source: str = ""
    target: str = ""
    source_handle: str | None = None
    target_handle: str | None = None
    action: str = "connect"


NodeAction = Union[AddNodeAction, UpdateNodeAction, DeleteNodeAction, ConnectAction]

_ACTION_TYPE_MAP: dict[str, type] = {
    "add": AddNodeAction,
    "update": UpdateNodeAction,
    "delete": DeleteNodeAction,
    "connect": ConnectAction,
}

# camelCase wire key -> dataclass field
_WIRE_KEYS: dict[str, str] = {
    "nodeType": "node_type",
    "nodeName": "node_name",
    "nodeId": "node_id",
    "sourceHandle": "source_handle",
    "targetHandle": "target_handle",
}
_FIELD_TO_WIRE = {v: k for k, v in _WIRE_KEYS.items()}


def is_new_node_alias(ref: str | None) -> bool:
    return isinstance(ref, str) and ref.startswith(NEW_NODE_PREFIX)


def alias_index(ref: str) -> int | None:
    """1-based index of a ``new_<N>`` alias, or None when the suffix is not a positive int."""
    suffix = ref[len(NEW_NODE_PREFIX):]
    try:
        index = int(suffix)
    except ValueError:
        return None
    return index if index >= 1 else None


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def action_from_dict(d: dict[str, Any]) -> NodeAction:
    """Deserialize a wire dict into a typed action.

    Raises ValueError for a non-dict or an unknown ``action``.
    Unknown keys are silently dropped (forward-compatibility).
    """
    if not isinstance(d, dict):
        raise ValueError(f"Expected an action object, got {type(d).__name__}")
    kind = d.get("action")
    cls = _ACTION_TYPE_MAP.get(kind)  # type: ignore[arg-type]
    if cls is None:
        raise ValueError(
            f"Unknown action: {kind!r}. Valid actions: {list(_ACTION_TYPE_MAP)}"
        )
    valid_fields = set(cls.__dataclass_fields__)
    kwargs: dict[str, Any] = {}
    for key, value in d.items():
        name = _WIRE_KEYS.get(key, key)
        if name in valid_fields and name != "action":
            kwargs[name] = value
    if cls is UpdateNodeAction and not isinstance(kwargs.get("config"), dict):
        kwargs.pop("config", None)
    return cls(**kwargs)


def action_to_dict(action: NodeAction) -> dict[str, Any]:
    """Serialize an action to the camelCase wire shape, omitting None values."""
    out: dict[str, Any] = {"action": action.action}
    for name in action.__dataclass_fields__:
        if name == "action":
            continue
        value = getattr(action, name)
        if value is None:
            continue
        out[_FIELD_TO_WIRE.get(name, name)] = value
    return out


def actions_from_payload(raw: Any) -> list[NodeAction]:
    """Parse a list of wire actions, skipping (and logging) entries that do not parse."""
    if not isinstance(raw, list):
        return []
    actions: list[NodeAction] = []
    for i, item in enumerate(raw):
        try:
            actions.append(action_from_dict(item))
        except ValueError as e:
            logger.warning("Skipping nodeActions[%d]: %s", i, e)
    return actions


def extract_actions_block(content: str) -> tuple[str, dict[str, Any] | None]:
    """Split a fenced ```json:actions block out of raw assistant text.

    Returns (clean_content, payload). payload is None when there is no block
    or it is not a JSON object; the text is then returned unchanged.
    """
    m = _ACTIONS_FENCE_RE.search(content or "")
    if m is None:
        return content, None
    try:
        payload = json.loads(m.group(1))
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed json:actions block")
        return content, None
    if not isinstance(payload, dict):
        return content, None
    clean = (content[:m.start()] + content[m.end():]).strip()
    return clean, payload


# ---------------------------------------------------------------------------
# Validation (advisory)
# ---------------------------------------------------------------------------


def validate_node_actions(actions: list[NodeAction]) -> tuple[list[str], list[str]]:
    """Check a batch for likely generation mistakes. Returns (errors, warnings).

    Errors:
    - an added node no connect touches, when more than one node is added
    - a multi-node generation without an INPUT node
    - a ``new_<N>`` alias pointing past the number of adds in the batch
    Warnings:
    - ``add`` without node_type/node_name, ``update`` without config,
      ``delete``/``update`` without node_id, ``connect`` without endpoints

    Nothing here blocks application; the applier degrades gracefully on its own.
    """
    errors: list[str] = []
    warnings: list[str] = []

    adds = [a for a in actions if isinstance(a, AddNodeAction)]
    connects = [a for a in actions if isinstance(a, ConnectAction)]

    for i, action in enumerate(actions):
        if isinstance(action, AddNodeAction):
            if not action.node_type or not action.node_name:
                warnings.append(f"actions[{i}] add: nodeType and nodeName are required")
        elif isinstance(action, UpdateNodeAction):
            if not action.node_id:
                warnings.append(f"actions[{i}] update: nodeId is required")
            if not action.config:
                warnings.append(f"actions[{i}] update: config is empty")
        elif isinstance(action, DeleteNodeAction):
            if not action.node_id:
                warnings.append(f"actions[{i}] delete: nodeId is required")
        elif isinstance(action, ConnectAction):
            if not action.source or not action.target:
                warnings.append(f"actions[{i}] connect: source and target are required")
            for ref in (action.source, action.target):
                if is_new_node_alias(ref):
                    index = alias_index(ref)
                    if index is None or index > len(adds):
                        errors.append(
                            f"actions[{i}] connect: '{ref}' does not match any added node "
                            f"({len(adds)} added)"
                        )

    if len(adds) > 1:
        touched = {ref for c in connects for ref in (c.source, c.target)}
        for n, add in enumerate(adds, start=1):
            if f"{NEW_NODE_PREFIX}{n}" not in touched:
                errors.append(f"Node '{add.node_name}' ({NEW_NODE_PREFIX}{n}) is isolated")
        if not any((a.node_type or "").upper() == "INPUT" for a in adds):
            errors.append("Generated workflow has no INPUT node as its entry point")

    return errors, warnings
