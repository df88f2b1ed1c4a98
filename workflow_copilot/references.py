"""Upstream reference resolution for the prompt editor.

Given a target node, find every node whose output can flow into it and list
the ``{{NodeName.field}}`` tokens the user may insert into a prompt.

Predecessor discovery walks edges backwards from the target:

  1. every edge whose target is the current node contributes its source
  2. a node inside a GROUP also receives edges that end at the group, when the
     edge carries no ``_originalTarget`` (applies to all children) or when
     ``_originalTarget`` names this node (a collapsed-group edge)
  3. the enclosing group's own predecessors are walked as well (nested groups)

A ``visited`` set bounds the walk, so user-created cycles terminate and no
node is listed twice. Predecessors that are GROUP nodes contribute their
children; the group itself has nothing to reference.

Nothing here raises for data problems: unknown targets or isolated nodes
simply produce an empty list.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from workflow_copilot.graph.model import NodeType, WorkflowGraph, WorkflowNode

# Keys every executed node may expose, in the order the selector shows them.
STANDARD_OUTPUT_FIELD_KEYS: tuple[str, ...] = (
    "结果",
    "result",
    "model",
    "images",
    "imageUrls",
    "videos",
    "audio",
    "text",
    "taskId",
    "toolCalls",
    "toolCallRounds",
    "_meta",
)

OUTPUT_FIELD_LABELS: dict[str, str] = {
    "结果": "结果 (recommended)",
    "result": "result (compat)",
    "imageUrls": "image URL list",
    "images": "images (raw)",
    "videos": "videos",
    "audio": "audio",
    "text": "text (tool output)",
    "model": "model",
    "_meta": "metadata",
    "taskId": "task ID",
    "toolCalls": "tool calls",
    "toolCallRounds": "tool call rounds",
}

KNOWLEDGE_SEGMENT = "知识库"

# Depth used when exposing nested paths of a real execution output
_DYNAMIC_PATH_DEPTH = 2

_REFERENCE_RE = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class ReferenceField:
    """One insertable reference.

    kind: "field" (INPUT field), "knowledge" (knowledge item) or "output".
    """

    id: str
    name: str
    kind: str
    reference: str


@dataclass
class ReferenceOption:
    """All references exposed by one upstream node."""

    node_id: str
    node_name: str
    node_type: str
    fields: list[ReferenceField] = field(default_factory=list)

    def references(self) -> list[str]:
        return [f.reference for f in self.fields]


@dataclass(frozen=True)
class ParsedReference:
    """A parsed ``{{...}}`` token: ``node_name`` plus an optional dotted ``path``."""

    raw: str
    node_name: str
    path: str | None = None

    @property
    def is_input_slot(self) -> bool:
        return self.node_name == "inputs" and bool(self.path)


# ---------------------------------------------------------------------------
# Reference token parsing
# ---------------------------------------------------------------------------


def parse_reference(text: str) -> ParsedReference | None:
    """Parse a single reference token such as ``{{Node.field}}``.

    Returns None when ``text`` is not exactly one well-formed token.
    """
    if not isinstance(text, str):
        return None
    m = _REFERENCE_RE.fullmatch(text.strip())
    if m is None:
        return None
    return _parsed(m)


def find_references(text: str) -> list[ParsedReference]:
    """All reference tokens in ``text`` in order of appearance (duplicates kept)."""
    if not text:
        return []
    return [p for p in (_parsed(m) for m in _REFERENCE_RE.finditer(text)) if p is not None]


def _parsed(m: re.Match[str]) -> ParsedReference | None:
    body = m.group(1).strip()
    if not body:
        return None
    head, _, rest = body.partition(".")
    head = head.strip()
    if not head:
        return None
    return ParsedReference(raw=m.group(0), node_name=head, path=rest.strip() or None)


# ---------------------------------------------------------------------------
# Predecessor discovery
# ---------------------------------------------------------------------------


def list_predecessor_ids(graph: WorkflowGraph, node_id: str) -> set[str]:
    """IDs of every node upstream of ``node_id``, with GROUP predecessors expanded.

    In a cyclic graph the target itself can be its own predecessor; it is
    still listed at most once.
    """
    if graph.get_node(node_id) is None:
        return set()

    predecessors: set[str] = set()
    visited: set[tuple[str, str | None]] = set()
    # (node, child) pairs: child is the node or group climbed from, so
    # collapsed-group edges aimed at a sibling of it are skipped
    stack: list[tuple[str, str | None]] = [(node_id, None)]

    while stack:
        current, child = stack.pop()
        if (current, child) in visited:
            continue
        visited.add((current, child))

        for edge in graph.incoming(current):
            original = edge.original_target
            if child is not None and original is not None and original != child:
                continue
            if edge.source not in predecessors:
                predecessors.add(edge.source)
                stack.append((edge.source, None))

        current_node = graph.get_node(current)
        if current_node is not None and current_node.parent_id:
            stack.append((current_node.parent_id, current))

    group_ids = {
        pid for pid in predecessors
        if (n := graph.get_node(pid)) is not None and n.is_type(NodeType.GROUP)
    }
    for node in graph.nodes:
        if node.parent_id and node.parent_id in group_ids:
            predecessors.add(node.id)

    return predecessors


# ---------------------------------------------------------------------------
# Field generation
# ---------------------------------------------------------------------------


def _strip_code_fence(text: str) -> str:
    trimmed = text.strip()
    if not trimmed.startswith("```"):
        return trimmed
    lines = trimmed.split("\n")
    if len(lines) < 3 or not lines[-1].startswith("```"):
        return trimmed
    return "\n".join(lines[1:-1]).strip()


def _parse_json_like(text: str) -> Any:
    """Parse JSON from model output, tolerating code fences and surrounding prose."""
    candidate = _strip_code_fence(text)
    if not candidate:
        return None
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        start = candidate.find("{")
        end = candidate.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            return json.loads(candidate[start:end + 1])
        except json.JSONDecodeError:
            return None


def _flatten_paths(value: Any, prefix: str, max_depth: int, depth: int = 0) -> list[str]:
    if depth >= max_depth or not isinstance(value, (dict, list)):
        return []

    if isinstance(value, list):
        # Arrays expose themselves plus "<prefix>.0.<key>" for an object first element
        paths = [prefix] if prefix else []
        first = value[0] if value else None
        if isinstance(first, dict):
            base = f"{prefix}.0" if prefix else "0"
            paths.extend(f"{base}.{k}" for k in first)
        return paths

    paths: list[str] = []
    for key, child in value.items():
        nxt = f"{prefix}.{key}" if prefix else str(key)
        paths.append(nxt)
        paths.extend(_flatten_paths(child, nxt, max_depth, depth + 1))
    return paths


def _output_fields(node: WorkflowNode, latest_output: Any = None) -> list[ReferenceField]:
    name = node.name
    fields = [ReferenceField(
        id=f"{node.id}_output_all",
        name="full output",
        kind="output",
        reference=f"{{{{{name}}}}}",
    )]
    for key in STANDARD_OUTPUT_FIELD_KEYS:
        fields.append(ReferenceField(
            id=f"{node.id}_output_{key}",
            name=OUTPUT_FIELD_LABELS.get(key, key),
            kind="output",
            reference=f"{{{{{name}.{key}}}}}",
        ))

    if isinstance(latest_output, dict):
        dynamic: list[str] = []
        for key, child in latest_output.items():
            dynamic.append(str(key))
            dynamic.extend(_flatten_paths(child, str(key), _DYNAMIC_PATH_DEPTH))

        raw_text = latest_output.get("结果") or latest_output.get("result")
        if isinstance(raw_text, str) and raw_text:
            parsed = _parse_json_like(raw_text)
            if isinstance(parsed, (dict, list)):
                dynamic.extend(_flatten_paths(parsed, "", _DYNAMIC_PATH_DEPTH))

        for path in dynamic:
            if not path:
                continue
            fields.append(ReferenceField(
                id=f"{node.id}_output_dynamic_{path}",
                name=f"output: {path}",
                kind="output",
                reference=f"{{{{{name}.{path}}}}}",
            ))

    seen: set[str] = set()
    unique: list[ReferenceField] = []
    for f in fields:
        if f.reference in seen:
            continue
        seen.add(f.reference)
        unique.append(f)
    return unique


def _knowledge_fields(node_name: str, items: list[dict[str, Any]]) -> list[ReferenceField]:
    fields: list[ReferenceField] = []
    for kb in items:
        if not isinstance(kb, dict) or not kb.get("name"):
            continue
        fields.append(ReferenceField(
            id=str(kb.get("id") or kb["name"]),
            name=f"knowledge: {kb['name']}",
            kind="knowledge",
            reference=f"{{{{{node_name}.{KNOWLEDGE_SEGMENT}.{kb['name']}}}}}",
        ))
    return fields


def node_reference_fields(
    node: WorkflowNode,
    latest_output: Any = None,
) -> list[ReferenceField]:
    """Fields a single node exposes to its downstream nodes."""
    if node.is_type(NodeType.INPUT):
        fields: list[ReferenceField] = []
        for f in node.config.get("fields") or []:
            if not isinstance(f, dict) or not f.get("name"):
                continue
            fields.append(ReferenceField(
                id=str(f.get("id") or f["name"]),
                name=str(f["name"]),
                kind="field",
                reference=f"{{{{{node.name}.{f['name']}}}}}",
            ))
        return fields

    if node.is_type(NodeType.PROCESS):
        knowledge = _knowledge_fields(node.name, node.config.get("knowledgeItems") or [])
        return knowledge + _output_fields(node, latest_output)

    return _output_fields(node, latest_output)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def compute_available_references(
    graph: WorkflowGraph,
    target_node_id: str,
    knowledge_items: list[dict[str, Any]] | None = None,
    execution_outputs: dict[str, Any] | None = None,
) -> list[ReferenceOption]:
    """List the references usable inside ``target_node_id``'s prompts.

    Parameters
    ----------
    graph:             Current workflow graph.
    target_node_id:    Node being edited.
    knowledge_items:   Knowledge items attached to the target node itself;
                       appended as a final "<Name> 知识库" option.
    execution_outputs: {node_id -> last execution output}; when present, real
                       output keys are offered in addition to the standard ones.

    Options follow canvas node order. Returns [] when the target is unknown or
    has no predecessors (and no own knowledge items).
    """
    target = graph.get_node(target_node_id)
    if target is None:
        return []

    outputs = execution_outputs or {}
    predecessor_ids = list_predecessor_ids(graph, target_node_id)

    options: list[ReferenceOption] = []
    for node in graph.nodes:
        if node.id not in predecessor_ids or node.is_type(NodeType.GROUP):
            continue
        fields = node_reference_fields(node, outputs.get(node.id))
        if fields:
            options.append(ReferenceOption(
                node_id=node.id,
                node_name=node.name,
                node_type=(node.type or "unknown").lower(),
                fields=fields,
            ))

    if knowledge_items:
        kb_fields = _knowledge_fields(target.name, knowledge_items)
        for f in kb_fields:
            f.name = f.name.removeprefix("knowledge: ")
        if kb_fields:
            options.append(ReferenceOption(
                node_id="current_knowledge",
                node_name=f"{target.name} {KNOWLEDGE_SEGMENT}",
                node_type="knowledge",
                fields=kb_fields,
            ))

    return options
