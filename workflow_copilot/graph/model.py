"""Canonical in-memory representation of a workflow graph.

A workflow is a list of typed nodes plus directed edges between them. The
persistence API stores it as a single ``config`` JSON document:

  {
    "nodes": [
      {
        "id": "process_1718000000000_k3x",
        "type": "PROCESS",
        "name": "Summarize",
        "position": {"x": 100, "y": 250},
        "parentId": "group_1",          # only for nodes inside a GROUP
        "config": {"systemPrompt": "", "userPrompt": "", ...}
      }
    ],
    "edges": [
      {
        "id": "edge-1718000000001-0",
        "source": "input_1",
        "target": "group_1",
        "sourceHandle": null,
        "targetHandle": null,
        "data": {"_originalTarget": "process_1718000000000_k3x"}
      }
    ]
  }

``config`` is treated as opaque data: the copilot reads a few well-known keys
(INPUT ``fields``, PROCESS ``knowledgeItems``) and otherwise only merges or
replaces it.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Fallback canvas position for nodes persisted without one
_DEFAULT_X: float = 100.0
_DEFAULT_Y: float = 100.0

# Edge data key set when a group is collapsed and the edge is re-targeted
ORIGINAL_TARGET_KEY = "_originalTarget"


class NodeType(str, Enum):
    """Closed set of node types the builder knows about."""

    INPUT = "INPUT"
    PROCESS = "PROCESS"
    CODE = "CODE"
    OUTPUT = "OUTPUT"
    CONDITION = "CONDITION"
    LOOP = "LOOP"
    HTTP = "HTTP"
    MERGE = "MERGE"
    NOTIFICATION = "NOTIFICATION"
    IMAGE_GEN = "IMAGE_GEN"
    SWITCH = "SWITCH"
    TRIGGER = "TRIGGER"
    GROUP = "GROUP"
    MCP_TOOL = "MCP_TOOL"

    @classmethod
    def parse(cls, value: Any) -> "NodeType | None":
        """Case-insensitive lookup. Returns None for unknown or non-string values."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str) or not value.strip():
            return None
        key = value.strip().upper().replace("-", "_")
        try:
            return cls(key)
        except ValueError:
            return None


@dataclass
class WorkflowNode:
    """A node on the canvas.

    id:        Unique node ID within the workflow.
    type:      Node type string as stored (usually a NodeType value, but kept
               as a string so unknown types survive a load/save round trip).
    name:      Display name. Also the prefix of ``{{Name.field}}`` references.
    position:  {x, y} canvas coordinates.
    parent_id: ID of the enclosing GROUP node, if any.
    config:    Type-specific configuration (opaque map).
    """

    id: str
    type: str
    name: str
    position: dict[str, float] = field(default_factory=lambda: {"x": _DEFAULT_X, "y": _DEFAULT_Y})
    parent_id: str | None = None
    config: dict[str, Any] = field(default_factory=dict)

    @property
    def node_type(self) -> NodeType | None:
        return NodeType.parse(self.type)

    def is_type(self, node_type: NodeType) -> bool:
        return self.node_type is node_type


@dataclass
class WorkflowEdge:
    """A directed connection from ``source`` to ``target``.

    data may carry ``_originalTarget`` when the edge was re-targeted to a
    collapsed GROUP node; it then names the real child node the edge feeds.
    """

    id: str
    source: str
    target: str
    source_handle: str | None = None
    target_handle: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def original_target(self) -> str | None:
        value = self.data.get(ORIGINAL_TARGET_KEY)
        return value if isinstance(value, str) and value else None


@dataclass
class WorkflowGraph:
    """Nodes and edges of one workflow, in canvas order."""

    nodes: list[WorkflowNode] = field(default_factory=list)
    edges: list[WorkflowEdge] = field(default_factory=list)

    def node_ids(self) -> set[str]:
        """Return the set of all node IDs currently in the graph."""
        return {n.id for n in self.nodes}

    def get_node(self, node_id: str) -> WorkflowNode | None:
        """Find a node by ID. Returns None if not found."""
        return next((n for n in self.nodes if n.id == node_id), None)

    def find_by_name(self, name: str) -> WorkflowNode | None:
        return next((n for n in self.nodes if n.name == name), None)

    def incoming(self, node_id: str) -> list[WorkflowEdge]:
        """Edges whose target is ``node_id`` (in edge order)."""
        return [e for e in self.edges if e.target == node_id]

    def children_of(self, group_id: str) -> list[WorkflowNode]:
        return [n for n in self.nodes if n.parent_id == group_id]

    def to_config(self) -> dict[str, Any]:
        """Convert to the ``{nodes, edges}`` JSON shape the workflow service stores."""
        return {
            "nodes": [_node_to_config(n) for n in self.nodes],
            "edges": [_edge_to_config(e) for e in self.edges],
        }

    def to_config_str(self) -> str:
        """Serialize to a compact JSON string (no whitespace)."""
        return json.dumps(self.to_config(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_config(cls, config: dict[str, Any] | str | None) -> "WorkflowGraph":
        """Parse a stored workflow config into a WorkflowGraph.

        Tolerates missing keys and malformed JSON (returns an empty graph on error).
        Accepts both the flat node shape and the canvas shape where the node
        fields live under ``data``.
        """
        if config is None:
            return cls()
        if isinstance(config, str):
            if not config.strip():
                return cls()
            try:
                config = json.loads(config)
            except json.JSONDecodeError:
                return cls()
        if not isinstance(config, dict):
            return cls()

        nodes: list[WorkflowNode] = []
        for raw in config.get("nodes", []) or []:
            if not isinstance(raw, dict):
                continue
            # Canvas-shaped nodes keep name/type/config under "data"
            data = raw.get("data") if isinstance(raw.get("data"), dict) else {}
            nodes.append(WorkflowNode(
                id=str(raw.get("id", "")),
                type=str(data.get("type") or raw.get("type") or ""),
                name=str(data.get("name") or raw.get("name") or ""),
                position=dict(raw.get("position") or {"x": _DEFAULT_X, "y": _DEFAULT_Y}),
                parent_id=raw.get("parentId") or None,
                config=copy.deepcopy(data.get("config") or raw.get("config") or {}),
            ))

        edges: list[WorkflowEdge] = []
        for raw in config.get("edges", []) or []:
            if not isinstance(raw, dict):
                continue
            edges.append(WorkflowEdge(
                id=str(raw.get("id", "")),
                source=str(raw.get("source", "")),
                target=str(raw.get("target", "")),
                source_handle=raw.get("sourceHandle"),
                target_handle=raw.get("targetHandle"),
                data=copy.deepcopy(raw.get("data") or {}),
            ))

        return cls(nodes=nodes, edges=edges)


def _node_to_config(node: WorkflowNode) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": node.id,
        "type": node.type,
        "name": node.name,
        "position": dict(node.position),
        "config": copy.deepcopy(node.config),
    }
    if node.parent_id:
        out["parentId"] = node.parent_id
    return out


def _edge_to_config(edge: WorkflowEdge) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": edge.id,
        "source": edge.source,
        "target": edge.target,
        "sourceHandle": edge.source_handle,
        "targetHandle": edge.target_handle,
    }
    if edge.data:
        out["data"] = copy.deepcopy(edge.data)
    return out
