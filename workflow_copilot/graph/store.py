"""Mutable workflow graph store.

WorkflowStore is the one place the live graph is mutated. It enforces the
structural invariants the rest of the copilot relies on:

  - edge endpoints always reference existing nodes
  - deleting a node drops every edge touching it
  - identical connections (same endpoints and handles) are not duplicated

Callers that want a stable view (reference resolution, context building)
should work on ``store.graph`` between mutations or take ``snapshot()``.
"""

from __future__ import annotations

import copy
import logging
import time
from typing import Any, Callable

from workflow_copilot.graph.model import WorkflowEdge, WorkflowGraph, WorkflowNode

logger = logging.getLogger("workflow_copilot.graph.store")


class WorkflowStore:
    """Single-writer container for one workflow's nodes and edges."""

    def __init__(
        self,
        graph: WorkflowGraph | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.graph = graph or WorkflowGraph()
        self.selected_node_id: str | None = None
        self._dirty = False
        # Bumped on every mutation
        self.revision = 0
        self._clock = clock
        self._edge_seq = 0

    @classmethod
    def from_config(cls, config: dict[str, Any] | str | None) -> "WorkflowStore":
        return cls(WorkflowGraph.from_config(config))

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    @property
    def nodes(self) -> list[WorkflowNode]:
        return self.graph.nodes

    @property
    def edges(self) -> list[WorkflowEdge]:
        return self.graph.edges

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    def get_node(self, node_id: str) -> WorkflowNode | None:
        return self.graph.get_node(node_id)

    def snapshot(self) -> WorkflowGraph:
        """Deep copy of the current graph."""
        return copy.deepcopy(self.graph)

    def to_config(self) -> dict[str, Any]:
        return self.graph.to_config()

    def mark_saved(self, revision: int | None = None) -> None:
        """Clear the dirty flag.

        With ``revision``, the flag is only cleared when no mutation happened
        since that revision was read, so edits made while a save was in flight
        stay dirty.
        """
        if revision is not None and revision != self.revision:
            logger.debug("Save covered revision %d, store is at %d", revision, self.revision)
            return
        self._dirty = False

    def select_node(self, node_id: str | None) -> None:
        self.selected_node_id = node_id

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _touch(self) -> None:
        self._dirty = True
        self.revision += 1

    def add_node(self, node: WorkflowNode) -> None:
        if self.graph.get_node(node.id) is not None:
            raise ValueError(f"node_id '{node.id}' already exists in graph")
        self.graph.nodes.append(node)
        self._touch()
        logger.debug("Node added: %s (%s)", node.id, node.type)

    def update_node_config(self, node_id: str, config: dict[str, Any]) -> bool:
        """Replace a node's config. Returns False when the node does not exist."""
        node = self.graph.get_node(node_id)
        if node is None:
            return False
        node.config = config
        self._touch()
        return True

    def rename_node(self, node_id: str, name: str) -> bool:
        node = self.graph.get_node(node_id)
        if node is None:
            return False
        node.name = name
        self._touch()
        return True

    def delete_node(self, node_id: str) -> bool:
        """Remove a node and every edge touching it. Returns False when absent."""
        node = self.graph.get_node(node_id)
        if node is None:
            return False
        self.graph.nodes = [n for n in self.graph.nodes if n.id != node_id]
        before = len(self.graph.edges)
        self.graph.edges = [
            e for e in self.graph.edges if e.source != node_id and e.target != node_id
        ]
        if self.selected_node_id == node_id:
            self.selected_node_id = None
        self._touch()
        logger.debug(
            "Node deleted: %s (%d edges dropped)", node_id, before - len(self.graph.edges),
        )
        return True

    def connect(
        self,
        source: str,
        target: str,
        source_handle: str | None = None,
        target_handle: str | None = None,
    ) -> WorkflowEdge | None:
        """Add an edge between two existing nodes.

        Returns the new edge, the existing edge for an identical connection,
        or None when either endpoint is missing.
        """
        if self.graph.get_node(source) is None or self.graph.get_node(target) is None:
            logger.warning("connect %s -> %s refused: endpoint not in graph", source, target)
            return None

        for edge in self.graph.edges:
            if (
                edge.source == source
                and edge.target == target
                and edge.source_handle == source_handle
                and edge.target_handle == target_handle
            ):
                return edge

        edge = WorkflowEdge(
            id=f"edge-{int(self._clock() * 1000)}-{self._edge_seq}",
            source=source,
            target=target,
            source_handle=source_handle,
            target_handle=target_handle,
        )
        self._edge_seq += 1
        self.graph.edges.append(edge)
        self._touch()
        return edge
