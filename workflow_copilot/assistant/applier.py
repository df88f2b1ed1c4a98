"""Replays assistant node actions against the live workflow store.

apply_node_actions is the single write path from the assistant into the
graph. It processes actions strictly in order and never aborts a batch: each
action yields an ActionOutcome, and user-facing feedback goes through the
Notifier instead of exceptions.

Alias resolution happens in two steps. Every successful ``add`` binds the
next ``new_<N>`` alias to its generated ID in an AliasMap; a later
``connect`` looks its endpoints up there. A ``connect`` whose endpoint does
not resolve (unknown alias, failed add, missing node) is skipped silently.
"""

from __future__ import annotations

import logging
import random
import string
import time
from dataclasses import dataclass, field
from typing import Callable

from workflow_copilot.assistant.actions import (
    AddNodeAction,
    ConnectAction,
    DeleteNodeAction,
    NodeAction,
    UpdateNodeAction,
    alias_index,
    is_new_node_alias,
)
from workflow_copilot.graph.model import WorkflowNode
from workflow_copilot.graph.node_configs import default_config
from workflow_copilot.graph.store import WorkflowStore
from workflow_copilot.notify import LoggingNotifier, Notifier

logger = logging.getLogger("workflow_copilot.assistant.applier")

_ID_ALPHABET = string.digits + string.ascii_lowercase
_ID_SUFFIX_LEN = 3

# Default placement for nodes added without a position (pixels)
_START_X: float = 100.0
_START_Y: float = 100.0
_X_JITTER: float = 200.0
_ROW_HEIGHT: float = 150.0

APPLIED = "applied"
NOT_FOUND = "not_found"
SKIPPED = "skipped"
INVALID = "invalid"


@dataclass
class ActionOutcome:
    """Result of one action.

    status:  "applied" | "not_found" | "skipped" | "invalid"
    node_id: Node the action touched (generated ID for adds).
    edge_id: Edge created (or matched) by a connect.
    """

    index: int
    action: str
    status: str
    node_id: str | None = None
    edge_id: str | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == APPLIED


@dataclass
class ApplyReport:
    outcomes: list[ActionOutcome] = field(default_factory=list)
    added_ids: list[str] = field(default_factory=list)

    @property
    def graph_changed(self) -> bool:
        """True when at least one add, update or delete was applied."""
        return any(o.ok and o.action != "connect" for o in self.outcomes)

    @property
    def errors(self) -> list[str]:
        return [o.message for o in self.outcomes if o.status in (NOT_FOUND, INVALID)]

    @property
    def edges_created(self) -> list[str]:
        return [o.edge_id for o in self.outcomes if o.action == "connect" and o.edge_id]


class AliasMap:
    """Maps ``new_<N>`` aliases to the IDs generated for adds, in add order."""

    def __init__(self) -> None:
        self._ids: list[str] = []

    def bind(self, node_id: str) -> str:
        self._ids.append(node_id)
        return f"new_{len(self._ids)}"

    def resolve(self, ref: str | None) -> str | None:
        """Return the concrete node ID for ``ref`` (literal IDs pass through)."""
        if not ref:
            return None
        if not is_new_node_alias(ref):
            return ref
        index = alias_index(ref)
        if index is None or index > len(self._ids):
            return None
        return self._ids[index - 1]

    @property
    def ids(self) -> list[str]:
        return list(self._ids)


def generate_node_id(
    node_type: str,
    clock: Callable[[], float] = time.time,
    rng: random.Random | None = None,
) -> str:
    """``{lower(node_type)}_{epoch_ms}_{3 base36 chars}``."""
    rng = rng or random
    suffix = "".join(rng.choice(_ID_ALPHABET) for _ in range(_ID_SUFFIX_LEN))
    return f"{node_type.lower()}_{int(clock() * 1000)}_{suffix}"


def default_position(node_count: int, rng: random.Random | None = None) -> dict[str, float]:
    rng = rng or random
    return {
        "x": _START_X + rng.random() * _X_JITTER,
        "y": _START_Y + node_count * _ROW_HEIGHT,
    }


def apply_node_actions(
    actions: list[NodeAction],
    store: WorkflowStore,
    notifier: Notifier | None = None,
    clock: Callable[[], float] = time.time,
    rng: random.Random | None = None,
) -> ApplyReport:
    """Apply ``actions`` to ``store`` in order and report per-action outcomes.

    - add:     new node with a generated ID; default position and per-type
               default config when omitted
    - update:  shallow merge of ``config`` onto the node's config
    - delete:  node removal (the store drops its edges)
    - connect: edge between resolved endpoints; unresolved → silently skipped

    ``report.graph_changed`` tells the caller whether the workflow needs a
    re-test. Connect-only batches never set it.
    """
    notifier = notifier or LoggingNotifier()
    report = ApplyReport()
    aliases = AliasMap()

    for index, action in enumerate(actions):

        # ------------------------------------------------------------------
        # add
        # ------------------------------------------------------------------
        if isinstance(action, AddNodeAction):
            if not action.node_type or not action.node_name:
                report.outcomes.append(ActionOutcome(
                    index, "add", INVALID, message=f"actions[{index}] add: nodeType and nodeName are required",
                ))
                continue
            node_id = generate_node_id(action.node_type, clock, rng)
            while store.get_node(node_id) is not None:
                node_id = generate_node_id(action.node_type, clock, rng)
            store.add_node(WorkflowNode(
                id=node_id,
                type=action.node_type.upper(),
                name=action.node_name,
                position=dict(action.position) if action.position else default_position(len(store.nodes), rng),
                config=dict(action.config) if action.config else default_config(action.node_type),
            ))
            aliases.bind(node_id)
            report.added_ids.append(node_id)
            report.outcomes.append(ActionOutcome(index, "add", APPLIED, node_id=node_id))
            notifier.success(f"Added node: {action.node_name}")

        # ------------------------------------------------------------------
        # connect
        # ------------------------------------------------------------------
        elif isinstance(action, ConnectAction):
            source_id = aliases.resolve(action.source)
            target_id = aliases.resolve(action.target)
            edge = None
            if source_id and target_id:
                edge = store.connect(source_id, target_id, action.source_handle, action.target_handle)
            if edge is None:
                logger.warning(
                    "Skipping connect %s -> %s: endpoint did not resolve",
                    action.source, action.target,
                )
                report.outcomes.append(ActionOutcome(
                    index, "connect", SKIPPED,
                    message=f"connect {action.source} -> {action.target} skipped",
                ))
                continue
            report.outcomes.append(ActionOutcome(index, "connect", APPLIED, edge_id=edge.id))

        # ------------------------------------------------------------------
        # update
        # ------------------------------------------------------------------
        elif isinstance(action, UpdateNodeAction):
            if not action.node_id or not action.config:
                report.outcomes.append(ActionOutcome(
                    index, "update", INVALID, node_id=action.node_id or None,
                    message=f"actions[{index}] update: nodeId and config are required",
                ))
                continue
            node = store.get_node(action.node_id)
            if node is None:
                message = f"Node not found: {action.node_id}"
                notifier.error(message)
                report.outcomes.append(ActionOutcome(
                    index, "update", NOT_FOUND, node_id=action.node_id, message=message,
                ))
                continue
            store.update_node_config(action.node_id, {**(node.config or {}), **action.config})
            report.outcomes.append(ActionOutcome(index, "update", APPLIED, node_id=action.node_id))
            notifier.success(f"Updated node: {action.node_name or node.name or action.node_id}")

        # ------------------------------------------------------------------
        # delete
        # ------------------------------------------------------------------
        elif isinstance(action, DeleteNodeAction):
            if not action.node_id:
                report.outcomes.append(ActionOutcome(
                    index, "delete", INVALID, message=f"actions[{index}] delete: nodeId is required",
                ))
                continue
            node = store.get_node(action.node_id)
            if node is None:
                message = f"Node not found: {action.node_id}"
                notifier.error(message)
                report.outcomes.append(ActionOutcome(
                    index, "delete", NOT_FOUND, node_id=action.node_id, message=message,
                ))
                continue
            store.delete_node(action.node_id)
            report.outcomes.append(ActionOutcome(index, "delete", APPLIED, node_id=action.node_id))
            notifier.success(f"Deleted node: {action.node_name or node.name or action.node_id}")

    logger.info(
        "Applied %d/%d node actions (%d added, graph_changed=%s)",
        sum(1 for o in report.outcomes if o.ok), len(actions),
        len(report.added_ids), report.graph_changed,
    )
    return report
