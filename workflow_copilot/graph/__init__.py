"""Workflow graph model, per-type config defaults and the mutable graph store."""

from workflow_copilot.graph.model import NodeType, WorkflowEdge, WorkflowGraph, WorkflowNode
from workflow_copilot.graph.node_configs import default_config, summarize_config
from workflow_copilot.graph.store import WorkflowStore

__all__ = [
    "NodeType",
    "WorkflowEdge",
    "WorkflowGraph",
    "WorkflowNode",
    "WorkflowStore",
    "default_config",
    "summarize_config",
]
