"""Plain-text workflow summary sent with every chat request."""

from __future__ import annotations

from workflow_copilot.graph.model import WorkflowGraph
from workflow_copilot.graph.node_configs import summarize_config

EMPTY_CANVAS = "The canvas is empty; the workflow has no nodes yet."


def build_workflow_context(graph: WorkflowGraph) -> str:
    """Describe nodes (name, ID, type, position, config summary) and edges.

    Edges are rendered by node name, falling back to the raw ID for dangling
    endpoints.
    """
    if not graph.nodes:
        return EMPTY_CANVAS

    node_lines = []
    for node in graph.nodes:
        x = round(float(node.position.get("x", 0) or 0))
        y = round(float(node.position.get("y", 0) or 0))
        node_lines.append(
            f'- Node "{node.name}" (ID: {node.id}, type: {node.type})\n'
            f"  position: ({x}, {y})\n"
            f"  config: {summarize_config(node)}"
        )

    names = {n.id: n.name for n in graph.nodes}
    if graph.edges:
        edge_lines = "\n".join(
            f"- {names.get(e.source) or e.source} → {names.get(e.target) or e.target}"
            for e in graph.edges
        )
    else:
        edge_lines = "no connections"

    return (
        "Current workflow:\n"
        f"nodes: {len(graph.nodes)}\n"
        f"edges: {len(graph.edges)}\n"
        "\n"
        "Nodes:\n"
        + "\n".join(node_lines)
        + "\n\nConnections:\n"
        + edge_lines
    )
