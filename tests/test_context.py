"""Workflow context text sent with each chat request."""

from __future__ import annotations

from workflow_copilot.context import EMPTY_CANVAS, build_workflow_context
from workflow_copilot.graph import WorkflowGraph


class TestBuildWorkflowContext:
    def test_empty(self):
        assert build_workflow_context(WorkflowGraph()) == EMPTY_CANVAS

    def test_nodes_and_edges(self):
        graph = WorkflowGraph.from_config({
            "nodes": [
                {"id": "in", "type": "INPUT", "name": "Input", "position": {"x": 10.4, "y": 20.6},
                 "config": {"fields": [{"name": "topic"}]}},
                {"id": "p", "type": "PROCESS", "name": "Writer", "config": {"model": "m"}},
            ],
            "edges": [
                {"id": "e1", "source": "in", "target": "p"},
                {"id": "e2", "source": "p", "target": "ghost"},
            ],
        })
        text = build_workflow_context(graph)
        assert text.startswith("Current workflow:\nnodes: 2\nedges: 2\n")
        assert '- Node "Input" (ID: in, type: INPUT)\n  position: (10, 21)' in text
        assert "config: input fields: topic" in text
        assert "- Input → Writer" in text
        assert "- Writer → ghost" in text

    def test_no_connections(self):
        graph = WorkflowGraph.from_config({"nodes": [{"id": "a", "type": "CODE", "name": "A"}]})
        assert build_workflow_context(graph).endswith("Connections:\nno connections")
