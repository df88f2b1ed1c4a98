"""HTTP clients for the assistant endpoints and the workflow persistence API."""

from workflow_copilot.client.assistant_client import AssistantClient
from workflow_copilot.client.config import AssistantSettings
from workflow_copilot.client.workflow_service import WorkflowServiceClient, flush_graph

__all__ = ["AssistantClient", "AssistantSettings", "WorkflowServiceClient", "flush_graph"]
