"""Async client for the workflow persistence API (/api/workflows/{id})."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from workflow_copilot.client.config import AssistantSettings
from workflow_copilot.graph.store import WorkflowStore

logger = logging.getLogger("workflow_copilot.client.workflows")


class WorkflowServiceClient:
    """Thin async wrapper around workflow get/update/delete.

    Failures are logged and returned as ``{"error": ...}`` dicts; a version
    conflict keeps the server's ``currentVersion`` alongside.
    """

    def __init__(
        self,
        settings: AssistantSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.base_url,
            headers=settings.headers,
            timeout=httpx.Timeout(settings.chat_timeout, connect=10.0),
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> WorkflowServiceClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _unwrap(body: Any) -> Any:
        if isinstance(body, dict) and body.get("success") is True and "data" in body:
            return body["data"]
        return body

    @staticmethod
    def _error_from(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            body = None
        out: dict[str, Any] = {"error": f"HTTP {response.status_code}", "detail": response.text}
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict):
                out["detail"] = error.get("message") or out["detail"]
                details = error.get("details")
                if isinstance(details, dict) and "currentVersion" in details:
                    out["current_version"] = details["currentVersion"]
            elif isinstance(error, str):
                out["detail"] = error
            if "currentVersion" in body:
                out["current_version"] = body["currentVersion"]
        return out

    async def _send(self, method: str, path: str, payload: dict | None = None) -> Any:
        try:
            r = await self._client.request(method, path, json=payload)
            r.raise_for_status()
            return self._unwrap(r.json()) if r.text.strip() else {"success": True}
        except httpx.HTTPStatusError as e:
            logger.error("%s %s -> %s", method, path, e.response.status_code)
            return self._error_from(e.response)
        except (httpx.HTTPError, ValueError) as e:
            logger.error("%s %s failed: %s", method, path, e)
            return {"error": str(e)}

    # ==================================================================
    # WORKFLOWS
    # ==================================================================

    async def get_by_id(self, workflow_id: str) -> Any:
        return await self._send("GET", f"/api/workflows/{workflow_id}")

    async def update(
        self,
        workflow_id: str,
        name: str | None = None,
        description: str | None = None,
        config: dict[str, Any] | None = None,
        is_active: bool | None = None,
        category: str | None = None,
        tags: list[str] | None = None,
        expected_version: int | None = None,
        force_overwrite: bool | None = None,
    ) -> Any:
        """PUT /api/workflows/{id}. Only the arguments that are set are sent.

        With ``expected_version`` the server refuses (409) to overwrite a newer
        version unless ``force_overwrite`` is true.
        """
        fields = {
            "name": name,
            "description": description,
            "config": config,
            "isActive": is_active,
            "category": category,
            "tags": tags,
            "expectedVersion": expected_version,
            "forceOverwrite": force_overwrite,
        }
        payload = {k: v for k, v in fields.items() if v is not None}
        return await self._send("PUT", f"/api/workflows/{workflow_id}", payload)

    async def delete(self, workflow_id: str) -> Any:
        return await self._send("DELETE", f"/api/workflows/{workflow_id}")


def workflow_config_of(record: Any) -> dict[str, Any] | None:
    """Pull the graph config out of a get_by_id() result (None on error)."""
    if not isinstance(record, dict) or "error" in record:
        return None
    config = record.get("config")
    return config if isinstance(config, (dict, str)) else None


async def flush_graph(
    service: WorkflowServiceClient,
    workflow_id: str,
    store: WorkflowStore,
    expected_version: int | None = None,
) -> Any:
    """Persist the store's graph; marks the store saved when the server accepts it.

    Edits applied while the request is in flight keep the store dirty.
    """
    revision = store.revision
    result = await service.update(
        workflow_id, config=store.to_config(), expected_version=expected_version,
    )
    if isinstance(result, dict) and "error" in result:
        logger.warning("Saving workflow %s failed: %s", workflow_id, result.get("detail") or result["error"])
        return result
    store.mark_saved(revision)
    logger.info("Workflow %s saved (%d nodes, %d edges)", workflow_id, len(store.nodes), len(store.edges))
    return result
