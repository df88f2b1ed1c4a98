"""Async client for the assistant endpoints of the workflow builder back end."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from workflow_copilot.client.config import AssistantSettings
from workflow_copilot.errors import (
    AssistantError,
    ErrorCode,
    classify_error_message,
    extract_error_message,
    from_transport_error,
)

logger = logging.getLogger("workflow_copilot.client.assistant")

# Chat modes whose server-side prompt carries a full test result
LONG_RUNNING_MODES = frozenset({"test_analysis", "node_diagnosis"})
# Seconds the server may spend executing a synchronous test run
SERVER_TEST_TIMEOUT = 120


def _unwrap(payload: Any) -> Any:
    if isinstance(payload, dict) and "success" in payload and isinstance(payload.get("data"), dict):
        return payload["data"]
    return payload


class AssistantClient:
    """Thin async wrapper around the assistant REST API.

    Unlike the workflow service client, every method raises AssistantError on
    failure: the orchestrator needs the error class to decide between a
    retry, a user-facing message and silence.
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

    async def __aenter__(self) -> AssistantClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        timeout: float,
        payload: dict | None = None,
        params: dict | None = None,
    ) -> Any:
        what = f"{method} {path}"
        try:
            r = await self._client.request(method, path, json=payload, params=params, timeout=timeout)
        except httpx.TransportError as e:
            logger.error("%s failed: %s", what, e)
            raise from_transport_error(e, what) from e

        try:
            body = r.json() if r.content else {}
        except ValueError:
            body = None

        if r.is_error:
            message = extract_error_message(body, r.status_code)
            logger.error("%s -> %s: %s", what, r.status_code, message)
            raise classify_error_message(message, r.status_code)

        if body is None:
            logger.error("%s returned a non-JSON body", what)
            raise AssistantError(
                ErrorCode.INVALID_JSON_RESPONSE,
                f"{what} returned a non-JSON body",
                retryable=True,
                status_code=r.status_code,
            )
        return _unwrap(body)

    async def _request_object(self, method: str, path: str, timeout: float, **kwargs: Any) -> dict[str, Any]:
        result = await self._request(method, path, timeout, **kwargs)
        if not isinstance(result, dict):
            what = f"{method} {path}"
            logger.error("%s returned %s, expected an object", what, type(result).__name__)
            raise AssistantError(
                ErrorCode.INVALID_JSON_RESPONSE,
                f"{what} returned {type(result).__name__}, expected an object",
                retryable=True,
            )
        return result

    # ==================================================================
    # CHAT
    # ==================================================================

    async def chat(self, request: dict[str, Any]) -> dict[str, Any]:
        """POST /api/ai-assistant/chat. Returns the unwrapped reply payload.

        Modes that analyse a test result get the longer analysis timeout.
        """
        mode = request.get("mode")
        timeout = (
            self._settings.analysis_timeout
            if mode in LONG_RUNNING_MODES
            else self._settings.chat_timeout
        )
        logger.info("Chat request (mode=%s, timeout=%.0fs)", mode or "normal", timeout)
        return await self._request("POST", "/api/ai-assistant/chat", timeout, payload=request)

    # ==================================================================
    # TESTING
    # ==================================================================

    async def trigger_test(
        self,
        workflow_id: str,
        test_input: dict[str, Any] | None = None,
        timeout: int = SERVER_TEST_TIMEOUT,
    ) -> dict[str, Any]:
        """POST /api/ai-assistant/test. ``timeout`` is the server-side budget in seconds."""
        payload = {"workflowId": workflow_id, "testInput": test_input or {}, "timeout": timeout}
        return await self._request_object(
            "POST", "/api/ai-assistant/test", self._settings.test_timeout, payload=payload,
        )

    async def get_test_status(self, execution_id: str) -> dict[str, Any]:
        """GET /api/ai-assistant/test-status?id=... — one poll of a running execution."""
        return await self._request_object(
            "GET", "/api/ai-assistant/test-status", self._settings.provider_timeout,
            params={"id": execution_id},
        )

    # ==================================================================
    # OPTIMIZATION
    # ==================================================================

    async def optimize(
        self,
        workflow_id: str,
        test_result: dict[str, Any],
        target_criteria: str = "",
        model: str | None = None,
        direction: str = "auto",
        multiple_schemes: bool = False,
        previous_optimizations: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "workflowId": workflow_id,
            "testResult": test_result,
            "targetCriteria": target_criteria,
            "model": model,
            "optimizationDirection": direction,
            "multipleSchemes": multiple_schemes,
        }
        if previous_optimizations:
            payload["previousOptimizations"] = previous_optimizations
        return await self._request(
            "POST", "/api/ai-assistant/optimize", self._settings.chat_timeout, payload=payload,
        )

    # ==================================================================
    # PROVIDERS
    # ==================================================================

    async def get_providers(self, modality: str | None = None) -> dict[str, Any]:
        """GET /api/ai/providers → ``{providers: [...], defaultProvider: {...}}``."""
        params = {"modality": modality} if modality else None
        return await self._request(
            "GET", "/api/ai/providers", self._settings.provider_timeout, params=params,
        )
