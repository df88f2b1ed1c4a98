"""Per-type node configuration defaults and summaries.

Every node type owns one small pure factory returning a fresh default config
dict. Factories are registered in ``_DEFAULT_FACTORIES`` keyed by NodeType so
adding a type means adding one function and one map entry; types without a
factory get an empty config.

The copilot never executes a config. The summaries below exist only to
describe the canvas to the assistant back end (see context.py).
"""

from __future__ import annotations

import json
from typing import Any, Callable

from workflow_copilot.graph.model import NodeType, WorkflowNode

ConfigFactory = Callable[[], dict[str, Any]]

_DEFAULT_PROVIDER = "OPENROUTER"


def _input_defaults() -> dict[str, Any]:
    return {"fields": []}


def _process_defaults() -> dict[str, Any]:
    return {
        "provider": _DEFAULT_PROVIDER,
        "model": "deepseek/deepseek-chat",
        "knowledgeItems": [],
        "systemPrompt": "",
        "userPrompt": "",
        "temperature": 0.7,
        "maxTokens": 2048,
    }


def _code_defaults() -> dict[str, Any]:
    return {
        "provider": _DEFAULT_PROVIDER,
        "model": "deepseek/deepseek-coder",
        "prompt": "",
        "language": "javascript",
        "code": "",
    }


def _output_defaults() -> dict[str, Any]:
    return {
        "provider": _DEFAULT_PROVIDER,
        "model": "deepseek/deepseek-chat",
        "prompt": "",
        "format": "text",
        "templateName": "",
    }


def _condition_defaults() -> dict[str, Any]:
    return {"conditions": [], "evaluationMode": "all"}


def _loop_defaults() -> dict[str, Any]:
    return {"loopType": "FOR", "maxIterations": 100}


def _http_defaults() -> dict[str, Any]:
    return {"method": "GET", "url": "", "headers": {}, "timeout": 30000}


def _merge_defaults() -> dict[str, Any]:
    return {"mergeStrategy": "all", "errorStrategy": "fail_fast"}


def _notification_defaults() -> dict[str, Any]:
    return {"platform": "feishu", "webhookUrl": "", "messageType": "text", "content": ""}


_DEFAULT_FACTORIES: dict[NodeType, ConfigFactory] = {
    NodeType.INPUT: _input_defaults,
    NodeType.PROCESS: _process_defaults,
    NodeType.CODE: _code_defaults,
    NodeType.OUTPUT: _output_defaults,
    NodeType.CONDITION: _condition_defaults,
    NodeType.LOOP: _loop_defaults,
    NodeType.HTTP: _http_defaults,
    NodeType.MERGE: _merge_defaults,
    NodeType.NOTIFICATION: _notification_defaults,
}


def default_config(node_type: NodeType | str) -> dict[str, Any]:
    """Return a fresh default config for ``node_type`` ({} for types without defaults)."""
    parsed = NodeType.parse(node_type)
    factory = _DEFAULT_FACTORIES.get(parsed) if parsed else None
    return factory() if factory else {}


# ---------------------------------------------------------------------------
# Config summaries (workflow context text)
# ---------------------------------------------------------------------------


def _is_set(value: Any) -> str:
    return "set" if value else "not set"


def _summarize_input(config: dict[str, Any]) -> str:
    names = [f.get("name", "") for f in config.get("fields") or [] if isinstance(f, dict)]
    return f"input fields: {', '.join(n for n in names if n) or 'none'}"


def _summarize_process(config: dict[str, Any]) -> str:
    return (
        f"model: {config.get('model') or 'not set'}, "
        f"system prompt: {_is_set(config.get('systemPrompt'))}, "
        f"user prompt: {_is_set(config.get('userPrompt'))}"
    )


def _summarize_output(config: dict[str, Any]) -> str:
    return (
        f"format: {config.get('format') or 'text'}, "
        f"output prompt: {_is_set(config.get('prompt'))}"
    )


def _summarize_code(config: dict[str, Any]) -> str:
    return f"language: {config.get('language') or 'javascript'}, code: {_is_set(config.get('code'))}"


def _summarize_condition(config: dict[str, Any]) -> str:
    return f"conditions: {len(config.get('conditions') or [])}"


def _summarize_loop(config: dict[str, Any]) -> str:
    return (
        f"loop type: {config.get('loopType') or 'FOR'}, "
        f"max iterations: {config.get('maxIterations') or 1000}"
    )


def _summarize_http(config: dict[str, Any]) -> str:
    return f"method: {config.get('method') or 'GET'}, url: {config.get('url') or 'not set'}"


_SUMMARIZERS: dict[NodeType, Callable[[dict[str, Any]], str]] = {
    NodeType.INPUT: _summarize_input,
    NodeType.PROCESS: _summarize_process,
    NodeType.OUTPUT: _summarize_output,
    NodeType.CODE: _summarize_code,
    NodeType.CONDITION: _summarize_condition,
    NodeType.LOOP: _summarize_loop,
    NodeType.HTTP: _summarize_http,
}


def summarize_config(node: WorkflowNode) -> str:
    """One-line description of a node's config; unknown types get a truncated JSON dump."""
    summarizer = _SUMMARIZERS.get(node.node_type) if node.node_type else None
    if summarizer is not None:
        return summarizer(node.config or {})
    return json.dumps(node.config or {}, ensure_ascii=False, default=str)[:100]
