"""Transient user notifications (the headless stand-in for UI toasts)."""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger("workflow_copilot.notify")


class Notifier(Protocol):
    def success(self, text: str) -> None: ...

    def error(self, text: str) -> None: ...

    def warning(self, text: str) -> None: ...


class LoggingNotifier:
    """Default notifier: forwards every notification to the module logger."""

    def success(self, text: str) -> None:
        logger.info("%s", text)

    def error(self, text: str) -> None:
        logger.error("%s", text)

    def warning(self, text: str) -> None:
        logger.warning("%s", text)


class RecordingNotifier:
    """Collects (level, text) pairs; used by the CLI and tests."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []

    def success(self, text: str) -> None:
        self.events.append(("success", text))

    def error(self, text: str) -> None:
        self.events.append(("error", text))

    def warning(self, text: str) -> None:
        self.events.append(("warning", text))

    def of_level(self, level: str) -> list[str]:
        return [text for lvl, text in self.events if lvl == level]

    def drain(self) -> list[tuple[str, str]]:
        events, self.events = self.events, []
        return events
