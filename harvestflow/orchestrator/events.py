"""Structured events emitted by the orchestration loop."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger("harvestflow.orchestrator")


@dataclass(frozen=True, slots=True)
class OrchestratorEvent:
    """Loop milestone, logged and forwarded to an optional callback."""

    # Types: setup_complete, setup_failed, iteration_start, workflow_selected,
    # workflow_executed, step_merged, step_judged, step_completed, aggregated,
    # results_persisted, run_complete, run_failed, session_saved, session_resumed
    event_type: str
    ts: float
    step_id: int | None = None
    iteration: int | None = None
    capability: str | None = None
    latency_ms: float | None = None
    error: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    # Keys reserved by Python's logging.LogRecord that must not appear in extra
    _RESERVED_LOG_KEYS = frozenset({
        "args", "msg", "levelname", "levelno", "exc_info", "message", "name",
        "filename", "pathname", "module", "lineno", "funcName", "created",
        "thread", "threadName", "process", "stack_info", "exc_text",
    })

    def to_payload(self) -> dict[str, Any]:
        """Render a dictionary payload suitable for structured logging."""
        payload: dict[str, Any] = {"event": self.event_type, "ts": self.ts}
        if self.step_id is not None:
            payload["step_id"] = self.step_id
        if self.iteration is not None:
            payload["iteration"] = self.iteration
        if self.capability is not None:
            payload["capability"] = self.capability
        if self.latency_ms is not None:
            payload["latency_ms"] = self.latency_ms
        if self.error is not None:
            payload["error"] = self.error
        for key, value in self.extra.items():
            if key not in self._RESERVED_LOG_KEYS:
                payload[key] = value
        return payload


OrchestratorEventCallback = Callable[[OrchestratorEvent], None]


def emit_event(event: OrchestratorEvent, callback: OrchestratorEventCallback | None) -> None:
    level = logging.WARNING if event.error is not None else logging.INFO
    logger.log(level, event.event_type, extra=event.to_payload())
    if callback is None:
        return
    try:
        callback(event)
    except Exception:
        logger.exception("event_callback_error", extra={"event": event.event_type})


__all__ = ["OrchestratorEvent", "OrchestratorEventCallback", "emit_event"]
