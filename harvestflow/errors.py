"""Exception taxonomy for HarvestFlow.

Every fatal condition raised inside the engine derives from
:class:`HarvestFlowError`. The orchestrator catches these at its boundary and
reports them as ``RunResult(success=False)``.
"""

from __future__ import annotations

from typing import Any


class HarvestFlowError(Exception):
    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "error": self.message,
        }
        if self.hint:
            payload["hint"] = self.hint
        return payload


class SetupError(HarvestFlowError):
    """Task decomposition failed; no session context was created."""


class SelectionError(HarvestFlowError):
    """The selector produced an unusable workflow twice in a row."""


class ReasonerError(HarvestFlowError):
    """Structured inference failed."""


class SchemaValidationError(ReasonerError):
    def __init__(
        self,
        message: str,
        *,
        schema_name: str,
        raw: str | None = None,
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message, hint="The model output did not match the requested schema.")
        self.schema_name = schema_name
        self.raw = raw
        self.errors = errors or []


class TransportError(ReasonerError):
    def __init__(self, message: str, *, attempts: int | None = None) -> None:
        super().__init__(message, hint="Check the model name, API credentials and network access.")
        self.attempts = attempts


class IterationLimitError(HarvestFlowError):
    def __init__(self, step_id: int, limit: int) -> None:
        super().__init__(
            f"Step {step_id} did not complete within {limit} iterations",
            hint="Raise max_iterations_per_step or rephrase the task.",
        )
        self.step_id = step_id
        self.limit = limit


class ResultsPersistenceError(HarvestFlowError):
    """The results writer reported a failure."""


__all__ = [
    "HarvestFlowError",
    "IterationLimitError",
    "ReasonerError",
    "ResultsPersistenceError",
    "SchemaValidationError",
    "SelectionError",
    "SetupError",
    "TransportError",
]
