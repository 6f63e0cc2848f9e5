"""Session state models for HarvestFlow.

Everything persisted between iterations lives here. Python attributes are
snake_case; the serialised document uses camelCase keys.
"""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _utc_now() -> datetime:
    return datetime.now(UTC)


def invocation_signature(capability_name: str, args: dict[str, Any]) -> str:
    """Canonical form of a ``(capability, args)`` pair used for de-duplication."""

    canonical_args = json.dumps(args, ensure_ascii=False, sort_keys=True, default=str)
    return f"{capability_name}:{canonical_args}"


class _SessionModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ResultField(_SessionModel):
    key: str
    value: str
    source_urls: list[str] = Field(default_factory=list)


class ResultRecord(_SessionModel):
    id: str
    fields: list[ResultField] = Field(default_factory=list)

    def get(self, key: str) -> str | None:
        for item in self.fields:
            if item.key == key:
                return item.value
        return None


class StepDraft(_SessionModel):
    """Step shape produced by task decomposition."""

    id: int
    description: str
    required_fields: list[str] = Field(default_factory=list)
    completion_criteria: str
    suggested_workflows: list[str] = Field(default_factory=list)


class WorkflowInvocation(_SessionModel):
    """One attempt recorded against a step. Frozen once created."""

    model_config = ConfigDict(frozen=True)

    capability_name: str
    args: dict[str, Any] = Field(default_factory=dict)
    goal: str = ""
    result_snapshot: Any = None
    succeeded: bool = True
    recorded_at: datetime = Field(default_factory=_utc_now)

    @property
    def signature(self) -> str:
        return invocation_signature(self.capability_name, self.args)


class Step(StepDraft):
    completed: bool = False
    workflow_history: list[WorkflowInvocation] = Field(default_factory=list)
    results: list[ResultRecord] = Field(default_factory=list)

    @classmethod
    def from_draft(cls, draft: StepDraft) -> Step:
        return cls(
            id=draft.id,
            description=draft.description,
            required_fields=list(draft.required_fields),
            completion_criteria=draft.completion_criteria,
            suggested_workflows=list(draft.suggested_workflows),
        )

    def mark_completed(self) -> None:
        # One-way: completed never reverts.
        self.completed = True

    def record_invocation(self, invocation: WorkflowInvocation) -> None:
        self.workflow_history.append(invocation)

    def invocation_signatures(self) -> set[str]:
        return {entry.signature for entry in self.workflow_history}

    def prompt_view(self) -> dict[str, Any]:
        """Serialisable view of the step handed to the reasoner."""

        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude={"workflow_history": {"__all__": {"recorded_at"}}},
        )


class SessionContext(_SessionModel):
    original_prompt: str
    steps: list[Step]
    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    def active_step(self) -> Step | None:
        for step in sorted(self.steps, key=lambda item: item.id):
            if not step.completed:
                return step
        return None

    def completed_steps(self) -> list[Step]:
        return [step for step in sorted(self.steps, key=lambda item: item.id) if step.completed]

    def all_completed(self) -> bool:
        return all(step.completed for step in self.steps)

    def completed_results(self) -> list[dict[str, Any]]:
        """Results of finished steps, in the shape passed to later selections."""

        return [
            {
                "id": step.id,
                "results": [record.model_dump(mode="json", by_alias=True) for record in step.results],
            }
            for step in self.completed_steps()
        ]

    def touch(self) -> None:
        self.updated_at = _utc_now()

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, payload: Any) -> SessionContext:
        return cls.model_validate(payload)


class CapabilityError(BaseModel):
    """Structured error a capability returns instead of raising."""

    success: Literal[False] = False
    capability: str
    error: str
    error_type: str | None = None


__all__ = [
    "CapabilityError",
    "ResultField",
    "ResultRecord",
    "SessionContext",
    "Step",
    "StepDraft",
    "WorkflowInvocation",
    "invocation_signature",
]
