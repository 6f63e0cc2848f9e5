"""Reasoner-facing schemas and run outcomes for the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..types import ResultRecord, SessionContext, StepDraft


class LoopState(str, Enum):
    SETUP = "SETUP"
    SELECT = "SELECT"
    EXECUTE = "EXECUTE"
    MERGE = "MERGE"
    JUDGE = "JUDGE"
    AGGREGATE = "AGGREGATE"
    PERSIST_FINAL = "PERSIST_FINAL"
    DONE = "DONE"
    SETUP_FAILED = "SETUP_FAILED"
    ITERATION_FAILED = "ITERATION_FAILED"


class _ReasonerModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TaskPlan(_ReasonerModel):
    steps: list[StepDraft]


class SelectionArg(_ReasonerModel):
    key: str
    value: str


class WorkflowSelection(_ReasonerModel):
    name: str
    step_id: int
    args: list[SelectionArg] = Field(default_factory=list)
    goal: str

    def args_dict(self) -> dict[str, str]:
        return {arg.key: arg.value for arg in self.args}


class MergeDecision(_ReasonerModel):
    contributes: bool
    data: list[ResultRecord] = Field(default_factory=list)


class CompletionVerdict(_ReasonerModel):
    complete: bool
    explanation: str


class AggregatedResults(_ReasonerModel):
    data: list[ResultRecord] = Field(default_factory=list)


@dataclass(frozen=True, slots=True)
class SelectedWorkflow:
    """A validated selection, ready to execute."""

    capability_name: str
    args: dict[str, Any]
    goal: str
    attempts: int = 1


class RunResult(BaseModel):
    success: bool
    state: LoopState
    error: str | None = None
    error_type: str | None = None
    hint: str | None = None
    context: SessionContext | None = None
    results: list[ResultRecord] = Field(default_factory=list)
    output_path: str | None = None
    usage: dict[str, Any] = Field(default_factory=dict)


@dataclass(slots=True)
class StepProgress:
    """Per-step iteration counters kept by the loop (not persisted)."""

    iterations: dict[int, int] = field(default_factory=dict)

    def bump(self, step_id: int) -> int:
        self.iterations[step_id] = self.iterations.get(step_id, 0) + 1
        return self.iterations[step_id]


__all__ = [
    "AggregatedResults",
    "CompletionVerdict",
    "LoopState",
    "MergeDecision",
    "RunResult",
    "SelectedWorkflow",
    "SelectionArg",
    "StepProgress",
    "TaskPlan",
    "WorkflowSelection",
]
