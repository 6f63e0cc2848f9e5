"""Orchestration engine: planning, selection, merging, judgment and the loop."""

from __future__ import annotations

from .aggregator import ResultAggregator
from .events import OrchestratorEvent, OrchestratorEventCallback, emit_event
from .judge import CompletionJudge
from .loop import Orchestrator
from .merger import ResultMerger, reconcile_records
from .models import (
    AggregatedResults,
    CompletionVerdict,
    LoopState,
    MergeDecision,
    RunResult,
    SelectedWorkflow,
    SelectionArg,
    TaskPlan,
    WorkflowSelection,
)
from .planner import TaskPlanner, normalise_step_ids
from .selector import WORKFLOW_NOT_FOUND, WorkflowSelector

__all__ = [
    "AggregatedResults",
    "CompletionJudge",
    "CompletionVerdict",
    "LoopState",
    "MergeDecision",
    "Orchestrator",
    "OrchestratorEvent",
    "OrchestratorEventCallback",
    "ResultAggregator",
    "ResultMerger",
    "RunResult",
    "SelectedWorkflow",
    "SelectionArg",
    "TaskPlan",
    "TaskPlanner",
    "WORKFLOW_NOT_FOUND",
    "WorkflowSelection",
    "WorkflowSelector",
    "emit_event",
    "normalise_step_ids",
    "reconcile_records",
]
