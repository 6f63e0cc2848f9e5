"""Folding capability output into a step's accumulated results."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel

from ..reasoner import InferenceUsage, Reasoner
from ..reasoner import prompts
from ..types import CapabilityError, ResultRecord, Step, WorkflowInvocation
from .models import MergeDecision, SelectedWorkflow

logger = logging.getLogger("harvestflow.orchestrator")


def snapshot_output(output: Any) -> Any:
    """JSON-compatible copy of a capability output for the audit trail."""

    if isinstance(output, BaseModel):
        return output.model_dump(mode="json")
    return output


def is_empty_output(snapshot: Any) -> bool:
    if snapshot is None:
        return True
    if isinstance(snapshot, (str, bytes, list, tuple, set)):
        return len(snapshot) == 0
    if isinstance(snapshot, Mapping):
        return all(is_empty_output(value) for value in snapshot.values())
    return False


def reconcile_records(
    existing: Sequence[ResultRecord],
    merged: Sequence[ResultRecord],
) -> list[ResultRecord]:
    """Combine the reasoner's merged list with the records it did not mention.

    Existing records keep their position; a record the reasoner returned
    under an existing id replaces it. Records with new ids are appended in
    the order given. Existing records missing from ``merged`` are kept as-is.
    """

    updates: dict[str, ResultRecord] = {}
    for record in merged:
        updates.setdefault(record.id, record)

    combined: list[ResultRecord] = []
    existing_ids: set[str] = set()
    for record in existing:
        existing_ids.add(record.id)
        combined.append(updates.get(record.id, record))
    for record_id, record in updates.items():
        if record_id not in existing_ids:
            combined.append(record)
    return combined


class ResultMerger:
    def __init__(self, reasoner: Reasoner, *, max_observation_chars: int = 20_000) -> None:
        self._reasoner = reasoner
        self._max_observation_chars = max_observation_chars

    async def merge(
        self,
        step: Step,
        workflow: SelectedWorkflow,
        output: Any,
    ) -> tuple[list[ResultRecord], InferenceUsage]:
        """Merge ``output`` into ``step.results`` and record the attempt.

        The invocation is appended to ``step.workflow_history`` whatever the
        merge outcome, including when the reasoner call raises.
        """

        snapshot = snapshot_output(output)
        succeeded = not isinstance(output, CapabilityError)
        usage = InferenceUsage()
        try:
            if not succeeded or is_empty_output(snapshot):
                logger.info(
                    "merge_skipped",
                    extra={
                        "step_id": step.id,
                        "capability": workflow.capability_name,
                        "reason": "capability_error" if not succeeded else "empty_output",
                    },
                )
                return list(step.results), usage

            messages = prompts.build_merge_messages(
                step.prompt_view(),
                workflow.capability_name,
                snapshot,
                max_observation_chars=self._max_observation_chars,
            )
            inference = await self._reasoner.infer(messages, MergeDecision, label="merge")
            usage = inference.usage
            decision = inference.value
            if decision.contributes:
                before = len(step.results)
                step.results = reconcile_records(step.results, decision.data)
                logger.info(
                    "merge_applied",
                    extra={"step_id": step.id, "records_before": before, "records_after": len(step.results)},
                )
            else:
                logger.info("merge_no_contribution", extra={"step_id": step.id})
            return list(step.results), usage
        finally:
            step.record_invocation(
                WorkflowInvocation(
                    capability_name=workflow.capability_name,
                    args=dict(workflow.args),
                    goal=workflow.goal,
                    result_snapshot=snapshot,
                    succeeded=succeeded,
                )
            )


__all__ = ["ResultMerger", "is_empty_output", "reconcile_records", "snapshot_output"]
