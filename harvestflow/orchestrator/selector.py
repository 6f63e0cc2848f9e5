"""Workflow selection for the active step."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import ValidationError

from ..errors import SelectionError
from ..reasoner import InferenceUsage, Reasoner
from ..reasoner import prompts
from ..registry import CapabilityRegistry
from ..types import Step, invocation_signature
from .models import SelectedWorkflow, WorkflowSelection

logger = logging.getLogger("harvestflow.orchestrator")

WORKFLOW_NOT_FOUND = "Generated workflow not found"
WORKFLOW_ARGS_INVALID = "Generated workflow arguments are invalid"
WORKFLOW_REPEATED = "Generated workflow repeats a previous invocation"


class WorkflowSelector:
    """Ask the reasoner for the next capability and vet its answer.

    An unknown capability or invalid args is corrected exactly once and a
    second rejection raises :class:`SelectionError`. A repeat of an invocation
    already in the step's history is also corrected once; if the reasoner
    insists, the repeat is logged and run.
    """

    MAX_ATTEMPTS = 2

    def __init__(
        self,
        reasoner: Reasoner,
        registry: CapabilityRegistry,
        *,
        reject_duplicates: bool = True,
    ) -> None:
        self._reasoner = reasoner
        self._registry = registry
        self._reject_duplicates = reject_duplicates

    def _vet(
        self,
        step: Step,
        selection: WorkflowSelection,
        seen: set[str],
    ) -> tuple[dict[str, Any] | None, str | None, str | None]:
        """Return ``(validated_args, error, correction)``."""

        name = selection.name
        if name not in self._registry:
            return None, WORKFLOW_NOT_FOUND, prompts.render_invalid_capability(name, self._registry.names())

        raw_args = selection.args_dict()
        try:
            parsed = self._registry.validate_args(name, raw_args)
        except ValidationError as exc:
            detail = json.dumps(exc.errors(include_url=False), ensure_ascii=False, default=str)
            return None, WORKFLOW_ARGS_INVALID, prompts.render_invalid_args(name, detail)

        args = parsed.model_dump(mode="json")
        if self._reject_duplicates and invocation_signature(name, args) in seen:
            return args, WORKFLOW_REPEATED, prompts.render_duplicate_selection(name, args)

        if selection.step_id != step.id:
            logger.debug(
                "workflow_selection_step_mismatch",
                extra={"step_id": step.id, "selected_step_id": selection.step_id},
            )
        return args, None, None

    async def select(
        self,
        step: Step,
        prior_results: Sequence[Mapping[str, Any]],
    ) -> tuple[SelectedWorkflow, InferenceUsage]:
        base_messages = prompts.build_selection_messages(
            step.prompt_view(),
            self._registry.catalog_records(),
            prior_results,
        )
        messages = list(base_messages)
        seen = step.invocation_signatures()
        usage = InferenceUsage()
        last_error = WORKFLOW_NOT_FOUND

        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            inference = await self._reasoner.infer(messages, WorkflowSelection, label="select")
            usage = usage + inference.usage
            selection = inference.value
            args, error, correction = self._vet(step, selection, seen)
            if error == WORKFLOW_REPEATED and attempt == self.MAX_ATTEMPTS:
                logger.warning(
                    "workflow_selection_repeated",
                    extra={"step_id": step.id, "attempt": attempt, "capability": selection.name},
                )
                error = None
            if error is None and args is not None:
                return (
                    SelectedWorkflow(
                        capability_name=selection.name,
                        args=args,
                        goal=selection.goal,
                        attempts=attempt,
                    ),
                    usage,
                )

            last_error = error or last_error
            logger.warning(
                "workflow_selection_rejected",
                extra={
                    "step_id": step.id,
                    "attempt": attempt,
                    "capability": selection.name,
                    "reason": last_error,
                    "will_retry": attempt < self.MAX_ATTEMPTS,
                },
            )
            messages = list(base_messages) + [{"role": "system", "content": correction or last_error}]

        raise SelectionError(last_error, hint=f"Registered capabilities: {', '.join(self._registry.names())}")


__all__ = [
    "WORKFLOW_ARGS_INVALID",
    "WORKFLOW_NOT_FOUND",
    "WORKFLOW_REPEATED",
    "WorkflowSelector",
]
