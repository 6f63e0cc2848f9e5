"""Task decomposition."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from ..errors import ReasonerError, SetupError
from ..reasoner import InferenceUsage, Reasoner
from ..reasoner import prompts
from ..types import StepDraft
from .models import TaskPlan

logger = logging.getLogger("harvestflow.orchestrator")


def normalise_step_ids(drafts: Sequence[StepDraft]) -> list[StepDraft]:
    """Order drafts by their proposed id and guarantee unique positive ordinals.

    Ids are kept when they are already unique and positive; otherwise the
    sorted drafts are renumbered ``1..n``. Sorting is stable, so drafts that
    share an id keep the order the model gave them.
    """

    ordered = sorted(drafts, key=lambda draft: draft.id)
    ids = [draft.id for draft in ordered]
    if len(set(ids)) == len(ids) and all(step_id > 0 for step_id in ids):
        return list(ordered)
    logger.info(
        "plan_step_ids_renumbered",
        extra={"proposed_ids": [draft.id for draft in drafts]},
    )
    return [draft.model_copy(update={"id": index}) for index, draft in enumerate(ordered, start=1)]


class TaskPlanner:
    def __init__(self, reasoner: Reasoner) -> None:
        self._reasoner = reasoner

    async def decompose(
        self,
        prompt: str,
        catalog: Sequence[Mapping[str, Any]],
    ) -> tuple[list[StepDraft], InferenceUsage]:
        """Break ``prompt`` into ordered steps using a single reasoner call.

        Raises:
            SetupError: if the prompt is empty, the reasoner fails, or it
                returns no steps.
        """

        if not prompt.strip():
            raise SetupError("Task prompt is empty", hint="Describe the data you want collected.")
        messages = prompts.build_plan_messages(prompt, catalog)
        try:
            inference = await self._reasoner.infer(messages, TaskPlan, label="plan")
        except ReasonerError as exc:
            raise SetupError(f"Task decomposition failed: {exc.message}", hint=exc.hint) from exc

        drafts = inference.value.steps
        if not drafts:
            raise SetupError("Task decomposition produced no steps", hint="Rephrase the task.")
        drafts = normalise_step_ids(drafts)
        logger.info(
            "plan_generated",
            extra={"step_count": len(drafts), "steps": [f"{d.id}: {d.description}" for d in drafts]},
        )
        return drafts, inference.usage


__all__ = ["TaskPlanner", "normalise_step_ids"]
