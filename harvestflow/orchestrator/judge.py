"""Step completion judgment."""

from __future__ import annotations

import logging

from ..reasoner import InferenceUsage, Reasoner
from ..reasoner import prompts
from ..types import Step
from .models import CompletionVerdict

logger = logging.getLogger("harvestflow.orchestrator")


class CompletionJudge:
    def __init__(self, reasoner: Reasoner) -> None:
        self._reasoner = reasoner

    async def is_complete(self, step: Step) -> tuple[CompletionVerdict, InferenceUsage]:
        # Only results and completion criteria reach the reasoner.
        messages = prompts.build_judge_messages(step.prompt_view())
        inference = await self._reasoner.infer(messages, CompletionVerdict, label="judge")
        verdict = inference.value
        logger.info(
            "step_verdict",
            extra={
                "step_id": step.id,
                "complete": verdict.complete,
                "explanation": verdict.explanation,
                "record_count": len(step.results),
            },
        )
        return verdict, inference.usage


__all__ = ["CompletionJudge"]
