"""Cross-step aggregation of finished results."""

from __future__ import annotations

import logging

from ..reasoner import InferenceUsage, Reasoner
from ..reasoner import prompts
from ..types import ResultRecord, SessionContext
from .models import AggregatedResults

logger = logging.getLogger("harvestflow.orchestrator")


class ResultAggregator:
    """Join and deduplicate the results of every completed step."""

    def __init__(self, reasoner: Reasoner) -> None:
        self._reasoner = reasoner

    async def aggregate(self, context: SessionContext) -> tuple[list[ResultRecord], InferenceUsage]:
        completed = context.completed_results()
        messages = prompts.build_aggregate_messages(context.original_prompt, completed)
        inference = await self._reasoner.infer(messages, AggregatedResults, label="aggregate")
        records = inference.value.data
        logger.info(
            "results_aggregated",
            extra={
                "step_count": len(completed),
                "input_records": sum(len(step["results"]) for step in completed),
                "output_records": len(records),
            },
        )
        return list(records), inference.usage


__all__ = ["ResultAggregator"]
