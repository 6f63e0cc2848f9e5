"""Final results handoff."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .types import ResultRecord, SessionContext

logger = logging.getLogger("harvestflow.results")

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def task_slug(prompt: str, *, fallback: str = "task", max_length: int = 80) -> str:
    """File-name slug for a task prompt.

    Slugs longer than ``max_length`` are cut and suffixed with a short hash of
    the prompt so distinct long prompts do not share a results file.

    >>> task_slug("Find AI startups in Berlin!")
    'find-ai-startups-in-berlin'
    """

    slug = _NON_ALNUM.sub("-", prompt.lower()).strip("-")
    if len(slug) > max_length:
        digest = hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:8]
        slug = f"{slug[: max_length - len(digest) - 1].rstrip('-')}-{digest}"
    return slug or fallback


@dataclass(frozen=True, slots=True)
class WriteOutcome:
    success: bool
    path: str | None = None
    records_written: int = 0
    error: str | None = None


class ResultsWriter(Protocol):
    async def write(
        self,
        context: SessionContext,
        records: Sequence[ResultRecord],
    ) -> WriteOutcome: ...


class JsonlResultsWriter:
    """Append one JSON object per record to ``<results_dir>/<slug>.jsonl``."""

    def __init__(self, results_dir: str | Path) -> None:
        self._results_dir = Path(results_dir)

    def path_for(self, context: SessionContext) -> Path:
        return self._results_dir / f"{task_slug(context.original_prompt)}.jsonl"

    async def write(
        self,
        context: SessionContext,
        records: Sequence[ResultRecord],
    ) -> WriteOutcome:
        path = self.path_for(context)
        lines = [
            json.dumps(record.model_dump(mode="json", by_alias=True), ensure_ascii=False)
            for record in records
        ]
        try:
            await asyncio.to_thread(self._append_once, path, lines)
        except OSError as exc:
            logger.warning("results_write_failed", extra={"path": str(path), "error": str(exc)})
            return WriteOutcome(success=False, path=str(path), error=str(exc))
        logger.info("results_written", extra={"path": str(path), "records": len(lines)})
        return WriteOutcome(success=True, path=str(path), records_written=len(lines))

    @staticmethod
    def _append_once(path: Path, lines: list[str]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            for line in lines:
                handle.write(line + "\n")


__all__ = ["JsonlResultsWriter", "ResultsWriter", "WriteOutcome", "task_slug"]
