"""``search_web``: query a search engine and rank the hits for the step."""

from __future__ import annotations

import json
import logging

from pydantic import BaseModel, Field

from ..catalog import CapabilityFn, capability
from ..errors import ReasonerError
from ..reasoner import Reasoner
from ..types import CapabilityError, Step
from .web import SearchHit, WebFetcher, _require_httpx

logger = logging.getLogger("harvestflow.capabilities")


class SearchArgs(BaseModel):
    search_query: str = Field(min_length=1, description="Query sent to the search engine")
    reason: str = Field(description="What the results should help find")


class SearchResult(BaseModel):
    url: str
    title: str
    description: str = ""
    relevance_score: float = Field(default=0.0, ge=0.0, le=1.0)
    priority: int = 0
    reason: str = ""


class SearchOutput(BaseModel):
    search_results: list[SearchResult] = Field(default_factory=list)


def build_search_analysis_messages(
    step: Step,
    hits: list[SearchHit],
    reason: str,
) -> list[dict[str, str]]:
    system = (
        "You rank search results for a data collection step. Keep only results likely to "
        "contain the data sought, score relevance between 0 and 1, give lower priority numbers "
        "to better results, and only use URLs present in the input. Respond with JSON only."
    )
    user = json.dumps(
        {
            "step": step.description,
            "required_fields": step.required_fields,
            "reason_for_search": reason,
            "search_results": [hit.model_dump() for hit in hits],
        },
        ensure_ascii=False,
    )
    return [{"role": "system", "content": system}, {"role": "user", "content": user}]


def make_search_web(fetcher: WebFetcher, reasoner: Reasoner) -> CapabilityFn:
    @capability(
        name="search_web",
        goal="Search the web and return the most relevant result pages for a query",
        tags=("web", "search"),
    )
    async def search_web(step: Step, args: SearchArgs) -> SearchOutput | CapabilityError:
        httpx = _require_httpx()
        try:
            hits = await fetcher.search(args.search_query)
        except httpx.HTTPError as exc:
            return CapabilityError(capability="search_web", error=str(exc), error_type=exc.__class__.__name__)
        if not hits:
            return SearchOutput()

        known = {hit.url for hit in hits}
        try:
            inference = await reasoner.infer(
                build_search_analysis_messages(step, hits, args.reason),
                SearchOutput,
                label="search_web",
            )
        except ReasonerError as exc:
            return CapabilityError(capability="search_web", error=exc.message, error_type=exc.__class__.__name__)

        ranked = [result for result in inference.value.search_results if result.url in known]
        ranked.sort(key=lambda result: (result.priority, -result.relevance_score))
        logger.info(
            "search_ranked",
            extra={"query": args.search_query, "hit_count": len(hits), "kept": len(ranked)},
        )
        return SearchOutput(search_results=ranked)

    return search_web


__all__ = ["SearchArgs", "SearchOutput", "SearchResult", "make_search_web"]
