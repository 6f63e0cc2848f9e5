"""``crawl_site``: read one page and pull out data relevant to the step."""

from __future__ import annotations

import json
import logging

from pydantic import BaseModel, Field

from ..catalog import CapabilityFn, capability
from ..errors import ReasonerError
from ..reasoner import Reasoner
from ..types import CapabilityError, Step
from .web import PageText, WebFetcher, _require_httpx

logger = logging.getLogger("harvestflow.capabilities")

MAX_LINKS_IN_PROMPT = 150


class CrawlArgs(BaseModel):
    url: str = Field(min_length=1, description="Absolute URL of the page to read")
    reason: str = Field(description="What to look for on the page")


class PageFinding(BaseModel):
    title: str
    data: str
    source_url: str
    reason: str = ""


class NextUrl(BaseModel):
    url: str
    reason: str = ""


class PageAnalysis(BaseModel):
    relevant_data: list[PageFinding] = Field(default_factory=list)
    next_urls: list[NextUrl] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class CrawlOutput(BaseModel):
    url: str
    title: str = ""
    relevant_data: list[PageFinding] = Field(default_factory=list)
    next_urls: list[NextUrl] = Field(default_factory=list)
    confidence: float = 0.0


def crawled_urls(step: Step) -> set[str]:
    """URLs already passed to ``crawl_site`` for this step."""

    return {
        str(entry.args.get("url"))
        for entry in step.workflow_history
        if entry.capability_name == "crawl_site" and entry.args.get("url")
    }


def build_page_analysis_messages(step: Step, page: PageText, reason: str) -> list[dict[str, str]]:
    system = (
        "You extract structured facts from a web page for a data collection step. "
        "Report only data present in the page text, cite the page URL as source_url, and "
        "list links worth crawling next with a short reason. Respond with JSON only."
    )
    user = json.dumps(
        {
            "step": step.description,
            "required_fields": step.required_fields,
            "looking_for": reason,
            "page": {"url": page.url, "title": page.title, "text": page.text},
            "links": [link.model_dump() for link in page.links[:MAX_LINKS_IN_PROMPT]],
        },
        ensure_ascii=False,
    )
    return [{"role": "system", "content": system}, {"role": "user", "content": user}]


def make_crawl_site(fetcher: WebFetcher, reasoner: Reasoner) -> CapabilityFn:
    @capability(
        name="crawl_site",
        goal="Read a web page, extract data relevant to the step and suggest next URLs to crawl",
        tags=("web", "crawl"),
    )
    async def crawl_site(step: Step, args: CrawlArgs) -> CrawlOutput | CapabilityError:
        httpx = _require_httpx()
        try:
            page = await fetcher.fetch_page(args.url)
        except httpx.HTTPError as exc:
            return CapabilityError(capability="crawl_site", error=str(exc), error_type=exc.__class__.__name__)
        if not page.text:
            return CrawlOutput(url=page.url, title=page.title)

        try:
            inference = await reasoner.infer(
                build_page_analysis_messages(step, page, args.reason),
                PageAnalysis,
                label="crawl_site",
            )
        except ReasonerError as exc:
            return CapabilityError(capability="crawl_site", error=exc.message, error_type=exc.__class__.__name__)

        analysis = inference.value
        visited = crawled_urls(step) | {args.url, page.url}
        next_urls = [item for item in analysis.next_urls if item.url not in visited]
        logger.info(
            "page_analysed",
            extra={
                "url": page.url,
                "findings": len(analysis.relevant_data),
                "next_urls": len(next_urls),
                "confidence": analysis.confidence,
            },
        )
        return CrawlOutput(
            url=page.url,
            title=page.title,
            relevant_data=analysis.relevant_data,
            next_urls=next_urls,
            confidence=analysis.confidence,
        )

    return crawl_site


__all__ = ["CrawlArgs", "CrawlOutput", "NextUrl", "PageAnalysis", "PageFinding", "crawled_urls", "make_crawl_site"]
