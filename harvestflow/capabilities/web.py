"""HTTP fetching and HTML text extraction shared by the bundled capabilities."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Any
from urllib.parse import parse_qs, urljoin, urlparse

from pydantic import BaseModel

from ..config import CapabilitySettings

logger = logging.getLogger("harvestflow.capabilities")

_SKIPPED_TAGS = frozenset({"script", "style", "noscript", "svg", "iframe", "template", "head"})
_BLOCK_TAGS = frozenset(
    {"p", "div", "section", "article", "li", "tr", "br", "h1", "h2", "h3", "h4", "h5", "h6", "header", "footer"}
)
_WHITESPACE = re.compile(r"[ \t\r\f\v]+")
_BLANK_LINES = re.compile(r"\n\s*\n+")


def _require_httpx():
    try:
        import httpx
    except ImportError as exc:
        raise RuntimeError(
            "httpx is required for the bundled web capabilities. Install with `pip install harvestflow[web]`."
        ) from exc
    return httpx


class PageLink(BaseModel):
    url: str
    text: str = ""


class SearchHit(BaseModel):
    url: str
    title: str
    snippet: str = ""


@dataclass(slots=True)
class PageText:
    url: str
    title: str
    text: str
    links: list[PageLink] = field(default_factory=list)


class _TextExtractor(HTMLParser):
    def __init__(self, base_url: str) -> None:
        super().__init__(convert_charrefs=True)
        self._base_url = base_url
        self._skip_depth = 0
        self._in_title = False
        self._title: list[str] = []
        self._chunks: list[str] = []
        self._link_href: str | None = None
        self._link_text: list[str] = []
        self.links: list[PageLink] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag == "title":
            self._in_title = True
        if tag in _SKIPPED_TAGS:
            self._skip_depth += 1
            return
        if tag in _BLOCK_TAGS:
            self._chunks.append("\n")
        if tag == "a":
            href = dict(attrs).get("href")
            if href and not href.startswith(("#", "javascript:", "mailto:")):
                self._link_href = urljoin(self._base_url, href)
                self._link_text = []

    def handle_endtag(self, tag: str) -> None:
        if tag == "title":
            self._in_title = False
        if tag in _SKIPPED_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
            return
        if tag in _BLOCK_TAGS:
            self._chunks.append("\n")
        if tag == "a" and self._link_href is not None:
            text = " ".join("".join(self._link_text).split())
            self.links.append(PageLink(url=self._link_href, text=text))
            self._link_href = None

    def handle_data(self, data: str) -> None:
        if self._in_title:
            self._title.append(data)
        if self._skip_depth:
            return
        self._chunks.append(data)
        if self._link_href is not None:
            self._link_text.append(data)

    @property
    def title(self) -> str:
        return " ".join("".join(self._title).split())

    @property
    def text(self) -> str:
        raw = _WHITESPACE.sub(" ", "".join(self._chunks))
        lines = [line.strip() for line in raw.split("\n")]
        return _BLANK_LINES.sub("\n", "\n".join(line for line in lines if line)).strip()


def extract_page_text(html: str, *, base_url: str = "", max_chars: int | None = None) -> PageText:
    """Visible text, title and outgoing links of an HTML document."""

    parser = _TextExtractor(base_url)
    parser.feed(html)
    parser.close()
    text = parser.text
    if max_chars is not None and len(text) > max_chars:
        text = text[:max_chars]
    seen: set[str] = set()
    links: list[PageLink] = []
    for link in parser.links:
        if link.url in seen:
            continue
        seen.add(link.url)
        links.append(link)
    return PageText(url=base_url, title=parser.title, text=text, links=links)


def _unwrap_redirect(href: str) -> str:
    # Result links point at a redirect endpoint carrying the target in ``uddg``.
    parsed = urlparse(href)
    target = parse_qs(parsed.query).get("uddg")
    if target:
        return target[0]
    if href.startswith("//"):
        return "https:" + href
    return href


class _SearchResultParser(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.hits: list[SearchHit] = []
        self._capture: str | None = None
        self._buffer: list[str] = []
        self._href: str | None = None

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        attributes = dict(attrs)
        classes = (attributes.get("class") or "").split()
        if tag == "a" and "result__a" in classes:
            self._capture = "title"
            self._href = attributes.get("href") or ""
            self._buffer = []
        elif "result__snippet" in classes:
            self._capture = "snippet"
            self._buffer = []

    def handle_endtag(self, tag: str) -> None:
        if self._capture is None or tag not in ("a", "div", "td"):
            return
        text = " ".join("".join(self._buffer).split())
        if self._capture == "title" and self._href:
            self.hits.append(SearchHit(url=_unwrap_redirect(self._href), title=text))
        elif self._capture == "snippet" and self.hits:
            self.hits[-1] = self.hits[-1].model_copy(update={"snippet": text})
        self._capture = None
        self._href = None

    def handle_data(self, data: str) -> None:
        if self._capture is not None:
            self._buffer.append(data)


def parse_search_results(html: str, *, limit: int | None = None) -> list[SearchHit]:
    parser = _SearchResultParser()
    parser.feed(html)
    parser.close()
    hits: list[SearchHit] = []
    seen: set[str] = set()
    for hit in parser.hits:
        if not hit.url or hit.url in seen:
            continue
        seen.add(hit.url)
        hits.append(hit)
    return hits[:limit] if limit is not None else hits


@dataclass(slots=True)
class WebFetcher:
    """GET pages with bounded retries on transport errors and 5xx/429 responses."""

    settings: CapabilitySettings = field(default_factory=CapabilitySettings)
    client: Any | None = None

    @asynccontextmanager
    async def _client_context(self) -> AsyncIterator[Any]:
        if self.client is not None:
            yield self.client
            return
        httpx = _require_httpx()
        async with httpx.AsyncClient(timeout=self.settings.http_timeout_s) as client:
            yield client

    def _headers(self) -> dict[str, str]:
        return {"User-Agent": self.settings.user_agent, "Accept": "text/html,application/xhtml+xml"}

    async def get_text(self, url: str, *, params: Mapping[str, str] | None = None) -> tuple[str, str]:
        """Return ``(final_url, body)``; raises ``httpx.HTTPError`` after the last attempt."""

        httpx = _require_httpx()
        attempts = self.settings.fetch_attempts
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                async with self._client_context() as client:
                    response = await client.get(
                        url,
                        params=dict(params) if params else None,
                        headers=self._headers(),
                        follow_redirects=True,
                    )
                    response.raise_for_status()
                    return str(response.url), response.text
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if status < 500 and status != 429:
                    raise
                last_error = exc
            except httpx.TransportError as exc:
                last_error = exc
            logger.warning(
                "fetch_retry",
                extra={"url": url, "attempt": attempt, "attempts": attempts, "error": str(last_error)},
            )
            if attempt < attempts and self.settings.retry_backoff_s:
                await asyncio.sleep(self.settings.retry_backoff_s * attempt)
        if last_error is None:
            raise RuntimeError(f"No fetch attempts were made for {url}")
        raise last_error

    async def fetch_page(self, url: str) -> PageText:
        final_url, body = await self.get_text(url)
        return extract_page_text(body, base_url=final_url, max_chars=self.settings.max_page_chars)

    async def search(self, query: str) -> list[SearchHit]:
        _, body = await self.get_text(self.settings.search_url, params={"q": query})
        hits = parse_search_results(body, limit=self.settings.results_per_search)
        logger.info("search_hits", extra={"query": query, "hit_count": len(hits)})
        return hits


__all__ = [
    "PageLink",
    "PageText",
    "SearchHit",
    "WebFetcher",
    "extract_page_text",
    "parse_search_results",
]
