"""Bundled HTTP capabilities."""

from __future__ import annotations

from typing import Any

from ..catalog import CapabilityFn
from ..config import CapabilitySettings
from ..reasoner import Reasoner
from ..registry import CapabilityRegistry, build_registry
from .crawl import make_crawl_site
from .profile import make_find_profile
from .search import make_search_web
from .web import WebFetcher


def default_capabilities(
    reasoner: Reasoner,
    settings: CapabilitySettings | None = None,
    *,
    client: Any | None = None,
) -> list[CapabilityFn]:
    """``search_web``, ``crawl_site`` and ``find_profile`` sharing one fetcher.

    ``client`` is an optional ``httpx.AsyncClient`` reused for every request.
    """

    fetcher = WebFetcher(settings=settings or CapabilitySettings(), client=client)
    return [
        make_search_web(fetcher, reasoner),
        make_crawl_site(fetcher, reasoner),
        make_find_profile(fetcher, reasoner),
    ]


def default_registry(
    reasoner: Reasoner,
    settings: CapabilitySettings | None = None,
    *,
    client: Any | None = None,
) -> CapabilityRegistry:
    return build_registry(default_capabilities(reasoner, settings, client=client))


__all__ = ["WebFetcher", "default_capabilities", "default_registry"]
