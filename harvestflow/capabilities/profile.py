"""``find_profile``: locate a person's professional profile page."""

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

PROFILE_SITE = "linkedin.com/in"


class ProfileArgs(BaseModel):
    person: str = Field(min_length=1, description="<Title> at <Company>")


class ProfileMatch(BaseModel):
    person_name: str = ""
    profile_url: str = ""
    person_title: str = ""
    person_company: str = ""
    was_found: bool = False


def build_profile_messages(step: Step, hits: list[SearchHit], person: str) -> list[dict[str, str]]:
    system = (
        "You identify the profile page of one person from search results. Pick a result only "
        "if it clearly matches the requested title and company and is not already among the "
        "existing results. Otherwise set was_found to false. Respond with JSON only."
    )
    user = json.dumps(
        {
            "looking_for": person,
            "search_results": [hit.model_dump() for hit in hits],
            "existing_results": [record.model_dump(mode="json", by_alias=True) for record in step.results],
        },
        ensure_ascii=False,
    )
    return [{"role": "system", "content": system}, {"role": "user", "content": user}]


def make_find_profile(fetcher: WebFetcher, reasoner: Reasoner) -> CapabilityFn:
    @capability(
        name="find_profile",
        goal="Find the name and profile URL of the person holding a given title at a company",
        tags=("web", "people"),
    )
    async def find_profile(step: Step, args: ProfileArgs) -> ProfileMatch | CapabilityError:
        httpx = _require_httpx()
        try:
            hits = await fetcher.search(f"{args.person} site:{PROFILE_SITE}")
        except httpx.HTTPError as exc:
            return CapabilityError(capability="find_profile", error=str(exc), error_type=exc.__class__.__name__)
        hits = [hit for hit in hits if PROFILE_SITE in hit.url]
        if not hits:
            return ProfileMatch()

        try:
            inference = await reasoner.infer(
                build_profile_messages(step, hits, args.person),
                ProfileMatch,
                label="find_profile",
            )
        except ReasonerError as exc:
            return CapabilityError(capability="find_profile", error=exc.message, error_type=exc.__class__.__name__)

        match = inference.value
        if match.was_found and match.profile_url not in {hit.url for hit in hits}:
            logger.info("profile_url_rejected", extra={"person": args.person, "url": match.profile_url})
            return ProfileMatch()
        logger.info("profile_lookup", extra={"person": args.person, "found": match.was_found})
        return match

    return find_profile


__all__ = ["ProfileArgs", "ProfileMatch", "make_find_profile"]
