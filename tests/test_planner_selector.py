from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

import pytest
from pydantic import BaseModel

from harvestflow.catalog import capability
from harvestflow.errors import SelectionError, SetupError, TransportError
from harvestflow.orchestrator import WORKFLOW_NOT_FOUND, TaskPlanner, WorkflowSelector, normalise_step_ids
from harvestflow.reasoner import Reasoner
from harvestflow.registry import build_registry
from harvestflow.types import Step, StepDraft, WorkflowInvocation


class QueryArgs(BaseModel):
    query: str


class Hits(BaseModel):
    hits: list[str]


@capability(name="search_web", goal="Search the web")
async def search_web(step: Step, args: QueryArgs) -> Hits:
    return Hits(hits=[args.query])


@capability(name="crawl_site", goal="Crawl a page")
async def crawl_site(step: Step, args: QueryArgs) -> Hits:
    return Hits(hits=[args.query])


class StubClient:
    def __init__(self, responses: list[Any]) -> None:
        self._responses = [item if isinstance(item, str) else json.dumps(item) for item in responses]
        self.calls: list[list[Mapping[str, str]]] = []

    async def complete(
        self,
        *,
        messages: list[Mapping[str, str]],
        response_format: Mapping[str, object] | None = None,
    ) -> str:
        self.calls.append(list(messages))
        if not self._responses:
            raise AssertionError("No stub responses left")
        return self._responses.pop(0)


def draft(step_id: int, description: str = "step") -> dict[str, Any]:
    return {
        "id": step_id,
        "description": description,
        "requiredFields": ["name"],
        "completionCriteria": "3 names",
        "suggestedWorkflows": ["search_web"],
    }


def selection(name: str, query: str = "apps", step_id: int = 1) -> dict[str, Any]:
    return {
        "name": name,
        "stepId": step_id,
        "args": [{"key": "query", "value": query}],
        "goal": f"run {name}",
    }


def make_step() -> Step:
    return Step(id=1, description="Find apps", required_fields=["name"], completion_criteria="3 names")


# ---------------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------------


@pytest.mark.asyncio()
async def test_decompose_returns_ordered_drafts() -> None:
    client = StubClient([{"steps": [draft(2, "second"), draft(1, "first")]}])
    planner = TaskPlanner(Reasoner(client))

    catalog = build_registry([search_web]).catalog_records()

    drafts, usage = await planner.decompose("Find apps and founders", catalog)

    assert [item.id for item in drafts] == [1, 2]
    assert [item.description for item in drafts] == ["first", "second"]
    assert usage.calls == 1
    assert "Find apps and founders" in client.calls[0][-1]["content"]


def test_normalise_step_ids_renumbers_collisions() -> None:
    drafts = [
        StepDraft(id=2, description="b", completion_criteria="x"),
        StepDraft(id=2, description="c", completion_criteria="x"),
        StepDraft(id=0, description="a", completion_criteria="x"),
    ]
    normalised = normalise_step_ids(drafts)
    assert [(item.id, item.description) for item in normalised] == [(1, "a"), (2, "b"), (3, "c")]


@pytest.mark.asyncio()
async def test_decompose_rejects_empty_plan() -> None:
    planner = TaskPlanner(Reasoner(StubClient([{"steps": []}])))
    with pytest.raises(SetupError, match="no steps"):
        await planner.decompose("Find apps", [])


@pytest.mark.asyncio()
async def test_decompose_rejects_empty_prompt() -> None:
    client = StubClient([])
    planner = TaskPlanner(Reasoner(client))
    with pytest.raises(SetupError, match="empty"):
        await planner.decompose("   ", [])
    assert client.calls == []


@pytest.mark.asyncio()
async def test_decompose_wraps_reasoner_failures() -> None:
    planner = TaskPlanner(Reasoner(StubClient(["nope", "still nope"])))
    with pytest.raises(SetupError, match="Task decomposition failed") as excinfo:
        await planner.decompose("Find apps", [])
    assert excinfo.value.__cause__ is not None


# ---------------------------------------------------------------------------
# Selector
# ---------------------------------------------------------------------------


@pytest.mark.asyncio()
async def test_select_returns_validated_workflow() -> None:
    client = StubClient([selection("search_web", "top apps")])
    selector = WorkflowSelector(Reasoner(client), build_registry([search_web, crawl_site]))

    selected, usage = await selector.select(make_step(), [{"id": 0, "results": []}])

    assert selected.capability_name == "search_web"
    assert selected.args == {"query": "top apps"}
    assert selected.goal == "run search_web"
    assert selected.attempts == 1
    assert usage.calls == 1
    user_payload = json.loads(client.calls[0][-1]["content"])
    assert user_payload["current_step"]["description"] == "Find apps"
    assert user_payload["results_so_far"] == [{"id": 0, "results": []}]


@pytest.mark.asyncio()
async def test_select_retries_once_after_unknown_capability() -> None:
    client = StubClient([selection("scrape_everything"), selection("crawl_site")])
    selector = WorkflowSelector(Reasoner(client), build_registry([search_web, crawl_site]))

    selected, usage = await selector.select(make_step(), [])

    assert selected.capability_name == "crawl_site"
    assert selected.attempts == 2
    assert usage.calls == 2
    correction = client.calls[1][-1]
    assert correction["role"] == "system"
    assert "scrape_everything" in correction["content"]
    assert "crawl_site" in correction["content"]


@pytest.mark.asyncio()
async def test_select_raises_after_second_unknown_capability() -> None:
    client = StubClient([selection("missing_one"), selection("missing_two")])
    selector = WorkflowSelector(Reasoner(client), build_registry([search_web]))

    with pytest.raises(SelectionError) as excinfo:
        await selector.select(make_step(), [])

    assert excinfo.value.message == WORKFLOW_NOT_FOUND
    assert len(client.calls) == 2


@pytest.mark.asyncio()
async def test_select_rejects_repeated_invocation() -> None:
    step = make_step()
    step.record_invocation(WorkflowInvocation(capability_name="search_web", args={"query": "apps"}))
    client = StubClient([selection("search_web", "apps"), selection("search_web", "best apps")])
    selector = WorkflowSelector(Reasoner(client), build_registry([search_web]))

    selected, _ = await selector.select(step, [])

    assert selected.args == {"query": "best apps"}
    assert "already run" in client.calls[1][-1]["content"]


@pytest.mark.asyncio()
async def test_select_runs_repeat_after_ignored_correction() -> None:
    step = make_step()
    step.record_invocation(WorkflowInvocation(capability_name="search_web", args={"query": "apps"}))
    client = StubClient([selection("search_web", "apps"), selection("search_web", "apps")])
    selector = WorkflowSelector(Reasoner(client), build_registry([search_web]))

    selected, usage = await selector.select(step, [])

    assert selected.capability_name == "search_web"
    assert selected.args == {"query": "apps"}
    assert selected.attempts == 2
    assert usage.calls == 2


@pytest.mark.asyncio()
async def test_select_allows_repeats_when_guard_disabled() -> None:
    step = make_step()
    step.record_invocation(WorkflowInvocation(capability_name="search_web", args={"query": "apps"}))
    client = StubClient([selection("search_web", "apps")])
    selector = WorkflowSelector(Reasoner(client), build_registry([search_web]), reject_duplicates=False)

    selected, _ = await selector.select(step, [])

    assert selected.args == {"query": "apps"}


@pytest.mark.asyncio()
async def test_select_corrects_invalid_args() -> None:
    bad = {"name": "search_web", "stepId": 1, "args": [{"key": "q", "value": "apps"}], "goal": "g"}
    client = StubClient([bad, selection("search_web", "apps")])
    selector = WorkflowSelector(Reasoner(client), build_registry([search_web]))

    selected, _ = await selector.select(make_step(), [])

    assert selected.args == {"query": "apps"}
    assert "did not validate" in client.calls[1][-1]["content"]


@pytest.mark.asyncio()
async def test_select_propagates_reasoner_failures() -> None:
    selector = WorkflowSelector(Reasoner(StubClient([])), build_registry([search_web]))
    with pytest.raises(TransportError):
        await selector.select(make_step(), [])
