from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

import pytest
from pydantic import BaseModel

from harvestflow.errors import SchemaValidationError
from harvestflow.orchestrator import (
    CompletionJudge,
    ResultAggregator,
    ResultMerger,
    SelectedWorkflow,
    reconcile_records,
)
from harvestflow.reasoner import Reasoner
from harvestflow.types import CapabilityError, ResultField, ResultRecord, SessionContext, Step


class Hits(BaseModel):
    hits: list[str]


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


def record(record_id: str, name: str) -> ResultRecord:
    return ResultRecord(
        id=record_id,
        fields=[ResultField(key="name", value=name, source_urls=[f"https://{name.lower()}.example"])],
    )


def record_payload(record_id: str, name: str) -> dict[str, Any]:
    return record(record_id, name).model_dump(mode="json", by_alias=True)


def make_step(*records: ResultRecord) -> Step:
    step = Step(id=1, description="Find apps", required_fields=["name"], completion_criteria="2 apps")
    step.results = list(records)
    return step


WORKFLOW = SelectedWorkflow(capability_name="search_web", args={"query": "apps"}, goal="find apps")


@pytest.mark.asyncio()
async def test_non_contributory_merge_keeps_results_and_appends_history() -> None:
    step = make_step(record("r1", "Acme"))
    before = [item.model_copy(deep=True) for item in step.results]
    client = StubClient([{"contributes": False, "data": []}])
    merger = ResultMerger(Reasoner(client))

    results, usage = await merger.merge(step, WORKFLOW, Hits(hits=["nothing new"]))

    assert results == before
    assert step.results == before
    assert len(step.workflow_history) == 1
    entry = step.workflow_history[0]
    assert entry.capability_name == "search_web"
    assert entry.args == {"query": "apps"}
    assert entry.result_snapshot == {"hits": ["nothing new"]}
    assert entry.succeeded is True
    assert usage.calls == 1


@pytest.mark.asyncio()
async def test_contributing_merge_preserves_unmentioned_records() -> None:
    step = make_step(record("r1", "Acme"), record("r2", "Globex"))
    client = StubClient(
        [
            {
                "contributes": True,
                "data": [record_payload("r2", "Globex Corp"), record_payload("r3", "Initech")],
            }
        ]
    )
    merger = ResultMerger(Reasoner(client))

    results, _ = await merger.merge(step, WORKFLOW, Hits(hits=["Globex Corp", "Initech"]))

    assert [item.id for item in results] == ["r1", "r2", "r3"]
    assert results[0] == record("r1", "Acme")
    assert results[1].get("name") == "Globex Corp"
    assert results[2].get("name") == "Initech"


@pytest.mark.asyncio()
async def test_capability_error_skips_reasoner() -> None:
    step = make_step(record("r1", "Acme"))
    client = StubClient([])
    merger = ResultMerger(Reasoner(client))
    error = CapabilityError(capability="search_web", error="timeout", error_type="TimeoutError")

    results, usage = await merger.merge(step, WORKFLOW, error)

    assert client.calls == []
    assert results == [record("r1", "Acme")]
    assert usage.calls == 0
    entry = step.workflow_history[0]
    assert entry.succeeded is False
    assert entry.result_snapshot["error"] == "timeout"


@pytest.mark.asyncio()
async def test_empty_output_skips_reasoner() -> None:
    step = make_step()
    client = StubClient([])
    merger = ResultMerger(Reasoner(client))

    await merger.merge(step, WORKFLOW, Hits(hits=[]))

    assert client.calls == []
    assert len(step.workflow_history) == 1


@pytest.mark.asyncio()
async def test_merge_failure_still_records_invocation() -> None:
    step = make_step(record("r1", "Acme"))
    merger = ResultMerger(Reasoner(StubClient(["bad", "worse"])))

    with pytest.raises(SchemaValidationError):
        await merger.merge(step, WORKFLOW, Hits(hits=["Initech"]))

    assert len(step.workflow_history) == 1
    assert step.results == [record("r1", "Acme")]


@pytest.mark.asyncio()
async def test_merge_prompt_truncates_large_output() -> None:
    step = make_step()
    client = StubClient([{"contributes": False}])
    merger = ResultMerger(Reasoner(client), max_observation_chars=300)

    await merger.merge(step, WORKFLOW, Hits(hits=["x" * 5000]))

    user_content = client.calls[0][-1]["content"]
    assert "...[truncated]" in user_content
    assert len(step.workflow_history[0].result_snapshot["hits"][0]) == 5000


def test_reconcile_records_appends_new_and_replaces_matching() -> None:
    existing = [record("a", "A"), record("b", "B")]
    merged = [record("c", "C"), record("a", "A2"), record("a", "ignored duplicate")]
    combined = reconcile_records(existing, merged)
    assert [item.id for item in combined] == ["a", "b", "c"]
    assert combined[0].get("name") == "A2"


@pytest.mark.asyncio()
async def test_judge_returns_verdict() -> None:
    step = make_step(record("r1", "Acme"), record("r2", "Globex"))
    client = StubClient([{"complete": True, "explanation": "two apps found"}])
    judge = CompletionJudge(Reasoner(client))

    verdict, usage = await judge.is_complete(step)

    assert verdict.complete is True
    assert verdict.explanation == "two apps found"
    assert usage.calls == 1
    payload = json.loads(client.calls[0][-1]["content"])
    assert payload["completion_criteria"] == "2 apps"
    assert len(payload["results"]) == 2


@pytest.mark.asyncio()
async def test_aggregator_merges_completed_steps() -> None:
    first = make_step(record("r1", "Acme"))
    first.mark_completed()
    second = Step(id=2, description="Find founders", completion_criteria="founders", completed=True)
    second.results = [record("f1", "Jane")]
    context = SessionContext(original_prompt="Apps and founders", steps=[first, second])
    client = StubClient([{"data": [record_payload("x1", "Acme")]}])

    records, usage = await ResultAggregator(Reasoner(client)).aggregate(context)

    assert [item.id for item in records] == ["x1"]
    assert usage.calls == 1
    payload = json.loads(client.calls[0][-1]["content"])
    assert payload["task"] == "Apps and founders"
    assert [item["id"] for item in payload["completed_steps"]] == [1, 2]
