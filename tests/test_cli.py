"""Tests for the harvestflow command-line interface."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from unittest.mock import patch

from click.testing import CliRunner
from pydantic import BaseModel

from harvestflow.catalog import capability
from harvestflow.cli import app
from harvestflow.config import OrchestratorConfig
from harvestflow.orchestrator import Orchestrator
from harvestflow.reasoner import Reasoner
from harvestflow.registry import build_registry
from harvestflow.results import JsonlResultsWriter
from harvestflow.store import JsonFileSessionStore
from harvestflow.types import SessionContext, Step


class LookupArgs(BaseModel):
    query: str


class LookupOut(BaseModel):
    items: list[str]


@capability(name="lookup", goal="Look up names")
async def lookup(step: Step, args: LookupArgs) -> LookupOut:
    return LookupOut(items=[args.query])


class StubClient:
    def __init__(self, responses: list[Any]) -> None:
        self._responses = [item if isinstance(item, str) else json.dumps(item) for item in responses]

    async def complete(
        self,
        *,
        messages: list[Mapping[str, str]],
        response_format: Mapping[str, object] | None = None,
    ) -> str:
        if not self._responses:
            raise AssertionError("No stub responses left")
        return self._responses.pop(0)


def happy_path(prompt_query: str = "apps") -> list[Any]:
    return [
        {
            "steps": [
                {"id": 1, "description": "Find apps", "requiredFields": ["name"], "completionCriteria": "1 app"}
            ]
        },
        {"name": "lookup", "stepId": 1, "args": [{"key": "query", "value": prompt_query}], "goal": "find"},
        {"contributes": True, "data": [{"id": "r1", "fields": [{"key": "name", "value": "Acme"}]}]},
        {"complete": True, "explanation": "found"},
        {"data": [{"id": "r1", "fields": [{"key": "name", "value": "Acme"}]}]},
    ]


def orchestrator_factory(tmp_path: Path, responses: list[Any]):
    def build(config: OrchestratorConfig) -> Orchestrator:
        return Orchestrator(
            registry=build_registry([lookup]),
            reasoner=Reasoner(StubClient(responses)),
            store=JsonFileSessionStore(config.context_path),
            results_writer=JsonlResultsWriter(config.results_dir),
            config=config,
        )

    return build


def base_args(tmp_path: Path) -> list[str]:
    return ["--data-dir", str(tmp_path / "data"), "--results-dir", str(tmp_path / "results")]


def save_session(tmp_path: Path) -> Path:
    path = tmp_path / "data" / "context.json"
    step = Step(id=1, description="Find apps", completion_criteria="1 app")
    asyncio.run(JsonFileSessionStore(path).save(SessionContext(original_prompt="Find apps", steps=[step])))
    return path


class TestRunCommand:
    def test_runs_task_and_writes_results(self, tmp_path: Path) -> None:
        runner = CliRunner()
        with patch("harvestflow.cli.session.build_orchestrator", orchestrator_factory(tmp_path, happy_path())):
            result = runner.invoke(app, [*base_args(tmp_path), "run", "Find apps"])

        assert result.exit_code == 0, result.output
        assert "Task complete: 1 records" in result.output
        lines = (tmp_path / "results" / "find-apps.jsonl").read_text(encoding="utf-8").splitlines()
        assert json.loads(lines[0])["id"] == "r1"
        assert not (tmp_path / "data" / "context.json").exists()

    def test_exits_when_task_fails(self, tmp_path: Path) -> None:
        runner = CliRunner()
        with patch("harvestflow.cli.session.build_orchestrator", orchestrator_factory(tmp_path, ["x", "y"])):
            result = runner.invoke(app, [*base_args(tmp_path), "run", "Find apps"])

        assert result.exit_code == 1
        assert "Task failed (SETUP_FAILED)" in result.output

    def test_reports_missing_llm_backend(self, tmp_path: Path) -> None:
        runner = CliRunner()
        with patch("harvestflow.cli.session.build_orchestrator", side_effect=RuntimeError("LiteLLM is not installed")):
            result = runner.invoke(app, [*base_args(tmp_path), "run", "Find apps"])

        assert result.exit_code == 1
        assert "LiteLLM is not installed" in result.output


def test_build_orchestrator_uses_config_wiring(tmp_path: Path) -> None:
    from harvestflow.cli.session import build_orchestrator

    config = OrchestratorConfig(data_dir=tmp_path / "data", results_dir=tmp_path / "results")
    with patch.object(Orchestrator, "from_config") as from_config:
        built = build_orchestrator(config)

    from_config.assert_called_once_with(config)
    assert built is from_config.return_value


class TestShowAndClear:
    def test_show_without_session(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(app, [*base_args(tmp_path), "show"])
        assert result.exit_code == 0
        assert "No saved session" in result.output

    def test_show_treats_undecodable_session_as_missing(self, tmp_path: Path) -> None:
        path = tmp_path / "data" / "context.json"
        path.parent.mkdir(parents=True)
        path.write_bytes(b'{"originalPrompt": "\xff\xfe", "steps": []}')

        result = CliRunner().invoke(app, [*base_args(tmp_path), "show"])

        assert result.exit_code == 0, result.output
        assert "No saved session" in result.output

    def test_show_summary_and_json(self, tmp_path: Path) -> None:
        save_session(tmp_path)
        runner = CliRunner()

        summary = runner.invoke(app, [*base_args(tmp_path), "show"])
        raw = runner.invoke(app, [*base_args(tmp_path), "show", "--json"])

        assert "Task: Find apps" in summary.output
        assert "[1] Find apps (0 records, 0 invocations)" in summary.output
        assert json.loads(raw.output)["originalPrompt"] == "Find apps"

    def test_clear_asks_for_confirmation(self, tmp_path: Path) -> None:
        path = save_session(tmp_path)
        runner = CliRunner()

        kept = runner.invoke(app, [*base_args(tmp_path), "clear"], input="n\n")
        assert path.exists()
        assert "Kept the saved session" in kept.output

        cleared = runner.invoke(app, [*base_args(tmp_path), "clear", "--yes"])
        assert cleared.exit_code == 0
        assert not path.exists()

    def test_invalid_env_configuration(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(
            app,
            [*base_args(tmp_path), "show"],
            env={"HARVESTFLOW_MAX_ITERATIONS_PER_STEP": "-3"},
        )
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output


class TestShellCommand:
    def test_context_and_exit(self, tmp_path: Path) -> None:
        runner = CliRunner()
        with patch("harvestflow.cli.session.build_orchestrator", orchestrator_factory(tmp_path, [])):
            result = runner.invoke(app, [*base_args(tmp_path), "shell"], input="context\nexit\n")

        assert result.exit_code == 0, result.output
        assert "No active session." in result.output

    def test_declining_resume_discards_session(self, tmp_path: Path) -> None:
        path = save_session(tmp_path)
        runner = CliRunner()
        with patch("harvestflow.cli.session.build_orchestrator", orchestrator_factory(tmp_path, [])):
            result = runner.invoke(app, [*base_args(tmp_path), "shell"], input="n\nexit\n")

        assert "Found a saved session: Find apps" in result.output
        assert "Previous session cleared." in result.output
        assert not path.exists()

    def test_failed_task_offers_follow_up(self, tmp_path: Path) -> None:
        responses = ["bad plan", "still bad", *happy_path()]
        runner = CliRunner()
        with patch("harvestflow.cli.session.build_orchestrator", orchestrator_factory(tmp_path, responses)):
            result = runner.invoke(
                app,
                [*base_args(tmp_path), "shell"],
                input="Find apps\ny\nFind apps again\ncontext\nexit\n",
            )

        assert result.exit_code == 0, result.output
        assert "Task failed (SETUP_FAILED)" in result.output
        assert "Task complete: 1 records" in result.output
        assert "Task: Find apps again" in result.output
        assert (tmp_path / "results" / "find-apps-again.jsonl").exists()
