"""HarvestFlow command-line interface."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import sys
from pathlib import Path

import click

from ..config import OrchestratorConfig


def _load_config(
    model: str | None,
    data_dir: Path | None,
    results_dir: Path | None,
    log_level: str | None,
) -> OrchestratorConfig:
    from .session import CLIError

    try:
        config = OrchestratorConfig.from_env()
        overrides: dict[str, object] = {}
        if model:
            overrides["model"] = model
        if data_dir is not None:
            overrides["data_dir"] = data_dir
        if results_dir is not None:
            overrides["results_dir"] = results_dir
        if log_level:
            overrides["log_level"] = log_level
        return dataclasses.replace(config, **overrides) if overrides else config
    except ValueError as exc:
        raise CLIError(f"Invalid configuration: {exc}", hint="Check HARVESTFLOW_* environment variables.") from exc


def _fail(message: str, hint: str | None = None) -> None:
    click.echo(f"✗ {message}", err=True)
    if hint:
        click.echo(f"  Hint: {hint}", err=True)
    sys.exit(1)


@click.group()
@click.version_option()
@click.option("--model", help="LiteLLM model id, e.g. gpt-4o or ollama/llama3.")
@click.option("--data-dir", type=click.Path(path_type=Path), help="Directory holding the saved session.")
@click.option("--results-dir", type=click.Path(path_type=Path), help="Directory for results files.")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Logging level.",
)
@click.pass_context
def app(
    ctx: click.Context,
    model: str | None,
    data_dir: Path | None,
    results_dir: Path | None,
    log_level: str | None,
) -> None:
    """HarvestFlow CLI - decompose a data collection task and run it to completion."""
    from .session import CLIError, configure_logging

    try:
        config = _load_config(model, data_dir, results_dir, log_level)
    except CLIError as e:
        _fail(e.message, e.hint)
        return
    configure_logging(config.log_level)
    ctx.obj = config


@app.command()
@click.pass_obj
def shell(config: OrchestratorConfig) -> None:
    """Start an interactive session: enter tasks, "context" or "exit"."""
    from .session import build_orchestrator, shell_session

    try:
        orchestrator = build_orchestrator(config)
        asyncio.run(shell_session(orchestrator))
    except RuntimeError as e:
        _fail(str(e))


@app.command()
@click.argument("prompt")
@click.pass_obj
def run(config: OrchestratorConfig, prompt: str) -> None:
    """Run PROMPT as a one-shot task."""
    from .session import build_orchestrator, run_task

    try:
        orchestrator = build_orchestrator(config)
        result = asyncio.run(run_task(orchestrator, prompt))
    except RuntimeError as e:
        _fail(str(e))
        return
    if not result.success:
        sys.exit(1)


@app.command()
@click.option("--json", "as_json", is_flag=True, help="Print the raw session document.")
@click.pass_obj
def show(config: OrchestratorConfig, as_json: bool) -> None:
    """Print the saved session, if any."""
    from ..store import JsonFileSessionStore
    from .session import render_session

    context = asyncio.run(JsonFileSessionStore(config.context_path).load())
    if context is None:
        click.echo(f"No saved session at {config.context_path}")
        return
    if as_json:
        click.echo(json.dumps(context.to_document(), indent=2, ensure_ascii=False))
    else:
        click.echo(render_session(context))


@app.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@click.pass_obj
def clear(config: OrchestratorConfig, yes: bool) -> None:
    """Discard the saved session."""
    from ..store import JsonFileSessionStore

    if not config.context_path.exists():
        click.echo("No saved session.")
        return
    if not yes and not click.confirm("Discard the saved session?"):
        click.echo("Kept the saved session.")
        return
    asyncio.run(JsonFileSessionStore(config.context_path).clear())
    click.echo("Saved session cleared.")


if __name__ == "__main__":
    app()
