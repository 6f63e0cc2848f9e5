"""Interactive and one-shot task sessions behind the CLI commands."""

from __future__ import annotations

import logging
from collections.abc import Callable

import click

from ..config import OrchestratorConfig
from ..orchestrator import Orchestrator, RunResult
from ..types import SessionContext

EXIT_COMMANDS = frozenset({"exit", "quit"})
CONTEXT_COMMAND = "context"


class CLIError(Exception):
    """Error with a user-facing message and optional hint."""

    def __init__(self, message: str, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_orchestrator(config: OrchestratorConfig) -> Orchestrator:
    return Orchestrator.from_config(config)


def render_session(context: SessionContext | None) -> str:
    if context is None:
        return "No active session."
    lines = [f"Task: {context.original_prompt}", f"Session: {context.session_id}"]
    for step in sorted(context.steps, key=lambda item: item.id):
        marker = "✓" if step.completed else "·"
        lines.append(
            f"  {marker} [{step.id}] {step.description} "
            f"({len(step.results)} records, {len(step.workflow_history)} invocations)"
        )
    return "\n".join(lines)


def render_run_result(result: RunResult) -> str:
    if not result.success:
        lines = [f"✗ Task failed ({result.state.value}): {result.error}"]
        if result.hint:
            lines.append(f"  Hint: {result.hint}")
        return "\n".join(lines)
    lines = [f"✓ Task complete: {len(result.results)} records"]
    if result.output_path:
        lines.append(f"  Results written to {result.output_path}")
    total = result.usage.get("total")
    if isinstance(total, dict) and total.get("calls"):
        lines.append(f"  Reasoner calls: {total['calls']}, cost: ${total.get('cost_usd', 0.0):.4f}")
    return "\n".join(lines)


async def run_task(orchestrator: Orchestrator, prompt: str, *, echo: Callable[[str], None] = click.echo) -> RunResult:
    result = await orchestrator.run(prompt)
    echo(render_run_result(result))
    return result


async def shell_session(
    orchestrator: Orchestrator,
    *,
    prompt: Callable[[str], str] = click.prompt,
    confirm: Callable[[str], bool] = click.confirm,
    echo: Callable[[str], None] = click.echo,
) -> None:
    """Read tasks until ``exit``, offering to resume a saved session first."""

    echo("HarvestFlow shell")
    echo('Type "exit" to quit, "context" to view the current session.\n')

    saved = await orchestrator.resume()
    if saved is not None:
        echo(f"Found a saved session: {saved.original_prompt}")
        if confirm("Continue from the previous session?"):
            result = await orchestrator.execute()
            echo(render_run_result(result))
            if not result.success:
                await _offer_retry(orchestrator, prompt=prompt, confirm=confirm, echo=echo)
        else:
            await orchestrator.discard()
            echo("Previous session cleared.")

    while True:
        task = prompt("Enter your task (or command)").strip()
        if not task:
            continue
        command = task.lower()
        if command in EXIT_COMMANDS:
            break
        if command == CONTEXT_COMMAND:
            echo(render_session(orchestrator.context))
            continue
        result = await run_task(orchestrator, task, echo=echo)
        if not result.success:
            await _offer_retry(orchestrator, prompt=prompt, confirm=confirm, echo=echo)


async def _offer_retry(
    orchestrator: Orchestrator,
    *,
    prompt: Callable[[str], str],
    confirm: Callable[[str], bool],
    echo: Callable[[str], None],
) -> None:
    if not confirm("Would you like to try a different approach?"):
        return
    follow_up = prompt("Enter your follow-up task").strip()
    if follow_up:
        await run_task(orchestrator, follow_up, echo=echo)


__all__ = [
    "CLIError",
    "build_orchestrator",
    "configure_logging",
    "render_run_result",
    "render_session",
    "run_task",
    "shell_session",
]
