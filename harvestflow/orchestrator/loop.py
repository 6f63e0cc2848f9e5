"""The orchestration control loop."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from ..config import OrchestratorConfig
from ..errors import HarvestFlowError, IterationLimitError, ResultsPersistenceError
from ..reasoner import JSONLLMClient, Reasoner, UsageLedger
from ..registry import CapabilityRegistry
from ..results import JsonlResultsWriter, ResultsWriter
from ..store import JsonFileSessionStore, SessionStore
from ..types import CapabilityError, ResultRecord, SessionContext, Step
from .aggregator import ResultAggregator
from .events import OrchestratorEvent, OrchestratorEventCallback, emit_event
from .judge import CompletionJudge
from .merger import ResultMerger
from .models import LoopState, RunResult, StepProgress
from .planner import TaskPlanner
from .selector import WorkflowSelector

logger = logging.getLogger("harvestflow.orchestrator")


class Orchestrator:
    """Drive a task from decomposition to persisted results.

    ``setup()`` decomposes a prompt into steps and saves the new session;
    ``execute()`` runs select, execute, merge and judge against the first
    incomplete step until every step is complete, then aggregates and hands
    the records to the results writer. The session is saved after every
    mutation, so an interrupted run can be picked up with ``resume()``.

    Neither ``setup()`` nor ``execute()`` raises for engine failures; they
    return a :class:`RunResult` with ``success=False`` instead.

    Parameters
    ----------
    registry : CapabilityRegistry
        Capabilities available to the selector.
    reasoner : Reasoner
        Structured inference backend shared by every stage.
    store : SessionStore
        Where the session context is persisted.
    results_writer : ResultsWriter | None
        Receives the aggregated records. ``None`` skips the handoff.
    config : OrchestratorConfig | None
        Loop limits and behaviour flags.
    event_callback : OrchestratorEventCallback | None
        Receives every :class:`OrchestratorEvent` after it is logged.
    time_source : Callable[[], float] | None
        Clock used for event timestamps and latencies.
    """

    def __init__(
        self,
        *,
        registry: CapabilityRegistry,
        reasoner: Reasoner,
        store: SessionStore,
        results_writer: ResultsWriter | None = None,
        config: OrchestratorConfig | None = None,
        event_callback: OrchestratorEventCallback | None = None,
        time_source: Callable[[], float] | None = None,
    ) -> None:
        self._config = config or OrchestratorConfig()
        self._registry = registry
        self._store = store
        self._results_writer = results_writer
        self._event_callback = event_callback
        self._time_source = time_source or time.monotonic

        self._planner = TaskPlanner(reasoner)
        self._selector = WorkflowSelector(
            reasoner,
            registry,
            reject_duplicates=self._config.reject_duplicate_selections,
        )
        self._merger = ResultMerger(reasoner, max_observation_chars=self._config.max_observation_chars)
        self._judge = CompletionJudge(reasoner)
        self._aggregator = ResultAggregator(reasoner)

        self.state = LoopState.SETUP
        self.context: SessionContext | None = None
        self.usage = UsageLedger()
        self._progress = StepProgress()

    @classmethod
    def from_config(
        cls,
        config: OrchestratorConfig,
        registry: CapabilityRegistry | None = None,
        *,
        client: JSONLLMClient | None = None,
        store: SessionStore | None = None,
        results_writer: ResultsWriter | None = None,
        event_callback: OrchestratorEventCallback | None = None,
    ) -> Orchestrator:
        if client is None:
            reasoner = Reasoner.from_model(
                config.model,
                temperature=config.temperature,
                repair_attempts=config.repair_attempts,
                timeout_s=config.llm_timeout_s,
                max_retries=config.llm_max_retries,
            )
        else:
            reasoner = Reasoner(client, repair_attempts=config.repair_attempts)
        if registry is None:
            from ..capabilities import default_registry

            registry = default_registry(reasoner, config.capabilities)
        return cls(
            registry=registry,
            reasoner=reasoner,
            store=store or JsonFileSessionStore(config.context_path),
            results_writer=results_writer or JsonlResultsWriter(config.results_dir),
            config=config,
            event_callback=event_callback,
        )

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def initialize_context(self, context: SessionContext) -> None:
        """Adopt an existing session, e.g. one loaded outside the store."""

        self.context = context
        self.state = LoopState.SETUP
        self.usage = UsageLedger()
        self._progress = StepProgress()

    async def resume(self) -> SessionContext | None:
        context = await self._store.load()
        if context is None:
            return None
        self.initialize_context(context)
        active = context.active_step()
        self._emit(
            "session_resumed",
            step_id=active.id if active is not None else None,
            extra={
                "session_id": context.session_id,
                "completed_steps": len(context.completed_steps()),
                "total_steps": len(context.steps),
            },
        )
        return context

    async def discard(self) -> None:
        await self._store.clear()
        self.context = None
        self.state = LoopState.SETUP

    async def run(self, prompt: str) -> RunResult:
        result = await self.setup(prompt)
        if not result.success:
            return result
        return await self.execute()

    async def setup(self, prompt: str) -> RunResult:
        self.context = None
        self.state = LoopState.SETUP
        self.usage = UsageLedger()
        self._progress = StepProgress()

        try:
            drafts, usage = await self._planner.decompose(prompt, self._registry.catalog_records())
            self.usage.record("plan", usage)
            context = SessionContext(
                original_prompt=prompt,
                steps=[Step.from_draft(draft) for draft in drafts],
            )
            await self._store.save(context)
        except (HarvestFlowError, OSError) as exc:
            self.context = None
            return self._fail(LoopState.SETUP_FAILED, exc, event_type="setup_failed")

        self.context = context
        self._emit(
            "setup_complete",
            extra={"session_id": context.session_id, "step_count": len(context.steps)},
        )
        return RunResult(
            success=True,
            state=self.state,
            context=context,
            usage=self.usage.to_payload(),
        )

    async def execute(self) -> RunResult:
        context = self.context
        if context is None:
            self.state = LoopState.ITERATION_FAILED
            return RunResult(
                success=False,
                state=self.state,
                error="No session to execute; call setup() or resume() first",
                error_type="HarvestFlowError",
            )

        try:
            while (step := context.active_step()) is not None:
                await self._iterate(context, step)
            records = await self._aggregate(context)
            output_path = await self._persist_final(context, records)
        except (HarvestFlowError, OSError) as exc:
            return self._fail(LoopState.ITERATION_FAILED, exc, event_type="run_failed")

        self.state = LoopState.DONE
        if self._config.discard_on_completion:
            try:
                await self._store.clear()
            except OSError as exc:
                logger.warning("session_clear_failed", extra={"error": str(exc)})
        self._emit(
            "run_complete",
            extra={"record_count": len(records), "output_path": output_path},
        )
        return RunResult(
            success=True,
            state=self.state,
            context=context,
            results=records,
            output_path=output_path,
            usage=self.usage.to_payload(),
        )

    # ------------------------------------------------------------------
    # Loop stages
    # ------------------------------------------------------------------

    async def _iterate(self, context: SessionContext, step: Step) -> None:
        iteration = self._progress.bump(step.id)
        limit = self._config.max_iterations_per_step
        if limit is not None and iteration > limit:
            raise IterationLimitError(step.id, limit)
        self._emit("iteration_start", step_id=step.id, iteration=iteration)

        self.state = LoopState.SELECT
        selected, usage = await self._selector.select(step, context.completed_results())
        self.usage.record("select", usage)
        self._emit(
            "workflow_selected",
            step_id=step.id,
            iteration=iteration,
            capability=selected.capability_name,
            extra={"selected_args": selected.args, "goal": selected.goal, "attempts": selected.attempts},
        )

        self.state = LoopState.EXECUTE
        started = self._time_source()
        output = await self._registry.invoke(selected.capability_name, step, selected.args)
        latency_ms = (self._time_source() - started) * 1000
        self._emit(
            "workflow_executed",
            step_id=step.id,
            iteration=iteration,
            capability=selected.capability_name,
            latency_ms=latency_ms,
            error=output.error if isinstance(output, CapabilityError) else None,
        )

        self.state = LoopState.MERGE
        try:
            results, usage = await self._merger.merge(step, selected, output)
            self.usage.record("merge", usage)
        finally:
            # The invocation is already in the history, even on failure.
            await self._store.save(context)
        self._emit(
            "step_merged",
            step_id=step.id,
            iteration=iteration,
            capability=selected.capability_name,
            extra={"record_count": len(results), "history_length": len(step.workflow_history)},
        )

        self.state = LoopState.JUDGE
        verdict, usage = await self._judge.is_complete(step)
        self.usage.record("judge", usage)
        self._emit(
            "step_judged",
            step_id=step.id,
            iteration=iteration,
            extra={"complete": verdict.complete, "explanation": verdict.explanation},
        )
        if verdict.complete:
            step.mark_completed()
            await self._store.save(context)
            self._emit(
                "step_completed",
                step_id=step.id,
                iteration=iteration,
                extra={"record_count": len(step.results)},
            )

    async def _aggregate(self, context: SessionContext) -> list[ResultRecord]:
        self.state = LoopState.AGGREGATE
        records, usage = await self._aggregator.aggregate(context)
        self.usage.record("aggregate", usage)
        self._emit("aggregated", extra={"record_count": len(records)})
        return records

    async def _persist_final(self, context: SessionContext, records: list[ResultRecord]) -> str | None:
        self.state = LoopState.PERSIST_FINAL
        if self._results_writer is None:
            return None
        outcome = await self._results_writer.write(context, records)
        if not outcome.success:
            raise ResultsPersistenceError(
                f"Failed to write results: {outcome.error or 'unknown error'}",
                hint="The session is still saved; resume to retry the final write.",
            )
        self._emit(
            "results_persisted",
            extra={"path": outcome.path, "record_count": outcome.records_written},
        )
        return outcome.path

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fail(self, state: LoopState, exc: Exception, *, event_type: str) -> RunResult:
        self.state = state
        if isinstance(exc, HarvestFlowError):
            message = exc.message
            hint = exc.hint
        else:
            message = str(exc) or exc.__class__.__name__
            hint = None
        self._emit(
            event_type,
            error=message,
            extra={"error_type": exc.__class__.__name__, "hint": hint, "state": state.value},
        )
        return RunResult(
            success=False,
            state=state,
            error=message,
            error_type=exc.__class__.__name__,
            hint=hint,
            context=self.context,
            usage=self.usage.to_payload(),
        )

    def _emit(
        self,
        event_type: str,
        *,
        step_id: int | None = None,
        iteration: int | None = None,
        capability: str | None = None,
        latency_ms: float | None = None,
        error: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        emit_event(
            OrchestratorEvent(
                event_type=event_type,
                ts=self._time_source(),
                step_id=step_id,
                iteration=iteration,
                capability=capability,
                latency_ms=latency_ms,
                error=error,
                extra=extra or {},
            ),
            self._event_callback,
        )


__all__ = ["Orchestrator"]
