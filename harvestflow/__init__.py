"""Public package surface for HarvestFlow."""

from __future__ import annotations

from .catalog import CapabilitySpec, build_capability, capability
from .config import CapabilitySettings, OrchestratorConfig
from .errors import (
    HarvestFlowError,
    IterationLimitError,
    ReasonerError,
    ResultsPersistenceError,
    SchemaValidationError,
    SelectionError,
    SetupError,
    TransportError,
)
from .orchestrator import LoopState, Orchestrator, OrchestratorEvent, RunResult
from .reasoner import Inference, InferenceUsage, LiteLLMJSONClient, Reasoner
from .registry import CapabilityRegistry, build_registry
from .results import JsonlResultsWriter, WriteOutcome, task_slug
from .store import InMemorySessionStore, JsonFileSessionStore
from .types import (
    CapabilityError,
    ResultField,
    ResultRecord,
    SessionContext,
    Step,
    StepDraft,
    WorkflowInvocation,
)

__all__ = [
    "__version__",
    "CapabilityError",
    "CapabilityRegistry",
    "CapabilitySettings",
    "CapabilitySpec",
    "HarvestFlowError",
    "InMemorySessionStore",
    "Inference",
    "InferenceUsage",
    "IterationLimitError",
    "JsonFileSessionStore",
    "JsonlResultsWriter",
    "LiteLLMJSONClient",
    "LoopState",
    "Orchestrator",
    "OrchestratorConfig",
    "OrchestratorEvent",
    "Reasoner",
    "ReasonerError",
    "ResultField",
    "ResultRecord",
    "ResultsPersistenceError",
    "RunResult",
    "SchemaValidationError",
    "SelectionError",
    "SessionContext",
    "SetupError",
    "Step",
    "StepDraft",
    "TransportError",
    "WorkflowInvocation",
    "WriteOutcome",
    "build_capability",
    "build_registry",
    "capability",
    "task_slug",
]

__version__ = "0.1.0"
