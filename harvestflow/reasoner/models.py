"""Reasoner protocols and usage accounting."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar

from pydantic import BaseModel

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True, slots=True)
class LLMCompletion:
    content: str
    cost_usd: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0


class JSONLLMClient(Protocol):
    async def complete(
        self,
        *,
        messages: Sequence[Mapping[str, str]],
        response_format: Mapping[str, Any] | None = None,
    ) -> str | tuple[str, float] | LLMCompletion: ...


@dataclass(frozen=True, slots=True)
class InferenceUsage:
    calls: int = 0
    attempts: int = 0
    cost_usd: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0

    def __add__(self, other: InferenceUsage) -> InferenceUsage:
        return InferenceUsage(
            calls=self.calls + other.calls,
            attempts=self.attempts + other.attempts,
            cost_usd=self.cost_usd + other.cost_usd,
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "calls": self.calls,
            "attempts": self.attempts,
            "cost_usd": round(self.cost_usd, 6),
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
        }


@dataclass(frozen=True, slots=True)
class Inference(Generic[ModelT]):
    """A validated reasoner answer plus the usage it cost."""

    value: ModelT
    usage: InferenceUsage


class UsageLedger:
    """Session-scoped running total of inference usage, keyed by stage."""

    def __init__(self) -> None:
        self._by_stage: dict[str, InferenceUsage] = {}

    def record(self, stage: str, usage: InferenceUsage) -> None:
        self._by_stage[stage] = self._by_stage.get(stage, InferenceUsage()) + usage

    @property
    def total(self) -> InferenceUsage:
        total = InferenceUsage()
        for usage in self._by_stage.values():
            total = total + usage
        return total

    def to_payload(self) -> dict[str, Any]:
        payload = {stage: usage.to_payload() for stage, usage in self._by_stage.items()}
        payload["total"] = self.total.to_payload()
        return payload


__all__ = [
    "Inference",
    "InferenceUsage",
    "JSONLLMClient",
    "LLMCompletion",
    "ModelT",
    "UsageLedger",
]
