"""Structured inference boundary."""

from __future__ import annotations

from .llm import LiteLLMJSONClient, Reasoner, response_format_for
from .models import (
    Inference,
    InferenceUsage,
    JSONLLMClient,
    LLMCompletion,
    UsageLedger,
)

__all__ = [
    "Inference",
    "InferenceUsage",
    "JSONLLMClient",
    "LLMCompletion",
    "LiteLLMJSONClient",
    "Reasoner",
    "UsageLedger",
    "response_format_for",
]
