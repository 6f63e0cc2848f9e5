"""Prompt helpers for the orchestration stages."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

TRUNCATION_MARKER = "...[truncated]"


def _compact_json(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, sort_keys=True, default=str)


def render_capability(record: Mapping[str, Any]) -> str:
    parts = [
        f"- name: {record['name']}",
        f"  goal: {record['goal']}",
        f"  args: {_compact_json(record['args'])}",
        f"  args_schema: {_compact_json(record['args_schema'])}",
        f"  out_schema: {_compact_json(record['out_schema'])}",
    ]
    tags = ", ".join(record.get("tags", ()))
    if tags:
        parts.append(f"  tags: {tags}")
    if record.get("extra"):
        parts.append(f"  extra: {_compact_json(record['extra'])}")
    return "\n".join(parts)


def render_catalog(catalog: Sequence[Mapping[str, Any]]) -> str:
    return "\n".join(render_capability(item) for item in catalog) or "(none)"


def render_observation(output: Any, *, max_chars: int) -> str:
    """Compact JSON view of a capability output, capped at ``max_chars``."""

    text = _compact_json(output)
    if len(text) <= max_chars:
        return text
    return text[: max_chars - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER


def build_plan_messages(prompt: str, catalog: Sequence[Mapping[str, Any]]) -> list[dict[str, str]]:
    system = "\n".join(
        [
            "You break a data collection task into ordered steps.",
            "Rules:",
            "1. Use as few steps as possible; one step per kind of record a single workflow can fill.",
            "2. Number steps with unique ascending integer ids starting at 1.",
            "3. requiredFields lists the field names each collected record must carry.",
            "4. completionCriteria states a checkable condition, e.g. '10 apps found'.",
            "5. suggestedWorkflows may only name capabilities from the catalog below.",
            "6. Respond with JSON matching the requested schema only.",
            "",
            "Available capabilities:",
            render_catalog(catalog),
        ]
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": _compact_json({"task": prompt})},
    ]


def build_selection_messages(
    step: Mapping[str, Any],
    catalog: Sequence[Mapping[str, Any]],
    prior_results: Sequence[Mapping[str, Any]],
) -> list[dict[str, str]]:
    system = "\n".join(
        [
            "Select the next capability to run for the current step.",
            "Rules:",
            "1. Only choose a capability name listed in the catalog.",
            "2. Never repeat a capability with the same args already present in workflowHistory.",
            "3. If repeated attempts are not making progress, step back to a broader capability.",
            "4. Provide every argument the capability declares, as key/value pairs.",
            "5. Prefer URLs and facts found in previous results over guesses.",
            "6. Respond with JSON matching the requested schema only.",
            "",
            "Available capabilities:",
            render_catalog(catalog),
        ]
    )
    user = _compact_json(
        {
            "current_step": dict(step),
            "results_so_far": list(prior_results),
        }
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def build_merge_messages(
    step: Mapping[str, Any],
    capability_name: str,
    output: Any,
    *,
    max_observation_chars: int,
) -> list[dict[str, str]]:
    system = "\n".join(
        [
            "Fold a capability's output into the step's existing results.",
            "Rules:",
            "1. Set contributes=false when the output holds nothing new for the required fields.",
            "2. Otherwise return the full merged record list in data.",
            "3. Keep existing record ids; update a record only when the output adds to it.",
            "4. Give new records new ids. Attach the source URLs each value came from.",
            "5. Do not invent values or URLs that are not in the output or existing results.",
            "6. Respond with JSON matching the requested schema only.",
        ]
    )
    user = "\n".join(
        [
            f"Description: {step.get('description', '')}",
            f"Required fields: {', '.join(step.get('requiredFields', []))}",
            f"Existing results: {_compact_json(step.get('results', []))}",
            f"Capability: {capability_name}",
            f"New output: {render_observation(output, max_chars=max_observation_chars)}",
        ]
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def build_judge_messages(step: Mapping[str, Any]) -> list[dict[str, str]]:
    system = "\n".join(
        [
            "Decide whether a step is complete.",
            "Judge only from the step's results against its completion criteria.",
            "If the criteria ask for N records, the step is complete only with at least N "
            "records carrying every required field.",
            "Respond with JSON matching the requested schema only.",
        ]
    )
    user = _compact_json(
        {
            "description": step.get("description"),
            "completion_criteria": step.get("completionCriteria"),
            "required_fields": step.get("requiredFields", []),
            "results": step.get("results", []),
        }
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def build_aggregate_messages(
    prompt: str,
    completed_steps: Sequence[Mapping[str, Any]],
) -> list[dict[str, str]]:
    system = "\n".join(
        [
            "Merge the results of all completed steps into one record list for the task.",
            "Join records that describe the same entity and keep every field and source URL.",
            "Drop exact duplicates. Do not invent values.",
            "Respond with JSON matching the requested schema only.",
        ]
    )
    user = _compact_json({"task": prompt, "completed_steps": list(completed_steps)})
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def render_invalid_capability(name: str, available: Sequence[str]) -> str:
    options = ", ".join(sorted(available))
    return f"capability '{name}' is not in the catalog. Choose one of: {options}."


def render_duplicate_selection(name: str, args: Mapping[str, Any]) -> str:
    return (
        f"capability '{name}' was already run with args {_compact_json(dict(args))} for this step. "
        "Choose different args or a different capability."
    )


def render_invalid_args(name: str, error: str) -> str:
    return f"args for capability '{name}' did not validate: {error}. Return corrected JSON."


def render_repair_message(error: str) -> str:
    return (
        "Previous response was invalid JSON or schema mismatch: "
        f"{error}. Reply with corrected JSON only."
    )


__all__ = [
    "TRUNCATION_MARKER",
    "build_aggregate_messages",
    "build_judge_messages",
    "build_merge_messages",
    "build_plan_messages",
    "build_selection_messages",
    "render_capability",
    "render_catalog",
    "render_duplicate_selection",
    "render_invalid_args",
    "render_invalid_capability",
    "render_observation",
    "render_repair_message",
]
