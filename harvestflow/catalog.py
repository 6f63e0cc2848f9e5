"""Capability catalog helpers."""

from __future__ import annotations

import inspect
import json
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, cast, get_type_hints

from pydantic import BaseModel

from .types import CapabilityError, Step

CapabilityFn = Callable[[Step, Any], Awaitable[Any]]

_JSON_TYPE_LABELS = {
    "string": "string",
    "integer": "integer",
    "number": "number",
    "boolean": "boolean",
    "array": "list",
    "object": "object",
}


def _arg_type_label(schema: Mapping[str, Any]) -> str:
    if "type" in schema:
        return _JSON_TYPE_LABELS.get(str(schema["type"]), str(schema["type"]))
    for key in ("anyOf", "oneOf"):
        options = schema.get(key)
        if isinstance(options, list):
            labels = [
                _arg_type_label(option)
                for option in options
                if isinstance(option, Mapping) and option.get("type") != "null"
            ]
            if labels:
                return " | ".join(dict.fromkeys(labels))
    return "any"


@dataclass(frozen=True, slots=True)
class CapabilitySpec:
    """Structured metadata describing a selectable capability."""

    name: str
    goal: str
    args_model: type[BaseModel]
    out_model: type[BaseModel]
    execute: CapabilityFn
    tags: Sequence[str] = field(default_factory=tuple)
    extra: Mapping[str, Any] = field(default_factory=dict)

    def arg_types(self) -> dict[str, str]:
        """Flat ``{arg_name: type}`` view of the argument schema."""

        schema = self.args_model.model_json_schema()
        properties = schema.get("properties", {})
        return {name: _arg_type_label(prop) for name, prop in properties.items()}

    def to_catalog_record(self) -> dict[str, Any]:
        """Convert the spec to a serialisable record for prompting."""
        safe_extra: dict[str, Any] = {}
        for key, value in self.extra.items():
            if callable(value):
                continue
            try:
                json.dumps(value, ensure_ascii=False)
            except (TypeError, ValueError):
                continue
            safe_extra[key] = value

        return {
            "name": self.name,
            "goal": self.goal,
            "args": self.arg_types(),
            "args_schema": self.args_model.model_json_schema(),
            "out_schema": self.out_model.model_json_schema(),
            "tags": list(self.tags),
            "extra": safe_extra,
        }


def _normalise_sequence(value: Sequence[str] | None) -> tuple[str, ...]:
    if value is None:
        return ()
    return tuple(dict.fromkeys(value))


def capability(
    *,
    name: str | None = None,
    goal: str | None = None,
    tags: Sequence[str] | None = None,
    extra: Mapping[str, Any] | None = None,
) -> Callable[[CapabilityFn], CapabilityFn]:
    """Annotate an ``async (step, args)`` function with catalog metadata."""

    payload: dict[str, Any] = {
        "name": name,
        "goal": goal,
        "tags": _normalise_sequence(tags),
        "extra": dict(extra) if extra else {},
    }

    def decorator(func: CapabilityFn) -> CapabilityFn:
        func_ref = cast(Any, func)
        func_ref.__harvestflow_capability__ = payload
        return func

    return decorator


def _resolve_models(func: CapabilityFn) -> tuple[type[BaseModel], type[BaseModel]]:
    try:
        hints = get_type_hints(func)
    except NameError as exc:
        raise TypeError(f"Cannot resolve type hints for capability {func.__name__!r}") from exc

    params = [param for param in inspect.signature(func).parameters.values()]
    if len(params) != 2:
        raise ValueError(
            f"Capability '{func.__name__}' must accept exactly two parameters "
            f"(step, args); got {len(params)}"
        )
    args_model = hints.get(params[1].name)
    out_model = hints.get("return")
    if not (isinstance(args_model, type) and issubclass(args_model, BaseModel)):
        raise TypeError(f"Capability '{func.__name__}' args must be annotated with a BaseModel")
    if not (isinstance(out_model, type) and issubclass(out_model, BaseModel)):
        # ``-> Output | CapabilityError`` resolves to a union; take the non-error member.
        members = [
            member
            for member in getattr(out_model, "__args__", ())
            if isinstance(member, type) and issubclass(member, BaseModel) and member is not CapabilityError
        ]
        if len(members) != 1:
            raise TypeError(f"Capability '{func.__name__}' must return a BaseModel")
        out_model = members[0]
    return args_model, out_model


def build_capability(func: CapabilityFn) -> CapabilitySpec:
    """Derive a :class:`CapabilitySpec` from a decorated function."""

    if not inspect.iscoroutinefunction(func):
        raise TypeError("Capability function must be declared with async def")
    raw = getattr(func, "__harvestflow_capability__", None) or {}
    args_model, out_model = _resolve_models(func)
    return CapabilitySpec(
        name=raw.get("name") or func.__name__,
        goal=raw.get("goal") or inspect.getdoc(func) or func.__name__,
        args_model=args_model,
        out_model=out_model,
        execute=func,
        tags=tuple(raw.get("tags", ())),
        extra=dict(raw.get("extra", {})),
    )


__all__ = [
    "CapabilityFn",
    "CapabilitySpec",
    "build_capability",
    "capability",
]
