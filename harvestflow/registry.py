"""Capability registry for HarvestFlow.

Populated once at startup and queried by name for the rest of the run.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from .catalog import CapabilityFn, CapabilitySpec, build_capability
from .types import CapabilityError, Step

logger = logging.getLogger("harvestflow.capabilities")


class CapabilityRegistry:
    def __init__(self, specs: Iterable[CapabilitySpec] = ()) -> None:
        self._specs: dict[str, CapabilitySpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: CapabilitySpec) -> CapabilitySpec:
        if spec.name in self._specs:
            raise ValueError(f"Capability '{spec.name}' is already registered")
        self._specs[spec.name] = spec
        return spec

    def register_function(self, func: CapabilityFn) -> CapabilitySpec:
        return self.register(build_capability(func))

    def get(self, name: str) -> CapabilitySpec | None:
        return self._specs.get(name)

    def names(self) -> list[str]:
        return list(self._specs)

    def catalog_records(self) -> list[dict[str, Any]]:
        return [spec.to_catalog_record() for spec in self._specs.values()]

    def validate_args(self, name: str, args: Mapping[str, Any]) -> BaseModel:
        """Validate raw args against a capability's argument model.

        Raises ``KeyError`` for unknown capabilities and pydantic's
        ``ValidationError`` for bad arguments.
        """

        spec = self._specs.get(name)
        if spec is None:
            raise KeyError(name)
        return spec.args_model.model_validate(dict(args))

    async def invoke(
        self,
        name: str,
        step: Step,
        args: Mapping[str, Any],
    ) -> BaseModel | CapabilityError:
        """Run a capability, normalising every failure into a :class:`CapabilityError`."""

        spec = self._specs.get(name)
        if spec is None:
            return CapabilityError(capability=name, error=f"Capability '{name}' is not registered")
        try:
            parsed_args = spec.args_model.model_validate(dict(args))
        except ValidationError as exc:
            logger.warning(
                "capability_args_invalid",
                extra={"capability": name, "errors": exc.errors(include_url=False)},
            )
            return CapabilityError(
                capability=name,
                error=f"Invalid arguments: {exc.error_count()} validation error(s)",
                error_type="ValidationError",
            )

        try:
            raw_output = await spec.execute(step, parsed_args)
        except Exception as exc:
            logger.exception(
                "capability_failed",
                extra={"capability": name, "step_id": step.id},
            )
            return CapabilityError(
                capability=name,
                error=str(exc) or exc.__class__.__name__,
                error_type=exc.__class__.__name__,
            )

        if isinstance(raw_output, CapabilityError):
            logger.info(
                "capability_returned_error",
                extra={"capability": name, "error": raw_output.error},
            )
            return raw_output
        try:
            if isinstance(raw_output, spec.out_model):
                return raw_output
            if isinstance(raw_output, BaseModel):
                raw_output = raw_output.model_dump()
            return spec.out_model.model_validate(raw_output)
        except ValidationError as exc:
            logger.warning(
                "capability_output_invalid",
                extra={"capability": name, "errors": exc.errors(include_url=False)},
            )
            return CapabilityError(
                capability=name,
                error="Capability returned data that did not match its result schema",
                error_type="ValidationError",
            )

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __iter__(self) -> Iterator[CapabilitySpec]:
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)


def build_registry(functions: Iterable[CapabilityFn]) -> CapabilityRegistry:
    registry = CapabilityRegistry()
    for func in functions:
        registry.register_function(func)
    return registry


__all__ = ["CapabilityRegistry", "build_registry"]
