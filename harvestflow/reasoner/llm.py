"""LLM client utilities and the structured-inference boundary."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, ValidationError

from ..errors import SchemaValidationError, TransportError
from . import prompts
from .models import Inference, InferenceUsage, JSONLLMClient, LLMCompletion, ModelT

logger = logging.getLogger("harvestflow.reasoner")


def _coerce_llm_response(result: str | tuple[str, float] | LLMCompletion) -> LLMCompletion:
    """Normalise JSON LLM client responses to :class:`LLMCompletion`."""

    if isinstance(result, LLMCompletion):
        return result
    if isinstance(result, tuple):
        content, cost = result
        return LLMCompletion(content=content, cost_usd=float(cost))
    if isinstance(result, str):
        return LLMCompletion(content=result)
    msg = (
        "Expected JSONLLMClient to return a string, (string, float) tuple or "
        f"LLMCompletion, received {type(result)!r}"
    )
    raise TypeError(msg)


def _strip_fences(raw: str) -> str:
    content = raw.strip()
    if content.startswith("```"):
        content = content.split("\n", 1)[1] if "\n" in content else content[3:]
    if content.endswith("```"):
        content = content.rsplit("```", 1)[0]
    return content.strip()


def _sanitize_json_schema(schema: dict[str, Any], *, strict_mode: bool = False) -> dict[str, Any]:
    """Remove advanced JSON schema constraints for broader provider compatibility.

    Args:
        schema: The JSON schema to sanitize.
        strict_mode: If True, adds 'additionalProperties: false' to all object schemas
                     as required by OpenAI structured outputs.
    """

    if not isinstance(schema, dict):
        return schema

    sanitized: dict[str, Any] = {}
    unsupported_constraints = {
        "minimum",
        "maximum",
        "exclusiveMinimum",
        "exclusiveMaximum",
        "minLength",
        "maxLength",
        "minItems",
        "maxItems",
        "uniqueItems",
        "pattern",
        "format",
        "default",
    }

    for key, value in schema.items():
        if key in unsupported_constraints:
            continue

        if key == "properties" and isinstance(value, dict):
            sanitized[key] = {
                prop_name: _sanitize_json_schema(prop_schema, strict_mode=strict_mode)
                for prop_name, prop_schema in value.items()
            }
        elif key == "items" and isinstance(value, dict):
            sanitized[key] = _sanitize_json_schema(value, strict_mode=strict_mode)
        elif key == "additionalProperties":
            if strict_mode:
                continue
            if isinstance(value, dict):
                sanitized[key] = _sanitize_json_schema(value, strict_mode=strict_mode)
            else:
                sanitized[key] = value
        elif key in ("allOf", "anyOf", "oneOf") and isinstance(value, list):
            sanitized[key] = [_sanitize_json_schema(item, strict_mode=strict_mode) for item in value]
        elif key == "$defs" and isinstance(value, dict):
            sanitized[key] = {
                def_name: _sanitize_json_schema(def_schema, strict_mode=strict_mode)
                for def_name, def_schema in value.items()
            }
        else:
            sanitized[key] = value

    if strict_mode:
        is_object_schema = sanitized.get("type") == "object" or "properties" in sanitized
        if is_object_schema:
            sanitized["additionalProperties"] = False
            # Strict structured outputs require every property to be listed.
            properties = sanitized.get("properties")
            if isinstance(properties, dict):
                sanitized["required"] = list(properties)

    return sanitized


def response_format_for(model: type[BaseModel]) -> dict[str, Any]:
    return {
        "type": "json_schema",
        "json_schema": {
            "name": model.__name__,
            "schema": model.model_json_schema(),
        },
    }


class LiteLLMJSONClient:
    def __init__(
        self,
        llm: str | Mapping[str, Any],
        *,
        temperature: float = 0.0,
        json_schema_mode: bool = True,
        max_retries: int = 3,
        timeout_s: float = 60.0,
    ) -> None:
        self._llm = llm
        self._temperature = temperature
        self._json_schema_mode = json_schema_mode
        self._max_retries = max_retries
        self._timeout_s = timeout_s

    @property
    def model_name(self) -> str:
        if isinstance(self._llm, str):
            return self._llm
        return str(self._llm.get("model", ""))

    def _response_format(self, response_format: Mapping[str, Any]) -> Mapping[str, Any]:
        if "json_schema" not in response_format:
            return response_format
        model_lower = self.model_name.lower()

        # Local and non-OpenAI providers do better with plain JSON mode guided by the prompt.
        no_strict_schema_support = any(
            marker in model_lower
            for marker in ("ollama", "anthropic", "claude", "gemini", "mistral", "llama", "qwen", "deepseek")
        )
        if no_strict_schema_support:
            logger.debug(
                "json_schema_downgraded",
                extra={"model": self.model_name, "fallback": "json_object"},
            )
            return {"type": "json_object"}

        strict = model_lower.startswith("openai/") or model_lower.startswith("gpt-") or "o3" in model_lower
        json_schema = response_format["json_schema"]
        payload: dict[str, Any] = {
            "name": json_schema["name"],
            "schema": _sanitize_json_schema(json_schema["schema"], strict_mode=True),
        }
        if strict:
            payload["strict"] = True
        return {"type": "json_schema", "json_schema": payload}

    async def complete(
        self,
        *,
        messages: Sequence[Mapping[str, str]],
        response_format: Mapping[str, Any] | None = None,
    ) -> LLMCompletion:
        try:
            import litellm
        except ModuleNotFoundError as exc:  # pragma: no cover - import guard
            raise RuntimeError(
                "LiteLLM is not installed. Install harvestflow[llm] or provide "
                "a custom llm_client."
            ) from exc

        params: dict[str, Any]
        if isinstance(self._llm, str):
            params = {"model": self._llm}
        else:
            params = dict(self._llm)
        params.setdefault("temperature", self._temperature)
        params["messages"] = list(messages)
        if self._json_schema_mode and response_format is not None:
            params["response_format"] = self._response_format(response_format)

        last_error: Exception | None = None
        for attempt in range(self._max_retries):
            try:
                async with asyncio.timeout(self._timeout_s):
                    response = await litellm.acompletion(**params)
                choice = response["choices"][0]
                content = choice["message"]["content"]
                if content is None:
                    raise RuntimeError("LiteLLM returned empty content")

                cost = float(response.get("_hidden_params", {}).get("response_cost", 0.0) or 0.0)
                usage = response.get("usage") or {}
                completion = LLMCompletion(
                    content=content,
                    cost_usd=cost,
                    input_tokens=int(usage.get("prompt_tokens", 0) or 0),
                    output_tokens=int(usage.get("completion_tokens", 0) or 0),
                )
                logger.debug(
                    "llm_call_success",
                    extra={
                        "attempt": attempt + 1,
                        "cost_usd": cost,
                        "input_tokens": completion.input_tokens,
                        "output_tokens": completion.output_tokens,
                    },
                )
                return completion
            except TimeoutError as exc:
                last_error = exc
                logger.warning(
                    "llm_timeout",
                    extra={"attempt": attempt + 1, "timeout_s": self._timeout_s},
                )
            except Exception as exc:
                last_error = exc
                error_type = exc.__class__.__name__
                if "RateLimit" in error_type or "ServiceUnavailable" in error_type:
                    backoff_s = 2**attempt
                    logger.warning(
                        "llm_retry",
                        extra={"attempt": attempt + 1, "error": str(exc), "backoff_s": backoff_s},
                    )
                    if attempt < self._max_retries - 1:
                        await asyncio.sleep(backoff_s)
                        continue
                raise

        logger.error(
            "llm_retries_exhausted",
            extra={"max_retries": self._max_retries, "last_error": str(last_error)},
        )
        msg = f"LLM call failed after {self._max_retries} retries"
        raise RuntimeError(msg) from last_error


class Reasoner:
    """Single typed boundary for every structured inference the engine makes.

    ``infer`` sends role-tagged messages plus the JSON schema of
    ``output_model`` and returns a validated instance. Malformed answers are
    re-prompted up to ``repair_attempts`` times before a
    :class:`SchemaValidationError` is raised; any client failure becomes a
    :class:`TransportError`.
    """

    def __init__(
        self,
        client: JSONLLMClient,
        *,
        repair_attempts: int = 2,
        json_schema_mode: bool = True,
    ) -> None:
        if repair_attempts < 1:
            raise ValueError("repair_attempts must be >= 1")
        self._client = client
        self._repair_attempts = repair_attempts
        self._json_schema_mode = json_schema_mode

    @classmethod
    def from_model(
        cls,
        llm: str | Mapping[str, Any],
        *,
        temperature: float = 0.0,
        repair_attempts: int = 2,
        timeout_s: float = 60.0,
        max_retries: int = 3,
    ) -> Reasoner:
        client = LiteLLMJSONClient(
            llm,
            temperature=temperature,
            max_retries=max_retries,
            timeout_s=timeout_s,
        )
        return cls(client, repair_attempts=repair_attempts)

    async def infer(
        self,
        messages: Sequence[Mapping[str, str]],
        output_model: type[ModelT],
        *,
        label: str = "",
    ) -> Inference[ModelT]:
        base_messages = [dict(message) for message in messages]
        request_messages = list(base_messages)
        response_format = response_format_for(output_model) if self._json_schema_mode else None
        usage = InferenceUsage()
        last_raw: str | None = None
        last_errors: list[dict[str, Any]] = []

        for attempt in range(1, self._repair_attempts + 1):
            try:
                raw_result = await self._client.complete(
                    messages=request_messages,
                    response_format=response_format,
                )
            except Exception as exc:
                logger.warning(
                    "reasoner_transport_failed",
                    extra={"label": label, "attempt": attempt, "error": str(exc)},
                )
                raise TransportError(f"Reasoner call failed: {exc}", attempts=attempt) from exc

            completion = _coerce_llm_response(raw_result)
            usage = usage + InferenceUsage(
                calls=1,
                attempts=1,
                cost_usd=completion.cost_usd,
                input_tokens=completion.input_tokens,
                output_tokens=completion.output_tokens,
            )
            last_raw = completion.content
            logger.debug(
                "reasoner_raw_response",
                extra={
                    "label": label,
                    "attempt": attempt,
                    "response_len": len(last_raw),
                    "response_preview": last_raw[:1000],
                },
            )

            try:
                value = output_model.model_validate_json(_strip_fences(last_raw))
            except ValidationError as exc:
                last_errors = exc.errors(include_url=False)
                error_text = json.dumps(last_errors, ensure_ascii=False, default=str)
                logger.info(
                    "reasoner_invalid_response",
                    extra={
                        "label": label,
                        "attempt": attempt,
                        "will_retry": attempt < self._repair_attempts,
                    },
                )
                request_messages = base_messages + [
                    {"role": "system", "content": prompts.render_repair_message(error_text)}
                ]
                continue

            # One logical call regardless of how many repair rounds it took.
            usage = InferenceUsage(
                calls=1,
                attempts=usage.attempts,
                cost_usd=usage.cost_usd,
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
            )
            return Inference(value=value, usage=usage)

        preview = (last_raw or "")[:200]
        logger.warning(
            "reasoner_schema_exhausted",
            extra={"label": label, "attempts": self._repair_attempts, "raw_preview": preview},
        )
        raise SchemaValidationError(
            f"{output_model.__name__} response did not validate after "
            f"{self._repair_attempts} attempt(s)",
            schema_name=output_model.__name__,
            raw=last_raw,
            errors=last_errors,
        )


__all__ = [
    "LiteLLMJSONClient",
    "Reasoner",
    "response_format_for",
]
