"""Runtime configuration for HarvestFlow."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

ENV_PREFIX = "HARVESTFLOW_"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env(environ: Mapping[str, str], name: str) -> str | None:
    value = environ.get(ENV_PREFIX + name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _optional_int(raw: str) -> int | None:
    if raw.lower() in ("none", "off", "0"):
        return None
    return int(raw)


@dataclass(slots=True)
class CapabilitySettings:
    """Settings shared by the bundled HTTP capabilities."""

    http_timeout_s: float = 30.0
    max_page_chars: int = 20_000
    search_url: str = "https://html.duckduckgo.com/html/"
    user_agent: str = "harvestflow/0.1 (+https://github.com/harvestflow)"
    results_per_search: int = 10
    fetch_attempts: int = 3
    retry_backoff_s: float = 0.5

    def __post_init__(self) -> None:
        if self.http_timeout_s <= 0:
            raise ValueError("http_timeout_s must be positive")
        if self.max_page_chars <= 0:
            raise ValueError("max_page_chars must be positive")
        if self.results_per_search <= 0:
            raise ValueError("results_per_search must be positive")
        if self.fetch_attempts < 1:
            raise ValueError("fetch_attempts must be >= 1")
        if self.retry_backoff_s < 0:
            raise ValueError("retry_backoff_s must be >= 0")


@dataclass(slots=True)
class OrchestratorConfig:
    model: str = "gpt-4o"
    temperature: float = 0.0
    data_dir: Path = Path("data")
    results_dir: Path = Path("results")
    max_iterations_per_step: int | None = 20
    repair_attempts: int = 2
    llm_timeout_s: float = 60.0
    llm_max_retries: int = 3
    max_observation_chars: int = 20_000
    reject_duplicate_selections: bool = True
    discard_on_completion: bool = True
    log_level: str = "INFO"
    capabilities: CapabilitySettings = field(default_factory=CapabilitySettings)

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir)
        self.results_dir = Path(self.results_dir)
        self.log_level = self.log_level.upper()
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        if self.max_iterations_per_step is not None and self.max_iterations_per_step < 1:
            raise ValueError("max_iterations_per_step must be >= 1 or None")
        if self.repair_attempts < 1:
            raise ValueError("repair_attempts must be >= 1")
        if self.llm_max_retries < 1:
            raise ValueError("llm_max_retries must be >= 1")
        if self.max_observation_chars < 256:
            raise ValueError("max_observation_chars must be >= 256")

    @property
    def context_path(self) -> Path:
        return self.data_dir / "context.json"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> OrchestratorConfig:
        """Build a config from ``HARVESTFLOW_*`` environment variables."""

        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}
        if (value := _env(env, "MODEL")) is not None:
            kwargs["model"] = value
        if (value := _env(env, "TEMPERATURE")) is not None:
            kwargs["temperature"] = float(value)
        if (value := _env(env, "DATA_DIR")) is not None:
            kwargs["data_dir"] = Path(value)
        if (value := _env(env, "RESULTS_DIR")) is not None:
            kwargs["results_dir"] = Path(value)
        if (value := _env(env, "MAX_ITERATIONS_PER_STEP")) is not None:
            kwargs["max_iterations_per_step"] = _optional_int(value)
        if (value := _env(env, "REPAIR_ATTEMPTS")) is not None:
            kwargs["repair_attempts"] = int(value)
        if (value := _env(env, "LLM_TIMEOUT_S")) is not None:
            kwargs["llm_timeout_s"] = float(value)
        if (value := _env(env, "LLM_MAX_RETRIES")) is not None:
            kwargs["llm_max_retries"] = int(value)
        if (value := _env(env, "LOG_LEVEL")) is not None:
            kwargs["log_level"] = value

        capability_kwargs: dict[str, object] = {}
        if (value := _env(env, "HTTP_TIMEOUT_S")) is not None:
            capability_kwargs["http_timeout_s"] = float(value)
        if (value := _env(env, "MAX_PAGE_CHARS")) is not None:
            capability_kwargs["max_page_chars"] = int(value)
        if (value := _env(env, "SEARCH_URL")) is not None:
            capability_kwargs["search_url"] = value
        if capability_kwargs:
            kwargs["capabilities"] = CapabilitySettings(**capability_kwargs)  # type: ignore[arg-type]

        return cls(**kwargs)  # type: ignore[arg-type]


__all__ = ["CapabilitySettings", "ENV_PREFIX", "OrchestratorConfig"]
