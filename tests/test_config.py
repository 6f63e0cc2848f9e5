from __future__ import annotations

from pathlib import Path

import pytest

from harvestflow.config import CapabilitySettings, OrchestratorConfig


def test_defaults() -> None:
    config = OrchestratorConfig()
    assert config.model == "gpt-4o"
    assert config.max_iterations_per_step == 20
    assert config.context_path == Path("data") / "context.json"
    assert config.capabilities.http_timeout_s == 30.0


def test_from_env_reads_prefixed_variables() -> None:
    config = OrchestratorConfig.from_env(
        {
            "HARVESTFLOW_MODEL": "ollama/llama3",
            "HARVESTFLOW_TEMPERATURE": "0.2",
            "HARVESTFLOW_DATA_DIR": "/tmp/hf-data",
            "HARVESTFLOW_RESULTS_DIR": "/tmp/hf-results",
            "HARVESTFLOW_MAX_ITERATIONS_PER_STEP": "5",
            "HARVESTFLOW_REPAIR_ATTEMPTS": "3",
            "HARVESTFLOW_LLM_TIMEOUT_S": "12.5",
            "HARVESTFLOW_LLM_MAX_RETRIES": "4",
            "HARVESTFLOW_LOG_LEVEL": "debug",
            "HARVESTFLOW_HTTP_TIMEOUT_S": "5",
            "HARVESTFLOW_MAX_PAGE_CHARS": "1000",
            "UNRELATED": "ignored",
        }
    )
    assert config.model == "ollama/llama3"
    assert config.temperature == pytest.approx(0.2)
    assert config.data_dir == Path("/tmp/hf-data")
    assert config.results_dir == Path("/tmp/hf-results")
    assert config.max_iterations_per_step == 5
    assert config.repair_attempts == 3
    assert config.llm_timeout_s == pytest.approx(12.5)
    assert config.llm_max_retries == 4
    assert config.log_level == "DEBUG"
    assert config.capabilities.http_timeout_s == 5.0
    assert config.capabilities.max_page_chars == 1000


@pytest.mark.parametrize("raw", ["none", "off", "0"])
def test_from_env_disables_iteration_cap(raw: str) -> None:
    config = OrchestratorConfig.from_env({"HARVESTFLOW_MAX_ITERATIONS_PER_STEP": raw})
    assert config.max_iterations_per_step is None


def test_from_env_ignores_blank_values() -> None:
    config = OrchestratorConfig.from_env({"HARVESTFLOW_MODEL": "  "})
    assert config.model == "gpt-4o"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"log_level": "LOUD"},
        {"max_iterations_per_step": 0},
        {"repair_attempts": 0},
        {"llm_max_retries": 0},
        {"max_observation_chars": 10},
    ],
)
def test_invalid_config_rejected(kwargs: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        OrchestratorConfig(**kwargs)  # type: ignore[arg-type]


def test_invalid_capability_settings_rejected() -> None:
    with pytest.raises(ValueError):
        CapabilitySettings(http_timeout_s=0)
    with pytest.raises(ValueError):
        CapabilitySettings(fetch_attempts=0)
