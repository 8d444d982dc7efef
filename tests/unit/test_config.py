"""Unit tests for engine settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from stepflow.engine.config import EngineSettings


def test_settings_defaults(clean_env: Path) -> None:
    settings = EngineSettings()

    assert settings.log_level == "INFO"
    assert settings.state_path == Path("stepflow_state")
    assert settings.workflows_file == Path("stepflow_state") / "workflows.json"
    assert settings.knowledge_file == Path("stepflow_state") / "knowledge.json"
    assert settings.dispatch_timeout_seconds is None
    assert settings.max_step_delay_seconds == 300.0
    assert settings.catalog_path is None


def test_settings_loads_from_dotenv(clean_env: Path) -> None:
    (clean_env / ".env").write_text(
        "\n".join(
            [
                "STEPFLOW_LOG_LEVEL=DEBUG",
                "STEPFLOW_DISPATCH_TIMEOUT_SECONDS=2.5",
                "UNRELATED_HOST_SETTING=ignored",
                "",
            ]
        ),
        encoding="utf-8",
    )

    settings = EngineSettings()

    assert settings.log_level == "DEBUG"
    assert settings.dispatch_timeout_seconds == 2.5


def test_environment_overrides_dotenv(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (clean_env / ".env").write_text("STEPFLOW_STATE_PATH=from-dotenv\n", encoding="utf-8")
    monkeypatch.setenv("STEPFLOW_STATE_PATH", "from-env")

    assert EngineSettings().state_path == Path("from-env")


def test_invalid_values_are_rejected(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STEPFLOW_DISPATCH_TIMEOUT_SECONDS", "0")
    with pytest.raises(ValidationError):
        EngineSettings()

    monkeypatch.setenv("STEPFLOW_DISPATCH_TIMEOUT_SECONDS", "1")
    monkeypatch.setenv("STEPFLOW_MAX_STEP_DELAY_SECONDS", "-1")
    with pytest.raises(ValidationError):
        EngineSettings()
