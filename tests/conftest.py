"""Test configuration and fixtures."""

from pathlib import Path

import pytest

from stepflow.engine.config import EngineSettings
from stepflow.engine.workflow.datapoints import DataPointStore
from stepflow.engine.workflow.models import DataPoint, DataPointType

_ENV_VARS = (
    "STEPFLOW_LOG_LEVEL",
    "STEPFLOW_STATE_PATH",
    "STEPFLOW_DISPATCH_TIMEOUT_SECONDS",
    "STEPFLOW_MAX_STEP_DELAY_SECONDS",
    "STEPFLOW_CATALOG_PATH",
)


@pytest.fixture
def clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run in an empty directory with no STEPFLOW_* variables set."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def temp_state_dir(clean_env: Path) -> Path:
    """Provide a temporary state directory."""
    state_dir = clean_env / ".state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def settings(temp_state_dir: Path, monkeypatch: pytest.MonkeyPatch) -> EngineSettings:
    """Provide engine settings pointing at the temporary state directory."""
    monkeypatch.setenv("STEPFLOW_STATE_PATH", str(temp_state_dir))
    monkeypatch.setenv("STEPFLOW_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("STEPFLOW_MAX_STEP_DELAY_SECONDS", "5")
    return EngineSettings()


@pytest.fixture
def store() -> DataPointStore:
    """A small data point store covering the common value shapes."""

    def dp(dp_id: str, value: object) -> DataPoint:
        return DataPoint(
            id=dp_id, name=dp_id, type=DataPointType.CONTEXT, value=value, source=dp_id, timestamp=1
        )

    return DataPointStore(
        [
            dp("sel", {"text": "hello world", "length": 11}),
            dp("page", "Plain page text"),
            dp("items", ["a", "b", {"c": 1}]),
            dp("empty", {"text": ""}),
            dp("score", {"value": 0.9}),
        ]
    )
