"""Configuration for the workflow engine.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

All variables use the `STEPFLOW_` prefix so the engine can share a `.env` file
with the host application.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Settings for the engine and its CLI.

    Environment variables:
    - STEPFLOW_LOG_LEVEL                 (optional)
    - STEPFLOW_STATE_PATH                (optional)
    - STEPFLOW_DISPATCH_TIMEOUT_SECONDS  (optional, unset means no timeout)
    - STEPFLOW_MAX_STEP_DELAY_SECONDS    (optional)
    - STEPFLOW_CATALOG_PATH              (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `EngineSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="STEPFLOW_LOG_LEVEL",
        description="Root logging level",
    )

    state_path: Path = Field(
        default=Path("stepflow_state"),
        validation_alias="STEPFLOW_STATE_PATH",
        description="Directory where workflows and knowledge entries are persisted",
    )

    dispatch_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        validation_alias="STEPFLOW_DISPATCH_TIMEOUT_SECONDS",
        description=(
            "Upper bound for a single task/handler dispatch. "
            "Unset keeps the host's behaviour of waiting indefinitely."
        ),
    )

    max_step_delay_seconds: float = Field(
        default=300.0,
        ge=0,
        validation_alias="STEPFLOW_MAX_STEP_DELAY_SECONDS",
        description="Step delays longer than this are clamped",
    )

    catalog_path: Path | None = Field(
        default=None,
        validation_alias="STEPFLOW_CATALOG_PATH",
        description="Optional JSON catalog of task/handler input schemas used by validation",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def workflows_file(self) -> Path:
        """Path where workflow definitions are persisted."""

        return self.state_path / "workflows.json"

    @property
    def knowledge_file(self) -> Path:
        """Path where knowledge entries are persisted."""

        return self.state_path / "knowledge.json"
