"""Runtime configuration.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Nothing in formflow reads settings implicitly; callers construct
``FormflowSettings`` and pass it (or values derived from it) to the session.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FormflowSettings(BaseSettings):
    """Settings for formflow sessions and the CLI.

    Environment variables:
    - LOG_LEVEL                          (optional)
    - FORMFLOW_STATE_PATH                (optional)
    - FORMFLOW_STORAGE_KEY_PREFIX        (optional)
    - FORMFLOW_AUTO_PERSIST              (optional)
    - FORMFLOW_PERSIST_DEBOUNCE_MS       (optional)
    - FORMFLOW_SNAPSHOT_MAX_AGE_SECONDS  (optional)
    - FORMFLOW_MAX_STORAGE_BYTES         (optional)
    - FORMFLOW_USER_ID                   (optional)
    - FORMFLOW_VISIBILITY_CACHE_SIZE     (optional)

    Notes:
        Override the env file in tests via `FormflowSettings(_env_file=path)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    state_path: Path = Field(
        default=Path("workflow_state"),
        validation_alias="FORMFLOW_STATE_PATH",
        description="Directory where workflow snapshots are persisted",
    )

    storage_key_prefix: str = Field(
        default="formflow_workflow_",
        validation_alias="FORMFLOW_STORAGE_KEY_PREFIX",
        description="File name prefix for persisted snapshots",
    )

    auto_persist: bool = Field(
        default=True,
        validation_alias="FORMFLOW_AUTO_PERSIST",
        description="Save snapshots automatically after state changes",
    )

    persist_debounce_ms: int = Field(
        default=500,
        ge=0,
        validation_alias="FORMFLOW_PERSIST_DEBOUNCE_MS",
        description="Quiet period before an automatic save",
    )

    snapshot_max_age_seconds: float | None = Field(
        default=None,
        gt=0,
        validation_alias="FORMFLOW_SNAPSHOT_MAX_AGE_SECONDS",
        description="Snapshots older than this are discarded on load",
    )

    max_storage_bytes: int | None = Field(
        default=None,
        gt=0,
        validation_alias="FORMFLOW_MAX_STORAGE_BYTES",
        description="Upper bound for the combined size of persisted snapshots",
    )

    user_id: str | None = Field(
        default=None,
        validation_alias="FORMFLOW_USER_ID",
        description="Namespaces storage keys as '<user_id>:<workflow_id>'",
    )

    visibility_cache_size: int = Field(
        default=64,
        gt=0,
        validation_alias="FORMFLOW_VISIBILITY_CACHE_SIZE",
        description="Entries kept by each session's visibility cache",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _normalise_log_level(self) -> FormflowSettings:
        self.log_level = self.log_level.strip().upper() or "INFO"
        return self
