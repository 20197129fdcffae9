"""Wire types of the persistence layer."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from formflow.errors import FormflowError

STORAGE_VERSION = "1.0.0"


class PersistedSnapshot(BaseModel):
    """A saved workflow, serialised with camelCase keys.

    ``metadata`` is opaque to formflow and round-trips unchanged.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    workflow_id: str = Field(alias="workflowId", min_length=1)
    current_step_index: int = Field(alias="currentStepIndex", ge=0)
    all_data: dict[str, dict[str, Any]] = Field(alias="allData", default_factory=dict)
    step_data: dict[str, Any] = Field(alias="stepData", default_factory=dict)
    visited_steps: list[str] = Field(alias="visitedSteps", default_factory=list)
    passed_steps: list[str] = Field(alias="passedSteps", default_factory=list)
    last_saved: int = Field(alias="lastSaved", description="Epoch milliseconds")
    metadata: dict[str, Any] | None = None

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class StorageEntry(BaseModel):
    """The envelope adapters write around a snapshot."""

    model_config = ConfigDict(populate_by_name=True)

    data: PersistedSnapshot
    version: str = STORAGE_VERSION
    expires_at: int | None = Field(default=None, alias="expiresAt")

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at is not None and self.expires_at <= now_ms


class PersistenceErrorCode(str, Enum):
    SAVE_FAILED = "SAVE_FAILED"
    LOAD_FAILED = "LOAD_FAILED"
    REMOVE_FAILED = "REMOVE_FAILED"
    LIST_FAILED = "LIST_FAILED"
    CLEAR_FAILED = "CLEAR_FAILED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    OPERATION_FAILED = "OPERATION_FAILED"


class PersistenceError(FormflowError):
    def __init__(
        self,
        message: str,
        code: PersistenceErrorCode = PersistenceErrorCode.OPERATION_FAILED,
        cause: BaseException | None = None,
    ) -> None:
        self.code = PersistenceErrorCode(code)
        self.cause = cause
        self.detail = message
        super().__init__(f"[WorkflowPersistence] {message} (Code: {self.code.value})")
