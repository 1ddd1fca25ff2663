"""Long-running operation models for Rangewatch."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class OperationStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    DEPLOYING = "DEPLOYING"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    ERROR = "ERROR"
    ABORTED = "ABORTED"
    NEVER_DEPLOYED = "NEVER DEPLOYED"
    DESTROYED = "DESTROYED"
    UNKNOWN = "UNKNOWN"


TERMINAL_STATUSES = frozenset({
    OperationStatus.SUCCESS,
    OperationStatus.FAILURE,
    OperationStatus.ERROR,
    OperationStatus.ABORTED,
})

RUNNING_STATUSES = frozenset({
    OperationStatus.PENDING,
    OperationStatus.ACTIVE,
    OperationStatus.DEPLOYING,
})

FAILED_STATUSES = frozenset({
    OperationStatus.FAILURE,
    OperationStatus.ERROR,
    OperationStatus.ABORTED,
})


class OperationHandle(BaseModel):
    """
    Snapshot of one observed operation.

    Immutable: the poll loop replaces the whole handle, so status,
    timestamp and cursor always change together.
    """

    model_config = ConfigDict(frozen=True)

    owner_id: str
    status: OperationStatus = OperationStatus.UNKNOWN
    started_at: Optional[datetime] = None
    last_polled_at: Optional[datetime] = None
    log_cursor: Optional[int] = None

    @property
    def is_running(self) -> bool:
        return self.status in RUNNING_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_failed(self) -> bool:
        return self.status in FAILED_STATUSES


class StatusReport(BaseModel):
    """What the remote status endpoint answers for one poll."""

    status: Optional[str] = None
    log_lines: list[str] = []
    next_cursor: Optional[int] = None


class PollingOptions(BaseModel):
    """Polling policy for an operation tracker."""

    interval_ms: int = Field(10_000, gt=0)  # time between polls while active
    background_polling: bool = False  # keep polling when nobody is looking
    stale_after_ms: int = Field(30_000, ge=0)  # force a poll on observe() after this
    jitter_ms: int = Field(0, ge=0)
    max_retries: Optional[int] = Field(None, ge=0)  # None = retry forever, once per interval
    error_threshold: int = Field(3, ge=1)  # consecutive failures before is_error


class OperationSnapshot(BaseModel):
    """Tracker state as served to the browser."""

    handle: OperationHandle
    is_running: bool = False
    is_terminal: bool = False
    is_error: bool = False
    error: Optional[str] = None
    consecutive_failures: int = 0
    polling: bool = False
    log_lines: list[str] = []
