from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class TaskState(str, Enum):
    """Task states reported by the Gelato relay status endpoint."""

    CHECK_PENDING = "CheckPending"
    EXEC_PENDING = "ExecPending"
    WAITING_FOR_CONFIRMATION = "WaitingForConfirmation"
    EXEC_SUCCESS = "ExecSuccess"
    EXEC_REVERTED = "ExecReverted"
    CANCELLED = "Cancelled"
    BLACKLISTED = "Blacklisted"


PENDING_TASK_STATES = frozenset({
    TaskState.CHECK_PENDING.value,
    TaskState.EXEC_PENDING.value,
    TaskState.WAITING_FOR_CONFIRMATION.value,
})


class RelayTaskStatus(BaseModel):
    """Status record for one relay task, as returned by GET /tasks/status/{taskId}."""

    task_id: Optional[str] = Field(None, alias="taskId")
    task_state: str = Field(..., alias="taskState")
    transaction_hash: Optional[str] = Field(None, alias="transactionHash")
    last_check_message: Optional[str] = Field(None, alias="lastCheckMessage")

    class Config:
        populate_by_name = True
        extra = "ignore"


class RelayOutcome(str, Enum):
    """Relay status state machine: SUBMITTED -> {PENDING, SUCCEEDED, FAILED, TIMED_OUT}."""

    SUBMITTED = "submitted"
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class RelayTask(BaseModel):
    """A submitted relay request; discarded once a terminal outcome is reached."""

    task_id: str
    fee_estimate: int
    max_fee: int
    status: RelayOutcome = RelayOutcome.SUBMITTED
    transaction_hash: Optional[str] = None


class PollResult(BaseModel):
    """Terminal outcome of polling one relay task."""

    task_id: str
    outcome: RelayOutcome
    transaction_hash: Optional[str] = None
    message: Optional[str] = None
    attempts: int
