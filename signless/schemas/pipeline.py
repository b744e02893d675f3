from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .relay import PollResult
from .transaction import MetaTransaction

# Reported in place of a transaction hash when no on-chain hash exists
SENTINEL_TRANSACTION_HASH = "0x" + "00" * 32


class PipelinePhase(str, Enum):
    CHECKING = "checking"
    SIGNING = "signing"
    SUBMITTING = "submitting"
    POLLING = "polling"
    COMPLETED = "completed"
    FALLBACK = "fallback"
    ERROR = "error"


class PipelineState(BaseModel):
    """UI-observable progress of one submission."""

    phase: PipelinePhase = PipelinePhase.CHECKING
    try_count: int = 0
    last_status: Optional[str] = None


class CompletionEvent(BaseModel):
    """The one notification sent to the surrounding application per submission."""

    request_id: str
    transaction_hash: str


class SubmissionRoute(str, Enum):
    DELEGATED = "delegated"
    FALLBACK = "fallback"


class PreconditionReport(BaseModel):
    """Outcome of the delegated-path precondition check; `unmet` names the first miss."""

    satisfied: bool
    unmet: Optional[str] = None
    module_address: Optional[str] = None
    delegate_address: Optional[str] = None


class SubmissionResult(BaseModel):
    """What submit_delegated_transaction did: fall back, or relay and poll to a terminal outcome."""

    request_id: str
    route: SubmissionRoute
    reason: Optional[str] = Field(None, description="Unmet precondition when the fallback route was taken")
    task_id: Optional[str] = None
    poll_result: Optional[PollResult] = None
    fallback_transaction: Optional[MetaTransaction] = None


class SubmissionError(BaseModel):
    type: str
    message: str


class SubmissionRecord(BaseModel):
    """Everything known about one request, as served by the status endpoint."""

    request_id: str
    chain_id: int
    wallet_address: str
    state: PipelineState = Field(default_factory=PipelineState)
    result: Optional[SubmissionResult] = None
    completion: Optional[CompletionEvent] = None
    error: Optional[SubmissionError] = None
    finished: bool = False


class SubmitTransactionRequest(BaseModel):
    request_id: Optional[str] = Field(None, description="Generated when omitted")
    txs: List[MetaTransaction] = Field(..., min_length=1, description="Calls to execute, in order")

    class Config:
        json_schema_extra = {
            "example": {
                "request_id": "req-1",
                "txs": [{"to": "0x0000000000000000000000000000000000000AAA", "value": "0", "data": "0x"}],
            }
        }


class SubmissionAccepted(BaseModel):
    request_id: str
    status_url: str
