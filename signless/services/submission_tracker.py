import asyncio
from collections import OrderedDict
from typing import Coroutine, Dict, Optional, Set, Tuple

from eth_utils import to_checksum_address

from ..core.errors import AlreadyExists, SignlessError, SubmissionInProgress
from ..core.logging_config import get_api_logger
from ..schemas.pipeline import (
    CompletionEvent,
    PipelineState,
    SubmissionError,
    SubmissionRecord,
    SubmissionResult,
)

logger = get_api_logger()

MAX_FINISHED_RECORDS = 1000


class SubmissionTracker:
    """
    In-memory bookkeeping for background submissions.

    Holds the live PipelineState and completion event per request, allows at most
    one in-flight submission per (chain, wallet), and keeps references to the
    background tasks until they finish. Acts as the pipeline's completion sink.
    """

    def __init__(self, max_finished: int = MAX_FINISHED_RECORDS):
        self.max_finished = max_finished
        self._records: "OrderedDict[str, SubmissionRecord]" = OrderedDict()
        self._in_flight: Dict[Tuple[int, str], str] = {}
        self._tasks: Set[asyncio.Task] = set()

    def begin(self, request_id: str, chain_id: int, wallet_address: str) -> SubmissionRecord:
        """
        Register a new submission.

        Raises:
            AlreadyExists: If request_id is already known
            SubmissionInProgress: If the wallet already has a submission in flight on this chain
        """
        wallet_address = to_checksum_address(wallet_address)
        if request_id in self._records:
            raise AlreadyExists(
                f"Request {request_id} has already been submitted",
                error_type="duplicate_request",
            )

        key = (int(chain_id), wallet_address)
        in_flight = self._in_flight.get(key)
        if in_flight is not None:
            raise SubmissionInProgress(
                f"Wallet {wallet_address} already has submission {in_flight} in flight on chain {chain_id}"
            )

        record = SubmissionRecord(request_id=request_id, chain_id=int(chain_id), wallet_address=wallet_address)
        self._records[request_id] = record
        self._in_flight[key] = request_id
        self._evict()
        return record

    def get(self, request_id: str) -> Optional[SubmissionRecord]:
        return self._records.get(request_id)

    def update_state(self, request_id: str, state: PipelineState) -> None:
        record = self._records.get(request_id)
        if record is not None:
            record.state = state

    def emit(self, event: CompletionEvent) -> None:
        record = self._records.get(event.request_id)
        if record is None:
            logger.warning("Completion event for unknown request",
                           request_id=event.request_id,
                           event_type="completion_event_orphaned")
            return
        record.completion = event
        logger.info("Completion event emitted",
                    request_id=event.request_id,
                    transaction_hash=event.transaction_hash,
                    event_type="completion_event_emitted")

    def finish(
        self,
        request_id: str,
        result: Optional[SubmissionResult] = None,
        error: Optional[Exception] = None,
    ) -> None:
        """Record the outcome and release the wallet's in-flight slot."""
        record = self._records.get(request_id)
        if record is None:
            return
        record.result = result
        record.finished = True
        if error is not None:
            error_type = error.error_type if isinstance(error, SignlessError) else "internal_error"
            message = error.message if isinstance(error, SignlessError) else str(error)
            record.error = SubmissionError(type=error_type, message=message)

        key = (record.chain_id, record.wallet_address)
        if self._in_flight.get(key) == request_id:
            del self._in_flight[key]

    def is_in_flight(self, chain_id: int, wallet_address: str) -> bool:
        return (int(chain_id), to_checksum_address(wallet_address)) in self._in_flight

    def spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def aclose(self) -> None:
        """Cancel outstanding background submissions (shutdown)."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled in-flight submissions",
                        count=len(tasks),
                        event_type="submissions_cancelled")

    def _evict(self) -> None:
        finished = [rid for rid, record in self._records.items() if record.finished]
        for request_id in finished[:max(0, len(finished) - self.max_finished)]:
            del self._records[request_id]
