"""
Relay task status polling.

State machine: SUBMITTED -> PENDING (self-loop) -> {SUCCEEDED, FAILED, TIMED_OUT}.
At most MAX_POLL_ATTEMPTS queries are made, each preceded by a wait of
BASE_BACKOFF_SECONDS * 2**attempt_index (2.5s, 5s, ... 320s; about 10.6 minutes
in the worst case). There is no external cancellation: the loop ends only on a
terminal classification or when the attempts run out.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from ..core.logging_config import get_relay_logger
from ..schemas.pipeline import SENTINEL_TRANSACTION_HASH
from ..schemas.relay import PENDING_TASK_STATES, PollResult, RelayOutcome, RelayTaskStatus, TaskState
from .relay_client import GelatoRelayClient, RelayClientError

logger = get_relay_logger()

MAX_POLL_ATTEMPTS = 8
BASE_BACKOFF_SECONDS = 2.5

Sleep = Callable[[float], Awaitable[None]]
StatusListener = Callable[[int, RelayOutcome, Optional[RelayTaskStatus]], None]


def backoff_delay(attempt_index: int) -> float:
    """Seconds to wait before the query with the given zero-based index."""
    return BASE_BACKOFF_SECONDS * (2 ** attempt_index)


def classify_task_state(task_state: Optional[str]) -> RelayOutcome:
    """
    Map a relay task state onto the poller's state machine.

    A missing state (lookup miss) counts as pending; anything unrecognized is a failure.
    """
    if task_state is None or task_state in PENDING_TASK_STATES:
        return RelayOutcome.PENDING
    if task_state == TaskState.EXEC_SUCCESS.value:
        return RelayOutcome.SUCCEEDED
    return RelayOutcome.FAILED


class RelayStatusPoller:
    """Tracks one relay task to a terminal outcome with bounded exponential backoff."""

    def __init__(self, relay_client: GelatoRelayClient, sleep: Sleep = asyncio.sleep):
        self.relay_client = relay_client
        self.sleep = sleep

    async def _lookup(self, task_id: str) -> Optional[RelayTaskStatus]:
        try:
            return await self.relay_client.get_task_status(task_id)
        except RelayClientError as e:
            logger.warning("Task status lookup failed, treating as pending",
                           task_id=task_id,
                           error=e.message,
                           event_type="relay_status_lookup_failed")
            return None

    async def poll(self, task_id: str, on_update: Optional[StatusListener] = None) -> PollResult:
        """
        Poll a relay task until it succeeds, fails, or the attempt budget is spent.

        Args:
            task_id: Relay task id returned at submission
            on_update: Called after every query with (try_count, outcome, status)

        Returns:
            Terminal poll result; TIMED_OUT carries the sentinel transaction hash
        """
        last_status: Optional[RelayTaskStatus] = None

        for attempt in range(MAX_POLL_ATTEMPTS):
            await self.sleep(backoff_delay(attempt))

            status = await self._lookup(task_id)
            if status is not None:
                last_status = status
            outcome = classify_task_state(status.task_state if status else None)

            logger.info("Relay task status",
                        task_id=task_id,
                        attempt=attempt + 1,
                        task_state=status.task_state if status else None,
                        outcome=outcome.value,
                        event_type="relay_status_polled")
            if on_update is not None:
                on_update(attempt + 1, outcome, status)

            if outcome is RelayOutcome.SUCCEEDED:
                return PollResult(
                    task_id=task_id,
                    outcome=outcome,
                    transaction_hash=status.transaction_hash,
                    attempts=attempt + 1,
                )
            if outcome is RelayOutcome.FAILED:
                logger.warning("Relay task failed",
                               task_id=task_id,
                               task_state=status.task_state,
                               last_check_message=status.last_check_message,
                               event_type="relay_task_failed")
                return PollResult(
                    task_id=task_id,
                    outcome=outcome,
                    transaction_hash=status.transaction_hash,
                    message=f"{status.task_state}: {status.last_check_message}" if status.last_check_message else status.task_state,
                    attempts=attempt + 1,
                )

        logger.warning("Relay task did not settle within the poll budget",
                       task_id=task_id,
                       attempts=MAX_POLL_ATTEMPTS,
                       event_type="relay_task_timed_out")
        return PollResult(
            task_id=task_id,
            outcome=RelayOutcome.TIMED_OUT,
            transaction_hash=SENTINEL_TRANSACTION_HASH,
            message=last_status.last_check_message if last_status else None,
            attempts=MAX_POLL_ATTEMPTS,
        )
