import asyncio
import uuid
from typing import Callable, List, Optional

from eth_utils import to_checksum_address

from ..core.errors import SignlessError
from ..core.logging_config import get_api_logger
from ..crud.delegate_key import DelegateKeyStore
from ..db.database import get_db
from ..schemas.pipeline import SubmissionRecord
from ..schemas.transaction import BatchedTransaction, MetaTransaction
from .chain_client import ChainClient, get_chain_client
from .pipeline import PipelineOrchestrator
from .relay_client import GelatoRelayClient
from .relay_dispatcher import RelayDispatcher
from .relay_status_poller import RelayStatusPoller
from .submission_tracker import SubmissionTracker

logger = get_api_logger()


class SubmissionService:
    """Starts delegated submissions in the background and records their progress."""

    def __init__(
        self,
        relay_client: GelatoRelayClient,
        tracker: SubmissionTracker,
        session_factory=get_db,
        chain_client_factory: Callable[[int], Optional[ChainClient]] = get_chain_client,
        sleep=asyncio.sleep,
    ):
        self.relay_client = relay_client
        self.tracker = tracker
        self.session_factory = session_factory
        self.chain_client_factory = chain_client_factory
        self.sleep = sleep

    def start(
        self,
        chain_id: int,
        wallet_address: str,
        txs: List[MetaTransaction],
        request_id: Optional[str] = None,
    ) -> SubmissionRecord:
        """
        Register the request and run the pipeline for it in the background.

        Raises:
            AlreadyExists: If request_id was already used
            SubmissionInProgress: If the wallet has another submission in flight
        """
        request_id = request_id or str(uuid.uuid4())
        wallet_address = to_checksum_address(wallet_address)
        batch = BatchedTransaction(transactions=tuple(txs))

        record = self.tracker.begin(request_id, chain_id, wallet_address)
        self.tracker.spawn(self.run(chain_id, wallet_address, request_id, batch))
        logger.info("Delegated submission accepted",
                    request_id=request_id,
                    chain_id=chain_id,
                    wallet_address=wallet_address,
                    call_count=len(batch.transactions),
                    event_type="submission_accepted")
        return record

    async def run(self, chain_id: int, wallet_address: str, request_id: str, batch: BatchedTransaction) -> None:
        try:
            async with self.session_factory() as db:
                orchestrator = PipelineOrchestrator(
                    chain_client=self.chain_client_factory(chain_id),
                    key_store=DelegateKeyStore(db),
                    dispatcher=RelayDispatcher(self.relay_client),
                    poller=RelayStatusPoller(self.relay_client, sleep=self.sleep),
                    completion_sink=self.tracker,
                )
                result = await orchestrator.submit_delegated_transaction(
                    request_id,
                    wallet_address,
                    batch,
                    on_state=lambda state: self.tracker.update_state(request_id, state),
                )
        except SignlessError as e:
            self.tracker.finish(request_id, error=e)
        except asyncio.CancelledError:
            self.tracker.finish(request_id, error=RuntimeError("Submission cancelled"))
            raise
        except Exception as e:
            logger.error("Unexpected error in background submission",
                         request_id=request_id,
                         error=str(e),
                         event_type="submission_unexpected_error",
                         exc_info=True)
            self.tracker.finish(request_id, error=e)
        else:
            self.tracker.finish(request_id, result=result)
