"""
Delegated transaction pipeline.

submit_delegated_transaction() either routes a batch to the conventional
co-signing flow (when any delegation precondition is unmet) or runs
sign -> relay -> poll and emits exactly one completion event.
"""

import inspect
from typing import Awaitable, Callable, Optional, Protocol, Union

from eth_utils import to_checksum_address

from ..core.errors import RegistryUnavailable, SignlessError
from ..core.logging_config import get_core_logger
from ..crud.delegate_key import DelegateKeyStore
from ..schemas.pipeline import (
    SENTINEL_TRANSACTION_HASH,
    CompletionEvent,
    PipelinePhase,
    PipelineState,
    PreconditionReport,
    SubmissionResult,
    SubmissionRoute,
)
from ..schemas.relay import RelayOutcome, RelayTaskStatus
from ..schemas.transaction import BatchedTransaction, MetaTransaction
from .authorization_signer import AuthorizationSigner
from .chain_client import ChainClient
from .delegate_registry import DelegateRegistry
from .multisend import create_multisend_call_only_tx
from .relay_dispatcher import RelayDispatcher
from .relay_status_poller import RelayStatusPoller

logger = get_core_logger()


class CompletionSink(Protocol):
    def emit(self, event: CompletionEvent) -> None:
        ...


FallbackHandler = Callable[[str, str, BatchedTransaction, MetaTransaction], Union[Awaitable[None], None]]
StateListener = Callable[[PipelineState], None]


class PipelineOrchestrator:
    """
    Composes key store, registry, signer, dispatcher and poller for one chain.

    Concurrent submissions for the same wallet are not serialized here; that is
    up to the caller (they would race on the delegate nonce).
    """

    def __init__(
        self,
        *,
        chain_client: Optional[ChainClient],
        key_store: DelegateKeyStore,
        dispatcher: RelayDispatcher,
        poller: RelayStatusPoller,
        completion_sink: CompletionSink,
        fallback: Optional[FallbackHandler] = None,
        signer_factory: Callable[..., AuthorizationSigner] = AuthorizationSigner,
        multisend_address: Optional[str] = None,
    ):
        self.chain_client = chain_client
        self.key_store = key_store
        self.dispatcher = dispatcher
        self.poller = poller
        self.completion_sink = completion_sink
        self.fallback = fallback
        self.signer_factory = signer_factory
        self.multisend_address = multisend_address

    def _registry(self) -> DelegateRegistry:
        return DelegateRegistry(self.chain_client.module_contract)

    async def check_preconditions(self, wallet_address: str) -> PreconditionReport:
        """
        Decide whether the delegated path applies.

        An unavailable registry counts as "not validated", never as a failure.
        """
        def unmet(reason: str, **kwargs) -> PreconditionReport:
            logger.info("Delegated path not applicable",
                        wallet_address=wallet_address,
                        reason=reason,
                        event_type="delegation_precondition_unmet")
            return PreconditionReport(satisfied=False, unmet=reason, **kwargs)

        chain = self.chain_client
        if chain is None:
            return unmet("read_provider_unavailable")

        try:
            if not await chain.is_wallet_deployed(wallet_address):
                return unmet("wallet_not_initialized")
        except RegistryUnavailable:
            return unmet("registry_unavailable")

        if chain.module_address is None:
            return unmet("module_not_deployed")
        if chain.module_contract is None:
            return unmet("module_binding_unavailable", module_address=chain.module_address)

        try:
            if not await chain.is_module_enabled(wallet_address):
                return unmet("module_not_enabled", module_address=chain.module_address)
        except RegistryUnavailable:
            return unmet("registry_unavailable", module_address=chain.module_address)

        delegate_address = await self.key_store.get_delegate_address(wallet_address)
        if delegate_address is None:
            return unmet("delegate_key_missing", module_address=chain.module_address)

        try:
            is_valid = await self._registry().is_valid_delegate(wallet_address, delegate_address)
        except RegistryUnavailable:
            return unmet("registry_unavailable",
                         module_address=chain.module_address,
                         delegate_address=delegate_address)
        if not is_valid:
            return unmet("delegate_not_registered",
                         module_address=chain.module_address,
                         delegate_address=delegate_address)

        return PreconditionReport(
            satisfied=True,
            module_address=chain.module_address,
            delegate_address=delegate_address,
        )

    async def submit_delegated_transaction(
        self,
        request_id: str,
        wallet_address: str,
        batch: BatchedTransaction,
        on_state: Optional[StateListener] = None,
    ) -> SubmissionResult:
        """
        Authorize and relay a batch with the wallet's delegate key, or fall back.

        Args:
            request_id: Caller's id for this transaction request, echoed in the completion event
            wallet_address: Safe executing the batch
            batch: Calls to execute, in order
            on_state: Receives every PipelineState change

        Returns:
            What was done; for the delegated route, the terminal poll result

        Raises:
            SigningUnavailable: If the delegate key vanished after the precondition check
            RegistryUnavailable: If the delegate nonce could not be read
            RelaySubmissionFailed: If the relay rejected the fee query or the call
        """
        wallet_address = to_checksum_address(wallet_address)
        state = PipelineState(phase=PipelinePhase.CHECKING)

        def publish(**changes) -> None:
            nonlocal state
            state = state.model_copy(update=changes)
            if on_state is not None:
                on_state(state)

        publish()
        report = await self.check_preconditions(wallet_address)

        if not report.satisfied:
            merged = create_multisend_call_only_tx(batch, self.multisend_address)
            publish(phase=PipelinePhase.FALLBACK, last_status=report.unmet)
            if self.fallback is not None:
                result = self.fallback(request_id, wallet_address, batch, merged)
                if inspect.isawaitable(result):
                    await result
            return SubmissionResult(
                request_id=request_id,
                route=SubmissionRoute.FALLBACK,
                reason=report.unmet,
                fallback_transaction=merged,
            )

        chain_id = self.chain_client.chain_id
        try:
            publish(phase=PipelinePhase.SIGNING)
            signer = self.signer_factory(
                self._registry(),
                chain_id,
                report.module_address,
                multisend_address=self.multisend_address,
            )
            authorization = await signer.sign(wallet_address, batch, await self.key_store.get(wallet_address))

            publish(phase=PipelinePhase.SUBMITTING)
            task = await self.dispatcher.dispatch(authorization, report.module_address, chain_id)
        except SignlessError as e:
            publish(phase=PipelinePhase.ERROR, last_status=e.error_type)
            logger.error("Delegated submission failed",
                         request_id=request_id,
                         wallet_address=wallet_address,
                         error_type=e.error_type,
                         error=e.message,
                         event_type="delegated_submission_failed")
            raise

        publish(phase=PipelinePhase.POLLING, last_status=task.status.value)

        def on_poll(try_count: int, outcome: RelayOutcome, status: Optional[RelayTaskStatus]) -> None:
            publish(try_count=try_count, last_status=status.task_state if status else outcome.value)

        poll_result = await self.poller.poll(task.task_id, on_update=on_poll)

        event = CompletionEvent(
            request_id=request_id,
            transaction_hash=poll_result.transaction_hash or SENTINEL_TRANSACTION_HASH,
        )
        publish(phase=PipelinePhase.COMPLETED)
        self.completion_sink.emit(event)

        logger.info("Delegated submission completed",
                    request_id=request_id,
                    wallet_address=wallet_address,
                    task_id=task.task_id,
                    outcome=poll_result.outcome.value,
                    transaction_hash=event.transaction_hash,
                    event_type="delegated_submission_completed")

        return SubmissionResult(
            request_id=request_id,
            route=SubmissionRoute.DELEGATED,
            task_id=task.task_id,
            poll_result=poll_result,
        )
