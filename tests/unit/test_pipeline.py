import pytest
import sys
from pathlib import Path
from unittest.mock import MagicMock, AsyncMock

import httpx
from eth_account import Account

from eth_utils import to_checksum_address

# Add the project root to the Python path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from signless.core.errors import RegistryUnavailable, RelaySubmissionFailed
from signless.core.testing import RecordingSleep
from signless.schemas.delegate_key import DelegateKeyMaterial
from signless.schemas.pipeline import (
    SENTINEL_TRANSACTION_HASH,
    CompletionEvent,
    PipelinePhase,
    SubmissionRoute,
)
from signless.schemas.relay import RelayOutcome
from signless.schemas.transaction import BatchedTransaction, MetaTransaction
from signless.services.pipeline import PipelineOrchestrator
from signless.services.relay_client import GelatoRelayClient
from signless.services.relay_dispatcher import RelayDispatcher
from signless.services.relay_status_poller import RelayStatusPoller

WALLET = to_checksum_address("0x0000000000000000000000000000000000000AAA")
MODULE = "0xb9Cd1dd44799f508769040156962E01ADf97e330"
DELEGATE_KEY = "0x" + "11" * 32
DELEGATE = Account.from_key(DELEGATE_KEY).address

BATCH = BatchedTransaction.of(
    MetaTransaction(to="0x0000000000000000000000000000000000000AAA", value="0", data="0x1234"),
)


class RecordingSink:
    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(event)


def _chain_client(deployed=True, module_enabled=True, is_valid=True):
    chain = MagicMock()
    chain.chain_id = 100
    chain.module_address = MODULE
    chain.is_wallet_deployed = AsyncMock(return_value=deployed)
    chain.is_module_enabled = AsyncMock(return_value=module_enabled)
    functions = chain.module_contract.functions
    if isinstance(is_valid, Exception):
        functions.isValidDelegate.return_value.call = AsyncMock(side_effect=is_valid)
    else:
        functions.isValidDelegate.return_value.call = AsyncMock(return_value=is_valid)
    functions.getNonce.return_value.call = AsyncMock(return_value=0)
    return chain


def _key_store(has_key=True):
    store = MagicMock()
    store.get_delegate_address = AsyncMock(return_value=DELEGATE if has_key else None)
    store.get = AsyncMock(
        return_value=DelegateKeyMaterial(wallet_address=WALLET, private_key=DELEGATE_KEY) if has_key else None
    )
    return store


def _relay(task_states, submit_status=201):
    """Relay API stub: fixed fee, one task id, then the given task states in order."""
    states = list(task_states)
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.startswith("/oracles/"):
            return httpx.Response(200, json={"estimatedFee": "100"})
        if request.url.path == "/relays/v2/call-with-sync-fee":
            if submit_status >= 400:
                return httpx.Response(submit_status, json={"message": "rejected"})
            return httpx.Response(submit_status, json={"taskId": "task-1"})
        state, tx_hash = states.pop(0)
        return httpx.Response(200, json={"task": {"taskState": state, "transactionHash": tx_hash}})

    client = GelatoRelayClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)), base_url="https://relay.test")
    return client, requests


def _orchestrator(chain_client, key_store, relay_client, sink, **kwargs):
    return PipelineOrchestrator(
        chain_client=chain_client,
        key_store=key_store,
        dispatcher=kwargs.pop("dispatcher", RelayDispatcher(relay_client)),
        poller=RelayStatusPoller(relay_client, sleep=RecordingSleep()),
        completion_sink=sink,
        **kwargs,
    )


class TestDelegatedRoute:

    @pytest.mark.asyncio
    async def test_success_emits_completion_event(self):
        relay, _ = _relay([("CheckPending", None), ("ExecSuccess", "0xabc")])
        sink = RecordingSink()
        states = []

        result = await _orchestrator(_chain_client(), _key_store(), relay, sink).submit_delegated_transaction(
            "req-1", WALLET, BATCH, on_state=states.append,
        )

        assert result.route is SubmissionRoute.DELEGATED
        assert result.task_id == "task-1"
        assert result.poll_result.outcome is RelayOutcome.SUCCEEDED
        assert sink.events == [CompletionEvent(request_id="req-1", transaction_hash="0xabc")]

        phases = [state.phase for state in states]
        assert phases[0] is PipelinePhase.CHECKING
        assert PipelinePhase.SIGNING in phases
        assert PipelinePhase.SUBMITTING in phases
        assert phases[-1] is PipelinePhase.COMPLETED
        assert states[-1].try_count == 2

    @pytest.mark.asyncio
    async def test_timeout_emits_sentinel_hash(self):
        relay, _ = _relay([("ExecPending", None)] * 8)
        sink = RecordingSink()

        result = await _orchestrator(_chain_client(), _key_store(), relay, sink).submit_delegated_transaction(
            "req-2", WALLET, BATCH,
        )

        assert result.poll_result.outcome is RelayOutcome.TIMED_OUT
        assert sink.events == [CompletionEvent(request_id="req-2", transaction_hash=SENTINEL_TRANSACTION_HASH)]

    @pytest.mark.asyncio
    async def test_reverted_without_hash_emits_sentinel(self):
        relay, _ = _relay([("ExecReverted", None)])
        sink = RecordingSink()

        result = await _orchestrator(_chain_client(), _key_store(), relay, sink).submit_delegated_transaction(
            "req-3", WALLET, BATCH,
        )

        assert result.poll_result.outcome is RelayOutcome.FAILED
        assert sink.events[0].transaction_hash == SENTINEL_TRANSACTION_HASH

    @pytest.mark.asyncio
    async def test_relay_rejection_raises_without_event(self):
        relay, requests = _relay([], submit_status=400)
        sink = RecordingSink()
        states = []

        with pytest.raises(RelaySubmissionFailed):
            await _orchestrator(_chain_client(), _key_store(), relay, sink).submit_delegated_transaction(
                "req-4", WALLET, BATCH, on_state=states.append,
            )

        assert sink.events == []
        assert states[-1].phase is PipelinePhase.ERROR
        assert not any(r.url.path.startswith("/tasks/") for r in requests)


class TestFallbackRoute:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("chain_kwargs,has_key,reason", [
        ({"deployed": False}, True, "wallet_not_initialized"),
        ({"module_enabled": False}, True, "module_not_enabled"),
        ({}, False, "delegate_key_missing"),
        ({"is_valid": False}, True, "delegate_not_registered"),
        ({"is_valid": ConnectionError("rpc down")}, True, "registry_unavailable"),
    ])
    async def test_unmet_precondition_never_touches_signer_or_relay(self, chain_kwargs, has_key, reason):
        sink = RecordingSink()
        signer_factory = MagicMock()
        dispatcher = MagicMock()
        dispatcher.dispatch = AsyncMock()
        fallback = AsyncMock()

        orchestrator = _orchestrator(
            _chain_client(**chain_kwargs), _key_store(has_key), MagicMock(), sink,
            dispatcher=dispatcher, signer_factory=signer_factory, fallback=fallback,
        )
        result = await orchestrator.submit_delegated_transaction("req-5", WALLET, BATCH)

        assert result.route is SubmissionRoute.FALLBACK
        assert result.reason == reason
        assert result.fallback_transaction.to == "0x40A2aCCbd92BCA938b02010E17A5b8929b49130D"
        assert not signer_factory.called
        assert not dispatcher.dispatch.called
        assert sink.events == []
        fallback.assert_awaited_once_with("req-5", WALLET, BATCH, result.fallback_transaction)

    @pytest.mark.asyncio
    async def test_missing_chain_client(self):
        orchestrator = _orchestrator(None, _key_store(), MagicMock(), RecordingSink(), dispatcher=MagicMock())

        report = await orchestrator.check_preconditions(WALLET)

        assert report.satisfied is False
        assert report.unmet == "read_provider_unavailable"

    @pytest.mark.asyncio
    async def test_module_not_deployed(self):
        chain = _chain_client()
        chain.module_address = None

        report = await _orchestrator(chain, _key_store(), MagicMock(), RecordingSink(),
                                     dispatcher=MagicMock()).check_preconditions(WALLET)

        assert report.unmet == "module_not_deployed"

    @pytest.mark.asyncio
    async def test_module_state_unreadable(self):
        chain = _chain_client()
        chain.is_module_enabled = AsyncMock(side_effect=RegistryUnavailable("rpc down"))

        report = await _orchestrator(chain, _key_store(), MagicMock(), RecordingSink(),
                                     dispatcher=MagicMock()).check_preconditions(WALLET)

        assert report.unmet == "registry_unavailable"

    @pytest.mark.asyncio
    async def test_all_preconditions_met(self):
        report = await _orchestrator(_chain_client(), _key_store(), MagicMock(), RecordingSink(),
                                     dispatcher=MagicMock()).check_preconditions(WALLET)

        assert report.satisfied is True
        assert report.module_address == MODULE
        assert report.delegate_address == DELEGATE
