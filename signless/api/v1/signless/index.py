from fastapi import APIRouter, Depends, HTTPException, Query, status
from typing import Optional

from ....core.config import settings
from ....core.errors import RegistryUnavailable
from ....core.logging_config import get_api_logger
from ....core.networks import is_supported_chain
from ....crud.delegate_key import DelegateKeyStore
from ....dependencies import (
    get_chain,
    get_delegate_key_store,
    get_submission_service,
    get_submission_tracker,
    get_wallet_address,
    verify_api_token,
)
from ....schemas.delegate_key import (
    DelegateKeyCreated,
    DelegateKeyStatus,
    RegisterDelegateRequest,
    RegisteredDelegates,
    RevokeDelegateRequest,
)
from ....schemas.pipeline import SubmissionAccepted, SubmissionRecord, SubmitTransactionRequest
from ....schemas.transaction import MetaTransaction
from ....services.chain_client import ChainClient, get_chain_client
from ....services.delegate_registry import DelegateRegistry
from ....services.registration import build_register_delegate_tx, build_revoke_delegate_tx
from ....services.submission_tracker import SubmissionTracker
from ....services.submissions import SubmissionService

logger = get_api_logger()

router = APIRouter(tags=["Signless"], dependencies=[Depends(verify_api_token)])


def _require_module(chain: ChainClient) -> DelegateRegistry:
    if chain.module_contract is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Signless module is not deployed on chain {chain.chain_id}",
        )
    return DelegateRegistry(chain.module_contract)


@router.post("/wallets/{wallet_address}/delegate-key",
             response_model=DelegateKeyCreated,
             status_code=status.HTTP_201_CREATED)
async def create_delegate_key(
    wallet_address: str = Depends(get_wallet_address),
    store: DelegateKeyStore = Depends(get_delegate_key_store),
):
    """
    Generate the wallet's delegate key.

    Only the delegate address is returned; the key itself never leaves the service.
    Responds 409 if the wallet already has one.
    """
    material = await store.create(wallet_address)
    return DelegateKeyCreated(wallet_address=material.wallet_address, delegate_address=material.delegate_address)


@router.get("/wallets/{wallet_address}/delegate-key", response_model=DelegateKeyStatus)
async def get_delegate_key_status(
    wallet_address: str = Depends(get_wallet_address),
    chain_id: Optional[int] = Query(None, description="Also check on-chain registration on this chain"),
    store: DelegateKeyStore = Depends(get_delegate_key_store),
):
    delegate_address = await store.get_delegate_address(wallet_address)
    if delegate_address is None:
        return DelegateKeyStatus(wallet_address=wallet_address, has_key=False)

    is_valid = None
    chain = get_chain_client(chain_id) if chain_id is not None else None
    if chain is not None and chain.module_contract is not None:
        try:
            is_valid = await DelegateRegistry(chain.module_contract).is_valid_delegate(wallet_address, delegate_address)
        except RegistryUnavailable:
            # Reported as unknown
            is_valid = None

    return DelegateKeyStatus(
        wallet_address=wallet_address,
        has_key=True,
        delegate_address=delegate_address,
        is_valid=is_valid,
    )


@router.delete("/wallets/{wallet_address}/delegate-key")
async def delete_delegate_key(
    wallet_address: str = Depends(get_wallet_address),
    store: DelegateKeyStore = Depends(get_delegate_key_store),
):
    deleted = await store.delete(wallet_address)
    return {"wallet_address": wallet_address, "deleted": deleted}


@router.get("/chains/{chain_id}/wallets/{wallet_address}/delegates", response_model=RegisteredDelegates)
async def list_registered_delegates(
    chain_id: int,
    wallet_address: str = Depends(get_wallet_address),
    chain: ChainClient = Depends(get_chain),
):
    """Delegates registered for the wallet in the module, in registry order (the revoke index)."""
    registry = _require_module(chain)
    delegates = await registry.list_delegates(wallet_address)
    return RegisteredDelegates(wallet_address=wallet_address, chain_id=chain_id, delegates=delegates)


@router.post("/chains/{chain_id}/wallets/{wallet_address}/delegates/register", response_model=MetaTransaction)
async def populate_register_delegate(
    chain_id: int,
    request_data: RegisterDelegateRequest,
    wallet_address: str = Depends(get_wallet_address),
    store: DelegateKeyStore = Depends(get_delegate_key_store),
):
    """
    Populate the registration call for co-signing through the conventional flow.

    Registers the wallet's local delegate unless another address is given.
    """
    if not is_supported_chain(chain_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Signless module is not deployed on chain {chain_id}",
        )

    delegate_address = request_data.delegate_address or await store.get_delegate_address(wallet_address)
    if delegate_address is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No delegate key stored for wallet {wallet_address}",
        )

    try:
        return build_register_delegate_tx(chain_id, delegate_address, request_data.expiry)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/chains/{chain_id}/wallets/{wallet_address}/delegates/revoke", response_model=MetaTransaction)
async def populate_revoke_delegate(
    chain_id: int,
    request_data: RevokeDelegateRequest,
    wallet_address: str = Depends(get_wallet_address),
):
    if not is_supported_chain(chain_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Signless module is not deployed on chain {chain_id}",
        )
    return build_revoke_delegate_tx(chain_id, request_data.delegate_index)


@router.post("/chains/{chain_id}/wallets/{wallet_address}/transactions",
             response_model=SubmissionAccepted,
             status_code=status.HTTP_202_ACCEPTED)
async def submit_transaction(
    chain_id: int,
    request_data: SubmitTransactionRequest,
    wallet_address: str = Depends(get_wallet_address),
    service: SubmissionService = Depends(get_submission_service),
):
    """
    Start a delegated submission in the background.

    Poll the status URL for progress, the route taken and the completion event.
    Responds 409 while another submission for the same wallet is in flight.
    """
    record = service.start(chain_id, wallet_address, request_data.txs, request_data.request_id)
    return SubmissionAccepted(
        request_id=record.request_id,
        status_url=f"{settings.API_V1_STR}/signless/transactions/{record.request_id}",
    )


@router.get("/transactions/{request_id}", response_model=SubmissionRecord)
async def get_transaction_status(
    request_id: str,
    tracker: SubmissionTracker = Depends(get_submission_tracker),
):
    record = tracker.get(request_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown request {request_id}",
        )
    return record
