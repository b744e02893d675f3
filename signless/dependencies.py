import hmac
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from eth_utils import to_checksum_address

from .core.config import settings
from .crud.delegate_key import DelegateKeyStore
from .db.database import get_db_session
from .services.chain_client import ChainClient, get_chain_client
from .services.submission_tracker import SubmissionTracker
from .services.submissions import SubmissionService

# Optional so requests without a header reach verify_api_token, which decides
bearer_scheme_optional = HTTPBearer(
    auto_error=False,
    description="Static bearer token (required when SIGNLESS_API_TOKEN is set)"
)


async def verify_api_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme_optional),
) -> None:
    """Reject the request unless it carries the configured bearer token. No-op when none is configured."""
    expected = settings.SIGNLESS_API_TOKEN
    if not expected:
        return
    if credentials is None or not hmac.compare_digest(credentials.credentials, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_wallet_address(wallet_address: str) -> str:
    """Checksummed form of the path's wallet_address; 400 when it is not an address."""
    try:
        return to_checksum_address(wallet_address)
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid wallet address: {wallet_address}",
        )


async def get_delegate_key_store(db: AsyncSession = Depends(get_db_session)) -> DelegateKeyStore:
    return DelegateKeyStore(db)


def get_chain(chain_id: int) -> ChainClient:
    """Chain binding for the path's chain_id; 503 when no RPC endpoint is configured."""
    chain = get_chain_client(chain_id)
    if chain is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"No RPC endpoint configured for chain {chain_id}",
        )
    return chain


def get_submission_tracker(request: Request) -> SubmissionTracker:
    return request.app.state.submission_tracker


def get_submission_service(request: Request) -> SubmissionService:
    return request.app.state.submission_service
