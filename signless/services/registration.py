"""
Delegate registration and revocation calls.

These are populated, never broadcast: the wallet owners co-sign them through the
conventional flow like any other batch.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from eth_utils import to_checksum_address

from ..core.config import settings
from ..core.logging_config import get_chain_logger
from ..core.networks import get_signless_module_address
from ..schemas.transaction import BatchedTransaction, MetaTransaction
from .abi import encode_call
from .multisend import create_multisend_call_only_tx

logger = get_chain_logger()


def default_expiry(now: Optional[datetime] = None) -> int:
    """Unix timestamp DEFAULT_DELEGATE_TTL_DAYS from now."""
    now = now or datetime.now(timezone.utc)
    return int((now + timedelta(days=settings.DEFAULT_DELEGATE_TTL_DAYS)).timestamp())


def _module_call(chain_id: int, data: bytes) -> BatchedTransaction:
    module_address = get_signless_module_address(chain_id)
    if module_address is None:
        raise ValueError(f"Signless module is not deployed on chain {chain_id}")
    return BatchedTransaction.of(MetaTransaction(to=module_address, value=0, data="0x" + data.hex()))


def build_register_delegate_tx(
    chain_id: int,
    delegate_address: str,
    expiry: Optional[int] = None,
    multisend_address: Optional[str] = None,
) -> MetaTransaction:
    """
    Populate registerDelegateSigner(delegate, expiry) as a one-call multi-send.

    Raises:
        ValueError: If the module has no deployment on chain_id or expiry is out of range
    """
    expiry = default_expiry() if expiry is None else int(expiry)
    if not 0 <= expiry < 2 ** 64:
        raise ValueError("expiry must fit in uint64")

    delegate_address = to_checksum_address(delegate_address)
    batch = _module_call(
        chain_id,
        encode_call("registerDelegateSigner", ["address", "uint64"], [delegate_address, expiry]),
    )
    logger.info("Populated delegate registration",
                chain_id=chain_id,
                delegate_address=delegate_address,
                expiry=expiry,
                event_type="delegate_registration_populated")
    return create_multisend_call_only_tx(batch, multisend_address)


def build_revoke_delegate_tx(
    chain_id: int,
    delegate_index: int,
    multisend_address: Optional[str] = None,
) -> MetaTransaction:
    """Populate revokeDelegateSigner(index) as a one-call multi-send; index is the registry position."""
    if delegate_index < 0:
        raise ValueError("delegate_index must be non-negative")

    batch = _module_call(
        chain_id,
        encode_call("revokeDelegateSigner", ["uint256"], [int(delegate_index)]),
    )
    logger.info("Populated delegate revocation",
                chain_id=chain_id,
                delegate_index=delegate_index,
                event_type="delegate_revocation_populated")
    return create_multisend_call_only_tx(batch, multisend_address)
