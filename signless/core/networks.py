"""Per-chain lookups for RPC endpoints and Signless module deployments."""

from typing import Optional, Union

from eth_utils import to_checksum_address

from .config import settings

ChainId = Union[int, str]


def get_signless_module_address(chain_id: ChainId) -> Optional[str]:
    """Return the checksummed module address for a chain, or None if not deployed there."""
    address = settings.SIGNLESS_MODULE_ADDRESSES.get(str(chain_id))
    if not address:
        return None
    return to_checksum_address(address)


def get_rpc_url(chain_id: ChainId) -> Optional[str]:
    return settings.CHAIN_RPC_URLS.get(str(chain_id)) or None


def is_supported_chain(chain_id: ChainId) -> bool:
    return get_signless_module_address(chain_id) is not None
