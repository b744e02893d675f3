from typing import Dict, Optional

from eth_utils import to_checksum_address
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.contract import AsyncContract

from ..core.errors import RegistryUnavailable
from ..core.logging_config import get_chain_logger
from ..core.networks import get_rpc_url, get_signless_module_address
from .abi import SAFE_ABI, SIGNLESS_MODULE_ABI

logger = get_chain_logger()


class ChainClient:
    """
    Read-only access to one chain: the Signless module binding and Safe wallet bindings.

    Nothing here signs or broadcasts; write calls are only ever populated elsewhere.
    """

    def __init__(self, chain_id: int, w3: AsyncWeb3, module_address: Optional[str] = None):
        self.chain_id = int(chain_id)
        self.w3 = w3
        self.module_address = to_checksum_address(module_address) if module_address else None
        self._module_contract: Optional[AsyncContract] = None

    @classmethod
    def from_settings(cls, chain_id: int) -> Optional["ChainClient"]:
        """Build a client from configured RPC URLs; None when the chain has no RPC endpoint."""
        rpc_url = get_rpc_url(chain_id)
        if not rpc_url:
            logger.info("No RPC endpoint configured for chain",
                        chain_id=chain_id,
                        event_type="chain_rpc_missing")
            return None
        w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        return cls(chain_id, w3, get_signless_module_address(chain_id))

    @property
    def module_contract(self) -> Optional[AsyncContract]:
        if self.module_address is None:
            return None
        if self._module_contract is None:
            self._module_contract = self.w3.eth.contract(address=self.module_address, abi=SIGNLESS_MODULE_ABI)
        return self._module_contract

    def wallet_contract(self, wallet_address: str) -> AsyncContract:
        return self.w3.eth.contract(address=to_checksum_address(wallet_address), abi=SAFE_ABI)

    async def is_wallet_deployed(self, wallet_address: str) -> bool:
        """True when the wallet address holds contract code."""
        try:
            code = await self.w3.eth.get_code(to_checksum_address(wallet_address))
        except Exception as e:
            raise RegistryUnavailable(f"Failed to read wallet code on chain {self.chain_id}: {e}") from e
        return len(code) > 0

    async def is_module_enabled(self, wallet_address: str) -> bool:
        """
        Check whether the Signless module is enabled on a Safe.

        Raises:
            RegistryUnavailable: If the view call fails
        """
        if self.module_address is None:
            return False
        try:
            return bool(await self.wallet_contract(wallet_address).functions.isModuleEnabled(self.module_address).call())
        except Exception as e:
            logger.warning("isModuleEnabled call failed",
                           chain_id=self.chain_id,
                           wallet_address=wallet_address,
                           error=str(e),
                           event_type="module_enabled_check_failed")
            raise RegistryUnavailable(f"Failed to read module state for {wallet_address}: {e}") from e


_chain_clients: Dict[int, Optional[ChainClient]] = {}


def get_chain_client(chain_id: int) -> Optional[ChainClient]:
    """Process-wide ChainClient per chain, built lazily from settings."""
    chain_id = int(chain_id)
    if chain_id not in _chain_clients:
        _chain_clients[chain_id] = ChainClient.from_settings(chain_id)
    return _chain_clients[chain_id]
