from typing import Any, List

from eth_utils import to_checksum_address

from ..core.errors import RegistryUnavailable
from ..core.logging_config import get_chain_logger

logger = get_chain_logger()


class DelegateRegistry:
    """
    On-chain delegate registrations for a wallet, read through the module binding.

    Results mirror the module's ledger at query time only; re-query whenever the
    wallet or the local delegate key changes. Any failed view call surfaces as
    RegistryUnavailable, which callers treat as "not validated".
    """

    def __init__(self, module_contract: Any):
        self.module_contract = module_contract

    async def _call(self, fn_name: str, *args):
        try:
            return await getattr(self.module_contract.functions, fn_name)(*args).call()
        except Exception as e:
            logger.warning("Module view call failed",
                           function=fn_name,
                           error=str(e),
                           event_type="registry_call_failed")
            raise RegistryUnavailable(f"{fn_name} failed: {e}") from e

    async def is_valid_delegate(self, wallet_address: str, delegate_address: str) -> bool:
        valid = bool(await self._call(
            "isValidDelegate",
            to_checksum_address(wallet_address),
            to_checksum_address(delegate_address),
        ))
        logger.debug("Delegate validity checked",
                     wallet_address=wallet_address,
                     delegate_address=delegate_address,
                     is_valid=valid,
                     event_type="delegate_validity_checked")
        return valid

    async def delegate_count(self, wallet_address: str) -> int:
        return int(await self._call("getDelegateSignersCount", to_checksum_address(wallet_address)))

    async def list_delegates(self, wallet_address: str) -> List[str]:
        """
        All registered delegates for a wallet, in registry order.

        The paginated call is skipped entirely when the count is zero.
        """
        wallet_address = to_checksum_address(wallet_address)
        count = await self.delegate_count(wallet_address)
        if count == 0:
            return []

        signers = await self._call("getDelegateSignersPaginated", wallet_address, 0, count)
        return [to_checksum_address(signer) for signer in signers]

    async def get_nonce(self, delegate_address: str) -> int:
        """Current module nonce for a delegate, consumed by the next authorization it signs."""
        return int(await self._call("getNonce", to_checksum_address(delegate_address)))
