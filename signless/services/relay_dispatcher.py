from typing import Optional

from eth_utils import to_checksum_address

from ..core.config import settings
from ..core.errors import RelaySubmissionFailed
from ..core.logging_config import get_relay_logger
from ..schemas.authorization import Authorization
from ..schemas.relay import RelayTask
from ..schemas.transaction import MetaTransaction
from .abi import encode_call
from .relay_client import GelatoRelayClient, RelayClientError

logger = get_relay_logger()

EXEC_VIA_RELAY_TYPES = ["uint256", "address", "address", "address", "uint256", "bytes", "bytes"]


def encode_exec_via_relay(
    max_fee: int,
    delegate_address: str,
    wallet_address: str,
    transaction: MetaTransaction,
    signature: str,
) -> str:
    """Calldata for Signless.execViaRelay(maxFee, delegate, safe, to, value, data, sig)."""
    data = encode_call(
        "execViaRelay",
        EXEC_VIA_RELAY_TYPES,
        [
            int(max_fee),
            to_checksum_address(delegate_address),
            to_checksum_address(wallet_address),
            transaction.to,
            transaction.value,
            transaction.data_bytes,
            bytes.fromhex(signature[2:] if signature.startswith("0x") else signature),
        ],
    )
    return "0x" + data.hex()


class RelayDispatcher:
    """
    Fee estimation and single-shot submission of a signed authorization to the relay.

    A submission is attempted once per user-initiated transaction; failures surface
    as RelaySubmissionFailed and are never retried here.
    """

    def __init__(
        self,
        relay_client: GelatoRelayClient,
        fee_token: Optional[str] = None,
        gas_limit: Optional[int] = None,
        fee_multiplier: Optional[int] = None,
    ):
        self.relay_client = relay_client
        self.fee_token = fee_token or settings.RELAY_FEE_TOKEN
        self.gas_limit = gas_limit or settings.RELAY_GAS_LIMIT
        self.fee_multiplier = fee_multiplier or settings.RELAY_FEE_MULTIPLIER

    async def estimate_fee(self, chain_id: int, gas_budget: Optional[int] = None) -> int:
        """
        Relay fee for a fixed upper-bound gas budget (no simulation).

        Raises:
            RelaySubmissionFailed: If the fee oracle cannot be reached or rejects the query
        """
        try:
            fee = await self.relay_client.estimate_fee(chain_id, self.fee_token, gas_budget or self.gas_limit)
        except RelayClientError as e:
            logger.error("Relay fee estimation failed",
                         chain_id=chain_id,
                         error=e.message,
                         event_type="relay_fee_estimate_failed")
            raise RelaySubmissionFailed(f"Fee estimation failed: {e.message}") from e

        logger.debug("Relay fee estimated",
                     chain_id=chain_id,
                     fee=fee,
                     gas_budget=gas_budget or self.gas_limit,
                     event_type="relay_fee_estimated")
        return fee

    async def submit(
        self,
        module_address: str,
        delegate_address: str,
        wallet_address: str,
        transaction: MetaTransaction,
        signature: str,
        max_fee: int,
        chain_id: int,
    ) -> str:
        """
        Hand an execViaRelay call to the relay network.

        Returns:
            Opaque relay task id

        Raises:
            RelaySubmissionFailed: If the relay rejects the call or is unreachable
        """
        data = encode_exec_via_relay(max_fee, delegate_address, wallet_address, transaction, signature)
        try:
            return await self.relay_client.call_with_sync_fee(
                chain_id,
                to_checksum_address(module_address),
                data,
                self.fee_token,
            )
        except RelayClientError as e:
            logger.error("Relay submission failed",
                         chain_id=chain_id,
                         wallet_address=wallet_address,
                         error=e.message,
                         event_type="relay_submission_failed")
            raise RelaySubmissionFailed(f"Relay submission failed: {e.message}") from e

    async def dispatch(self, authorization: Authorization, module_address: str, chain_id: int) -> RelayTask:
        """Estimate the fee, apply the safety multiplier and submit the authorization."""
        fee = await self.estimate_fee(chain_id)
        max_fee = fee * self.fee_multiplier
        task_id = await self.submit(
            module_address,
            authorization.delegate_address,
            authorization.wallet_address,
            authorization.transaction,
            authorization.delegate_signature,
            max_fee,
            chain_id,
        )
        return RelayTask(task_id=task_id, fee_estimate=fee, max_fee=max_fee)
