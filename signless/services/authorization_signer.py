"""
Delegate authorization signing.

A batch is merged into a single MultiSendCallOnly call, and the delegate signs an
EIP-712 SignlessSafeTransaction over (safe, to, value, keccak(data), nonce). The
domain binds the signature to one chain id and one module deployment, so it can
not be replayed elsewhere. Committing to the calldata hash keeps the signed
payload the same size whatever the batch contains.
"""

from typing import Any, Dict, Optional

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import keccak, to_checksum_address

from ..core.config import settings
from ..core.errors import SigningUnavailable
from ..core.logging_config import get_relay_logger
from ..schemas.authorization import Authorization
from ..schemas.delegate_key import DelegateKeyMaterial
from ..schemas.transaction import BatchedTransaction, MetaTransaction
from .delegate_registry import DelegateRegistry
from .multisend import create_multisend_call_only_tx

logger = get_relay_logger()

PRIMARY_TYPE = "SignlessSafeTransaction"

AUTHORIZATION_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    PRIMARY_TYPE: [
        {"name": "safe", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "dataHash", "type": "bytes32"},
        {"name": "nonce", "type": "uint256"},
    ],
}


def calldata_hash(transaction: MetaTransaction) -> bytes:
    """keccak256 of the call's raw calldata bytes."""
    return keccak(transaction.data_bytes)


def build_domain(chain_id: int, module_address: str) -> Dict[str, Any]:
    return {
        "name": settings.EIP712_DOMAIN_NAME,
        "version": settings.EIP712_DOMAIN_VERSION,
        "chainId": int(chain_id),
        "verifyingContract": to_checksum_address(module_address),
    }


def build_typed_data(
    wallet_address: str,
    transaction: MetaTransaction,
    nonce: int,
    chain_id: int,
    module_address: str,
) -> Dict[str, Any]:
    """Full EIP-712 message (types, domain, message) for one merged call."""
    return {
        "types": AUTHORIZATION_TYPES,
        "primaryType": PRIMARY_TYPE,
        "domain": build_domain(chain_id, module_address),
        "message": {
            "safe": to_checksum_address(wallet_address),
            "to": transaction.to,
            "value": transaction.value,
            "dataHash": calldata_hash(transaction),
            "nonce": int(nonce),
        },
    }


def recover_authorization_signer(authorization: Authorization, chain_id: int, module_address: str) -> str:
    """
    Recover the address that signed an authorization under the given domain.

    Under any other chain id or module address this yields an unrelated address.
    """
    typed_data = build_typed_data(
        authorization.wallet_address,
        authorization.transaction,
        authorization.nonce,
        chain_id,
        module_address,
    )
    return Account.recover_message(
        encode_typed_data(full_message=typed_data),
        signature=bytes.fromhex(authorization.delegate_signature[2:]),
    )


class AuthorizationSigner:
    """Builds and signs the authorization for a batch, using the module as nonce source."""

    def __init__(
        self,
        registry: DelegateRegistry,
        chain_id: int,
        module_address: str,
        multisend_address: Optional[str] = None,
    ):
        self.registry = registry
        self.chain_id = int(chain_id)
        self.module_address = to_checksum_address(module_address)
        self.multisend_address = multisend_address

    async def sign(
        self,
        wallet_address: str,
        batch: BatchedTransaction,
        delegate_key: Optional[DelegateKeyMaterial],
    ) -> Authorization:
        """
        Merge, hash and sign a batch on behalf of a wallet.

        Args:
            wallet_address: Safe the delegate acts for
            batch: Calls to authorize, in execution order
            delegate_key: The wallet's local delegate key

        Returns:
            The signed authorization together with the unsigned merged call

        Raises:
            SigningUnavailable: If the delegate key is missing
            RegistryUnavailable: If the delegate nonce cannot be read
        """
        if delegate_key is None:
            raise SigningUnavailable(f"No delegate key available for wallet {wallet_address}")

        wallet_address = to_checksum_address(wallet_address)
        account = Account.from_key(delegate_key.private_key.get_secret_value())
        transaction = create_multisend_call_only_tx(batch, self.multisend_address)
        nonce = await self.registry.get_nonce(account.address)

        typed_data = build_typed_data(wallet_address, transaction, nonce, self.chain_id, self.module_address)
        signed = account.sign_message(encode_typed_data(full_message=typed_data))

        logger.info("Authorization signed",
                    wallet_address=wallet_address,
                    delegate_address=account.address,
                    chain_id=self.chain_id,
                    nonce=nonce,
                    call_count=len(batch.transactions),
                    event_type="authorization_signed")

        return Authorization(
            wallet_address=wallet_address,
            delegate_address=account.address,
            to=transaction.to,
            value=transaction.value,
            data_hash="0x" + calldata_hash(transaction).hex(),
            nonce=nonce,
            delegate_signature="0x" + bytes(signed.signature).hex(),
            transaction=transaction,
        )
