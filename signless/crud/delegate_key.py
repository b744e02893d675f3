from typing import Optional

from eth_account import Account
from eth_utils import to_checksum_address
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from ..core.errors import AlreadyExists
from ..core.key_vault import KeyVault, get_key_vault
from ..core.logging_config import get_keys_logger
from ..db.models import DelegateKey
from ..schemas.delegate_key import DelegateKeyMaterial

logger = get_keys_logger()


def normalize_private_key(private_key: str) -> str:
    """
    Return a 0x-prefixed, lowercase 32-byte hex key.

    Raises:
        ValueError: If the value is not exactly 32 bytes of hex
    """
    key = private_key.strip()
    if key.startswith("0x"):
        key = key[2:]
    if len(key) != 64 or not all(c in "0123456789abcdefABCDEF" for c in key):
        raise ValueError("Delegate private key must be 32 bytes of hex")
    return "0x" + key.lower()


class DelegateKeyStore:
    """
    Creation, lookup and deletion of the per-wallet delegate key.

    Keys are created only by explicit request, never implicitly, and at most one
    exists per wallet. Raw key bytes stay inside this process: callers get the
    delegate address, and the signer gets the decrypted material.
    """

    def __init__(self, db: AsyncSession, key_vault: Optional[KeyVault] = None):
        self.db = db
        self.key_vault = key_vault or get_key_vault()

    async def _get_row(self, wallet_address: str) -> Optional[DelegateKey]:
        result = await self.db.execute(
            select(DelegateKey).where(DelegateKey.wallet_address == to_checksum_address(wallet_address))
        )
        return result.scalars().first()

    async def create(self, wallet_address: str) -> DelegateKeyMaterial:
        """
        Generate and persist a new random delegate key for a wallet.

        Args:
            wallet_address: Wallet the key will act for

        Returns:
            The new key material

        Raises:
            AlreadyExists: If the wallet already has a stored key
        """
        wallet_address = to_checksum_address(wallet_address)
        if await self._get_row(wallet_address) is not None:
            logger.info("Delegate key already exists for wallet",
                        wallet_address=wallet_address,
                        event_type="delegate_key_exists")
            raise AlreadyExists(f"A delegate key already exists for wallet {wallet_address}")

        account = Account.create()
        private_key = normalize_private_key(account.key.hex())
        encrypted_key, metadata = self.key_vault.encrypt(private_key)

        self.db.add(DelegateKey(
            wallet_address=wallet_address,
            delegate_address=account.address,
            encrypted_private_key=encrypted_key,
            encryption_metadata=metadata,
        ))
        try:
            await self.db.commit()
        except IntegrityError as e:
            # Lost a race with a concurrent create for the same wallet
            await self.db.rollback()
            raise AlreadyExists(f"A delegate key already exists for wallet {wallet_address}") from e

        logger.info("Delegate key created",
                    wallet_address=wallet_address,
                    delegate_address=account.address,
                    event_type="delegate_key_created")
        return DelegateKeyMaterial(wallet_address=wallet_address, private_key=private_key)

    async def get(self, wallet_address: str) -> Optional[DelegateKeyMaterial]:
        """
        Load and decrypt the wallet's delegate key.

        Returns:
            The key material, or None if no key is stored or it cannot be decrypted
        """
        row = await self._get_row(wallet_address)
        if row is None:
            return None

        try:
            private_key = normalize_private_key(
                self.key_vault.decrypt(row.encrypted_private_key, row.encryption_metadata)
            )
        except (ValueError, KeyError) as e:
            logger.error("Error decrypting delegate key",
                         wallet_address=row.wallet_address,
                         error=str(e),
                         event_type="delegate_key_decryption_error")
            return None

        return DelegateKeyMaterial(wallet_address=row.wallet_address, private_key=private_key)

    async def get_delegate_address(self, wallet_address: str) -> Optional[str]:
        """Public address of the stored delegate, without decrypting it."""
        row = await self._get_row(wallet_address)
        return row.delegate_address if row is not None else None

    async def exists(self, wallet_address: str) -> bool:
        return await self._get_row(wallet_address) is not None

    async def delete(self, wallet_address: str) -> bool:
        """
        Remove the wallet's delegate key. Deleting a missing key is not an error.

        Returns:
            True if a key was deleted, False if none was stored
        """
        row = await self._get_row(wallet_address)
        if row is None:
            logger.info("No delegate key found to delete",
                        wallet_address=wallet_address,
                        event_type="delegate_key_not_found_for_deletion")
            return False

        await self.db.delete(row)
        await self.db.commit()
        logger.info("Delegate key deleted",
                    wallet_address=row.wallet_address,
                    delegate_address=row.delegate_address,
                    event_type="delegate_key_deleted")
        return True
