"""
Key Vault Module for delegate key encryption at rest.

Delegate private keys are encrypted with Fernet using a key derived (PBKDF2-SHA256)
from the MASTER_ENCRYPTION_KEY and a random per-record salt. The master key never
leaves this process and nothing here performs network I/O.
"""

import base64
import secrets
from typing import Any, Dict, Optional, Tuple

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from signless.core.config import settings
from signless.core.logging_config import get_keys_logger

logger = get_keys_logger()

DEV_MASTER_KEY = "signless-dev-master-key-change-me"


class KeyVault:
    """
    Encrypts and decrypts delegate key material.

    The metadata returned by encrypt() must be stored next to the ciphertext;
    decrypt() needs it to re-derive the record key.
    """

    ALGORITHM = "fernet"
    KDF = "pbkdf2"
    KDF_ITERATIONS = 100000
    SALT_LENGTH = 16

    def __init__(self, master_key: Optional[str] = None):
        master_key = master_key or settings.MASTER_ENCRYPTION_KEY
        if not master_key:
            if settings.ENVIRONMENT.lower() in ("production", "prod", "prd"):
                raise ValueError("MASTER_ENCRYPTION_KEY must be set in production")
            logger.warning("MASTER_ENCRYPTION_KEY not set - using development key (NOT SECURE FOR PRODUCTION)",
                           event_type="master_key_fallback")
            master_key = DEV_MASTER_KEY
        self._master_key = master_key.encode()

    def _derive_key(self, salt: bytes, iterations: int) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=iterations,
            backend=default_backend()
        )
        return base64.urlsafe_b64encode(kdf.derive(self._master_key))

    def encrypt(self, data: str) -> Tuple[bytes, Dict[str, Any]]:
        """
        Encrypt data with a fresh salt.

        Args:
            data: String data to encrypt (a hex private key)

        Returns:
            Tuple of (encrypted_data, metadata)
        """
        salt = secrets.token_bytes(self.SALT_LENGTH)
        cipher = Fernet(self._derive_key(salt, self.KDF_ITERATIONS))
        encrypted_data = cipher.encrypt(data.encode())

        metadata = {
            "salt": base64.b64encode(salt).decode(),
            "algorithm": self.ALGORITHM,
            "kdf": self.KDF,
            "kdf_iterations": self.KDF_ITERATIONS,
        }
        return encrypted_data, metadata

    def decrypt(self, encrypted_data: bytes, metadata: Dict[str, Any]) -> str:
        """
        Decrypt data produced by encrypt().

        Raises:
            ValueError: If the metadata names an unsupported scheme or the ciphertext
                does not authenticate under the current master key
        """
        if metadata.get("algorithm") != self.ALGORITHM:
            raise ValueError(f"Unsupported encryption algorithm: {metadata.get('algorithm')}")

        salt = base64.b64decode(metadata["salt"])
        iterations = int(metadata.get("kdf_iterations", self.KDF_ITERATIONS))
        cipher = Fernet(self._derive_key(salt, iterations))

        try:
            return cipher.decrypt(encrypted_data).decode()
        except InvalidToken as e:
            raise ValueError("Delegate key ciphertext does not match the master key") from e


_key_vault: Optional[KeyVault] = None


def get_key_vault() -> KeyVault:
    """Lazily construct the process-wide vault so settings are read after startup."""
    global _key_vault
    if _key_vault is None:
        _key_vault = KeyVault()
    return _key_vault
