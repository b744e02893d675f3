from typing import List, Optional

from eth_account import Account
from pydantic import BaseModel, Field, SecretStr


class DelegateKeyMaterial(BaseModel):
    """Decrypted delegate key for one wallet; only the signer reads the secret."""

    wallet_address: str
    private_key: SecretStr

    @property
    def delegate_address(self) -> str:
        return Account.from_key(self.private_key.get_secret_value()).address


class DelegateKeyCreated(BaseModel):
    wallet_address: str
    delegate_address: str


class DelegateKeyStatus(BaseModel):
    """Local key presence plus on-chain validity (None when it could not be determined)."""

    wallet_address: str
    has_key: bool
    delegate_address: Optional[str] = None
    is_valid: Optional[bool] = None


class RegisteredDelegates(BaseModel):
    wallet_address: str
    chain_id: int
    delegates: List[str] = Field(default_factory=list)


class RegisterDelegateRequest(BaseModel):
    delegate_address: Optional[str] = Field(None, description="Defaults to the locally stored delegate")
    expiry: Optional[int] = Field(None, description="Unix seconds; defaults to now + DEFAULT_DELEGATE_TTL_DAYS")


class RevokeDelegateRequest(BaseModel):
    delegate_index: int = Field(..., ge=0, description="Position in the registry listing")
