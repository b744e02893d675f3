from typing import Tuple, Union

from eth_utils import is_hex, to_checksum_address
from pydantic import BaseModel, Field, field_validator


class MetaTransaction(BaseModel):
    """A single call: recipient, wei value and hex calldata."""

    to: str = Field(..., description="Recipient address")
    value: int = Field(0, ge=0, description="Wei value (decimal strings accepted)")
    data: str = Field("0x", description="Hex encoded calldata")

    @field_validator("to", mode="before")
    def checksum_to(cls, v: str) -> str:
        try:
            return to_checksum_address(v)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid address: {v}") from e

    @field_validator("value", mode="before")
    def parse_value(cls, v: Union[int, str]) -> int:
        if isinstance(v, str):
            return int(v, 16) if v.startswith("0x") else int(v or "0")
        return v

    @field_validator("data", mode="before")
    def normalize_data(cls, v: str) -> str:
        if not v:
            return "0x"
        if not isinstance(v, str):
            raise ValueError("data must be a hex string")
        if not v.startswith("0x"):
            v = "0x" + v
        if not is_hex(v) or len(v) % 2:
            raise ValueError("data must be whole hex encoded bytes")
        return v.lower()

    @property
    def data_bytes(self) -> bytes:
        return bytes.fromhex(self.data[2:])

    class Config:
        frozen = True


class BatchedTransaction(BaseModel):
    """Ordered calls executed as one multi-call; order is part of its identity."""

    transactions: Tuple[MetaTransaction, ...] = Field(..., min_length=1)

    @classmethod
    def of(cls, *txs: Union[MetaTransaction, dict]) -> "BatchedTransaction":
        return cls(transactions=tuple(txs))

    class Config:
        frozen = True
