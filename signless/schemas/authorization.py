from pydantic import BaseModel

from .transaction import MetaTransaction


class Authorization(BaseModel):
    """
    A delegate-signed authorization for one merged multi-call.

    Exists only for the duration of one submission and is never persisted.
    """

    wallet_address: str
    delegate_address: str
    to: str
    value: int
    data_hash: str
    nonce: int
    delegate_signature: str
    # The unsigned multi-call the signature commits to; needed to build the relay call
    transaction: MetaTransaction
