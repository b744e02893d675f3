from typing import Optional

from eth_abi.packed import encode_packed

from ..core.config import settings
from ..schemas.transaction import BatchedTransaction, MetaTransaction
from .abi import encode_call

# MultiSendCallOnly rejects delegatecalls, so every packed entry is a plain call
OPERATION_CALL = 0


def encode_multisend_transactions(batch: BatchedTransaction) -> bytes:
    """
    Pack a batch the way MultiSend expects it.

    Each entry is operation (uint8) | to (address) | value (uint256) |
    data length (uint256) | data, concatenated in batch order.
    """
    return b"".join(
        encode_packed(
            ["uint8", "address", "uint256", "uint256", "bytes"],
            [OPERATION_CALL, tx.to, tx.value, len(tx.data_bytes), tx.data_bytes],
        )
        for tx in batch.transactions
    )


def create_multisend_call_only_tx(
    batch: BatchedTransaction,
    multisend_address: Optional[str] = None,
) -> MetaTransaction:
    """
    Merge a batch into one multiSend(bytes) call against MultiSendCallOnly.

    The merged call always carries value zero; per-call values travel inside the packed data.
    """
    data = encode_call("multiSend", ["bytes"], [encode_multisend_transactions(batch)])
    return MetaTransaction(
        to=multisend_address or settings.MULTISEND_CALL_ONLY_ADDRESS,
        value=0,
        data="0x" + data.hex(),
    )
