import pytest
import sys
from datetime import datetime, timezone
from pathlib import Path

from eth_abi import decode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

# Add the project root to the Python path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from signless.core.config import settings
from signless.services.registration import (
    build_register_delegate_tx,
    build_revoke_delegate_tx,
    default_expiry,
)

MODULE = "0xb9Cd1dd44799f508769040156962E01ADf97e330"
DELEGATE = to_checksum_address("0x000000000000000000000000000000000000000A")


def _inner_call(merged):
    """Unpack the single call wrapped in a multiSend(bytes) payload."""
    (packed,) = decode(["bytes"], merged.data_bytes[4:])
    to = "0x" + packed[1:21].hex()
    length = int.from_bytes(packed[53:85], "big")
    return to, packed[85:85 + length]


def test_register_wraps_module_call():
    merged = build_register_delegate_tx(100, DELEGATE, expiry=1700000000)

    assert merged.to == settings.MULTISEND_CALL_ONLY_ADDRESS
    to, data = _inner_call(merged)
    assert to.lower() == MODULE.lower()
    assert data[:4] == function_signature_to_4byte_selector("registerDelegateSigner(address,uint64)")
    delegate, expiry = decode(["address", "uint64"], data[4:])
    assert delegate.lower() == DELEGATE.lower()
    assert expiry == 1700000000


def test_register_defaults_expiry_to_ttl():
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert default_expiry(now) == int(now.timestamp()) + settings.DEFAULT_DELEGATE_TTL_DAYS * 86400


def test_revoke_wraps_module_call():
    merged = build_revoke_delegate_tx(1, 2)

    to, data = _inner_call(merged)
    assert to.lower() == MODULE.lower()
    assert data[:4] == function_signature_to_4byte_selector("revokeDelegateSigner(uint256)")
    assert decode(["uint256"], data[4:]) == (2,)


def test_unsupported_chain_rejected():
    with pytest.raises(ValueError):
        build_register_delegate_tx(5, DELEGATE)
    with pytest.raises(ValueError):
        build_revoke_delegate_tx(5, 0)
