"""Contract ABIs and call encoding for the Signless module and the Safe wallet."""

from typing import Any, Sequence

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector


def _fn(name, inputs, outputs=(), mutability="nonpayable"):
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
    }


SIGNLESS_MODULE_ABI = [
    _fn("isValidDelegate", [("safe", "address"), ("delegate", "address")], [("", "bool")], "view"),
    _fn("registerDelegateSigner", [("delegate", "address"), ("expiry", "uint64")]),
    _fn("revokeDelegateSigner", [("delegateIndex", "uint256")]),
    _fn("getDelegateSignersCount", [("safe", "address")], [("", "uint256")], "view"),
    _fn(
        "getDelegateSignersPaginated",
        [("safe", "address"), ("offset", "uint256"), ("maxPageSize", "uint256")],
        [("signers", "address[]")],
        "view",
    ),
    _fn("getNonce", [("user", "address")], [("", "uint256")], "view"),
    _fn(
        "exec",
        [
            ("delegate", "address"),
            ("safe", "address"),
            ("to", "address"),
            ("value", "uint256"),
            ("data", "bytes"),
            ("sig", "bytes"),
        ],
    ),
    _fn(
        "execViaRelay",
        [
            ("maxFee", "uint256"),
            ("delegate", "address"),
            ("safe", "address"),
            ("to", "address"),
            ("value", "uint256"),
            ("data", "bytes"),
            ("sig", "bytes"),
        ],
    ),
]

SAFE_ABI = [
    _fn("isModuleEnabled", [("module", "address")], [("", "bool")], "view"),
]


def encode_call(name: str, types: Sequence[str], args: Sequence[Any]) -> bytes:
    """ABI-encode a call: 4-byte selector of name(types) followed by the encoded args."""
    selector = function_signature_to_4byte_selector(f"{name}({','.join(types)})")
    return selector + encode(list(types), list(args))
