"""ForgeInventory ABI fragment and loader.

Only the events the indexer consumes and the ``uri`` view are bundled. A full
Hardhat artifact or raw ABI array can be supplied through ``config.abi``.
"""

import os
from typing import Any, Dict, List, Optional

from .util import _load_json


TOKEN_CREATED = "TokenCreated"
TRANSFER_SINGLE = "TransferSingle"
TRANSFER_BATCH = "TransferBatch"
ROLE_GRANTED = "RoleGranted"
ROLE_REVOKED = "RoleRevoked"
METADATA_REQUESTED = "MetadataRequested"

EVENT_KINDS = (
    TOKEN_CREATED,
    TRANSFER_SINGLE,
    TRANSFER_BATCH,
    ROLE_GRANTED,
    ROLE_REVOKED,
    METADATA_REQUESTED,
)


def _input(name: str, type_: str, indexed: bool = False) -> Dict[str, Any]:
    return {"name": name, "type": type_, "internalType": type_, "indexed": indexed}


def _event(name: str, inputs: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"type": "event", "name": name, "anonymous": False, "inputs": inputs}


FORGE_INVENTORY_ABI: List[Dict[str, Any]] = [
    _event(
        TOKEN_CREATED,
        [
            _input("tokenId", "uint256", True),
            _input("tokenType", "uint8"),
            _input("category", "string"),
            _input("subCategory", "string"),
        ],
    ),
    _event(
        TRANSFER_SINGLE,
        [
            _input("operator", "address", True),
            _input("from", "address", True),
            _input("to", "address", True),
            _input("id", "uint256"),
            _input("value", "uint256"),
        ],
    ),
    _event(
        TRANSFER_BATCH,
        [
            _input("operator", "address", True),
            _input("from", "address", True),
            _input("to", "address", True),
            _input("ids", "uint256[]"),
            _input("values", "uint256[]"),
        ],
    ),
    _event(
        ROLE_GRANTED,
        [
            _input("role", "bytes32", True),
            _input("account", "address", True),
            _input("sender", "address", True),
        ],
    ),
    _event(
        ROLE_REVOKED,
        [
            _input("role", "bytes32", True),
            _input("account", "address", True),
            _input("sender", "address", True),
        ],
    ),
    _event(METADATA_REQUESTED, [_input("tokenId", "uint256", True)]),
    {
        "type": "function",
        "name": "uri",
        "stateMutability": "view",
        "inputs": [{"name": "id", "type": "uint256", "internalType": "uint256"}],
        "outputs": [{"name": "", "type": "string", "internalType": "string"}],
    },
]


def _extract_abi(abi_json: Any) -> Optional[List[Dict[str, Any]]]:
    if isinstance(abi_json, list):
        return abi_json
    if isinstance(abi_json, dict) and "abi" in abi_json:
        return abi_json.get("abi")
    return None


def load_abi(abi_source: Optional[Any]) -> List[Dict[str, Any]]:
    """Return the ABI from config, falling back to the bundled fragment."""
    if abi_source is None:
        return FORGE_INVENTORY_ABI
    if isinstance(abi_source, list):
        return abi_source
    if isinstance(abi_source, str):
        if not os.path.exists(abi_source):
            raise FileNotFoundError(f"ABI path not found: {abi_source}")
        abi = _extract_abi(_load_json(abi_source))
        if abi is None:
            raise ValueError(f"No ABI in {abi_source}")
        return abi
    raise ValueError(f"Unsupported ABI source: {abi_source!r}")


def event_abis(abi: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Map each known event kind to its ABI entry."""
    out = {}
    for item in abi:
        if isinstance(item, dict) and item.get("type") == "event" and item.get("name") in EVENT_KINDS:
            out[item["name"]] = item
    return out
