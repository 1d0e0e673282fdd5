"""Typed ForgeInventory events.

Each kind the contract emits has its own frozen dataclass; ``ChainEvent`` is
the union the processor dispatches over. ``EventContext`` carries the block
and transaction data every handler needs for journaling.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

from . import abi
from .source import RawEvent
from .util import _db_addr, _hex, _parse_int, composite_id


@dataclass(frozen=True)
class EventContext:
    block_number: int
    block_hash: str
    transaction_hash: str
    transaction_index: int
    log_index: int
    timestamp: int
    tx_from: str
    tx_to: Optional[str]
    value: int = 0
    gas_used: int = 0
    gas_price: int = 0

    @property
    def event_id(self) -> str:
        return composite_id(self.transaction_hash, self.log_index)


@dataclass(frozen=True)
class TokenCreated:
    token_id: int
    token_type: int
    category: str
    sub_category: str


@dataclass(frozen=True)
class TransferSingle:
    operator: str
    from_address: str
    to_address: str
    token_id: int
    value: int


@dataclass(frozen=True)
class TransferBatch:
    operator: str
    from_address: str
    to_address: str
    token_ids: Tuple[int, ...]
    values: Tuple[int, ...]


@dataclass(frozen=True)
class RoleGranted:
    role: str
    account: str
    sender: str


@dataclass(frozen=True)
class RoleRevoked:
    role: str
    account: str
    sender: str


@dataclass(frozen=True)
class MetadataRequested:
    token_id: int


ChainEvent = Union[TokenCreated, TransferSingle, TransferBatch, RoleGranted, RoleRevoked, MetadataRequested]


def _require(args: Dict[str, Any], name: str) -> Any:
    if name not in args:
        raise ValueError(f"missing event argument '{name}'")
    return args[name]


def parse_event(raw: RawEvent) -> ChainEvent:
    """Convert decoded log arguments into the matching event variant."""
    args = raw.args
    kind = raw.kind
    if kind == abi.TOKEN_CREATED:
        return TokenCreated(
            token_id=_parse_int(_require(args, "tokenId")),
            token_type=_parse_int(args.get("tokenType", 0)),
            category=str(args.get("category") or ""),
            sub_category=str(args.get("subCategory") or ""),
        )
    if kind == abi.TRANSFER_SINGLE:
        return TransferSingle(
            operator=_db_addr(args.get("operator")),
            from_address=_db_addr(_require(args, "from")),
            to_address=_db_addr(_require(args, "to")),
            token_id=_parse_int(_require(args, "id")),
            value=_parse_int(_require(args, "value")),
        )
    if kind == abi.TRANSFER_BATCH:
        ids = tuple(_parse_int(v) for v in _require(args, "ids"))
        values = tuple(_parse_int(v) for v in _require(args, "values"))
        if len(ids) != len(values):
            raise ValueError(f"TransferBatch ids/values length mismatch ({len(ids)} != {len(values)})")
        return TransferBatch(
            operator=_db_addr(args.get("operator")),
            from_address=_db_addr(_require(args, "from")),
            to_address=_db_addr(_require(args, "to")),
            token_ids=ids,
            values=values,
        )
    if kind in (abi.ROLE_GRANTED, abi.ROLE_REVOKED):
        cls = RoleGranted if kind == abi.ROLE_GRANTED else RoleRevoked
        return cls(
            role=_hex(_require(args, "role")),
            account=_db_addr(_require(args, "account")),
            sender=_db_addr(args.get("sender")),
        )
    if kind == abi.METADATA_REQUESTED:
        return MetadataRequested(token_id=_parse_int(_require(args, "tokenId")))
    raise ValueError(f"unknown event kind: {kind}")


def build_context(raw: RawEvent, block: Dict[str, Any], tx: Dict[str, Any]) -> EventContext:
    return EventContext(
        block_number=raw.block_number,
        block_hash=raw.block_hash or _hex(block.get("hash")),
        transaction_hash=raw.transaction_hash,
        transaction_index=raw.transaction_index,
        log_index=raw.log_index,
        timestamp=int(block.get("timestamp", 0)),
        tx_from=_db_addr(tx.get("from")),
        tx_to=_db_addr(tx.get("to")) or None,
        value=_parse_int(tx.get("value", 0)),
        gas_used=_parse_int(tx.get("gas_used", 0)),
        gas_price=_parse_int(tx.get("gas_price", 0)),
    )
