"""Derived-state records, one dataclass per entity kind."""

from dataclasses import asdict, dataclass, field, fields
from typing import Any, ClassVar, Dict, List, Optional, Type


@dataclass
class Token:
    KIND: ClassVar[str] = "Token"
    id: str
    token_id: int
    token_type: int = 0
    category: str = ""
    sub_category: str = ""
    soulbound: bool = False
    max_supply: int = 0
    current_supply: int = 0
    creator: str = ""
    created_at: int = 0
    created_at_block: int = 0
    created_tx_hash: str = ""
    token_uri: Optional[str] = None
    metadata: Optional[str] = None
    name: str = ""
    description: str = ""
    image: str = ""
    reward_id: str = ""
    forge_id: str = ""


@dataclass
class TokenCreation:
    KIND: ClassVar[str] = "TokenCreation"
    id: str
    token: str
    token_id: int
    token_type: int
    category: str
    sub_category: str
    creator: str
    timestamp: int
    block_number: int
    transaction_hash: str


@dataclass
class TokenMint:
    KIND: ClassVar[str] = "TokenMint"
    id: str
    token: str
    to: str
    amount: int
    timestamp: int
    block_number: int
    transaction_hash: str
    operator: str
    token_name: str = ""
    token_description: str = ""
    token_image: str = ""
    token_category: str = ""
    token_sub_category: str = ""
    reward_id: str = ""
    token_forge_id: str = ""


@dataclass
class User:
    KIND: ClassVar[str] = "User"
    id: str
    address: str
    total_tokens_created: int = 0
    total_tokens_minted: int = 0
    first_interaction: int = 0
    last_interaction: int = 0
    total_inventory_value: int = 0


@dataclass
class UserTokenBalance:
    KIND: ClassVar[str] = "UserTokenBalance"
    id: str
    user: str
    token: str
    balance: int = 0
    last_updated: int = 0


@dataclass
class UserInventoryItem:
    KIND: ClassVar[str] = "UserInventoryItem"
    id: str
    user: str
    token: str
    balance: int = 0
    first_acquired: int = 0
    last_acquired: int = 0
    last_updated: int = 0
    token_type: int = 0
    category: str = ""
    sub_category: str = ""
    reward_id: str = ""


@dataclass
class RoleChange:
    KIND: ClassVar[str] = "RoleChange"
    id: str
    role: str
    role_name: str
    account: str
    sender: str
    granted: bool
    timestamp: int
    block_number: int
    transaction_hash: str


@dataclass
class GlobalStats:
    KIND: ClassVar[str] = "GlobalStats"
    id: str
    total_tokens: int = 0
    total_mints: int = 0
    total_users: int = 0
    total_supply: int = 0
    total_events: int = 0
    last_updated: int = 0


@dataclass
class DailyStats:
    KIND: ClassVar[str] = "DailyStats"
    id: str
    date: int
    tokens_created: int = 0
    tokens_minted: int = 0
    active_users: int = 0
    total_supply_change: int = 0


@dataclass
class AllEvent:
    KIND: ClassVar[str] = "AllEvent"
    id: str
    event_type: str
    block_number: int
    block_hash: str
    transaction_hash: str
    transaction_index: int
    log_index: int
    timestamp: int
    gas_used: int = 0
    gas_price: int = 0
    tx_from: str = ""
    tx_to: Optional[str] = None
    value: int = 0
    description: str = ""
    token_id: Optional[int] = None
    token_ids: Optional[str] = None
    amounts: Optional[str] = None
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    amount: Optional[int] = None
    operator: Optional[str] = None
    role: Optional[str] = None
    role_hash: Optional[str] = None
    role_name: Optional[str] = None
    account: Optional[str] = None
    sender: Optional[str] = None
    token_type: Optional[int] = None
    category: Optional[str] = None
    sub_category: Optional[str] = None
    creator: Optional[str] = None


@dataclass
class TokenMetadata:
    KIND: ClassVar[str] = "TokenMetadata"
    id: str
    token: str
    name: str
    description: str
    image: str = ""
    reward_id: str = ""
    properties: Optional[str] = None
    attributes: List[str] = field(default_factory=list)


@dataclass
class TokenProperties:
    KIND: ClassVar[str] = "TokenProperties"
    id: str
    metadata: str
    badge_type: str = ""
    created_by: str = ""
    reward_id: str = ""
    forge_id: str = ""


@dataclass
class TokenAttribute:
    KIND: ClassVar[str] = "TokenAttribute"
    id: str
    metadata: str
    trait_type: str
    value: str


ENTITY_TYPES: Dict[str, Type[Any]] = {
    cls.KIND: cls
    for cls in (
        Token,
        TokenCreation,
        TokenMint,
        User,
        UserTokenBalance,
        UserInventoryItem,
        RoleChange,
        GlobalStats,
        DailyStats,
        AllEvent,
        TokenMetadata,
        TokenProperties,
        TokenAttribute,
    )
}


def to_record(entity: Any) -> Dict[str, Any]:
    return asdict(entity)


def from_record(kind: str, data: Dict[str, Any]) -> Any:
    cls = ENTITY_TYPES[kind]
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in names})
