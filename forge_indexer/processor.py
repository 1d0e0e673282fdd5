"""Event application: one ordered ForgeInventory event, one state transition.

The processor is the single writer of an ``EntityStore``. Handlers never
reorder or batch across events; a TransferBatch is expanded element by element
inside its own transition.
"""

from typing import Any, Callable, Optional

from .aggregates import AggregateMaintainer
from .entities import (
    AllEvent,
    RoleChange,
    Token,
    TokenCreation,
    TokenMetadata,
    TokenMint,
    User,
    UserInventoryItem,
    UserTokenBalance,
)
from .events import (
    ChainEvent,
    EventContext,
    MetadataRequested,
    RoleGranted,
    RoleRevoked,
    TokenCreated,
    TransferBatch,
    TransferSingle,
)
from .metadata import MetadataResolver, ResolvedMetadata
from .store import EntityStore
from .util import ZERO_ADDRESS, _log, composite_id, short_addr

MINTER_ROLE = "0x9f2df0fed2c77648de5860a4cc508cd0818c85b8b8a1ab4ceeef8d981c8956a6"
DEFAULT_ADMIN_ROLE = "0x" + "00" * 32

ROLE_NAMES = {
    MINTER_ROLE: "MINTER",
    DEFAULT_ADMIN_ROLE: "DEFAULT_ADMIN",
}


def role_name(role: str) -> str:
    return ROLE_NAMES.get((role or "").lower(), "UNKNOWN")


class EventProcessor:
    def __init__(
        self,
        store: EntityStore,
        resolver: MetadataResolver,
        token_uri: Optional[Callable[[int], Optional[str]]] = None,
        burns_reduce_supply: bool = False,
    ):
        self.store = store
        self.resolver = resolver
        self.aggregates = AggregateMaintainer(store)
        self.token_uri = token_uri
        self.burns_reduce_supply = burns_reduce_supply

    def apply(self, event: ChainEvent, ctx: EventContext) -> None:
        if isinstance(event, TokenCreated):
            self._token_created(event, ctx)
        elif isinstance(event, TransferSingle):
            self._transfer_single(event, ctx)
        elif isinstance(event, TransferBatch):
            self._transfer_batch(event, ctx)
        elif isinstance(event, (RoleGranted, RoleRevoked)):
            self._role_change(event, ctx)
        elif isinstance(event, MetadataRequested):
            self._metadata_requested(event, ctx)
        else:
            raise TypeError(f"unhandled event type: {type(event).__name__}")

    # -- handlers -----------------------------------------------------------

    def _token_created(self, event: TokenCreated, ctx: EventContext) -> None:
        token_id = str(event.token_id)
        creator = ctx.tx_from

        if self.store.exists(Token, token_id):
            _log(f"WARN: Duplicate TokenCreated for token {token_id} in {ctx.transaction_hash}, token left untouched")
        else:
            token = Token(
                id=token_id,
                token_id=event.token_id,
                token_type=event.token_type,
                category=event.category,
                sub_category=event.sub_category,
                creator=creator,
                created_at=ctx.timestamp,
                created_at_block=ctx.block_number,
                created_tx_hash=ctx.transaction_hash,
            )
            token.token_uri = self._lookup_uri(event.token_id)
            self._store_metadata(token, self.resolver.resolve(token_id, token.token_uri))
            self.store.save(token)
            self.aggregates.token_created(ctx.timestamp)

        self.store.save(
            TokenCreation(
                id=ctx.event_id,
                token=token_id,
                token_id=event.token_id,
                token_type=event.token_type,
                category=event.category,
                sub_category=event.sub_category,
                creator=creator,
                timestamp=ctx.timestamp,
                block_number=ctx.block_number,
                transaction_hash=ctx.transaction_hash,
            )
        )

        user = self._get_or_create_user(creator, ctx.timestamp)
        user.total_tokens_created += 1
        user.last_interaction = ctx.timestamp

        self._journal(
            ctx,
            "TokenCreated",
            f"Token {token_id} created in category {event.category}/{event.sub_category}",
            token_id=event.token_id,
            token_type=event.token_type,
            category=event.category,
            sub_category=event.sub_category,
            creator=creator,
        )

    def _transfer_single(self, event: TransferSingle, ctx: EventContext) -> None:
        token_id = event.token_id
        if event.from_address == ZERO_ADDRESS:
            self._mint(event.to_address, token_id, event.value, event.operator, ctx)
            self._journal(
                ctx,
                "TokenMint",
                f"Minted {event.value} of token {token_id} to {short_addr(event.to_address)}",
                token_id=token_id,
                to_address=event.to_address,
                amount=event.value,
                operator=event.operator,
            )
            return

        burned = self._move(event.from_address, event.to_address, token_id, event.value, ctx)
        if burned:
            event_type = "TokenBurn"
            description = f"Burned {event.value} of token {token_id} from {short_addr(event.from_address)}"
        else:
            event_type = "TransferSingle"
            description = (
                f"Transferred {event.value} of token {token_id} from "
                f"{short_addr(event.from_address)} to {short_addr(event.to_address)}"
            )
        self._journal(
            ctx,
            event_type,
            description,
            token_id=token_id,
            from_address=event.from_address,
            to_address=event.to_address,
            amount=event.value,
            operator=event.operator,
        )

    def _transfer_batch(self, event: TransferBatch, ctx: EventContext) -> None:
        is_mint = event.from_address == ZERO_ADDRESS
        for ordinal, (token_id, amount) in enumerate(zip(event.token_ids, event.values)):
            if is_mint:
                self._mint(event.to_address, token_id, amount, event.operator, ctx, ordinal)
            else:
                self._move(event.from_address, event.to_address, token_id, amount, ctx)

        count = len(event.token_ids)
        if is_mint:
            description = f"Batch minted {count} token types to {short_addr(event.to_address)}"
        else:
            description = (
                f"Batch transferred {count} token types from "
                f"{short_addr(event.from_address)} to {short_addr(event.to_address)}"
            )
        self._journal(
            ctx,
            "TransferBatch",
            description,
            token_ids=",".join(str(t) for t in event.token_ids),
            amounts=",".join(str(v) for v in event.values),
            from_address=event.from_address,
            to_address=event.to_address,
            operator=event.operator,
        )

    def _role_change(self, event: Any, ctx: EventContext) -> None:
        granted = isinstance(event, RoleGranted)
        name = role_name(event.role)
        if name == "UNKNOWN":
            _log(f"WARN: Unrecognized role hash {event.role} in {ctx.transaction_hash}")

        self.store.save(
            RoleChange(
                id=ctx.event_id,
                role=event.role,
                role_name=name,
                account=event.account,
                sender=event.sender,
                granted=granted,
                timestamp=ctx.timestamp,
                block_number=ctx.block_number,
                transaction_hash=ctx.transaction_hash,
            )
        )
        user = self._get_or_create_user(event.account, ctx.timestamp)
        user.last_interaction = ctx.timestamp

        if granted:
            description = f"{name} granted to {short_addr(event.account)} by {short_addr(event.sender)}"
        else:
            description = f"{name} revoked from {short_addr(event.account)} by {short_addr(event.sender)}"
        self._journal(
            ctx,
            "RoleGranted" if granted else "RoleRevoked",
            description,
            role=name,
            role_hash=event.role,
            role_name=name,
            account=event.account,
            sender=event.sender,
        )

    def _metadata_requested(self, event: MetadataRequested, ctx: EventContext) -> None:
        token_id = str(event.token_id)
        token = self.store.get(Token, token_id)
        if token is None:
            _log(f"WARN: Token not found for MetadataRequested event, tokenId: {token_id}")
        elif self.store.exists(TokenMetadata, token_id):
            _log(f"Metadata already present for token {token_id}, skipping re-resolution")
        else:
            uri = self._lookup_uri(event.token_id)
            if uri:
                token.token_uri = uri
            self._store_metadata(token, self.resolver.resolve(token_id, token.token_uri))

        self._journal(ctx, "MetadataRequested", f"Metadata requested for token {token_id}", token_id=event.token_id)

    # -- sub-transitions ----------------------------------------------------

    def _mint(
        self, to: str, token_id: int, amount: int, operator: str, ctx: EventContext, ordinal: Optional[int] = None
    ) -> None:
        """Batch elements pass their position so a repeated token id still gets its own TokenMint."""
        tid = str(token_id)
        token = self.store.get(Token, tid)
        if token is None:
            _log(f"WARN: Mint of unknown token {tid} in {ctx.transaction_hash}, balance update skipped")
            return

        self._get_or_create_user(to, ctx.timestamp)
        if ordinal is None:
            mint_id = composite_id(ctx.transaction_hash, ctx.log_index, tid)
        else:
            mint_id = composite_id(ctx.transaction_hash, ctx.log_index, ordinal, tid)
        self.store.save(
            TokenMint(
                id=mint_id,
                token=tid,
                to=to,
                amount=amount,
                timestamp=ctx.timestamp,
                block_number=ctx.block_number,
                transaction_hash=ctx.transaction_hash,
                operator=operator,
                token_name=token.name,
                token_description=token.description,
                token_image=token.image,
                token_category=token.category,
                token_sub_category=token.sub_category,
                reward_id=token.reward_id,
                token_forge_id=token.forge_id,
            )
        )
        token.current_supply += amount
        self._update_balance(to, tid, amount, ctx.timestamp)

        item, _ = self.store.load_or_create(
            UserInventoryItem,
            composite_id(to, tid),
            lambda: UserInventoryItem(
                id=composite_id(to, tid),
                user=to,
                token=tid,
                first_acquired=ctx.timestamp,
                token_type=token.token_type,
                category=token.category,
                sub_category=token.sub_category,
                reward_id=token.reward_id,
            ),
        )
        item.balance += amount
        item.last_updated = ctx.timestamp
        item.last_acquired = ctx.timestamp

        user = self._get_or_create_user(to, ctx.timestamp)
        user.total_tokens_minted += amount
        user.last_interaction = ctx.timestamp
        self.aggregates.token_minted(ctx.timestamp, amount)

    def _move(self, source: str, dest: str, token_id: int, amount: int, ctx: EventContext) -> bool:
        """Apply a non-mint transfer; returns True when it was accounted as a burn."""
        tid = str(token_id)
        token = self.store.get(Token, tid)
        if token is None:
            _log(f"WARN: Transfer of unknown token {tid} in {ctx.transaction_hash}, balance update skipped")
            return False

        self._update_balance(source, tid, -amount, ctx.timestamp)
        if self.burns_reduce_supply and dest == ZERO_ADDRESS:
            token.current_supply = max(0, token.current_supply - amount)
            self.aggregates.tokens_burned(ctx.timestamp, amount)
            return True
        self._update_balance(dest, tid, amount, ctx.timestamp)
        return False

    def _update_balance(self, address: str, token_id: str, delta: int, timestamp: int) -> None:
        balance_id = composite_id(address, token_id)
        user = self._get_or_create_user(address, timestamp)

        record = self.store.get(UserTokenBalance, balance_id)
        new_balance = (record.balance if record else 0) + delta
        if new_balance == 0:
            self.store.remove(UserTokenBalance, balance_id)
        else:
            if record is None:
                record = UserTokenBalance(id=balance_id, user=address, token=token_id)
            record.balance = new_balance
            record.last_updated = timestamp
            self.store.save(record)

        user.total_inventory_value += delta
        user.last_interaction = timestamp

    # -- helpers ------------------------------------------------------------

    def _get_or_create_user(self, address: str, timestamp: int) -> User:
        user, created = self.store.load_or_create(
            User,
            address,
            lambda: User(id=address, address=address, first_interaction=timestamp, last_interaction=timestamp),
        )
        if created:
            self.aggregates.user_created()
        return user

    def _lookup_uri(self, token_id: int) -> Optional[str]:
        if self.token_uri is None:
            return None
        try:
            return self.token_uri(token_id) or None
        except Exception as exc:
            _log(f"WARN: uri({token_id}) lookup failed: {exc}")
            return None

    def _store_metadata(self, token: Token, resolved: ResolvedMetadata) -> None:
        metadata = resolved.metadata
        self.store.save(resolved.properties)
        for attribute in resolved.attributes:
            self.store.save(attribute)
        self.store.save(metadata)

        token.metadata = metadata.id
        token.name = metadata.name
        token.description = metadata.description
        token.image = metadata.image
        token.reward_id = metadata.reward_id
        token.forge_id = resolved.forge_id

    def _journal(self, ctx: EventContext, event_type: str, description: str, **payload: Any) -> None:
        self.store.save(
            AllEvent(
                id=ctx.event_id,
                event_type=event_type,
                block_number=ctx.block_number,
                block_hash=ctx.block_hash,
                transaction_hash=ctx.transaction_hash,
                transaction_index=ctx.transaction_index,
                log_index=ctx.log_index,
                timestamp=ctx.timestamp,
                gas_used=ctx.gas_used,
                gas_price=ctx.gas_price,
                tx_from=ctx.tx_from,
                tx_to=ctx.tx_to,
                value=ctx.value,
                description=description,
                **payload,
            )
        )
        self.aggregates.record_event(ctx.timestamp)
