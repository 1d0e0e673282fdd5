"""Full-rescan indexing pipeline.

A rescan fetches every ForgeInventory event from ``start_block`` to the chain
head, orders it, hydrates each event with its block and transaction, and
applies it to a fresh ``EntityStore``. The new store replaces the served one
only once the whole sequence has been applied.
"""

import asyncio
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .abi import EVENT_KINDS, load_abi
from .backfill import BackfillScheduler, FailedRange
from .events import build_context, parse_event
from .metadata import HttpClient, IpfsClient, MetadataResolver
from .ordering import order_events
from .processor import EventProcessor
from .source import ProviderCursor, ProviderPool, RawEvent, RetryPolicy, SourceError
from .store import EntityStore
from .util import _log


class PreconditionError(RuntimeError):
    """The configured contract cannot be reached or has no code."""


@dataclass
class RescanReport:
    start_block: int
    end_block: int
    fetched: int = 0
    applied: int = 0
    skipped: int = 0
    failed: int = 0
    failed_ranges: List[FailedRange] = field(default_factory=list)
    metadata_failures: List[Tuple[str, str]] = field(default_factory=list)
    published: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EventIndexer:
    def __init__(
        self,
        config: Dict[str, Any],
        pool: Optional[ProviderPool] = None,
        resolver: Optional[MetadataResolver] = None,
    ):
        self.config = config
        self.contract_address = config.get("contract_address")
        self.db_path = config.get("db_path")
        self.start_block = int(config.get("start_block", 0))
        self.refresh_interval = int(config.get("refresh_interval", 300))
        self.strict_backfill = bool(config.get("strict_backfill", False))
        self.policy = RetryPolicy(
            max_attempts=int(config.get("max_retries", 3)),
            delay=float(config.get("retry_delay", 1.0)),
        )

        self.abi = load_abi(config.get("abi"))
        self.pool = pool or ProviderPool.from_config(config, self.abi)
        self.scheduler = BackfillScheduler(
            self.pool,
            max_block_range=int(config.get("max_block_range", 45000)),
            policy=self.policy,
            chunk_delay=float(config.get("chunk_delay", 0.1)),
        )
        if resolver is None:
            http = HttpClient(timeout=config.get("http_timeout", 10))
            resolver = MetadataResolver(IpfsClient(config.get("ipfs_gateway", "https://ipfs.io/ipfs/"), http), http)
        self.resolver = resolver

        self.store = EntityStore()
        self.last_report: Optional[RescanReport] = None
        self._block_cache: Dict[int, Dict[str, Any]] = {}
        self._tx_cache: Dict[str, Dict[str, Any]] = {}

    async def start(self) -> None:
        await self.check_preconditions()
        await self.rescan()
        await self._refresh_loop()

    async def check_preconditions(self) -> None:
        cursor = self.pool.cursor()
        try:
            code = await asyncio.to_thread(cursor.call, lambda s: s.get_code(), self.policy, "eth_getCode")
        except SourceError as exc:
            raise PreconditionError(f"No RPC provider reachable: {exc}") from exc
        if not code:
            raise PreconditionError(f"No contract found at {self.contract_address} on this network")
        _log(f"Contract code found at {self.contract_address}")

    async def rescan(
        self,
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
        strict: Optional[bool] = None,
    ) -> RescanReport:
        start = self.start_block if from_block is None else from_block
        strict = self.strict_backfill if strict is None else strict
        cursor = self.pool.cursor()
        if to_block is None:
            to_block = await asyncio.to_thread(cursor.call, lambda s: s.block_number(), self.policy, "eth_blockNumber")
        _log(f"Rescanning blocks {start}-{to_block}")

        report = RescanReport(start_block=start, end_block=to_block)
        self.resolver.failures.clear()
        ordered: List[RawEvent] = []
        if start <= to_block:
            result = await self.scheduler.run(start, to_block, EVENT_KINDS, strict=strict)
            if not result.complete:
                _log(f"WARN: {len(result.failed_ranges)} chunk(s) could not be fetched, state will be partial")
            report.failed_ranges = list(result.failed_ranges)
            ordered = order_events(result.events)
            _log(f"Fetched {result.count()} log(s), {len(ordered)} after de-duplication")
        report.fetched = len(ordered)

        store = EntityStore()
        processor = EventProcessor(
            store,
            self.resolver,
            token_uri=lambda token_id: cursor.call(
                lambda s: s.get_token_uri(token_id), self.policy, f"uri({token_id})"
            ),
            burns_reduce_supply=bool(self.config.get("burns_reduce_supply", False)),
        )
        for i, raw in enumerate(ordered, start=1):
            _log(f"Processing event {i}/{len(ordered)}: {raw.kind} - {raw.transaction_hash}")
            await self.process_event(processor, raw, cursor, report)

        report.metadata_failures = list(self.resolver.failures)
        self.resolver.failures.clear()
        self.last_report = report

        # only a scan from start_block re-derives the whole state
        if start > self.start_block or start > to_block:
            _log(
                f"WARN: Blocks {start}-{to_block} do not cover history from start_block {self.start_block}, "
                "served state and snapshot left unchanged"
            )
        else:
            self.store = store
            report.published = True
            if self.db_path:
                store.save_snapshot(self.db_path, last_block=to_block)
        _log(
            f"Rescan done: {report.applied} applied, {report.skipped} skipped, "
            f"{report.failed} failed, {len(report.failed_ranges)} failed chunk(s)"
        )
        return report

    async def process_event(
        self, processor: EventProcessor, raw: RawEvent, cursor: ProviderCursor, report: RescanReport
    ) -> None:
        try:
            event = parse_event(raw)
        except ValueError as exc:
            _log(f"WARN: Malformed {raw.kind} log {raw.transaction_hash}-{raw.log_index}: {exc}")
            report.failed += 1
            return

        block = await self._get_block(cursor, raw.block_number)
        tx = await self._get_transaction(cursor, raw.transaction_hash)
        if block is None or tx is None:
            _log(f"WARN: Missing block or transaction data for {raw.transaction_hash}, skipping...")
            report.skipped += 1
            return

        ctx = build_context(raw, block, tx)
        try:
            await asyncio.to_thread(processor.apply, event, ctx)
        except Exception as exc:
            _log(f"ERROR: Error processing {raw.kind} event {raw.transaction_hash}: {exc}")
            report.failed += 1
            return
        report.applied += 1

    async def _get_block(self, cursor: ProviderCursor, number: int) -> Optional[Dict[str, Any]]:
        if number in self._block_cache:
            return self._block_cache[number]
        try:
            block = await asyncio.to_thread(cursor.call, lambda s: s.get_block(number), self.policy, f"block {number}")
        except SourceError:
            return None
        if block is not None:
            self._block_cache[number] = block
        return block

    async def _get_transaction(self, cursor: ProviderCursor, tx_hash: str) -> Optional[Dict[str, Any]]:
        if tx_hash in self._tx_cache:
            return self._tx_cache[tx_hash]
        try:
            tx = await asyncio.to_thread(
                cursor.call, lambda s: s.get_transaction(tx_hash), self.policy, f"transaction {tx_hash}"
            )
        except SourceError:
            return None
        if tx is not None:
            self._tx_cache[tx_hash] = tx
        return tx

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.refresh_interval)
            try:
                await self.rescan()
            except Exception as exc:
                _log(f"Data refresh failed: {exc}")
