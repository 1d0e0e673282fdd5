"""Chunked historical log retrieval with provider failover.

Providers cap the block span of a single ``eth_getLogs`` call, so a range is
split into consecutive sub-ranges of at most ``max_block_range`` blocks. Each
event kind walks the sub-ranges independently with its own provider cursor.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .abi import EVENT_KINDS
from .source import ProviderCursor, ProviderPool, RawEvent, RetryPolicy, _label
from .util import _log


@dataclass(frozen=True)
class FailedRange:
    kind: str
    from_block: int
    to_block: int
    error: str


@dataclass
class BackfillResult:
    start_block: int
    end_block: int
    events: Dict[str, List[RawEvent]] = field(default_factory=dict)
    failed_ranges: List[FailedRange] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed_ranges

    def count(self) -> int:
        return sum(len(v) for v in self.events.values())


class BackfillError(RuntimeError):
    def __init__(self, failed_ranges: List[FailedRange]):
        spans = ", ".join(f"{f.kind}[{f.from_block}-{f.to_block}]" for f in failed_ranges)
        super().__init__(f"backfill incomplete, {len(failed_ranges)} sub-range(s) failed: {spans}")
        self.failed_ranges = failed_ranges


def plan_chunks(start: int, end: int, max_span: int) -> List[Tuple[int, int]]:
    """Split the inclusive range [start, end] into sub-ranges of at most max_span blocks."""
    if max_span < 1:
        raise ValueError("max_span must be positive")
    chunks = []
    current = start
    while current <= end:
        chunk_end = min(current + max_span - 1, end)
        chunks.append((current, chunk_end))
        current = chunk_end + 1
    return chunks


class BackfillScheduler:
    def __init__(
        self,
        pool: ProviderPool,
        max_block_range: int = 45000,
        policy: Optional[RetryPolicy] = None,
        chunk_delay: float = 0.1,
    ):
        self.pool = pool
        self.max_block_range = max_block_range
        self.policy = policy or RetryPolicy()
        self.chunk_delay = chunk_delay

    async def run(
        self,
        start: int,
        end: int,
        kinds: Iterable[str] = EVENT_KINDS,
        strict: bool = False,
    ) -> BackfillResult:
        kinds = list(kinds)
        chunks = plan_chunks(start, end, self.max_block_range)
        _log(
            f"Backfilling {', '.join(kinds)} over blocks {start}-{end} "
            f"in {len(chunks)} chunk(s) of <= {self.max_block_range} blocks"
        )
        outcomes = await asyncio.gather(
            *(self._fetch_kind(kind, chunks, self.pool.cursor()) for kind in kinds)
        )

        result = BackfillResult(start_block=start, end_block=end)
        for kind, (events, failed) in zip(kinds, outcomes):
            result.events[kind] = events
            result.failed_ranges.extend(failed)
            _log(f"  - {kind}: {len(events)} event(s), {len(failed)} failed chunk(s)")

        if strict and result.failed_ranges:
            raise BackfillError(result.failed_ranges)
        return result

    async def _fetch_kind(
        self, kind: str, chunks: Sequence[Tuple[int, int]], cursor: ProviderCursor
    ) -> Tuple[List[RawEvent], List[FailedRange]]:
        events: List[RawEvent] = []
        failed: List[FailedRange] = []
        for i, (lo, hi) in enumerate(chunks):
            chunk_events, error = await self._fetch_chunk(kind, cursor, lo, hi)
            if error is not None:
                failed.append(FailedRange(kind, lo, hi, error))
            else:
                events.extend(chunk_events)
            if self.chunk_delay and i < len(chunks) - 1:
                await asyncio.sleep(self.chunk_delay)
        return events, failed

    async def _fetch_chunk(
        self, kind: str, cursor: ProviderCursor, lo: int, hi: int
    ) -> Tuple[List[RawEvent], Optional[str]]:
        attempts = self.policy.max_attempts
        error = None
        for attempt in range(1, attempts + 1):
            source = cursor.source
            try:
                found = await asyncio.to_thread(source.get_logs, kind, lo, hi)
                return list(found), None
            except Exception as exc:
                error = f"{type(exc).__name__}: {exc}"
                _log(f"WARN: Retry {attempt}/{attempts} for {kind} chunk {lo}-{hi} on {_label(source)}: {exc}")
                if attempt < attempts:
                    cursor.rotate()
                    if self.policy.delay:
                        await asyncio.sleep(self.policy.delay)
        _log(f"ERROR: Failed to get {kind} events for chunk {lo}-{hi} after {attempts} attempts")
        return [], error
