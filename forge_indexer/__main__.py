"""ForgeInventory indexer + derived state.

Usage:
  python -m forge_indexer --config config.json run
  python -m forge_indexer --config config.json backfill --from-block 29970000 --strict
  python -m forge_indexer --config config.json query Token --order-by created_at --order-direction desc
  python -m forge_indexer --config config.json query TokenMint --where to=0xabc... --first 20
  python -m forge_indexer --config config.json get User 0xabc...
  python -m forge_indexer --config config.json stats
"""

import argparse
import asyncio
import os
import sys
from typing import Any, Dict, List, Optional

from .aggregates import GLOBAL_STATS_ID
from .backfill import BackfillError
from .config import load_config
from .entities import DailyStats, ENTITY_TYPES, GlobalStats, to_record
from .indexer import EventIndexer, PreconditionError
from .store import EntityStore, read_sync_state
from .util import _json_dumps, _log


def _parse_where(pairs: Optional[List[str]]) -> Dict[str, Any]:
    where: Dict[str, Any] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"--where expects key=value, got {pair!r}")
        if key.endswith("_in"):
            where[key] = [v for v in value.split(",") if v]
        else:
            where[key] = value
    return where


def _open_snapshot(db_path: str) -> EntityStore:
    if not os.path.exists(db_path):
        raise FileNotFoundError(f"No snapshot at {db_path}; run a backfill first")
    return EntityStore.load_snapshot(db_path)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="ForgeInventory Event Indexer")
    parser.add_argument("--config", default="config.json", help="Path to config JSON")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Index from start_block and refresh periodically")

    backfill_parser = sub.add_parser("backfill", help="Single full rescan")
    backfill_parser.add_argument("--from-block", type=int, default=None)
    backfill_parser.add_argument("--to-block", type=int, default=None)
    backfill_parser.add_argument("--strict", action="store_true", help="Fail if any chunk cannot be fetched")

    query_parser = sub.add_parser("query", help="List entities from the snapshot")
    query_parser.add_argument("kind", choices=sorted(ENTITY_TYPES))
    query_parser.add_argument("--first", type=int, default=100)
    query_parser.add_argument("--skip", type=int, default=0)
    query_parser.add_argument("--order-by", default=None)
    query_parser.add_argument("--order-direction", choices=("asc", "desc"), default="asc")
    query_parser.add_argument("--where", action="append", help="Filter as key=value, repeatable")

    get_parser = sub.add_parser("get", help="Point lookup from the snapshot")
    get_parser.add_argument("kind", choices=sorted(ENTITY_TYPES))
    get_parser.add_argument("id")

    sub.add_parser("stats", help="Global and latest daily stats from the snapshot")

    args = parser.parse_args(argv)
    cfg = load_config(args.config)

    if args.command == "run":
        indexer = EventIndexer(cfg)
        try:
            asyncio.run(indexer.start())
        except PreconditionError as exc:
            _log(f"FATAL: {exc}")
            return 1
        return 0

    if args.command == "backfill":
        async def _run_backfill():
            indexer = EventIndexer(cfg)
            await indexer.check_preconditions()
            return await indexer.rescan(args.from_block, args.to_block, strict=args.strict or None)

        try:
            report = asyncio.run(_run_backfill())
        except (PreconditionError, BackfillError) as exc:
            _log(f"FATAL: {exc}")
            return 1
        print(_json_dumps(report.to_dict()))
        return 0

    store = _open_snapshot(cfg["db_path"])

    if args.command == "query":
        rows = store.query(
            args.kind,
            first=args.first,
            skip=args.skip,
            order_by=args.order_by,
            order_direction=args.order_direction,
            where=_parse_where(args.where),
        )
        print(_json_dumps([to_record(row) for row in rows]))
        return 0

    if args.command == "get":
        entity = store.get(args.kind, args.id)
        if entity is None:
            _log(f"{args.kind} {args.id} not found")
            return 1
        print(_json_dumps(to_record(entity)))
        return 0

    if args.command == "stats":
        global_stats = store.get(GlobalStats, GLOBAL_STATS_ID)
        latest_day = store.query(DailyStats, first=1, order_by="date", order_direction="desc")
        print(
            _json_dumps(
                {
                    "last_processed_block": read_sync_state(cfg["db_path"]),
                    "global": to_record(global_stats) if global_stats else None,
                    "latest_day": to_record(latest_day[0]) if latest_day else None,
                }
            )
        )
        return 0

    return 2


if __name__ == "__main__":
    sys.exit(main())
