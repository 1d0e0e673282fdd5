"""In-memory entity store with subgraph-style read queries and sqlite snapshots.

Every entity kind is a plain ``{id: record}`` mapping. The store is owned by a
single writer (the event processor); readers either share the object after a
rescan completes or load the persisted snapshot.
"""

import json
import sqlite3
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, Union

from .entities import ENTITY_TYPES, from_record, to_record
from .util import _json_dumps

MAX_PAGE_SIZE = 1000

KindRef = Union[str, Type[Any]]

_WHERE_SUFFIXES = (
    "_contains_nocase",
    "_contains",
    "_not_in",
    "_not",
    "_gte",
    "_lte",
    "_gt",
    "_lt",
    "_in",
)


def _kind_name(kind: KindRef) -> str:
    name = kind if isinstance(kind, str) else getattr(kind, "KIND", None)
    if name not in ENTITY_TYPES:
        raise KeyError(f"unknown entity kind: {kind!r}")
    return name


def _coerce(sample: Any, value: Any) -> Any:
    """Bring a filter value (often a CLI string) to the type of the stored field."""
    if isinstance(value, (list, tuple)):
        return [_coerce(sample, v) for v in value]
    if isinstance(sample, bool):
        if isinstance(value, str):
            return value.lower() in ("1", "true", "yes")
        return bool(value)
    if isinstance(sample, int) and isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    if isinstance(value, str) and value.startswith("0x"):
        return value.lower()
    return value


def _matches(actual: Any, op: str, expected: Any) -> bool:
    if op == "eq":
        return actual == expected
    if op == "not":
        return actual != expected
    if op == "in":
        return actual in expected
    if op == "not_in":
        return actual not in expected
    if actual is None:
        return False
    if op == "contains":
        return str(expected) in str(actual)
    if op == "contains_nocase":
        return str(expected).lower() in str(actual).lower()
    if op == "gt":
        return actual > expected
    if op == "gte":
        return actual >= expected
    if op == "lt":
        return actual < expected
    if op == "lte":
        return actual <= expected
    raise ValueError(f"unsupported filter operator: {op}")


class EntityStore:
    def __init__(self):
        self._collections: Dict[str, Dict[str, Any]] = {kind: {} for kind in ENTITY_TYPES}

    def get(self, kind: KindRef, entity_id: str) -> Optional[Any]:
        return self._collections[_kind_name(kind)].get(entity_id)

    def exists(self, kind: KindRef, entity_id: str) -> bool:
        return entity_id in self._collections[_kind_name(kind)]

    def load_or_create(self, kind: KindRef, entity_id: str, factory: Callable[[], Any]) -> Tuple[Any, bool]:
        """Return (entity, created); a new entity from ``factory`` is saved immediately."""
        existing = self.get(kind, entity_id)
        if existing is not None:
            return existing, False
        entity = factory()
        self.save(entity)
        return entity, True

    def save(self, entity: Any) -> Any:
        self._collections[_kind_name(type(entity))][entity.id] = entity
        return entity

    def remove(self, kind: KindRef, entity_id: str) -> bool:
        return self._collections[_kind_name(kind)].pop(entity_id, None) is not None

    def all(self, kind: KindRef) -> List[Any]:
        return list(self._collections[_kind_name(kind)].values())

    def count(self, kind: KindRef) -> int:
        return len(self._collections[_kind_name(kind)])

    def query(
        self,
        kind: KindRef,
        first: int = 100,
        skip: int = 0,
        order_by: Optional[str] = None,
        order_direction: str = "asc",
        where: Optional[Dict[str, Any]] = None,
    ) -> List[Any]:
        name = _kind_name(kind)
        if first < 0 or skip < 0:
            raise ValueError("first and skip must be non-negative")
        if order_direction not in ("asc", "desc"):
            raise ValueError(f"orderDirection must be 'asc' or 'desc', got {order_direction!r}")
        first = min(first, MAX_PAGE_SIZE)

        field_names = set(ENTITY_TYPES[name].__dataclass_fields__)
        rows = sorted(self._collections[name].values(), key=lambda e: e.id)
        for key, expected in (where or {}).items():
            field_name, op = self._parse_where_key(key, field_names)
            rows = [
                row
                for row in rows
                if _matches(getattr(row, field_name), op, _coerce(getattr(row, field_name), expected))
            ]

        if order_by:
            if order_by not in field_names:
                raise ValueError(f"{name} has no field {order_by!r}")
            rows.sort(
                key=lambda e: (getattr(e, order_by) is not None, getattr(e, order_by)),
                reverse=order_direction == "desc",
            )
        elif order_direction == "desc":
            rows.reverse()
        return rows[skip : skip + first]

    @staticmethod
    def _parse_where_key(key: str, field_names) -> Tuple[str, str]:
        if key in field_names:
            return key, "eq"
        for suffix in _WHERE_SUFFIXES:
            if key.endswith(suffix) and key[: -len(suffix)] in field_names:
                return key[: -len(suffix)], suffix[1:]
        raise ValueError(f"unsupported where key: {key!r}")

    def save_snapshot(self, path: str, last_block: Optional[int] = None) -> None:
        conn = sqlite3.connect(path)
        try:
            cur = conn.cursor()
            for kind, collection in self._collections.items():
                cur.execute(f'CREATE TABLE IF NOT EXISTS "{kind}" (id TEXT PRIMARY KEY, data TEXT NOT NULL)')
                cur.execute(f'DELETE FROM "{kind}"')
                cur.executemany(
                    f'INSERT INTO "{kind}" (id, data) VALUES (?, ?)',
                    [(entity_id, _json_dumps(to_record(entity))) for entity_id, entity in collection.items()],
                )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_state (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    last_processed_block INTEGER,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            cur.execute(
                "INSERT OR REPLACE INTO sync_state (id, last_processed_block, updated_at) "
                "VALUES (1, ?, CURRENT_TIMESTAMP)",
                (last_block,),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @classmethod
    def load_snapshot(cls, path: str) -> "EntityStore":
        store = cls()
        conn = sqlite3.connect(path)
        try:
            cur = conn.cursor()
            for kind in ENTITY_TYPES:
                try:
                    rows = cur.execute(f'SELECT id, data FROM "{kind}"').fetchall()
                except sqlite3.OperationalError:
                    continue
                for entity_id, data in rows:
                    store._collections[kind][entity_id] = from_record(kind, json.loads(data))
        finally:
            conn.close()
        return store


def read_sync_state(path: str) -> Optional[int]:
    conn = sqlite3.connect(path)
    try:
        row = conn.execute("SELECT last_processed_block FROM sync_state WHERE id = 1").fetchone()
    except sqlite3.OperationalError:
        return None
    finally:
        conn.close()
    return row[0] if row else None
