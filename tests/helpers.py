"""Fakes shared by the test modules (no network, no web3 providers)."""

from __future__ import annotations

import asyncio
import threading

from forge_indexer import abi
from forge_indexer.entities import Token, UserTokenBalance
from forge_indexer.events import EventContext
from forge_indexer.metadata import HttpResponse
from forge_indexer.source import RawEvent
from forge_indexer.util import ZERO_ADDRESS

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20
OPERATOR = "0x" + "0f" * 20
CONTRACT = "0x" + "dd" * 20
BASE_TS = 1_700_000_000


def run(coro):
    """Run a coroutine to completion without an async pytest plugin."""
    return asyncio.run(coro)


def tx_hash(block: int, log_index: int) -> str:
    return "0x" + f"{block:032x}{log_index:032x}"


def raw(kind: str, block: int, log_index: int, tx: str | None = None, **args) -> RawEvent:
    return RawEvent(
        kind=kind,
        block_number=block,
        block_hash=f"0xblock{block}",
        transaction_hash=tx or tx_hash(block, log_index),
        transaction_index=0,
        log_index=log_index,
        args=args,
    )


def created(block, log_index, token_id, category="Badges", sub_category="Forge", token_type=1):
    return raw(
        abi.TOKEN_CREATED, block, log_index,
        tokenId=token_id, tokenType=token_type, category=category, subCategory=sub_category,
    )


def single(block, log_index, frm, to, token_id, value):
    return raw(abi.TRANSFER_SINGLE, block, log_index, operator=OPERATOR, **{"from": frm, "to": to, "id": token_id, "value": value})


def batch(block, log_index, frm, to, ids, values):
    return raw(abi.TRANSFER_BATCH, block, log_index, operator=OPERATOR, **{"from": frm, "to": to, "ids": ids, "values": values})


def mint(block, log_index, to, token_id, value):
    return single(block, log_index, ZERO_ADDRESS, to, token_id, value)


def context(block: int = 1, log_index: int = 0, timestamp: int | None = None, tx_from: str = ALICE) -> EventContext:
    return EventContext(
        block_number=block,
        block_hash=f"0xblock{block}",
        transaction_hash=tx_hash(block, log_index),
        transaction_index=0,
        log_index=log_index,
        timestamp=BASE_TS + block * 12 if timestamp is None else timestamp,
        tx_from=tx_from,
        tx_to=CONTRACT,
        gas_used=50_000,
        gas_price=1_000_000,
    )


def assert_balances_consistent(store) -> None:
    """Every token's balances add up to its supply and no zero balance row exists."""
    totals = {}
    for record in store.all(UserTokenBalance):
        assert record.balance != 0, f"zero balance row {record.id}"
        totals[record.token] = totals.get(record.token, 0) + record.balance
    for token in store.all(Token):
        assert totals.get(token.id, 0) == token.current_supply, f"token {token.id}"


class FakeSource:
    """In-memory stand-in for Web3RangeSource."""

    def __init__(
        self,
        url: str = "fake://primary",
        events=(),
        head: int = 100,
        code: bytes = b"\x60\x80\x60\x40",
        uris=None,
        fail_logs: bool = False,
        fail_ranges=(),
        missing_blocks=(),
        missing_txs=(),
        tx_from: str = ALICE,
    ):
        self.url = url
        self.events = list(events)
        self.head = head
        self.code = code
        self.uris = dict(uris or {})
        self.fail_logs = fail_logs
        self.fail_ranges = set(fail_ranges)
        self.missing_blocks = set(missing_blocks)
        self.missing_txs = set(missing_txs)
        self.tx_from = tx_from
        self.log_calls = []
        self._lock = threading.Lock()

    def block_number(self) -> int:
        return self.head

    def get_code(self) -> bytes:
        if self.fail_logs:
            raise ConnectionError(f"{self.url} unreachable")
        return self.code

    def get_logs(self, kind, from_block, to_block):
        with self._lock:
            self.log_calls.append((kind, from_block, to_block))
        if self.fail_logs or (from_block, to_block) in self.fail_ranges:
            raise ConnectionError(f"{self.url} timed out")
        return [e for e in self.events if e.kind == kind and from_block <= e.block_number <= to_block]

    def get_block(self, number):
        if number in self.missing_blocks:
            return None
        return {"timestamp": BASE_TS + number * 12, "hash": f"0xblock{number}"}

    def get_transaction(self, tx):
        if tx in self.missing_txs:
            return None
        return {"from": self.tx_from, "to": CONTRACT, "value": 0, "gas_used": 50_000, "gas_price": 1_000_000}

    def get_token_uri(self, token_id):
        return self.uris.get(token_id)


class StubHttp:
    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.requested = []

    def get(self, url):
        self.requested.append(url)
        return self.responses.get(url)


class StubIpfs:
    def __init__(self, contents=None):
        self.contents = dict(contents or {})
        self.requested = []

    def get(self, cid):
        self.requested.append(cid)
        return self.contents.get(cid)


def ok(body: bytes) -> HttpResponse:
    return HttpResponse(status=200, body=body)
