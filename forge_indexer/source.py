"""Range sources: interchangeable web3 HTTP providers behind a small pool.

A ``ProviderCursor`` is the only thing that knows which provider is active.
Each consumer (a backfill worker for one event kind, the hydration loop, the
precondition check) owns its own cursor, so rotation in one place never moves
another consumer off a healthy provider.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from web3 import Web3
from web3._utils.events import get_event_data, event_abi_to_log_topic
from web3.exceptions import BlockNotFound, ContractLogicError, TransactionNotFound

from .abi import event_abis
from .util import _db_addr, _hex, _log, _parse_int


class SourceError(RuntimeError):
    """All attempts against the provider pool failed."""


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    delay: float = 1.0


@dataclass(frozen=True)
class RawEvent:
    kind: str
    block_number: int
    block_hash: str
    transaction_hash: str
    transaction_index: int
    log_index: int
    args: Dict[str, Any] = field(default_factory=dict)

    @property
    def identity(self):
        return (self.transaction_hash, self.log_index)


def _normalize_arg(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return _hex(value)
    if isinstance(value, (list, tuple)):
        return [_normalize_arg(v) for v in value]
    if isinstance(value, str) and value.startswith("0x"):
        return value.lower()
    return value


def raw_event_from_log(kind: str, event_data: Dict[str, Any]) -> RawEvent:
    args = {name: _normalize_arg(value) for name, value in dict(event_data.get("args", {})).items()}
    return RawEvent(
        kind=kind,
        block_number=_parse_int(event_data.get("blockNumber")),
        block_hash=_hex(event_data.get("blockHash")),
        transaction_hash=_hex(event_data.get("transactionHash")),
        transaction_index=_parse_int(event_data.get("transactionIndex")),
        log_index=_parse_int(event_data.get("logIndex")),
        args=args,
    )


class Web3RangeSource:
    def __init__(self, url: str, contract_address: str, abi: List[Dict[str, Any]], timeout: int = 30):
        self.url = url
        self.w3 = Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": timeout}))
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.contract = self.w3.eth.contract(address=self.contract_address, abi=abi)
        self.event_abis = event_abis(abi)
        self.topics = {kind: _hex(event_abi_to_log_topic(item)) for kind, item in self.event_abis.items()}

    def __repr__(self) -> str:
        return f"Web3RangeSource({self.url})"

    def block_number(self) -> int:
        return int(self.w3.eth.block_number)

    def get_code(self) -> bytes:
        return bytes(self.w3.eth.get_code(self.contract_address))

    def get_logs(self, kind: str, from_block: int, to_block: int) -> List[RawEvent]:
        event_abi = self.event_abis.get(kind)
        if event_abi is None:
            return []
        logs = self.w3.eth.get_logs(
            {
                "fromBlock": from_block,
                "toBlock": to_block,
                "address": self.contract_address,
                "topics": [self.topics[kind]],
            }
        )
        return [raw_event_from_log(kind, get_event_data(self.w3.codec, event_abi, log)) for log in logs]

    def get_block(self, number: int) -> Optional[Dict[str, Any]]:
        try:
            block = self.w3.eth.get_block(number)
        except BlockNotFound:
            return None
        if block is None:
            return None
        return {"timestamp": int(block.get("timestamp", 0)), "hash": _hex(block.get("hash"))}

    def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        try:
            tx = self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return None
        if tx is None:
            return None
        gas_used = 0
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
            gas_used = int(receipt.get("gasUsed", 0))
        except TransactionNotFound:
            pass
        return {
            "from": _db_addr(tx.get("from")),
            "to": _db_addr(tx.get("to")) or None,
            "value": int(tx.get("value", 0)),
            "gas_used": gas_used,
            "gas_price": int(tx.get("gasPrice") or 0),
        }

    def get_token_uri(self, token_id: int) -> Optional[str]:
        try:
            return self.contract.functions.uri(token_id).call()
        except ContractLogicError:
            return None


def _label(source: Any) -> str:
    return getattr(source, "url", None) or repr(source)


class ProviderPool:
    def __init__(self, sources: Sequence[Any]):
        if not sources:
            raise ValueError("ProviderPool needs at least one source")
        self._sources = list(sources)

    def __len__(self) -> int:
        return len(self._sources)

    def source(self, index: int) -> Any:
        return self._sources[index % len(self._sources)]

    def cursor(self, index: int = 0) -> "ProviderCursor":
        return ProviderCursor(self, index)

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], abi: List[Dict[str, Any]]) -> "ProviderPool":
        return cls(
            [
                Web3RangeSource(url, cfg["contract_address"], abi, timeout=cfg.get("http_timeout", 30))
                for url in cfg["rpc_urls"]
            ]
        )


class ProviderCursor:
    def __init__(self, pool: ProviderPool, index: int = 0):
        self.pool = pool
        self.index = index % len(pool)

    @property
    def source(self) -> Any:
        return self.pool.source(self.index)

    def rotate(self) -> Any:
        self.index = (self.index + 1) % len(self.pool)
        _log(f"Switched to RPC provider: {_label(self.source)}")
        return self.source

    def call(self, fn: Callable[[Any], Any], policy: RetryPolicy, what: str = "request") -> Any:
        last_exc: Optional[BaseException] = None
        for attempt in range(1, policy.max_attempts + 1):
            try:
                return fn(self.source)
            except Exception as exc:
                last_exc = exc
                _log(f"WARN: {what} failed on {_label(self.source)} ({attempt}/{policy.max_attempts}): {exc}")
                if attempt < policy.max_attempts:
                    self.rotate()
                    if policy.delay:
                        time.sleep(policy.delay)
        raise SourceError(f"{what} failed after {policy.max_attempts} attempts: {last_exc}") from last_exc
