import json
import sys
import time
from typing import Any

from hexbytes import HexBytes


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
SECONDS_PER_DAY = 86400


def _log(msg: str) -> None:
    ts = time.strftime("%Y-%m-%d %H:%M:%S", time.gmtime())
    sys.stderr.write(f"[{ts} UTC] {msg}\n")
    sys.stderr.flush()


def _json_default(obj: Any) -> Any:
    if isinstance(obj, HexBytes):
        return _hex(obj)
    if isinstance(obj, (bytes, bytearray)):
        return "0x" + obj.hex()
    if isinstance(obj, set):
        return sorted(obj)
    return str(obj)


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, default=_json_default, ensure_ascii=True)


def _load_json(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _hex(value: Any) -> str:
    """Render bytes-like or str values as a lowercase 0x-prefixed hex string."""
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        text = bytes(value).hex()
    else:
        text = str(value)
    text = text.lower()
    if not text.startswith("0x"):
        text = "0x" + text
    return text


def _db_addr(addr: Any) -> str:
    if not addr:
        return ""
    return _hex(addr)


def _parse_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        if value.startswith("0x"):
            return int(value, 16)
        return int(value)
    return int(value)


def composite_id(*parts: Any) -> str:
    return "-".join(str(p) for p in parts)


def day_bucket(timestamp: int) -> int:
    return timestamp // SECONDS_PER_DAY


def short_addr(addr: str) -> str:
    return f"{addr[:8]}..."
