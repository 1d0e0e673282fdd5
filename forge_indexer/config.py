from typing import Any, Dict

from .util import _load_json


DEFAULTS: Dict[str, Any] = {
    "rpc_urls": [],
    "contract_address": None,
    "start_block": 29970000,
    "max_block_range": 45000,
    "max_retries": 3,
    "retry_delay": 1.0,
    "chunk_delay": 0.1,
    "refresh_interval": 300,
    "ipfs_gateway": "https://ipfs.io/ipfs/",
    "http_timeout": 10,
    "db_path": "./forge_state.db",
    "abi": None,
    "burns_reduce_supply": False,
    "strict_backfill": False,
}


def normalize_config(cfg: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(DEFAULTS)
    out.update({k: v for k, v in cfg.items() if v is not None})

    urls = out.get("rpc_urls") or []
    if isinstance(urls, str):
        urls = [urls]
    rpc_http = cfg.get("rpc_http")
    if rpc_http and rpc_http not in urls:
        urls = [rpc_http] + list(urls)
    out["rpc_urls"] = list(urls)
    out.pop("rpc_http", None)

    if not out["rpc_urls"]:
        raise ValueError("config.rpc_urls is empty")
    if not out.get("contract_address"):
        raise ValueError("config.contract_address is required")

    for key in ("start_block", "max_block_range", "max_retries", "refresh_interval", "http_timeout"):
        out[key] = int(out[key])
    for key in ("retry_delay", "chunk_delay"):
        out[key] = float(out[key])
    if out["max_block_range"] < 1:
        raise ValueError("config.max_block_range must be positive")
    if out["max_retries"] < 1:
        raise ValueError("config.max_retries must be at least 1")
    return out


def load_config(path: str) -> Dict[str, Any]:
    return normalize_config(_load_json(path))
