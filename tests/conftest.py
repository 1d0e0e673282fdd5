"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import pytest

from forge_indexer.metadata import MetadataResolver
from forge_indexer.processor import EventProcessor
from forge_indexer.store import EntityStore

from helpers import StubHttp, StubIpfs


@pytest.fixture
def store() -> EntityStore:
    return EntityStore()


@pytest.fixture
def http() -> StubHttp:
    return StubHttp()


@pytest.fixture
def ipfs() -> StubIpfs:
    return StubIpfs()


@pytest.fixture
def resolver(ipfs, http) -> MetadataResolver:
    return MetadataResolver(ipfs=ipfs, http=http)


@pytest.fixture
def processor(store, resolver) -> EventProcessor:
    return EventProcessor(store, resolver)


@pytest.fixture
def fast_config(tmp_path) -> dict:
    """Indexer config with zero delays and a throwaway snapshot path."""
    return {
        "rpc_urls": ["fake://primary", "fake://secondary"],
        "contract_address": "0x" + "dd" * 20,
        "start_block": 1,
        "max_block_range": 10,
        "max_retries": 3,
        "retry_delay": 0,
        "chunk_delay": 0,
        "refresh_interval": 300,
        "db_path": str(tmp_path / "state.db"),
    }
