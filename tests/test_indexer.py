"""
tests/test_indexer.py — End-to-End Rescan Tests
===============================================

Drives EventIndexer against in-memory sources: fetch, order, hydrate, apply
and persist, plus the CLI read commands over the resulting snapshot.
"""

from __future__ import annotations

import json

import pytest

from forge_indexer.__main__ import main
from forge_indexer.entities import ENTITY_TYPES, AllEvent, GlobalStats, Token, TokenMint, UserTokenBalance, to_record
from forge_indexer.indexer import EventIndexer, PreconditionError
from forge_indexer.metadata import MetadataResolver
from forge_indexer.source import ProviderPool
from forge_indexer.store import EntityStore, read_sync_state
from forge_indexer.util import ZERO_ADDRESS

from helpers import (
    ALICE,
    BOB,
    FakeSource,
    StubHttp,
    assert_balances_consistent,
    batch,
    created,
    mint,
    ok,
    run,
    single,
    tx_hash,
)

HISTORY = [
    created(3, 0, 1),
    created(3, 1, 2),
    mint(4, 0, ALICE, 1, 5),
    batch(9, 2, ZERO_ADDRESS, BOB, [1, 2], [2, 8]),
    single(12, 0, ALICE, BOB, 1, 3),
    single(25, 4, BOB, ALICE, 2, 8),
]


def make_indexer(config, *sources, http=None):
    return EventIndexer(
        config,
        pool=ProviderPool(list(sources)),
        resolver=MetadataResolver(http=http or StubHttp()),
    )


def dump(store: EntityStore):
    return {kind: sorted((to_record(e) for e in store.all(kind)), key=lambda r: r["id"]) for kind in ENTITY_TYPES}


class TestRescan:
    def test_full_rescan_materializes_state(self, fast_config):
        indexer = make_indexer(fast_config, FakeSource(events=HISTORY, head=30))

        report = run(indexer.rescan())

        assert (report.start_block, report.end_block) == (1, 30)
        assert report.fetched == report.applied == len(HISTORY)
        assert report.failed_ranges == []
        assert report.published
        store = indexer.store
        assert store.get(Token, "1").current_supply == 7
        assert store.get(Token, "2").current_supply == 8
        assert store.get(UserTokenBalance, f"{ALICE}-2").balance == 8
        assert store.get(UserTokenBalance, f"{BOB}-2") is None
        assert store.count(TokenMint) == 3
        assert store.get(GlobalStats, "global").total_events == len(HISTORY)
        assert_balances_consistent(store)

    def test_token_uri_comes_from_contract(self, fast_config):
        http = StubHttp({"https://meta.example/1": ok(b'{"name": "Ingot", "rewardId": "R1"}')})
        source = FakeSource(events=[created(3, 0, 1)], head=5, uris={1: "https://meta.example/1"})

        indexer = make_indexer(fast_config, source, http=http)
        run(indexer.rescan())

        token = indexer.store.get(Token, "1")
        assert token.name == "Ingot"
        assert token.reward_id == "R1"

    def test_rescan_is_independent_of_source_order(self, fast_config):
        forward = make_indexer(fast_config, FakeSource(events=HISTORY, head=30))
        backward = make_indexer(fast_config, FakeSource(events=list(reversed(HISTORY)), head=30))

        run(forward.rescan())
        run(backward.rescan())

        assert dump(forward.store) == dump(backward.store)

    def test_repeated_rescan_yields_same_state(self, fast_config):
        indexer = make_indexer(fast_config, FakeSource(events=HISTORY, head=30))

        run(indexer.rescan())
        first = dump(indexer.store)
        run(indexer.rescan())

        assert dump(indexer.store) == first

    def test_missing_block_is_skipped(self, fast_config):
        source = FakeSource(events=HISTORY, head=30, missing_blocks={12})

        report = run(make_indexer(fast_config, source).rescan())

        assert report.skipped == 1
        assert report.applied == len(HISTORY) - 1

    def test_missing_transaction_is_skipped(self, fast_config):
        source = FakeSource(events=HISTORY, head=30, missing_txs={tx_hash(25, 4)})

        indexer = make_indexer(fast_config, source)
        report = run(indexer.rescan())

        assert report.skipped == 1
        assert indexer.store.get(UserTokenBalance, f"{BOB}-2").balance == 8

    def test_malformed_batch_counts_as_failed(self, fast_config):
        events = [created(3, 0, 1), batch(4, 0, ZERO_ADDRESS, ALICE, [1, 1], [5])]

        report = run(make_indexer(fast_config, FakeSource(events=events, head=10)).rescan())

        assert report.failed == 1
        assert report.applied == 1

    def test_failed_chunks_are_reported(self, fast_config):
        source = FakeSource(events=HISTORY, head=30, fail_ranges={(11, 20)})

        report = run(make_indexer(fast_config, source).rescan())

        assert {f.from_block for f in report.failed_ranges} == {11}
        assert report.fetched == len(HISTORY) - 1

    def test_explicit_block_window(self, fast_config):
        report = run(make_indexer(fast_config, FakeSource(events=HISTORY, head=30)).rescan(from_block=1, to_block=5))

        assert report.end_block == 5
        assert report.fetched == 3

    def test_snapshot_written(self, fast_config):
        run(make_indexer(fast_config, FakeSource(events=HISTORY, head=30)).rescan())

        loaded = EntityStore.load_snapshot(fast_config["db_path"])
        assert loaded.get(Token, "1").current_supply == 7
        assert loaded.count(AllEvent) == len(HISTORY)
        assert read_sync_state(fast_config["db_path"]) == 30

    def test_metadata_failures_reset_each_rescan(self, fast_config):
        source = FakeSource(events=[created(3, 0, 1)], head=5, uris={1: "https://meta.example/missing.json"})
        indexer = make_indexer(fast_config, source)

        reports = [run(indexer.rescan()) for _ in range(3)]

        assert [len(r.metadata_failures) for r in reports] == [1, 1, 1]
        assert reports[-1].metadata_failures[0][0] == "1"
        assert indexer.resolver.failures == []

    def test_windowed_rescan_keeps_published_state(self, fast_config):
        indexer = make_indexer(fast_config, FakeSource(events=HISTORY, head=30))
        run(indexer.rescan())

        report = run(indexer.rescan(from_block=10))

        assert report.published is False
        assert report.applied == 2
        assert indexer.store.get(Token, "1").current_supply == 7
        loaded = EntityStore.load_snapshot(fast_config["db_path"])
        assert loaded.count(Token) == 2
        assert read_sync_state(fast_config["db_path"]) == 30

    def test_start_beyond_head_keeps_published_state(self, fast_config):
        indexer = make_indexer(fast_config, FakeSource(events=HISTORY, head=30))
        run(indexer.rescan())

        report = run(indexer.rescan(from_block=100))

        assert report.published is False
        assert report.fetched == 0
        assert indexer.store.count(Token) == 2
        assert EntityStore.load_snapshot(fast_config["db_path"]).count(Token) == 2

    def test_empty_history_window_is_not_published(self, fast_config, tmp_path):
        fast_config["start_block"] = 50
        indexer = make_indexer(fast_config, FakeSource(events=HISTORY, head=30))

        report = run(indexer.rescan())

        assert report.published is False
        assert not (tmp_path / "state.db").exists()

    def test_report_serializes(self, fast_config):
        report = run(make_indexer(fast_config, FakeSource(head=3)).rescan())
        assert report.to_dict()["applied"] == 0


class TestPreconditions:
    def test_contract_without_code(self, fast_config):
        indexer = make_indexer(fast_config, FakeSource(code=b""))
        with pytest.raises(PreconditionError):
            run(indexer.check_preconditions())

    def test_no_reachable_provider(self, fast_config):
        indexer = make_indexer(fast_config, FakeSource(fail_logs=True), FakeSource(url="fake://b", fail_logs=True))
        with pytest.raises(PreconditionError):
            run(indexer.check_preconditions())

    def test_second_provider_satisfies_check(self, fast_config):
        indexer = make_indexer(fast_config, FakeSource(fail_logs=True), FakeSource(url="fake://b"))
        run(indexer.check_preconditions())


class TestCli:
    @pytest.fixture
    def config_path(self, fast_config, tmp_path):
        run(make_indexer(fast_config, FakeSource(events=HISTORY, head=30)).rescan())
        path = tmp_path / "config.json"
        path.write_text(json.dumps(fast_config))
        return str(path)

    def test_query_with_where(self, config_path, capsys):
        code = main(["--config", config_path, "query", "TokenMint", "--where", f"to={BOB}", "--order-by", "amount"])

        rows = json.loads(capsys.readouterr().out)
        assert code == 0
        assert [r["amount"] for r in rows] == [2, 8]

    def test_get(self, config_path, capsys):
        assert main(["--config", config_path, "get", "Token", "2"]) == 0
        assert json.loads(capsys.readouterr().out)["current_supply"] == 8

    def test_get_missing(self, config_path):
        assert main(["--config", config_path, "get", "Token", "99"]) == 1

    def test_stats(self, config_path, capsys):
        assert main(["--config", config_path, "stats"]) == 0
        out = json.loads(capsys.readouterr().out)
        assert out["last_processed_block"] == 30
        assert out["global"]["total_tokens"] == 2
        assert out["latest_day"] is not None
