from __future__ import annotations

import threading

from hypermap_fakes import (
    BASE_TIMESTAMP,
    FakeLedgerClient,
    address,
    fact_log,
    hash32,
    mint_log,
    transfer_log,
    unknown_log,
)
from hypermap_indexer.config import IndexerPolicy
from hypermap_indexer.constants import CONTRACT_ADDRESS, ROOT_HASH
from hypermap_indexer.docstore import SqliteDocumentStore
from hypermap_indexer.events.timestamps import TimestampResolver
from hypermap_indexer.indexer.service import IndexerService, type_breakdown
from hypermap_indexer.ledger.errors import FatalError
from hypermap_indexer.ledger.fetcher import RangeFetcher
from hypermap_indexer.ledger.retry import RetryPolicy
from hypermap_indexer.namespace.query import NamespaceQuery

OS = hash32(0x05)
ALICE = hash32(0xA11CE)


def _logs():
    return [
        mint_log(ROOT_HASH, OS, "os", block=5),
        mint_log(OS, ALICE, "alice", block=12),
        fact_log(ALICE, "~ip", bytes.fromhex("7f000001"), block=15),
        transfer_log(address(0), address(0xCAFE), ALICE, block=25),
    ]


def _service(tmp_path, client: FakeLedgerClient, **policy_overrides) -> IndexerService:
    policy_kwargs = {
        "start_block": 0,
        "chunk_size": 10,
        "min_chunk_size": 5,
        "pacing_delay_seconds": 0.0,
        "retry_base_delay_seconds": 0.0,
        "retry_jitter_seconds": 0.0,
    }
    policy_kwargs.update(policy_overrides)
    policy = IndexerPolicy(**policy_kwargs)
    retry = RetryPolicy(max_retries=2, base_delay_seconds=0.0, jitter_seconds=0.0, sleep=lambda _: None)
    return IndexerService(
        policy=policy,
        fetcher=RangeFetcher(client, CONTRACT_ADDRESS, retry),
        store=SqliteDocumentStore(path=tmp_path / "indexer.db"),
        timestamps=TimestampResolver(client, retry, fanout=2),
        sleep=lambda _: None,
    )


def test_chunk_by_chunk_ingestion_converges_on_fixed_target(tmp_path) -> None:
    client = FakeLedgerClient(_logs(), latest=29)
    service = _service(tmp_path, client)

    first = service.run_ingestion(0)
    assert first.status == "running"
    assert first.next_start_block == 10
    assert first.target_block == 29
    assert first.new_events_stored == 1
    assert first.progress["completion"] == 33.33

    client.latest = 500
    state = first.state
    result = first
    calls = 1
    while result.status == "running":
        result = service.run_ingestion(result.next_start_block, state=state)
        state = result.state
        calls += 1
    assert calls == 3
    assert result.status == "completed"
    assert result.next_start_block == 30
    assert result.target_block == 29
    assert result.progress == {"from_block": 0, "to_block": 29, "current_block": 29, "completion": 100.0}
    assert client.latest_calls == 1
    assert [call[1:] for call in client.get_logs_calls] == [(0, 9), (10, 19), (20, 29)]

    query = NamespaceQuery(service.store)
    alice = query.find_by_full_name("os/alice")
    assert alice is not None
    assert alice.owner == address(0xCAFE)
    assert alice.facts == {"~ip": "0x7f000001"}
    assert result.names is not None and result.names["resolved"] == 2


def test_pass_reports_type_breakdown_and_timestamps(tmp_path) -> None:
    client = FakeLedgerClient(_logs(), latest=29)
    service = _service(tmp_path, client)
    result = service.run_pass(0, "latest")
    assert result.status == "completed"
    assert result.chunks == 3
    assert result.events_in_chunk == 4
    assert result.new_events_stored == 4
    assert list(result.by_type) == ["Mint", "Fact", "Transfer"]
    assert result.by_type["Mint"] == {"count": 2, "percentage": 50.0}
    assert result.by_type["Transfer"] == {"count": 1, "percentage": 25.0}
    assert result.projection["applied"] == {"Mint": 2, "Fact": 1, "Transfer": 1}

    mint_doc = service.store.find_one("events", "0x" + f"{5:032x}{0:032x}" + "_0")
    assert mint_doc is not None
    assert mint_doc["timestamp"] == BASE_TIMESTAMP + 5
    payload = result.as_dict()
    assert payload["events"]["new_stored"] == 4
    assert payload["state"]["next_start_block"] == 30


def test_unknown_topic_blocks_skip_timestamp_lookup(tmp_path) -> None:
    client = FakeLedgerClient([*_logs(), unknown_log(block=7), unknown_log(block=12, log_index=1)], latest=29)
    service = _service(tmp_path, client)
    result = service.run_pass(0, 29)
    assert result.status == "completed"
    assert result.unknown_logs == 2
    assert result.events_in_chunk == 4
    assert 7 not in client.get_block_calls
    assert sorted(set(client.get_block_calls)) == [5, 12, 15, 25]


def test_rerunning_a_range_writes_nothing_new(tmp_path) -> None:
    client = FakeLedgerClient(_logs(), latest=29)
    service = _service(tmp_path, client)
    service.run_pass(0, 29)
    entries_before = service.entries.count()

    again = service.run_pass(0, 29)
    assert again.status == "completed"
    assert again.new_events_stored == 0
    assert again.updated_events == 0
    assert again.unchanged_events == 4
    assert service.store.count("events") == 4
    assert service.entries.count() == entries_before
    assert service.entries.get(OS).children == [ALICE]


def test_failed_chunk_keeps_cursor_and_recovers(tmp_path) -> None:
    client = FakeLedgerClient(_logs(), latest=29)
    service = _service(tmp_path, client)
    service.run_pass(0, 9)

    client.get_logs_errors = [FatalError("RPC_ERROR", "invalid params")]
    failed = service.run_pass(10, 29, state=None)
    assert failed.status == "error"
    assert failed.error == "RPC_ERROR"
    assert failed.next_start_block == 10
    assert failed.state.last_error == "RPC_ERROR"
    assert failed.names is None

    recovered = service.run_pass(failed.next_start_block, 29, state=failed.state)
    assert recovered.status == "completed"
    assert recovered.state.origin_block == 10
    assert service.store.count("events") == 4


def test_cancelled_pass_leaves_cursor(tmp_path) -> None:
    client = FakeLedgerClient(_logs(), latest=29)
    service = _service(tmp_path, client)
    service.cancel_event = threading.Event()
    service.cancel_event.set()
    result = service.run_pass(0, 29)
    assert result.status == "cancelled"
    assert result.next_start_block == 0
    assert client.get_logs_calls == []


def test_cursor_round_trips_through_state_collection(tmp_path) -> None:
    client = FakeLedgerClient(_logs(), latest=29)
    service = _service(tmp_path, client)
    assert service.load_state() is None
    result = service.run_ingestion(0, 29)
    service.save_state(result.state)
    assert service.load_state() == result.state


def test_resolve_names_never_skips_post_pass(tmp_path) -> None:
    client = FakeLedgerClient(_logs(), latest=29)
    service = _service(tmp_path, client, resolve_names="never")
    result = service.run_pass(0, 29)
    assert result.names is None
    assert service.entries.get(ALICE).full_name is None
    report = service.resolve_names()
    assert report.resolved == 2
    assert service.entries.get(ALICE).full_name == "os/alice"


def test_type_breakdown_orders_and_omits_zero_counts() -> None:
    breakdown = type_breakdown({"Transfer": 1, "Mint": 3, "Note": 0})
    assert list(breakdown) == ["Mint", "Transfer"]
    assert breakdown["Mint"]["percentage"] == 75.0
    assert type_breakdown({}) == {}
