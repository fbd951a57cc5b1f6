from __future__ import annotations

from dataclasses import replace

from eth_abi import encode
import pytest

from hypermap_fakes import (
    BASE_TIMESTAMP,
    FakeLedgerClient,
    address,
    fact_log,
    gene_log,
    hash32,
    label_topic,
    mint_log,
    note_log,
    raw_log,
    transfer_log,
    unknown_log,
    upgraded_log,
    zero_log,
)
from hypermap_indexer.constants import CONTRACT_ADDRESS, ROOT_HASH
from hypermap_indexer.events.models import (
    FactEvent,
    GeneEvent,
    MintEvent,
    NoteEvent,
    TransferEvent,
    UpgradedEvent,
    ZeroEvent,
)
from hypermap_indexer.events.normalizer import EventDecodeError, decode_label, normalize_log, normalize_logs
from hypermap_indexer.events.signatures import MINT, TRANSFER, signature_for_topic
from hypermap_indexer.events.timestamps import TimestampResolver
from hypermap_indexer.ledger.errors import TransientError
from hypermap_indexer.ledger.retry import RetryPolicy


def test_transfer_topic_matches_erc721_signature() -> None:
    assert TRANSFER.topic == "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
    assert signature_for_topic(MINT.topic.upper().replace("0X", "0x")) is MINT
    assert signature_for_topic(None) is None


def test_mint_decodes_hashes_and_label() -> None:
    child = hash32(0xA1)
    event = normalize_log(mint_log(ROOT_HASH, child, "alice", block=100, log_index=3), timestamp=12345)
    assert isinstance(event, MintEvent)
    assert event.parent_hash == ROOT_HASH
    assert event.child_hash == child
    assert event.label == "alice"
    assert event.label_valid is True
    assert event.label_raw == "0x" + b"alice".hex()
    assert event.label_hash == label_topic(b"alice")
    assert event.timestamp == 12345
    assert event.event_id == f"{event.transaction_hash}_3"
    assert event.contract_address == CONTRACT_ADDRESS
    doc = event.to_document()
    assert doc["event_type"] == "Mint"
    assert doc["child_hash"] == child


def test_fact_and_note_carry_hex_payload() -> None:
    entry = hash32(0xA1)
    fact = normalize_log(fact_log(entry, "~ip", bytes.fromhex("7f000001"), block=5))
    note = normalize_log(note_log(entry, "~bio", b"hello", block=5, log_index=1))
    assert isinstance(fact, FactEvent)
    assert fact.label == "~ip"
    assert fact.data == "0x7f000001"
    assert isinstance(note, NoteEvent)
    assert note.data == "0x" + b"hello".hex()
    assert note.parent_hash == entry


def test_address_topics_are_checksummed() -> None:
    entry = hash32(0xA1)
    gene = normalize_log(gene_log(entry, address(0xBEEF), block=1))
    zero = normalize_log(zero_log(address(0x20), block=1, log_index=1))
    upgraded = normalize_log(upgraded_log(address(0x30), block=1, log_index=2))
    assert isinstance(gene, GeneEvent) and gene.gene == address(0xBEEF) and gene.entry == entry
    assert isinstance(zero, ZeroEvent) and zero.zero_tba == address(0x20)
    assert isinstance(upgraded, UpgradedEvent) and upgraded.implementation == address(0x30)


def test_transfer_id_maps_to_entry_hash() -> None:
    entry = hash32(0xA1)
    event = normalize_log(transfer_log(address(0), address(0xCAFE), entry, block=9))
    assert isinstance(event, TransferEvent)
    assert event.from_address == address(0)
    assert event.to_address == address(0xCAFE)
    assert event.token_id == 0xA1
    assert event.entry_hash == entry
    assert event.to_document()["id"] == str(0xA1)


def test_unknown_topic_is_not_an_event() -> None:
    assert normalize_log(unknown_log(block=1)) is None
    assert normalize_log(replace(unknown_log(block=1), topics=())) is None


def test_invalid_utf8_label_is_kept_as_hex() -> None:
    raw_label = b"\xff\xfeab"
    event = normalize_log(mint_log(ROOT_HASH, hash32(7), raw_label, block=1))
    assert isinstance(event, MintEvent)
    assert event.label_valid is False
    assert event.label == "0x" + raw_label.hex()
    assert event.label_raw == "0x" + raw_label.hex()
    assert decode_label("héllo".encode("utf-8")) == ("héllo", True)


def test_wrong_topic_count_raises_decode_error() -> None:
    log = mint_log(ROOT_HASH, hash32(7), "x", block=1)
    truncated = replace(log, topics=log.topics[:3])
    with pytest.raises(EventDecodeError) as excinfo:
        normalize_log(truncated)
    assert excinfo.value.code == "EVENT_DECODE_FAILED"
    assert excinfo.value.event_type == "Mint"


def test_undecodable_data_raises_decode_error() -> None:
    log = raw_log(
        [MINT.topic, ROOT_HASH, hash32(7), label_topic(b"x")],
        encode(["uint8"], [1])[:16],
        block=1,
    )
    with pytest.raises(EventDecodeError):
        normalize_log(log)


def test_normalize_logs_counts_unknown_and_malformed() -> None:
    good = mint_log(ROOT_HASH, hash32(1), "a", block=10, log_index=0)
    bad = replace(mint_log(ROOT_HASH, hash32(2), "b", block=10, log_index=1), data="0x00")
    other = unknown_log(block=11)
    result = normalize_logs([good, bad, other], {10: 777})
    assert [event.label for event in result.events] == ["a"]
    assert result.events[0].timestamp == 777
    assert result.unknown_logs == 1
    assert result.malformed_logs == 1
    assert result.malformed_ids == [f"{bad.transaction_hash}_1"]


def test_timestamp_resolver_degrades_to_none() -> None:
    client = FakeLedgerClient(missing_blocks={12})
    resolver = TimestampResolver(client, RetryPolicy(max_retries=0), fanout=4)
    timestamps = resolver.resolve([10, 11, 11, 12])
    assert timestamps == {10: BASE_TIMESTAMP + 10, 11: BASE_TIMESTAMP + 11, 12: None}
    assert sorted(client.get_block_calls) == [10, 11, 12]


def test_timestamp_resolver_degrades_after_exhausted_retries() -> None:
    class _FlakyClient(FakeLedgerClient):
        def get_block(self, number):
            raise TransientError("TIMEOUT")

    resolver = TimestampResolver(_FlakyClient(), RetryPolicy(max_retries=1, sleep=lambda _: None), fanout=1)
    assert resolver.resolve([3]) == {3: None}
    assert resolver.resolve([]) == {}
