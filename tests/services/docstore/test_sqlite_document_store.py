from __future__ import annotations

import sqlite3

import pytest

from hypermap_indexer.docstore import (
    DocumentStoreError,
    PostgresDocumentStore,
    SqliteDocumentStore,
    build_document_store,
    is_postgres_dsn,
)


def test_bulk_upsert_counts_inserted_updated_unchanged(tmp_path) -> None:
    store = build_document_store(str(tmp_path / "docs.db"))
    first = store.bulk_upsert("events", [("a", {"n": 1}), ("b", {"n": 2})])
    assert (first.inserted_count, first.updated_count, first.unchanged_count) == (2, 0, 0)

    second = store.bulk_upsert("events", [("a", {"n": 1}), ("b", {"n": 3})])
    assert (second.inserted_count, second.updated_count, second.unchanged_count) == (0, 1, 1)
    assert store.find_one("events", "b") == {"n": 3}

    with sqlite3.connect(tmp_path / "docs.db") as conn:
        count = conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
        assert count == 2


def test_upsert_replaces_whole_document(tmp_path) -> None:
    store = SqliteDocumentStore(path=tmp_path / "docs.db")
    store.bulk_upsert("events", [("a", {"keep": 1, "drop": 2})])
    store.bulk_upsert("events", [("a", {"keep": 1})])
    assert store.find_one("events", "a") == {"keep": 1}


def test_one_bad_document_does_not_fail_siblings(tmp_path) -> None:
    store = SqliteDocumentStore(path=tmp_path / "docs.db")
    result = store.bulk_upsert(
        "events",
        [("good-1", {"n": 1}), ("bad", {"n": object()}), ("good-2", {"n": 2})],
    )
    assert result.inserted_count == 2
    assert result.failed_ids == ["bad"]
    assert store.find_one("events", "bad") is None
    assert store.find_one("events", "good-2") == {"n": 2}


def test_collections_are_isolated(tmp_path) -> None:
    store = SqliteDocumentStore(path=tmp_path / "docs.db")
    store.bulk_upsert("events", [("x", {"kind": "event"})])
    store.bulk_upsert("entries", [("x", {"kind": "entry"})])
    assert store.find_one("events", "x") == {"kind": "event"}
    assert store.find_one("entries", "x") == {"kind": "entry"}
    assert store.count("events") == 1


def test_find_filters_on_top_level_fields(tmp_path) -> None:
    store = SqliteDocumentStore(path=tmp_path / "docs.db")
    store.bulk_upsert(
        "entries",
        [
            ("h1", {"parent_hash": "p", "full_name": None, "placeholder": False, "block": 5}),
            ("h2", {"parent_hash": "p", "full_name": "a/b", "placeholder": True, "block": 6}),
            ("h3", {"parent_hash": "q", "block": 7}),
        ],
    )
    assert [doc["block"] for doc in store.find("entries", {"parent_hash": "p"})] == [5, 6]
    assert [doc["block"] for doc in store.find("entries", {"full_name": None})] == [5, 7]
    assert [doc["block"] for doc in store.find("entries", {"placeholder": True})] == [6]
    assert [doc["block"] for doc in store.find("entries", {"block": 7})] == [7]
    assert len(store.find("entries", limit=2)) == 2
    assert store.count("entries", {"parent_hash": "p"}) == 2


def test_invalid_filter_field_rejected(tmp_path) -> None:
    store = SqliteDocumentStore(path=tmp_path / "docs.db")
    with pytest.raises(DocumentStoreError) as excinfo:
        store.find("entries", {"x') OR 1=1 --": 1})
    assert excinfo.value.code == "FILTER_FIELD_INVALID"


def test_build_document_store_dsn_handling(tmp_path) -> None:
    path = tmp_path / "nested" / "docs.db"
    store = build_document_store(f"sqlite:///{path}")
    assert isinstance(store, SqliteDocumentStore)
    assert path.exists()
    assert is_postgres_dsn("postgresql://user@localhost/db")
    assert not is_postgres_dsn(str(path))
    assert not is_postgres_dsn(None)
    with pytest.raises(DocumentStoreError):
        build_document_store("")


def test_postgres_store_is_selected_for_postgres_dsn(monkeypatch) -> None:
    created: list[str] = []

    def _fake_init(self) -> None:
        created.append(self.dsn)

    monkeypatch.setattr(PostgresDocumentStore, "__post_init__", _fake_init)
    store = build_document_store("postgresql://indexer@localhost/hypermap")
    assert isinstance(store, PostgresDocumentStore)
    assert created == ["postgresql://indexer@localhost/hypermap"]
