"""SQLite document store."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping

import sqlite3

from .base import BulkUpsertResult, DocumentStore, DocumentStoreError, _json_dump, _utc_now, check_filters

logger = logging.getLogger("hypermap_indexer.docstore")


@dataclass
class SqliteDocumentStore(DocumentStore):
    path: Path

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS documents (
                        collection TEXT NOT NULL,
                        doc_id TEXT NOT NULL,
                        body TEXT NOT NULL,
                        created_at_utc TEXT,
                        updated_at_utc TEXT,
                        PRIMARY KEY (collection, doc_id)
                    )
                    """
                )
        except sqlite3.Error as exc:
            raise DocumentStoreError("STORE_UNAVAILABLE", str(exc)) from exc

    def bulk_upsert(
        self, collection: str, items: Iterable[tuple[str, Mapping[str, Any]]]
    ) -> BulkUpsertResult:
        result = BulkUpsertResult()
        try:
            with self._connect() as conn:
                for doc_id, document in items:
                    try:
                        status = self._upsert_one(conn, collection, doc_id, document)
                    except (sqlite3.DatabaseError, TypeError, ValueError) as exc:
                        result.failed_ids.append(doc_id)
                        logger.warning(
                            "Docstore upsert failed collection=%s id=%s error=%s",
                            collection,
                            doc_id,
                            str(exc)[:256],
                        )
                        continue
                    _count(result, status)
        except sqlite3.Error as exc:
            raise DocumentStoreError("STORE_UNAVAILABLE", str(exc)) from exc
        return result

    def find_one(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT body FROM documents WHERE collection = ? AND doc_id = ?",
                    (collection, doc_id),
                ).fetchone()
        except sqlite3.Error as exc:
            raise DocumentStoreError("STORE_UNAVAILABLE", str(exc)) from exc
        if not row:
            return None
        return json.loads(row[0])

    def find(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        *,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        where, params = _where(collection, filters)
        query = f"SELECT body FROM documents WHERE {where} ORDER BY doc_id"
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))
        try:
            with self._connect() as conn:
                rows = conn.execute(query, tuple(params)).fetchall()
        except sqlite3.Error as exc:
            raise DocumentStoreError("STORE_UNAVAILABLE", str(exc)) from exc
        return [json.loads(row[0]) for row in rows]

    def count(self, collection: str, filters: Mapping[str, Any] | None = None) -> int:
        where, params = _where(collection, filters)
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"SELECT COUNT(*) FROM documents WHERE {where}", tuple(params)
                ).fetchone()
        except sqlite3.Error as exc:
            raise DocumentStoreError("STORE_UNAVAILABLE", str(exc)) from exc
        return int(row[0]) if row else 0

    def _upsert_one(
        self, conn: sqlite3.Connection, collection: str, doc_id: str, document: Mapping[str, Any]
    ) -> str:
        body = _json_dump(dict(document))
        now = _utc_now()
        row = conn.execute(
            "SELECT body FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        ).fetchone()
        if row is None:
            try:
                conn.execute(
                    """
                    INSERT INTO documents (collection, doc_id, body, created_at_utc, updated_at_utc)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (collection, doc_id, body, now, now),
                )
                return "inserted"
            except sqlite3.IntegrityError:
                # Lost an insert race; fall through to the replace path.
                logger.debug("Docstore insert conflict collection=%s id=%s", collection, doc_id)
                row = conn.execute(
                    "SELECT body FROM documents WHERE collection = ? AND doc_id = ?",
                    (collection, doc_id),
                ).fetchone()
        if row is not None and row[0] == body:
            return "unchanged"
        conn.execute(
            """
            UPDATE documents SET body = ?, updated_at_utc = ?
            WHERE collection = ? AND doc_id = ?
            """,
            (body, now, collection, doc_id),
        )
        return "updated"

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=FULL")
        return conn


def _where(collection: str, filters: Mapping[str, Any] | None) -> tuple[str, list[Any]]:
    clauses = ["collection = ?"]
    params: list[Any] = [collection]
    for name, value in check_filters(filters):
        path = f"$.{name}"
        if value is None:
            clauses.append("json_extract(body, ?) IS NULL")
            params.append(path)
            continue
        clauses.append("json_extract(body, ?) = ?")
        params.append(path)
        params.append(int(value) if isinstance(value, bool) else value)
    return " AND ".join(clauses), params


def _count(result: BulkUpsertResult, status: str) -> None:
    if status == "inserted":
        result.inserted_count += 1
    elif status == "updated":
        result.updated_count += 1
    else:
        result.unchanged_count += 1
