"""Postgres document store (psycopg 3, JSONB bodies)."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Any, Iterable, Mapping

import psycopg
from psycopg.types.json import Jsonb

from .base import BulkUpsertResult, DocumentStore, DocumentStoreError, _json_dump, _utc_now, check_filters

logger = logging.getLogger("hypermap_indexer.docstore")


@dataclass
class PostgresDocumentStore(DocumentStore):
    dsn: str

    def __post_init__(self) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS documents (
                        collection TEXT NOT NULL,
                        doc_id TEXT NOT NULL,
                        body JSONB NOT NULL,
                        created_at_utc TEXT,
                        updated_at_utc TEXT,
                        PRIMARY KEY (collection, doc_id)
                    )
                    """
                )
        except psycopg.Error as exc:
            raise DocumentStoreError("STORE_UNAVAILABLE", str(exc)) from exc

    def bulk_upsert(
        self, collection: str, items: Iterable[tuple[str, Mapping[str, Any]]]
    ) -> BulkUpsertResult:
        result = BulkUpsertResult()
        try:
            with self._connect() as conn:
                for doc_id, document in items:
                    try:
                        # Savepoint per document so one failure leaves its siblings intact.
                        with conn.transaction():
                            status = self._upsert_one(conn, collection, doc_id, document)
                    except (psycopg.DataError, psycopg.IntegrityError, TypeError, ValueError) as exc:
                        result.failed_ids.append(doc_id)
                        logger.warning(
                            "Docstore upsert failed collection=%s id=%s error=%s",
                            collection,
                            doc_id,
                            str(exc)[:256],
                        )
                        continue
                    if status == "inserted":
                        result.inserted_count += 1
                    elif status == "updated":
                        result.updated_count += 1
                    else:
                        result.unchanged_count += 1
        except psycopg.Error as exc:
            raise DocumentStoreError("STORE_UNAVAILABLE", str(exc)) from exc
        return result

    def find_one(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT body FROM documents WHERE collection = %s AND doc_id = %s",
                    (collection, doc_id),
                ).fetchone()
        except psycopg.Error as exc:
            raise DocumentStoreError("STORE_UNAVAILABLE", str(exc)) from exc
        if not row:
            return None
        return _body(row[0])

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
            query += " LIMIT %s"
            params.append(int(limit))
        try:
            with self._connect() as conn:
                rows = conn.execute(query, tuple(params)).fetchall()
        except psycopg.Error as exc:
            raise DocumentStoreError("STORE_UNAVAILABLE", str(exc)) from exc
        return [_body(row[0]) for row in rows]

    def count(self, collection: str, filters: Mapping[str, Any] | None = None) -> int:
        where, params = _where(collection, filters)
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"SELECT COUNT(*) FROM documents WHERE {where}", tuple(params)
                ).fetchone()
        except psycopg.Error as exc:
            raise DocumentStoreError("STORE_UNAVAILABLE", str(exc)) from exc
        return int(row[0]) if row else 0

    def _upsert_one(
        self, conn: psycopg.Connection, collection: str, doc_id: str, document: Mapping[str, Any]
    ) -> str:
        normalized = json.loads(_json_dump(dict(document)))
        now = _utc_now()
        row = conn.execute(
            "SELECT body FROM documents WHERE collection = %s AND doc_id = %s FOR UPDATE",
            (collection, doc_id),
        ).fetchone()
        if row is not None and _body(row[0]) == normalized:
            return "unchanged"
        conn.execute(
            """
            INSERT INTO documents (collection, doc_id, body, created_at_utc, updated_at_utc)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (collection, doc_id) DO UPDATE SET
                body = EXCLUDED.body,
                updated_at_utc = EXCLUDED.updated_at_utc
            """,
            (collection, doc_id, Jsonb(normalized), now, now),
        )
        return "inserted" if row is None else "updated"

    def _connect(self) -> psycopg.Connection:
        return psycopg.connect(self.dsn)


def _where(collection: str, filters: Mapping[str, Any] | None) -> tuple[str, list[Any]]:
    clauses = ["collection = %s"]
    params: list[Any] = [collection]
    for name, value in check_filters(filters):
        if value is None:
            clauses.append("(body -> %s::text IS NULL OR body -> %s::text = 'null'::jsonb)")
            params.extend([name, name])
            continue
        clauses.append("body -> %s::text = %s::jsonb")
        params.extend([name, json.dumps(value)])
    return " AND ".join(clauses), params


def _body(value: Any) -> dict[str, Any]:
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return dict(value)
