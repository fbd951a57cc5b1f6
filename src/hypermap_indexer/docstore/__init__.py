"""Document store capability + SQLite/Postgres backends."""

from __future__ import annotations

from pathlib import Path

from .base import BulkUpsertResult, DocumentStore, DocumentStoreError, is_postgres_dsn
from .postgres import PostgresDocumentStore
from .sqlite import SqliteDocumentStore


def build_document_store(dsn: str) -> DocumentStore:
    if not dsn:
        raise DocumentStoreError("STORE_DSN_MISSING")
    if is_postgres_dsn(dsn):
        return PostgresDocumentStore(dsn=dsn)
    return SqliteDocumentStore(path=Path(_sqlite_path(dsn)))


def _sqlite_path(dsn: str) -> str:
    if dsn.startswith("sqlite:///"):
        return dsn.replace("sqlite:///", "", 1)
    if dsn.startswith("sqlite://"):
        return dsn.replace("sqlite://", "", 1)
    return dsn


__all__ = [
    "BulkUpsertResult",
    "DocumentStore",
    "DocumentStoreError",
    "PostgresDocumentStore",
    "SqliteDocumentStore",
    "build_document_store",
    "is_postgres_dsn",
]
