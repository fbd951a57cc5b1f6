"""Document store capability shared by the SQLite and Postgres backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import re
from typing import Any, Iterable, Mapping

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class DocumentStoreError(RuntimeError):
    """Store-level failure that is not attributable to a single document."""

    def __init__(self, code: str, detail: str | None = None) -> None:
        self.code = code
        self.detail = detail
        super().__init__(f"{code}:{detail}" if detail else code)


@dataclass
class BulkUpsertResult:
    inserted_count: int = 0
    updated_count: int = 0
    unchanged_count: int = 0
    failed_ids: list[str] = field(default_factory=list)

    @property
    def written_count(self) -> int:
        return self.inserted_count + self.updated_count

    def merge(self, other: "BulkUpsertResult") -> "BulkUpsertResult":
        return BulkUpsertResult(
            inserted_count=self.inserted_count + other.inserted_count,
            updated_count=self.updated_count + other.updated_count,
            unchanged_count=self.unchanged_count + other.unchanged_count,
            failed_ids=[*self.failed_ids, *other.failed_ids],
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "inserted_count": self.inserted_count,
            "updated_count": self.updated_count,
            "unchanged_count": self.unchanged_count,
            "failed_ids": list(self.failed_ids),
        }


class DocumentStore:
    """Collections of JSON documents keyed by id.

    `bulk_upsert` replaces the full body of an existing document. A failure on
    one document is recorded in `failed_ids` and never aborts its siblings.
    `find` filters are equality on top-level fields; a `None` value matches a
    missing or null field.
    """

    def bulk_upsert(
        self, collection: str, items: Iterable[tuple[str, Mapping[str, Any]]]
    ) -> BulkUpsertResult:
        raise NotImplementedError

    def find_one(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def find(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        *,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        raise NotImplementedError

    def count(self, collection: str, filters: Mapping[str, Any] | None = None) -> int:
        raise NotImplementedError


def is_postgres_dsn(value: str | None) -> bool:
    if not value:
        return False
    return value.startswith("postgres://") or value.startswith("postgresql://")


def check_filters(filters: Mapping[str, Any] | None) -> list[tuple[str, Any]]:
    if not filters:
        return []
    checked: list[tuple[str, Any]] = []
    for name, value in sorted(filters.items()):
        if not _FIELD_RE.match(name):
            raise DocumentStoreError("FILTER_FIELD_INVALID", name)
        if isinstance(value, (dict, list, tuple, set)):
            raise DocumentStoreError("FILTER_VALUE_INVALID", name)
        checked.append((name, value))
    return checked


def _json_dump(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=True, separators=(",", ":"))


def _utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()
