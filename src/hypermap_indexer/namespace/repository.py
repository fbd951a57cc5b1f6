"""Entry repository over the document store."""

from __future__ import annotations

from typing import Iterable

from hypermap_indexer.constants import ENTRIES_COLLECTION
from hypermap_indexer.docstore import BulkUpsertResult, DocumentStore

from .models import NamespaceEntry


class EntryRepository:
    def __init__(self, store: DocumentStore, *, collection: str = ENTRIES_COLLECTION) -> None:
        self.store = store
        self.collection = collection

    def get(self, entry_hash: str) -> NamespaceEntry | None:
        doc = self.store.find_one(self.collection, entry_hash.lower())
        if doc is None:
            return None
        return NamespaceEntry.from_document(doc)

    def save_all(self, entries: Iterable[NamespaceEntry]) -> BulkUpsertResult:
        return self.store.bulk_upsert(
            self.collection, [(entry.hash, entry.to_document()) for entry in entries]
        )

    def find(self, **filters: object) -> list[NamespaceEntry]:
        return [NamespaceEntry.from_document(doc) for doc in self.store.find(self.collection, filters)]

    def unresolved(self) -> list[NamespaceEntry]:
        return self.find(full_name=None)

    def count(self) -> int:
        return self.store.count(self.collection)
