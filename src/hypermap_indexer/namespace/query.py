"""Read-only views over the event and entry collections."""

from __future__ import annotations

from typing import Any

from hypermap_indexer.constants import ENTRIES_COLLECTION, EVENTS_COLLECTION, ROOT_HASH
from hypermap_indexer.docstore import DocumentStore
from hypermap_indexer.events.models import EVENT_TYPES

from .models import NamespaceEntry

_ENTRY_REFERENCE_FIELDS = ("parent_hash", "child_hash", "entry", "entry_hash")


class NamespaceQuery:
    def __init__(
        self,
        store: DocumentStore,
        *,
        events_collection: str = EVENTS_COLLECTION,
        entries_collection: str = ENTRIES_COLLECTION,
    ) -> None:
        self.store = store
        self.events_collection = events_collection
        self.entries_collection = entries_collection

    def get_entry(self, entry_hash: str) -> NamespaceEntry | None:
        doc = self.store.find_one(self.entries_collection, entry_hash.lower())
        return NamespaceEntry.from_document(doc) if doc else None

    def children(self, entry_hash: str = ROOT_HASH) -> list[NamespaceEntry]:
        docs = self.store.find(self.entries_collection, {"parent_hash": entry_hash.lower()})
        entries = [NamespaceEntry.from_document(doc) for doc in docs]
        return sorted(entries, key=lambda entry: (entry.label, entry.hash))

    def find_by_full_name(self, full_name: str) -> NamespaceEntry | None:
        docs = self.store.find(self.entries_collection, {"full_name": full_name}, limit=1)
        return NamespaceEntry.from_document(docs[0]) if docs else None

    def events_for_entry(self, entry_hash: str) -> list[dict[str, Any]]:
        entry_hash = entry_hash.lower()
        merged: dict[str, dict[str, Any]] = {}
        for field_name in _ENTRY_REFERENCE_FIELDS:
            for doc in self.store.find(self.events_collection, {field_name: entry_hash}):
                merged[doc["event_id"]] = doc
        return sorted(
            merged.values(),
            key=lambda doc: (int(doc.get("block_number") or 0), int(doc.get("log_index") or 0)),
        )

    def event_counts(self) -> dict[str, int]:
        return {
            event_type: self.store.count(self.events_collection, {"event_type": event_type})
            for event_type in EVENT_TYPES
        }
