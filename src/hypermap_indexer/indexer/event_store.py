"""Idempotent event store keyed by (transaction hash, log index)."""

from __future__ import annotations

import logging
from typing import Iterable

from hypermap_indexer.constants import EVENTS_COLLECTION
from hypermap_indexer.docstore import BulkUpsertResult, DocumentStore
from hypermap_indexer.events.models import EventBase

logger = logging.getLogger("hypermap_indexer.indexer")


class IdempotentEventStore:
    def __init__(self, store: DocumentStore, *, collection: str = EVENTS_COLLECTION) -> None:
        self.documents = store
        self.collection = collection

    def store(self, events: Iterable[EventBase]) -> BulkUpsertResult:
        # Later duplicates in one batch win; identity is stable so they carry the same body.
        items: dict[str, dict] = {}
        for event in events:
            items[event.event_id] = event.to_document()
        if not items:
            return BulkUpsertResult()
        result = self.documents.bulk_upsert(self.collection, list(items.items()))
        if result.failed_ids:
            logger.error(
                "Event store upsert failures count=%s first=%s",
                len(result.failed_ids),
                result.failed_ids[0],
            )
        logger.debug(
            "Event store upsert inserted=%s updated=%s unchanged=%s",
            result.inserted_count,
            result.updated_count,
            result.unchanged_count,
        )
        return result
