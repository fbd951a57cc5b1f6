"""Chunked ingestion: event store, scheduler, service."""

from .event_store import IdempotentEventStore
from .scheduler import ChunkOutcome, ChunkScheduler, ChunkSizing, PassResult, iter_partitions, partition_range
from .service import IndexerService, IngestionResult, IngestionState

__all__ = [
    "ChunkOutcome",
    "ChunkScheduler",
    "ChunkSizing",
    "IdempotentEventStore",
    "IndexerService",
    "IngestionResult",
    "IngestionState",
    "PassResult",
    "iter_partitions",
    "partition_range",
]
