"""Ingestion entry point: fetch, normalize, store and project block chunks."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
import logging
import threading
from typing import Any, Callable

from hypermap_indexer.config import IndexerPolicy, IndexerProfile
from hypermap_indexer.constants import STATE_COLLECTION
from hypermap_indexer.docstore import DocumentStore, DocumentStoreError, build_document_store
from hypermap_indexer.events.models import EVENT_TYPES
from hypermap_indexer.events.normalizer import normalize_logs
from hypermap_indexer.events.signatures import signature_for_topic
from hypermap_indexer.events.timestamps import TimestampResolver
from hypermap_indexer.ledger.client import JsonRpcLedgerClient, LedgerClient
from hypermap_indexer.ledger.errors import IngestionCancelled, reason_code
from hypermap_indexer.ledger.fetcher import BlockRange, RangeFetcher
from hypermap_indexer.ledger.retry import RetryPolicy
from hypermap_indexer.namespace.projector import NamespaceProjector
from hypermap_indexer.namespace.repository import EntryRepository
from hypermap_indexer.namespace.resolver import FullNameResolver, ResolveReport

from .event_store import IdempotentEventStore
from .scheduler import ChunkOutcome, ChunkScheduler, ChunkSizing, PassResult

logger = logging.getLogger("hypermap_indexer.indexer")

CURSOR_ID = "cursor"


@dataclass(frozen=True)
class IngestionState:
    """Caller-owned resume cursor threaded through successive invocations."""

    origin_block: int
    next_start_block: int
    target_block: int | None = None
    chunk_size: int | None = None
    consecutive_successes: int = 0
    consecutive_failures: int = 0
    status: str = "running"
    last_error: str | None = None
    updated_at_utc: str | None = None

    def to_document(self) -> dict[str, Any]:
        return {
            "origin_block": self.origin_block,
            "next_start_block": self.next_start_block,
            "target_block": self.target_block,
            "chunk_size": self.chunk_size,
            "consecutive_successes": self.consecutive_successes,
            "consecutive_failures": self.consecutive_failures,
            "status": self.status,
            "last_error": self.last_error,
            "updated_at_utc": self.updated_at_utc,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "IngestionState":
        target = doc.get("target_block")
        chunk_size = doc.get("chunk_size")
        return cls(
            origin_block=int(doc["origin_block"]),
            next_start_block=int(doc["next_start_block"]),
            target_block=int(target) if target is not None else None,
            chunk_size=int(chunk_size) if chunk_size is not None else None,
            consecutive_successes=int(doc.get("consecutive_successes") or 0),
            consecutive_failures=int(doc.get("consecutive_failures") or 0),
            status=str(doc.get("status") or "running"),
            last_error=doc.get("last_error"),
            updated_at_utc=doc.get("updated_at_utc"),
        )


@dataclass
class IngestionResult:
    status: str
    next_start_block: int
    state: IngestionState
    target_block: int | None = None
    chunks: int = 0
    events_in_chunk: int = 0
    new_events_stored: int = 0
    updated_events: int = 0
    unchanged_events: int = 0
    malformed_logs: int = 0
    unknown_logs: int = 0
    by_type: dict[str, dict[str, float]] = field(default_factory=dict)
    progress: dict[str, Any] = field(default_factory=dict)
    projection: dict[str, Any] = field(default_factory=dict)
    names: dict[str, Any] | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "next_start_block": self.next_start_block,
            "target_block": self.target_block,
            "chunks": self.chunks,
            "events": {
                "in_chunk": self.events_in_chunk,
                "new_stored": self.new_events_stored,
                "updated": self.updated_events,
                "unchanged": self.unchanged_events,
                "malformed_logs": self.malformed_logs,
                "unknown_logs": self.unknown_logs,
                "by_type": self.by_type,
            },
            "progress": self.progress,
            "projection": self.projection,
            "names": self.names,
            "error": self.error,
            "state": self.state.to_document(),
        }


class IndexerService:
    def __init__(
        self,
        *,
        policy: IndexerPolicy,
        fetcher: RangeFetcher,
        store: DocumentStore,
        timestamps: TimestampResolver | None = None,
        cancel_event: threading.Event | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.policy = policy
        self.fetcher = fetcher
        self.store = store
        self.timestamps = timestamps
        self.cancel_event = cancel_event or threading.Event()
        self.sleep = sleep
        self.event_store = IdempotentEventStore(store)
        self.entries = EntryRepository(store)
        self.projector = NamespaceProjector(self.entries)
        self.resolver = FullNameResolver(self.entries, separator=policy.name_separator)

    @classmethod
    def build(
        cls,
        profile: IndexerProfile,
        *,
        client: LedgerClient | None = None,
        store: DocumentStore | None = None,
        cancel_event: threading.Event | None = None,
    ) -> "IndexerService":
        policy = profile.policy
        cancel_event = cancel_event or threading.Event()
        client = client or JsonRpcLedgerClient(
            profile.wiring.rpc_url, timeout_seconds=profile.wiring.rpc_timeout_seconds
        )
        retry = RetryPolicy(
            max_retries=policy.max_retries,
            base_delay_seconds=policy.retry_base_delay_seconds,
            jitter_seconds=policy.retry_jitter_seconds,
            cancel_event=cancel_event,
        )
        return cls(
            policy=policy,
            fetcher=RangeFetcher(client, policy.contract_address, retry),
            store=store or build_document_store(profile.wiring.store_dsn),
            timestamps=TimestampResolver(client, retry, fanout=policy.timestamp_fanout),
            cancel_event=cancel_event,
        )

    def run_ingestion(
        self,
        from_block: int,
        to_block: int | str = "latest",
        *,
        state: IngestionState | None = None,
    ) -> IngestionResult:
        """Process exactly one chunk starting at `from_block`.

        With `to_block="latest"` the tip is resolved on the first call and then
        reused from `state.target_block` while the pass is still running, so
        the caller's loop converges on a fixed target.
        """
        end: int | str = to_block
        if _is_latest(to_block) and state is not None and state.status != "completed":
            if state.target_block is not None:
                end = state.target_block
        return self._run(from_block, end, state=state, max_chunks=1)

    def run_pass(
        self,
        from_block: int,
        to_block: int | str = "latest",
        *,
        state: IngestionState | None = None,
        max_chunks: int | None = None,
    ) -> IngestionResult:
        """Run one scheduling pass; `latest` is resolved fresh for every pass."""
        return self._run(from_block, to_block, state=state, max_chunks=max_chunks)

    def resolve_names(self) -> ResolveReport:
        return self.resolver.resolve_all()

    def load_state(self) -> IngestionState | None:
        doc = self.store.find_one(STATE_COLLECTION, CURSOR_ID)
        return IngestionState.from_document(doc) if doc else None

    def save_state(self, state: IngestionState) -> None:
        result = self.store.bulk_upsert(STATE_COLLECTION, [(CURSOR_ID, state.to_document())])
        if result.failed_ids:
            raise DocumentStoreError("CURSOR_WRITE_FAILED")

    def _run(
        self,
        from_block: int,
        end: int | str,
        *,
        state: IngestionState | None,
        max_chunks: int | None,
    ) -> IngestionResult:
        origin = from_block
        if state is not None and state.status != "completed" and state.origin_block <= from_block:
            origin = state.origin_block
        scheduler = self._scheduler()
        sizing = self._sizing(scheduler, state)
        try:
            outcome = scheduler.run(from_block, end, max_chunks=max_chunks, sizing=sizing)
        except IngestionCancelled as exc:
            logger.info("Indexer pass cancelled from=%s to=%s", from_block, end)
            return self._aborted(from_block, origin, state, sizing, "cancelled", reason_code(exc))
        except Exception as exc:
            code = reason_code(exc)
            logger.error("Indexer pass failed from=%s to=%s code=%s", from_block, end, code)
            return self._aborted(from_block, origin, state, sizing.after_failure(), "error", code)

        names: ResolveReport | None = None
        error = outcome.error
        status: str = outcome.status
        if self._should_resolve(outcome):
            try:
                names = self.resolver.resolve_all()
            except DocumentStoreError as exc:
                error = reason_code(exc)
                status = "error"
                logger.error("Indexer name resolution failed code=%s", error)
        return self._result(outcome, origin=origin, status=status, error=error, names=names)

    def _aborted(
        self,
        from_block: int,
        origin: int,
        state: IngestionState | None,
        sizing: ChunkSizing,
        status: str,
        code: str,
    ) -> IngestionResult:
        target = state.target_block if state else None
        aborted_state = IngestionState(
            origin_block=origin,
            next_start_block=from_block,
            target_block=target,
            chunk_size=sizing.chunk_size,
            consecutive_successes=sizing.consecutive_successes,
            consecutive_failures=sizing.consecutive_failures,
            status=status,
            last_error=code,
            updated_at_utc=_utc_now(),
        )
        return IngestionResult(
            status=status,
            next_start_block=from_block,
            state=aborted_state,
            target_block=target,
            progress=_progress(origin, from_block, target),
            error=code,
        )

    def _scheduler(self) -> ChunkScheduler:
        return ChunkScheduler(
            self._process_chunk,
            self.fetcher.latest_block,
            chunk_size=self.policy.chunk_size,
            min_chunk_size=self.policy.min_chunk_size,
            adaptive=self.policy.adaptive_chunking,
            pacing_delay_seconds=self.policy.pacing_delay_seconds,
            cancel_event=self.cancel_event,
            sleep=self.sleep,
        )

    def _sizing(self, scheduler: ChunkScheduler, state: IngestionState | None) -> ChunkSizing:
        sizing = scheduler.initial_sizing()
        if state is None or not self.policy.adaptive_chunking or state.chunk_size is None:
            return sizing
        size = min(max(state.chunk_size, sizing.min_chunk_size), sizing.max_chunk_size)
        return replace(
            sizing,
            chunk_size=size,
            consecutive_successes=state.consecutive_successes,
            consecutive_failures=state.consecutive_failures,
        )

    def _should_resolve(self, outcome: PassResult) -> bool:
        mode = self.policy.resolve_names
        if mode == "never" or not outcome.completed_chunks:
            return False
        if mode == "every_chunk":
            return True
        return outcome.status == "completed"

    def _process_chunk(self, block_range: BlockRange) -> ChunkOutcome:
        logs = self.fetcher.fetch(block_range)
        timestamps: dict[int, int | None] = {}
        known = [log for log in logs if signature_for_topic(log.topic0) is not None]
        if self.timestamps is not None and known:
            timestamps = self.timestamps.resolve(log.block_number for log in known)
        normalized = normalize_logs(logs, timestamps)
        stored = self.event_store.store(normalized.events)
        if stored.failed_ids:
            raise DocumentStoreError("EVENT_WRITE_FAILED", ",".join(stored.failed_ids[:5]))
        projection = self.projector.apply(normalized.events)
        by_type: dict[str, int] = {}
        for event in normalized.events:
            by_type[event.event_type] = by_type.get(event.event_type, 0) + 1
        outcome = ChunkOutcome(
            block_range=block_range,
            logs_fetched=len(logs),
            events_in_chunk=len(normalized.events),
            new_events_stored=stored.inserted_count,
            updated_events=stored.updated_count,
            unchanged_events=stored.unchanged_count,
            malformed_logs=normalized.malformed_logs,
            unknown_logs=normalized.unknown_logs,
            by_type=by_type,
            projection=projection,
        )
        logger.info(
            "Indexer chunk range=%s logs=%s events=%s inserted=%s updated=%s malformed=%s unknown=%s",
            block_range,
            outcome.logs_fetched,
            outcome.events_in_chunk,
            outcome.new_events_stored,
            outcome.updated_events,
            outcome.malformed_logs,
            outcome.unknown_logs,
        )
        return outcome

    def _result(
        self,
        outcome: PassResult,
        *,
        origin: int,
        status: str,
        error: str | None,
        names: ResolveReport | None,
    ) -> IngestionResult:
        completed = outcome.completed_chunks
        by_type: dict[str, int] = {}
        projection: dict[str, Any] = {
            "applied": {},
            "placeholders_created": 0,
            "placeholders_reconciled": 0,
            "inconsistencies": {},
        }
        for chunk in completed:
            for event_type, count in chunk.by_type.items():
                by_type[event_type] = by_type.get(event_type, 0) + count
            if chunk.projection is None:
                continue
            report = chunk.projection
            for event_type, count in report.applied.items():
                projection["applied"][event_type] = projection["applied"].get(event_type, 0) + count
            for code, count in report.inconsistencies.items():
                projection["inconsistencies"][code] = projection["inconsistencies"].get(code, 0) + count
            projection["placeholders_created"] += report.placeholders_created
            projection["placeholders_reconciled"] += report.placeholders_reconciled
        state = IngestionState(
            origin_block=origin,
            next_start_block=outcome.next_start_block,
            target_block=outcome.target_block,
            chunk_size=outcome.sizing.chunk_size,
            consecutive_successes=outcome.sizing.consecutive_successes,
            consecutive_failures=outcome.sizing.consecutive_failures,
            status=status,
            last_error=error,
            updated_at_utc=_utc_now(),
        )
        return IngestionResult(
            status=status,
            next_start_block=outcome.next_start_block,
            state=state,
            target_block=outcome.target_block,
            chunks=len(completed),
            events_in_chunk=sum(chunk.events_in_chunk for chunk in completed),
            new_events_stored=sum(chunk.new_events_stored for chunk in completed),
            updated_events=sum(chunk.updated_events for chunk in completed),
            unchanged_events=sum(chunk.unchanged_events for chunk in completed),
            malformed_logs=sum(chunk.malformed_logs for chunk in completed),
            unknown_logs=sum(chunk.unknown_logs for chunk in completed),
            by_type=type_breakdown(by_type),
            progress=_progress(origin, outcome.next_start_block, outcome.target_block),
            projection=projection,
            names=names.as_dict() if names else None,
            error=error,
        )


def type_breakdown(counts: dict[str, int]) -> dict[str, dict[str, float]]:
    """Per-type counts with percentages, largest first, zero counts omitted."""
    total = sum(counts.values())
    ordered = sorted(
        ((event_type, count) for event_type, count in counts.items() if count > 0),
        key=lambda item: (-item[1], EVENT_TYPES.index(item[0]) if item[0] in EVENT_TYPES else len(EVENT_TYPES)),
    )
    return {
        event_type: {"count": count, "percentage": round(count * 100.0 / total, 2)}
        for event_type, count in ordered
    }


def _progress(origin: int, next_start_block: int, target_block: int | None) -> dict[str, Any]:
    current = next_start_block - 1
    completion: float | None = None
    if target_block is not None:
        span = target_block - origin + 1
        if span <= 0:
            completion = 100.0
        else:
            done = min(max(next_start_block - origin, 0), span)
            completion = round(done * 100.0 / span, 2)
    return {
        "from_block": origin,
        "to_block": target_block,
        "current_block": current,
        "completion": completion,
    }


def _is_latest(value: int | str) -> bool:
    return isinstance(value, str) and value.strip().lower() == "latest"


def _utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()
