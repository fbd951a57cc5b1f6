"""Chunk scheduler: partition a block interval and process it chunk by chunk."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
import threading
from typing import Any, Callable, Iterator, Literal

from hypermap_indexer.ledger.errors import IngestionCancelled, reason_code
from hypermap_indexer.ledger.fetcher import BlockRange
from hypermap_indexer.ledger.retry import cancellable_sleep
from hypermap_indexer.namespace.projector import ProjectionReport

logger = logging.getLogger("hypermap_indexer.indexer")

PassStatus = Literal["completed", "running", "error", "cancelled"]

GROWTH_STREAK = 3
GROWTH_FACTOR = 1.5


def iter_partitions(start: int, end: int, chunk_size: int) -> Iterator[BlockRange]:
    """Lazily yield contiguous closed intervals of at most chunk_size blocks covering [start, end]."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    if start < 0:
        raise ValueError("start must be >= 0")
    cursor = start
    while cursor <= end:
        upper = min(cursor + chunk_size - 1, end)
        yield BlockRange(cursor, upper)
        cursor = upper + 1


def partition_range(start: int, end: int, chunk_size: int) -> list[BlockRange]:
    """Split [start, end] into contiguous closed intervals of at most chunk_size blocks."""
    return list(iter_partitions(start, end, chunk_size))


@dataclass(frozen=True)
class ChunkSizing:
    chunk_size: int
    min_chunk_size: int
    max_chunk_size: int
    adaptive: bool = False
    consecutive_successes: int = 0
    consecutive_failures: int = 0

    def after_success(self) -> "ChunkSizing":
        successes = self.consecutive_successes + 1
        size = self.chunk_size
        if self.adaptive and successes >= GROWTH_STREAK:
            grown = min(int(size * GROWTH_FACTOR), self.max_chunk_size)
            if grown != size:
                logger.info("Indexer chunk size grow from=%s to=%s", size, grown)
            size = grown
            successes = 0
        return replace(self, chunk_size=size, consecutive_successes=successes, consecutive_failures=0)

    def after_failure(self) -> "ChunkSizing":
        size = self.chunk_size
        if self.adaptive:
            shrunk = max(size // 2, self.min_chunk_size)
            if shrunk != size:
                logger.info("Indexer chunk size shrink from=%s to=%s", size, shrunk)
            size = shrunk
        return replace(
            self,
            chunk_size=size,
            consecutive_successes=0,
            consecutive_failures=self.consecutive_failures + 1,
        )


@dataclass
class ChunkOutcome:
    block_range: BlockRange
    status: str = "ok"
    logs_fetched: int = 0
    events_in_chunk: int = 0
    new_events_stored: int = 0
    updated_events: int = 0
    unchanged_events: int = 0
    malformed_logs: int = 0
    unknown_logs: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    projection: ProjectionReport | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "from_block": self.block_range.from_block,
            "to_block": self.block_range.to_block,
            "status": self.status,
            "logs_fetched": self.logs_fetched,
            "events_in_chunk": self.events_in_chunk,
            "new_events_stored": self.new_events_stored,
            "updated_events": self.updated_events,
            "unchanged_events": self.unchanged_events,
            "malformed_logs": self.malformed_logs,
            "unknown_logs": self.unknown_logs,
            "by_type": dict(self.by_type),
            "projection": self.projection.as_dict() if self.projection else None,
            "error": self.error,
        }


@dataclass
class PassResult:
    status: PassStatus
    start_block: int
    target_block: int
    next_start_block: int
    sizing: ChunkSizing
    outcomes: list[ChunkOutcome] = field(default_factory=list)
    error: str | None = None

    @property
    def completed_chunks(self) -> list[ChunkOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status == "ok"]


class ChunkScheduler:
    """Processes consecutive chunks until the target, a failure or cancellation.

    `end="latest"` is resolved once per pass. A failed chunk stops the pass and
    `next_start_block` stays at that chunk's start.
    """

    def __init__(
        self,
        processor: Callable[[BlockRange], ChunkOutcome],
        latest_block: Callable[[], int],
        *,
        chunk_size: int,
        min_chunk_size: int | None = None,
        adaptive: bool = False,
        pacing_delay_seconds: float = 0.0,
        cancel_event: threading.Event | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        self.processor = processor
        self.latest_block = latest_block
        self.chunk_size = chunk_size
        self.min_chunk_size = min(min_chunk_size or chunk_size, chunk_size)
        self.adaptive = adaptive
        self.pacing_delay_seconds = pacing_delay_seconds
        self.cancel_event = cancel_event or threading.Event()
        self.sleep = sleep

    def initial_sizing(self) -> ChunkSizing:
        return ChunkSizing(
            chunk_size=self.chunk_size,
            min_chunk_size=self.min_chunk_size,
            max_chunk_size=self.chunk_size,
            adaptive=self.adaptive,
        )

    def resolve_target(self, end: int | str) -> int:
        if isinstance(end, str):
            if end.strip().lower() != "latest":
                raise ValueError(f"unsupported end block: {end!r}")
            return int(self.latest_block())
        return int(end)

    def run(
        self,
        start: int,
        end: int | str,
        *,
        max_chunks: int | None = None,
        sizing: ChunkSizing | None = None,
    ) -> PassResult:
        target = self.resolve_target(end)
        sizing = sizing or self.initial_sizing()
        result = PassResult(
            status="running",
            start_block=start,
            target_block=target,
            next_start_block=start,
            sizing=sizing,
        )
        if start > target:
            if isinstance(end, str):
                # tip is behind the cursor: nothing new to index
                result.status = "completed"
                return result
            logger.error("Indexer invalid range from=%s to=%s code=INVALID_RANGE", start, target)
            result.status = "error"
            result.error = "INVALID_RANGE"
            return result
        cursor = start
        attempts = 0
        while True:
            if self.cancel_event.is_set():
                result.status = "cancelled"
                break
            if max_chunks is not None and attempts >= max_chunks:
                result.status = "running"
                break
            if attempts > 0:
                try:
                    self._pace()
                except IngestionCancelled:
                    result.status = "cancelled"
                    break
            chunk = next(iter_partitions(cursor, target, sizing.chunk_size))
            attempts += 1
            try:
                outcome = self.processor(chunk)
            except IngestionCancelled:
                logger.info("Indexer chunk cancelled range=%s", chunk)
                result.status = "cancelled"
                break
            except Exception as exc:
                code = reason_code(exc)
                logger.error("Indexer chunk failed range=%s code=%s error=%s", chunk, code, str(exc)[:256])
                result.outcomes.append(ChunkOutcome(block_range=chunk, status="failed", error=code))
                result.error = code
                result.status = "error"
                sizing = sizing.after_failure()
                break
            result.outcomes.append(outcome)
            sizing = sizing.after_success()
            cursor = chunk.to_block + 1
            if cursor > target:
                result.status = "completed"
                break
        result.next_start_block = cursor
        result.sizing = sizing
        return result

    def _pace(self) -> None:
        if self.pacing_delay_seconds <= 0:
            if self.cancel_event.is_set():
                raise IngestionCancelled("cancelled before chunk")
            return
        if self.sleep is not None:
            self.sleep(self.pacing_delay_seconds)
            return
        cancellable_sleep(self.pacing_delay_seconds, self.cancel_event)
