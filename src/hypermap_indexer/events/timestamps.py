"""Block timestamp enrichment with bounded concurrent lookups."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
import logging
from typing import TYPE_CHECKING, Iterable

from hypermap_indexer.constants import DEFAULT_TIMESTAMP_FANOUT
from hypermap_indexer.ledger.errors import LedgerError, reason_code
from hypermap_indexer.ledger.retry import RetryPolicy

if TYPE_CHECKING:
    from hypermap_indexer.ledger.client import LedgerClient

logger = logging.getLogger("hypermap_indexer.events")


class TimestampResolver:
    """Looks up one timestamp per distinct block; failures degrade to None."""

    def __init__(
        self,
        client: "LedgerClient",
        retry: RetryPolicy | None = None,
        *,
        fanout: int = DEFAULT_TIMESTAMP_FANOUT,
    ) -> None:
        self.client = client
        self.retry = retry or RetryPolicy()
        self.fanout = max(1, int(fanout))

    def resolve(self, block_numbers: Iterable[int]) -> dict[int, int | None]:
        blocks = sorted(set(block_numbers))
        if not blocks:
            return {}
        if self.fanout == 1 or len(blocks) == 1:
            return {number: self._lookup(number) for number in blocks}
        timestamps: dict[int, int | None] = {}
        with ThreadPoolExecutor(max_workers=min(self.fanout, len(blocks))) as executor:
            futures = {executor.submit(self._lookup, number): number for number in blocks}
            for future in as_completed(futures):
                timestamps[futures[future]] = future.result()
        return timestamps

    def _lookup(self, number: int) -> int | None:
        try:
            header = self.retry.call(lambda: self.client.get_block(number), operation="get_block")
        except LedgerError as exc:
            logger.warning("Event timestamp unavailable block=%s code=%s", number, reason_code(exc))
            return None
        if header is None:
            logger.warning("Event timestamp unavailable block=%s code=BLOCK_NOT_FOUND", number)
            return None
        return header.timestamp
