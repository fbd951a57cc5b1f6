"""Range fetcher: one contract, one closed block interval, all logs or failure."""

from __future__ import annotations

from dataclasses import dataclass
import logging

from hypermap_indexer.events.models import RawLog

from .client import LedgerClient
from .errors import FatalError
from .retry import RetryPolicy

logger = logging.getLogger("hypermap_indexer.ledger")


@dataclass(frozen=True)
class BlockRange:
    from_block: int
    to_block: int

    @property
    def size(self) -> int:
        return self.to_block - self.from_block + 1

    def contains(self, block_number: int) -> bool:
        return self.from_block <= block_number <= self.to_block

    def __str__(self) -> str:
        return f"[{self.from_block},{self.to_block}]"


class RangeFetcher:
    def __init__(self, client: LedgerClient, contract_address: str, retry: RetryPolicy | None = None) -> None:
        self.client = client
        self.contract_address = contract_address
        self.retry = retry or RetryPolicy()

    def fetch(self, block_range: BlockRange) -> list[RawLog]:
        if block_range.from_block < 0 or block_range.to_block < block_range.from_block:
            raise FatalError("INVALID_RANGE", str(block_range))
        logs = self.retry.call(
            lambda: self.client.get_logs(
                self.contract_address, block_range.from_block, block_range.to_block
            ),
            operation="get_logs",
        )
        expected_address = self.contract_address.lower()
        for log in logs:
            if not block_range.contains(log.block_number):
                raise FatalError(
                    "RESPONSE_OUT_OF_RANGE",
                    f"block={log.block_number} range={block_range}",
                )
            if log.address.lower() != expected_address:
                raise FatalError("RESPONSE_OUT_OF_RANGE", f"address={log.address}")
        ordered = sorted(logs, key=lambda log: (log.block_number, log.log_index))
        logger.debug("Ledger fetch range=%s logs=%s", block_range, len(ordered))
        return ordered

    def latest_block(self) -> int:
        return self.retry.call(self.client.get_latest_block_number, operation="get_latest_block_number")
