"""Remote ledger access: client, retry policy, range fetcher."""

from .client import BlockHeader, JsonRpcLedgerClient, LedgerClient
from .errors import FatalError, IngestionCancelled, LedgerError, TransientError
from .fetcher import BlockRange, RangeFetcher
from .retry import RetryPolicy

__all__ = [
    "BlockHeader",
    "BlockRange",
    "FatalError",
    "IngestionCancelled",
    "JsonRpcLedgerClient",
    "LedgerClient",
    "LedgerError",
    "RangeFetcher",
    "RetryPolicy",
    "TransientError",
]
