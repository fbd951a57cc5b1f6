"""HyperMap contract and indexing defaults."""

from __future__ import annotations

CONTRACT_ADDRESS = "0x000000000044C6B8Cb4d8f0F889a3E47664EAeda"
ROOT_HASH = "0x" + "0" * 64
ZERO_ADDRESS = "0x" + "0" * 40

DEFAULT_CHAIN_ID = 8453  # Base mainnet

DEFAULT_START_BLOCK = 27270000
DEFAULT_CHUNK_SIZE = 20000
MIN_CHUNK_SIZE = 1000
DEFAULT_PACING_DELAY_SECONDS = 1.0

MAX_RETRIES = 5
DEFAULT_RETRY_BASE_DELAY_SECONDS = 1.0
DEFAULT_RETRY_JITTER_SECONDS = 1.0

DEFAULT_TIMESTAMP_FANOUT = 8
DEFAULT_NAME_SEPARATOR = "/"

PLACEHOLDER_LABEL = "[unknown]"

EVENTS_COLLECTION = "events"
ENTRIES_COLLECTION = "entries"
STATE_COLLECTION = "indexer_state"
