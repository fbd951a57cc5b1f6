"""HyperMap event model and normalizer."""

from .models import (
    EVENT_TYPES,
    EventBase,
    FactEvent,
    GeneEvent,
    HyperMapEvent,
    MintEvent,
    NoteEvent,
    RawLog,
    TransferEvent,
    UpgradedEvent,
    ZeroEvent,
)
from .normalizer import EventDecodeError, NormalizationResult, normalize_log, normalize_logs

__all__ = [
    "EVENT_TYPES",
    "EventBase",
    "EventDecodeError",
    "FactEvent",
    "GeneEvent",
    "HyperMapEvent",
    "MintEvent",
    "NormalizationResult",
    "NoteEvent",
    "RawLog",
    "TransferEvent",
    "UpgradedEvent",
    "ZeroEvent",
    "normalize_log",
    "normalize_logs",
]
