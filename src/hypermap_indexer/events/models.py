"""Raw ledger logs and the typed HyperMap events decoded from them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


@dataclass(frozen=True)
class RawLog:
    block_number: int
    block_hash: str
    transaction_hash: str
    transaction_index: int
    log_index: int
    address: str
    topics: tuple[str, ...]
    data: str = "0x"

    @property
    def topic0(self) -> str | None:
        return self.topics[0] if self.topics else None


@dataclass(frozen=True)
class EventBase:
    block_number: int
    block_hash: str
    transaction_hash: str
    transaction_index: int
    log_index: int
    contract_address: str
    timestamp: int | None = field(default=None, kw_only=True)

    event_type: ClassVar[str] = ""

    @property
    def event_id(self) -> str:
        return f"{self.transaction_hash}_{self.log_index}"

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "block_number": self.block_number,
            "block_hash": self.block_hash,
            "transaction_hash": self.transaction_hash,
            "transaction_index": self.transaction_index,
            "log_index": self.log_index,
            "contract_address": self.contract_address,
            "timestamp": self.timestamp,
        }
        doc.update(self._payload())
        return doc

    def _payload(self) -> dict[str, Any]:
        return {}


@dataclass(frozen=True)
class _LabelledEvent(EventBase):
    parent_hash: str
    label_hash: str
    label: str
    label_raw: str
    label_valid: bool


@dataclass(frozen=True)
class MintEvent(_LabelledEvent):
    child_hash: str

    event_type: ClassVar[str] = "Mint"

    def _payload(self) -> dict[str, Any]:
        return {
            "parent_hash": self.parent_hash,
            "child_hash": self.child_hash,
            "label_hash": self.label_hash,
            "label": self.label,
            "label_raw": self.label_raw,
            "label_valid": self.label_valid,
        }


@dataclass(frozen=True)
class FactEvent(_LabelledEvent):
    fact_hash: str
    data: str

    event_type: ClassVar[str] = "Fact"

    def _payload(self) -> dict[str, Any]:
        return {
            "parent_hash": self.parent_hash,
            "fact_hash": self.fact_hash,
            "label_hash": self.label_hash,
            "label": self.label,
            "label_raw": self.label_raw,
            "label_valid": self.label_valid,
            "data": self.data,
        }


@dataclass(frozen=True)
class NoteEvent(_LabelledEvent):
    note_hash: str
    data: str

    event_type: ClassVar[str] = "Note"

    def _payload(self) -> dict[str, Any]:
        return {
            "parent_hash": self.parent_hash,
            "note_hash": self.note_hash,
            "label_hash": self.label_hash,
            "label": self.label,
            "label_raw": self.label_raw,
            "label_valid": self.label_valid,
            "data": self.data,
        }


@dataclass(frozen=True)
class GeneEvent(EventBase):
    entry: str
    gene: str

    event_type: ClassVar[str] = "Gene"

    def _payload(self) -> dict[str, Any]:
        return {"entry": self.entry, "gene": self.gene}


@dataclass(frozen=True)
class TransferEvent(EventBase):
    from_address: str
    to_address: str
    token_id: int
    entry_hash: str

    event_type: ClassVar[str] = "Transfer"

    def _payload(self) -> dict[str, Any]:
        # token ids are uint256 and exceed JSON integer precision, keep them as text.
        return {
            "from": self.from_address,
            "to": self.to_address,
            "id": str(self.token_id),
            "entry_hash": self.entry_hash,
        }


@dataclass(frozen=True)
class ZeroEvent(EventBase):
    zero_tba: str

    event_type: ClassVar[str] = "Zero"

    def _payload(self) -> dict[str, Any]:
        return {"zero_tba": self.zero_tba}


@dataclass(frozen=True)
class UpgradedEvent(EventBase):
    implementation: str

    event_type: ClassVar[str] = "Upgraded"

    def _payload(self) -> dict[str, Any]:
        return {"implementation": self.implementation}


HyperMapEvent = (
    MintEvent | FactEvent | NoteEvent | GeneEvent | TransferEvent | ZeroEvent | UpgradedEvent
)

EVENT_TYPES: tuple[str, ...] = ("Mint", "Fact", "Note", "Gene", "Transfer", "Zero", "Upgraded")


def sort_key(event: EventBase) -> tuple[int, int]:
    return (event.block_number, event.log_index)
