"""HyperMap event signatures and their topic0 hashes."""

from __future__ import annotations

from dataclasses import dataclass

from eth_utils import event_signature_to_log_topic, to_hex


@dataclass(frozen=True)
class EventSignature:
    name: str
    signature: str
    indexed: int
    data_types: tuple[str, ...]

    @property
    def topic(self) -> str:
        return to_hex(event_signature_to_log_topic(self.signature))


MINT = EventSignature("Mint", "Mint(bytes32,bytes32,bytes,bytes)", 3, ("bytes",))
FACT = EventSignature("Fact", "Fact(bytes32,bytes32,bytes,bytes,bytes)", 3, ("bytes", "bytes"))
NOTE = EventSignature("Note", "Note(bytes32,bytes32,bytes,bytes,bytes)", 3, ("bytes", "bytes"))
GENE = EventSignature("Gene", "Gene(bytes32,address)", 2, ())
TRANSFER = EventSignature("Transfer", "Transfer(address,address,uint256)", 3, ())
ZERO = EventSignature("Zero", "Zero(address)", 1, ())
UPGRADED = EventSignature("Upgraded", "Upgraded(address)", 1, ())

SIGNATURES: tuple[EventSignature, ...] = (MINT, FACT, NOTE, GENE, TRANSFER, ZERO, UPGRADED)

SIGNATURES_BY_TOPIC: dict[str, EventSignature] = {sig.topic: sig for sig in SIGNATURES}


def signature_for_topic(topic0: str | None) -> EventSignature | None:
    if not topic0:
        return None
    return SIGNATURES_BY_TOPIC.get(topic0.lower())
