"""Event normalizer: raw ledger logs -> typed HyperMap events."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Callable, Iterable, Mapping

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address

from .models import (
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
from .signatures import FACT, GENE, MINT, NOTE, TRANSFER, UPGRADED, ZERO, EventSignature, signature_for_topic

logger = logging.getLogger("hypermap_indexer.events")


class EventDecodeError(ValueError):
    """A log matched a known signature but its topics or data do not decode."""

    def __init__(self, event_type: str, detail: str) -> None:
        self.code = "EVENT_DECODE_FAILED"
        self.event_type = event_type
        self.detail = detail
        super().__init__(f"{self.code}:{event_type}:{detail}")


@dataclass
class NormalizationResult:
    events: list[HyperMapEvent] = field(default_factory=list)
    unknown_logs: int = 0
    malformed_logs: int = 0
    malformed_ids: list[str] = field(default_factory=list)


def decode_label(raw: bytes) -> tuple[str, bool]:
    """UTF-8 decode a label; undecodable bytes fall back to their 0x-hex form."""
    try:
        return raw.decode("utf-8"), True
    except UnicodeDecodeError:
        return "0x" + raw.hex(), False


def normalize_log(raw: RawLog, timestamp: int | None = None) -> HyperMapEvent | None:
    """Decode one raw log; None when topic0 is not a HyperMap event."""
    signature = signature_for_topic(raw.topic0)
    if signature is None:
        return None
    if len(raw.topics) != signature.indexed + 1:
        raise EventDecodeError(
            signature.name,
            f"expected {signature.indexed + 1} topics, got {len(raw.topics)}",
        )
    decoder = _DECODERS[signature.name]
    base = {
        "block_number": raw.block_number,
        "block_hash": raw.block_hash,
        "transaction_hash": raw.transaction_hash,
        "transaction_index": raw.transaction_index,
        "log_index": raw.log_index,
        "contract_address": to_checksum_address(raw.address),
        "timestamp": timestamp,
    }
    try:
        return decoder(raw, base)
    except EventDecodeError:
        raise
    except (DecodingError, ValueError, TypeError) as exc:
        raise EventDecodeError(signature.name, str(exc)[:200]) from exc


def normalize_logs(
    logs: Iterable[RawLog],
    timestamps: Mapping[int, int | None] | None = None,
) -> NormalizationResult:
    result = NormalizationResult()
    timestamps = timestamps or {}
    for raw in logs:
        try:
            event = normalize_log(raw, timestamps.get(raw.block_number))
        except EventDecodeError as exc:
            result.malformed_logs += 1
            result.malformed_ids.append(f"{raw.transaction_hash}_{raw.log_index}")
            logger.warning(
                "Event malformed tx=%s log_index=%s type=%s detail=%s",
                raw.transaction_hash,
                raw.log_index,
                exc.event_type,
                exc.detail,
            )
            continue
        if event is None:
            result.unknown_logs += 1
            logger.debug(
                "Event unknown topic tx=%s log_index=%s topic0=%s",
                raw.transaction_hash,
                raw.log_index,
                raw.topic0,
            )
            continue
        result.events.append(event)
    return result


def _data_bytes(raw: RawLog) -> bytes:
    data = raw.data or "0x"
    if data[:2].lower() == "0x":
        data = data[2:]
    return bytes.fromhex(data)


def _topic_address(topic: str) -> str:
    return to_checksum_address("0x" + topic[-40:])


def _decode_labelled(raw: RawLog, signature: EventSignature) -> tuple[bytes, ...]:
    return tuple(abi_decode(list(signature.data_types), _data_bytes(raw)))


def _label_fields(label_bytes: bytes, label_hash: str) -> dict[str, Any]:
    label, valid = decode_label(label_bytes)
    return {
        "label_hash": label_hash,
        "label": label,
        "label_raw": "0x" + label_bytes.hex(),
        "label_valid": valid,
    }


def _decode_mint(raw: RawLog, base: dict[str, Any]) -> MintEvent:
    (label_bytes,) = _decode_labelled(raw, MINT)
    return MintEvent(
        **base,
        parent_hash=raw.topics[1],
        child_hash=raw.topics[2],
        **_label_fields(label_bytes, raw.topics[3]),
    )


def _decode_fact(raw: RawLog, base: dict[str, Any]) -> FactEvent:
    label_bytes, data = _decode_labelled(raw, FACT)
    return FactEvent(
        **base,
        parent_hash=raw.topics[1],
        fact_hash=raw.topics[2],
        data="0x" + data.hex(),
        **_label_fields(label_bytes, raw.topics[3]),
    )


def _decode_note(raw: RawLog, base: dict[str, Any]) -> NoteEvent:
    label_bytes, data = _decode_labelled(raw, NOTE)
    return NoteEvent(
        **base,
        parent_hash=raw.topics[1],
        note_hash=raw.topics[2],
        data="0x" + data.hex(),
        **_label_fields(label_bytes, raw.topics[3]),
    )


def _decode_gene(raw: RawLog, base: dict[str, Any]) -> GeneEvent:
    return GeneEvent(**base, entry=raw.topics[1], gene=_topic_address(raw.topics[2]))


def _decode_transfer(raw: RawLog, base: dict[str, Any]) -> TransferEvent:
    token_id = int(raw.topics[3], 16)
    return TransferEvent(
        **base,
        from_address=_topic_address(raw.topics[1]),
        to_address=_topic_address(raw.topics[2]),
        token_id=token_id,
        entry_hash="0x" + token_id.to_bytes(32, "big").hex(),
    )


def _decode_zero(raw: RawLog, base: dict[str, Any]) -> ZeroEvent:
    return ZeroEvent(**base, zero_tba=_topic_address(raw.topics[1]))


def _decode_upgraded(raw: RawLog, base: dict[str, Any]) -> UpgradedEvent:
    return UpgradedEvent(**base, implementation=_topic_address(raw.topics[1]))


_DECODERS: dict[str, Callable[[RawLog, dict[str, Any]], HyperMapEvent]] = {
    MINT.name: _decode_mint,
    FACT.name: _decode_fact,
    NOTE.name: _decode_note,
    GENE.name: _decode_gene,
    TRANSFER.name: _decode_transfer,
    ZERO.name: _decode_zero,
    UPGRADED.name: _decode_upgraded,
}
