"""Namespace projection: fold HyperMap events into the entry graph."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Iterable

from hypermap_indexer.docstore import BulkUpsertResult, DocumentStoreError
from hypermap_indexer.events.models import (
    EventBase,
    FactEvent,
    GeneEvent,
    MintEvent,
    NoteEvent,
    TransferEvent,
)

from .models import LogPosition, NamespaceEntry, is_root
from .repository import EntryRepository

logger = logging.getLogger("hypermap_indexer.projection")


@dataclass
class ProjectionReport:
    applied: dict[str, int] = field(default_factory=dict)
    placeholders_created: int = 0
    placeholders_reconciled: int = 0
    inconsistencies: dict[str, int] = field(default_factory=dict)
    entries_written: BulkUpsertResult = field(default_factory=BulkUpsertResult)

    def note_applied(self, event_type: str) -> None:
        self.applied[event_type] = self.applied.get(event_type, 0) + 1

    def note_inconsistency(self, code: str) -> None:
        self.inconsistencies[code] = self.inconsistencies.get(code, 0) + 1

    def as_dict(self) -> dict[str, Any]:
        return {
            "applied": dict(sorted(self.applied.items())),
            "placeholders_created": self.placeholders_created,
            "placeholders_reconciled": self.placeholders_reconciled,
            "inconsistencies": dict(sorted(self.inconsistencies.items())),
            "entries_written": self.entries_written.as_dict(),
        }


class NamespaceProjector:
    """Applies an ordered batch of events to the entry graph.

    Entries are loaded lazily into a per-batch working set, folded in memory
    and written back with a single bulk upsert. Events that reference an
    entry that does not exist yet are dropped with a warning.
    """

    def __init__(self, repository: EntryRepository) -> None:
        self.repository = repository

    def apply(self, events: Iterable[EventBase]) -> ProjectionReport:
        batch = _WorkingSet(self.repository)
        report = ProjectionReport()
        for event in events:
            if isinstance(event, MintEvent):
                self._apply_mint(batch, event, report)
            elif isinstance(event, FactEvent):
                self._apply_fact(batch, event, report)
            elif isinstance(event, NoteEvent):
                self._apply_note(batch, event, report)
            elif isinstance(event, GeneEvent):
                self._apply_gene(batch, event, report)
            elif isinstance(event, TransferEvent):
                self._apply_transfer(batch, event, report)
            report.note_applied(event.event_type)
        report.entries_written = batch.flush()
        if report.entries_written.failed_ids:
            raise DocumentStoreError(
                "ENTRY_WRITE_FAILED",
                ",".join(report.entries_written.failed_ids[:5]),
            )
        if report.applied:
            logger.info(
                "Projection applied events=%s placeholders_created=%s reconciled=%s inconsistencies=%s",
                sum(report.applied.values()),
                report.placeholders_created,
                report.placeholders_reconciled,
                sum(report.inconsistencies.values()),
            )
        return report

    def _apply_mint(self, batch: "_WorkingSet", event: MintEvent, report: ProjectionReport) -> None:
        parent_hash = event.parent_hash.lower()
        child_hash = event.child_hash.lower()
        block = event.block_number
        if child_hash == parent_hash or is_root(child_hash):
            report.note_inconsistency("MINT_INVALID_CHILD")
            logger.warning(
                "Projection inconsistency code=MINT_INVALID_CHILD event_id=%s child=%s",
                event.event_id,
                child_hash,
            )
            return

        child = batch.get(child_hash)
        if child is None:
            child = NamespaceEntry(
                hash=child_hash,
                label=event.label,
                parent_hash=parent_hash,
                creation_block=block,
                last_update_block=block,
                label_valid=event.label_valid,
                label_hash=event.label_hash,
                creation_tx=event.transaction_hash,
                creation_timestamp=event.timestamp,
            )
        elif child.placeholder:
            self._reconcile(batch, child, event, parent_hash)
            report.placeholders_reconciled += 1
        else:
            if child.parent_hash != parent_hash or child.label != event.label:
                report.note_inconsistency("MINT_CONFLICT")
                logger.warning(
                    "Projection inconsistency code=MINT_CONFLICT hash=%s stored_parent=%s event_parent=%s",
                    child_hash,
                    child.parent_hash,
                    parent_hash,
                )
                return
            if child.creation_tx is None:
                child.creation_tx = event.transaction_hash
            if child.creation_timestamp is None:
                child.creation_timestamp = event.timestamp
            child.creation_block = min(child.creation_block, block)
        child.touch(block)
        batch.put(child)
        if is_root(parent_hash):
            return
        parent = batch.get(parent_hash)
        if parent is None:
            parent = NamespaceEntry.new_placeholder(parent_hash, block)
            report.placeholders_created += 1
            logger.info(
                "Projection placeholder created hash=%s child=%s block=%s",
                parent_hash,
                child_hash,
                block,
            )
        parent.add_child(child_hash)
        parent.touch(block)
        batch.put(parent)

    def _reconcile(
        self, batch: "_WorkingSet", child: NamespaceEntry, event: MintEvent, parent_hash: str
    ) -> None:
        previous_parent = child.parent_hash
        child.label = event.label
        child.parent_hash = parent_hash
        child.placeholder = False
        child.label_valid = event.label_valid
        child.label_hash = event.label_hash
        child.creation_block = min(child.creation_block, event.block_number)
        child.creation_tx = event.transaction_hash
        child.creation_timestamp = event.timestamp
        if previous_parent != parent_hash and not is_root(previous_parent):
            old_parent = batch.get(previous_parent)
            if old_parent is not None and old_parent.remove_child(child.hash):
                batch.put(old_parent)
        cleared = self._invalidate_names(batch, child)
        logger.info(
            "Projection placeholder reconciled hash=%s label=%s parent=%s names_cleared=%s",
            child.hash,
            child.label,
            parent_hash,
            cleared,
        )

    def _invalidate_names(self, batch: "_WorkingSet", root_entry: NamespaceEntry) -> int:
        cleared = 0
        seen: set[str] = set()
        pending = [root_entry]
        while pending:
            entry = pending.pop()
            if entry.hash in seen:
                continue
            seen.add(entry.hash)
            if entry.full_name is not None:
                entry.full_name = None
                cleared += 1
                batch.put(entry)
            for child_hash in entry.children:
                child = batch.get(child_hash)
                if child is not None:
                    pending.append(child)
        return cleared

    def _apply_fact(self, batch: "_WorkingSet", event: FactEvent, report: ProjectionReport) -> None:
        entry = batch.get(event.parent_hash.lower())
        if entry is None:
            self._unknown_entry(report, "UNKNOWN_ENTRY_FACT", event, event.parent_hash)
            return
        # facts are write-once on chain, a replay carries the same value
        entry.facts[event.label] = event.data
        entry.touch(event.block_number)
        batch.put(entry)

    def _apply_note(self, batch: "_WorkingSet", event: NoteEvent, report: ProjectionReport) -> None:
        entry = batch.get(event.parent_hash.lower())
        if entry is None:
            self._unknown_entry(report, "UNKNOWN_ENTRY_NOTE", event, event.parent_hash)
            return
        entry.set_note(event.label, event.data, _position(event))
        entry.touch(event.block_number)
        batch.put(entry)

    def _apply_gene(self, batch: "_WorkingSet", event: GeneEvent, report: ProjectionReport) -> None:
        entry = batch.get(event.entry.lower())
        if entry is None:
            self._unknown_entry(report, "UNKNOWN_ENTRY_GENE", event, event.entry)
            return
        entry.set_gene(event.gene, _position(event))
        entry.touch(event.block_number)
        batch.put(entry)

    def _apply_transfer(self, batch: "_WorkingSet", event: TransferEvent, report: ProjectionReport) -> None:
        entry = batch.get(event.entry_hash)
        if entry is None:
            self._unknown_entry(report, "UNKNOWN_ENTRY_TRANSFER", event, event.entry_hash)
            return
        entry.set_owner(event.to_address, _position(event))
        entry.touch(event.block_number)
        batch.put(entry)

    @staticmethod
    def _unknown_entry(report: ProjectionReport, code: str, event: EventBase, entry_hash: str) -> None:
        report.note_inconsistency(code)
        logger.warning(
            "Projection inconsistency code=%s event_id=%s entry=%s block=%s",
            code,
            event.event_id,
            entry_hash,
            event.block_number,
        )


class _WorkingSet:
    def __init__(self, repository: EntryRepository) -> None:
        self.repository = repository
        self._entries: dict[str, NamespaceEntry | None] = {}
        self._dirty: dict[str, NamespaceEntry] = {}

    def get(self, entry_hash: str) -> NamespaceEntry | None:
        if entry_hash not in self._entries:
            self._entries[entry_hash] = self.repository.get(entry_hash)
        return self._entries[entry_hash]

    def put(self, entry: NamespaceEntry) -> None:
        self._entries[entry.hash] = entry
        self._dirty[entry.hash] = entry

    def flush(self) -> BulkUpsertResult:
        if not self._dirty:
            return BulkUpsertResult()
        entries = [self._dirty[key] for key in sorted(self._dirty)]
        return self.repository.save_all(entries)


def _position(event: EventBase) -> LogPosition:
    return event.block_number, event.log_index
