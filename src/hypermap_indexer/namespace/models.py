"""Namespace entry model."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from hypermap_indexer.constants import PLACEHOLDER_LABEL, ROOT_HASH

# (block_number, log_index) of the event that last wrote a mutable field.
LogPosition = tuple[int, int]


def is_root(entry_hash: str | None) -> bool:
    return (entry_hash or "").lower() == ROOT_HASH


@dataclass
class NamespaceEntry:
    hash: str
    label: str
    parent_hash: str
    creation_block: int
    last_update_block: int
    full_name: str | None = None
    owner: str | None = None
    gene: str | None = None
    facts: dict[str, str] = field(default_factory=dict)
    notes: dict[str, str] = field(default_factory=dict)
    children: list[str] = field(default_factory=list)
    placeholder: bool = False
    label_valid: bool = True
    label_hash: str | None = None
    creation_tx: str | None = None
    creation_timestamp: int | None = None
    note_positions: dict[str, LogPosition] = field(default_factory=dict)
    owner_position: LogPosition | None = None
    gene_position: LogPosition | None = None

    @classmethod
    def new_placeholder(cls, entry_hash: str, block_number: int) -> "NamespaceEntry":
        return cls(
            hash=entry_hash,
            label=PLACEHOLDER_LABEL,
            parent_hash=ROOT_HASH,
            creation_block=block_number,
            last_update_block=block_number,
            placeholder=True,
        )

    def add_child(self, child_hash: str) -> bool:
        if child_hash in self.children:
            return False
        self.children.append(child_hash)
        self.children.sort()
        return True

    def remove_child(self, child_hash: str) -> bool:
        if child_hash not in self.children:
            return False
        self.children.remove(child_hash)
        return True

    def touch(self, block_number: int) -> None:
        self.last_update_block = max(self.last_update_block, block_number)

    def set_note(self, label: str, data: str, position: LogPosition) -> bool:
        """Last write wins by log position; replays of older notes are ignored."""
        if not _is_newer(position, self.note_positions.get(label)):
            return False
        self.notes[label] = data
        self.note_positions[label] = position
        return True

    def set_owner(self, owner: str, position: LogPosition) -> bool:
        if not _is_newer(position, self.owner_position):
            return False
        self.owner = owner
        self.owner_position = position
        return True

    def set_gene(self, gene: str, position: LogPosition) -> bool:
        if not _is_newer(position, self.gene_position):
            return False
        self.gene = gene
        self.gene_position = position
        return True

    def to_document(self) -> dict[str, Any]:
        return {
            "hash": self.hash,
            "label": self.label,
            "parent_hash": self.parent_hash,
            "full_name": self.full_name,
            "owner": self.owner,
            "gene": self.gene,
            "facts": dict(sorted(self.facts.items())),
            "notes": dict(sorted(self.notes.items())),
            "children": sorted(self.children),
            "creation_block": self.creation_block,
            "last_update_block": self.last_update_block,
            "placeholder": self.placeholder,
            "label_valid": self.label_valid,
            "label_hash": self.label_hash,
            "creation_tx": self.creation_tx,
            "creation_timestamp": self.creation_timestamp,
            "note_positions": {
                label: list(position) for label, position in sorted(self.note_positions.items())
            },
            "owner_position": list(self.owner_position) if self.owner_position else None,
            "gene_position": list(self.gene_position) if self.gene_position else None,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "NamespaceEntry":
        return cls(
            hash=str(doc["hash"]),
            label=str(doc.get("label") or ""),
            parent_hash=str(doc.get("parent_hash") or ROOT_HASH),
            creation_block=int(doc.get("creation_block") or 0),
            last_update_block=int(doc.get("last_update_block") or 0),
            full_name=doc.get("full_name"),
            owner=doc.get("owner"),
            gene=doc.get("gene"),
            facts=dict(doc.get("facts") or {}),
            notes=dict(doc.get("notes") or {}),
            children=sorted(set(doc.get("children") or [])),
            placeholder=bool(doc.get("placeholder", False)),
            label_valid=bool(doc.get("label_valid", True)),
            label_hash=doc.get("label_hash"),
            creation_tx=doc.get("creation_tx"),
            creation_timestamp=doc.get("creation_timestamp"),
            note_positions={
                str(label): _position(value)
                for label, value in (doc.get("note_positions") or {}).items()
                if value
            },
            owner_position=_position(doc.get("owner_position")),
            gene_position=_position(doc.get("gene_position")),
        )


def _position(value: Any) -> LogPosition | None:
    if not value:
        return None
    block_number, log_index = value
    return int(block_number), int(log_index)


def _is_newer(position: LogPosition, current: LogPosition | None) -> bool:
    return current is None or position > current
