"""Full-name resolution post-pass."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any

from hypermap_indexer.constants import DEFAULT_NAME_SEPARATOR
from hypermap_indexer.docstore import BulkUpsertResult

from .models import NamespaceEntry, is_root
from .repository import EntryRepository

logger = logging.getLogger("hypermap_indexer.projection")


@dataclass
class ResolveReport:
    candidates: int = 0
    resolved: int = 0
    unresolved: list[str] = field(default_factory=list)
    written: BulkUpsertResult = field(default_factory=BulkUpsertResult)

    def as_dict(self) -> dict[str, Any]:
        return {
            "candidates": self.candidates,
            "resolved": self.resolved,
            "unresolved": list(self.unresolved),
            "written": self.written.as_dict(),
        }


class FullNameResolver:
    """Materializes `full_name` for every entry that lacks one.

    Names compose as `parent_full_name + separator + label`; the root and any
    parent that is not stored contribute the empty string. Ancestor names are
    memoized for the duration of a pass.
    """

    def __init__(self, repository: EntryRepository, *, separator: str = DEFAULT_NAME_SEPARATOR) -> None:
        self.repository = repository
        self.separator = separator

    def resolve_all(self) -> ResolveReport:
        pending = self.repository.unresolved()
        report = ResolveReport(candidates=len(pending))
        loaded: dict[str, NamespaceEntry | None] = {entry.hash: entry for entry in pending}
        memo: dict[str, str | None] = {}
        updated: dict[str, NamespaceEntry] = {}
        for entry in pending:
            name = self._compute(entry.hash, loaded, memo, updated)
            if name is None:
                report.unresolved.append(entry.hash)
        report.resolved = len(updated)
        if updated:
            report.written = self.repository.save_all(updated[key] for key in sorted(updated))
        logger.info(
            "Projection full names resolved=%s unresolved=%s candidates=%s",
            report.resolved,
            len(report.unresolved),
            report.candidates,
        )
        return report

    def resolve(self, entry_hash: str) -> str | None:
        """Resolve and persist one entry's full name (and any unnamed ancestors)."""
        entry_hash = entry_hash.lower()
        if is_root(entry_hash):
            return ""
        updated: dict[str, NamespaceEntry] = {}
        name = self._compute(entry_hash, {}, {}, updated)
        if updated:
            self.repository.save_all(updated[key] for key in sorted(updated))
        return name

    def _compute(
        self,
        entry_hash: str,
        loaded: dict[str, NamespaceEntry | None],
        memo: dict[str, str | None],
        updated: dict[str, NamespaceEntry],
    ) -> str | None:
        chain: list[NamespaceEntry] = []
        visited: set[str] = set()
        current = entry_hash
        base: str | None
        while True:
            if is_root(current):
                base = ""
                break
            if current in memo:
                base = memo[current]
                break
            if current not in loaded:
                loaded[current] = self.repository.get(current)
            entry = loaded[current]
            if entry is None:
                base = ""
                break
            if entry.full_name is not None:
                base = entry.full_name
                memo[current] = base
                break
            if current in visited:
                logger.warning(
                    "Projection full name cycle code=FULL_NAME_CYCLE hash=%s chain=%s",
                    current,
                    ",".join(item.hash for item in chain),
                )
                base = None
                break
            visited.add(current)
            chain.append(entry)
            current = entry.parent_hash

        for entry in reversed(chain):
            if base is None:
                memo[entry.hash] = None
                continue
            base = entry.label if base == "" else f"{base}{self.separator}{entry.label}"
            memo[entry.hash] = base
            entry.full_name = base
            updated[entry.hash] = entry
        return memo.get(entry_hash, base)
