"""Namespace entry graph: projection, full names, read paths."""

from .models import NamespaceEntry
from .projector import NamespaceProjector, ProjectionReport
from .query import NamespaceQuery
from .repository import EntryRepository
from .resolver import FullNameResolver, ResolveReport

__all__ = [
    "EntryRepository",
    "FullNameResolver",
    "NamespaceEntry",
    "NamespaceProjector",
    "NamespaceQuery",
    "ProjectionReport",
    "ResolveReport",
]
