"""Note models and link types for ZettelHub."""

from zettelhub.models.notes import (
    Account,
    Bookmark,
    Note,
    Organization,
    OrganizationLike,
    Person,
    Resource,
    note_from_file,
)
from zettelhub.models.schema import Edge, GitResult, GitStatus, HistoryEntry, RelationKind

__all__ = [
    "Note",
    "Resource",
    "Bookmark",
    "Person",
    "Organization",
    "OrganizationLike",
    "Account",
    "note_from_file",
    "Edge",
    "RelationKind",
    "HistoryEntry",
    "GitResult",
    "GitStatus",
]
