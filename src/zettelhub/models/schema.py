"""Value types shared by the index and history layers."""

import datetime
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, NamedTuple, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator


class RelationKind(str, Enum):
    """Kinds of directed edges between notes."""

    PARENT = "parent"  # Organization points at its parent organization
    SUBSIDIARY = "subsidiary"  # Organization points at a subsidiary
    ORGANIZATION = "organization"  # Person points at their organization
    RELATIONSHIP = "relationship"  # Person points at a related note
    WIKILINK = "wikilink"  # Body text references another note
    MARKDOWN = "markdown"  # Body text links to another note's file


class TypedLink(NamedTuple):
    """A parsed ``[[id|Display Title]]`` reference."""

    target_id: str
    display_title: Optional[str] = None


class Edge(BaseModel):
    """A derived, directed relationship between two note IDs."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    target_id: str
    relation: RelationKind

    @field_validator("source_id", "target_id")
    @classmethod
    def validate_ids(cls, v: str) -> str:
        """Edge endpoints are never empty."""
        if not v or not v.strip():
            raise ValueError("Edge endpoints cannot be empty")
        return v


@dataclass(frozen=True)
class IndexFailure:
    """A file that could not be indexed.

    Attributes:
        path: The file that failed
        error: The exception raised while loading it
    """

    path: Path
    error: Exception

    @property
    def message(self) -> str:
        return str(self.error)


@dataclass
class HistoryEntry:
    """One git revision touching a note.

    Attributes:
        revision: Full commit hash
        timestamp: UTC datetime of the commit
        author: Author name
        message: Commit subject line
        paths: Notebook-relative paths the revision touched (as named then)
    """

    revision: str
    timestamp: datetime.datetime
    author: str
    message: str
    paths: Tuple[str, ...] = ()

    @property
    def short_hash(self) -> str:
        """Return the first 7 characters of the revision hash."""
        return self.revision[:7]

    @property
    def affected_path(self) -> Optional[str]:
        """First path touched by the revision, if any."""
        return self.paths[0] if self.paths else None

    def to_dict(self) -> dict:
        return {
            "revision": self.revision,
            "short_hash": self.short_hash,
            "timestamp": self.timestamp.isoformat(),
            "author": self.author,
            "message": self.message,
            "paths": list(self.paths),
        }

    def __str__(self) -> str:
        return f"{self.short_hash} {self.timestamp.date().isoformat()} {self.message}"


@dataclass(frozen=True)
class GitResult:
    """Outcome of a repository operation that can fail in expected ways."""

    success: bool
    message: str = ""

    def __bool__(self) -> bool:
        return self.success


@dataclass
class GitStatus:
    """Working tree state relative to the last commit.

    All paths are notebook-relative, posix-style.
    """

    modified: List[str] = field(default_factory=list)
    added: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    untracked: List[str] = field(default_factory=list)
    staged: List[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not (
            self.modified or self.added or self.deleted or self.untracked or self.staged
        )

    @property
    def changed_count(self) -> int:
        """Number of distinct paths with any change."""
        return len(
            set(self.modified) | set(self.added) | set(self.deleted) | set(self.untracked)
        )
