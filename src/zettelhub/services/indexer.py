"""Note index and cross-reference graph.

The Indexer walks a notebook, loads every markdown file as a note and
assembles a NoteIndex: notes by ID and by type, outgoing edges derived
from typed front matter fields, body wikilinks and relative markdown
links to other note files, and the reverse
(incoming) edges for back-reference queries.

The index is a derived view rebuilt from the files; it is never
persisted.
"""
import logging
import os
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set, Tuple, Union
from urllib.parse import unquote

from zettelhub.config import NotebookConfig
from zettelhub.exceptions import (
    ConstructionError,
    ErrorCode,
    IndexConflict,
    ParseError,
)
from zettelhub.models.links import derive_edges, extract_markdown_links, extract_wikilinks
from zettelhub.models.notes import Note, note_from_file
from zettelhub.models.schema import Edge, IndexFailure, RelationKind
from zettelhub.observability import timed_operation
from zettelhub.storage.markdown_parser import FrontMatterParser

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ("id", "type")


class NoteIndex:
    """In-memory index of one notebook.

    Holds notes by ID, ordered ID sets by type, outgoing edges per note
    and the reverse map of incoming edges. Incoming edges are maintained
    when notes are added or removed, never recomputed per query.
    """

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root).resolve() if root else None
        self._notes: Dict[str, Note] = {}
        # Normalized absolute file path -> note ID, for markdown link targets
        self._by_path: Dict[str, str] = {}
        # dict-as-ordered-set: insertion order is walk order
        self._by_type: Dict[str, Dict[str, None]] = defaultdict(dict)
        self._outgoing: Dict[str, List[Edge]] = {}
        self._incoming: Dict[str, List[Edge]] = defaultdict(list)
        self._failures: List[IndexFailure] = []
        self._conflicts: List[IndexConflict] = []

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def by_id(self, note_id: str) -> Optional[Note]:
        return self._notes.get(note_id)

    def by_type(self, note_type: str) -> List[Note]:
        """Notes of one type, in walk order."""
        return [self._notes[i] for i in self._by_type.get(note_type.lower(), {})]

    def types(self) -> List[str]:
        return [t for t, ids in self._by_type.items() if ids]

    def notes(self) -> List[Note]:
        return list(self._notes.values())

    def outgoing_edges(self, note_id: str) -> List[Edge]:
        return list(self._outgoing.get(note_id, []))

    def incoming_edges(self, note_id: str) -> List[Edge]:
        """Back-references: edges from other notes pointing at ``note_id``."""
        return list(self._incoming.get(note_id, []))

    def edges(self) -> List[Edge]:
        return [edge for edges in self._outgoing.values() for edge in edges]

    def unresolved_edges(self) -> List[Edge]:
        """Edges whose target ID is not in the index (dangling references)."""
        return [edge for edge in self.edges() if edge.target_id not in self._notes]

    def failures(self) -> List[IndexFailure]:
        return list(self._failures)

    def conflicts(self) -> List[IndexConflict]:
        return list(self._conflicts)

    def path_for(self, note_id: str) -> Optional[Path]:
        """Current file path of a note, or None if not indexed."""
        note = self._notes.get(note_id)
        return note.path if note else None

    def find_by_path(self, path: Union[str, Path]) -> Optional[Note]:
        target = Path(path).resolve()
        for note in self._notes.values():
            if note.path.resolve() == target:
                return note
        return None

    def resolve(self, ref: str) -> Optional[str]:
        """Resolve a reference to a note ID.

        Tries an exact ID, then a case-insensitive title, then a
        case-insensitive alias.
        """
        if not ref or not ref.strip():
            return None
        ref = ref.strip()
        if ref in self._notes:
            return ref
        folded = ref.casefold()
        for note in self._notes.values():
            if note.title.strip().casefold() == folded:
                return note.id
        for note in self._notes.values():
            if any(str(a).strip().casefold() == folded for a in note.aliases):
                return note.id
        return None

    def resolve_path(self, url: str, source: Optional[Path] = None) -> Optional[str]:
        """Resolve a relative markdown link URL to a note ID.

        The URL is tried against the linking note's directory, then against
        the notebook root when it does not climb out with ``..``. Targets
        outside the notebook never resolve.
        """
        target = unquote(url.split("#", 1)[0].strip())
        if not target:
            return None
        candidates = []
        if source is not None:
            candidates.append(Path(source).parent / target)
        if self.root is not None and not target.startswith("/") and ".." not in Path(target).parts:
            candidates.append(self.root / target)
        for candidate in candidates:
            resolved = candidate.resolve()
            if self.root is not None and resolved != self.root and self.root not in resolved.parents:
                continue
            note_id = self._by_path.get(_path_key(resolved))
            if note_id is not None:
                return note_id
        return None

    def neighbourhood(self, note_id: str) -> Tuple[Set[str], List[Edge]]:
        """IDs directly linked to or from a note, and the edges among them."""
        nodes = {note_id}
        for edge in self.outgoing_edges(note_id):
            nodes.add(edge.target_id)
        for edge in self.incoming_edges(note_id):
            nodes.add(edge.source_id)
        edges = [
            edge for edge in self.edges()
            if edge.source_id in nodes and edge.target_id in nodes
        ]
        return nodes, edges

    def __len__(self) -> int:
        return len(self._notes)

    def __contains__(self, note_id: object) -> bool:
        return note_id in self._notes

    def __iter__(self) -> Iterator[Note]:
        return iter(list(self._notes.values()))

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def index_note(self, note: Note) -> None:
        """Add or replace one note without rebuilding the whole index.

        Replacing an ID held by another file is allowed only when that
        file no longer exists (a rename).

        Raises:
            IndexConflict: If another existing file already owns the ID.
        """
        existing = self._notes.get(note.id)
        names_changed = existing is None
        if existing is not None:
            same_file = existing.path.resolve() == note.path.resolve()
            if not same_file and existing.path.exists():
                raise IndexConflict(
                    note.id,
                    existing_path=str(existing.path),
                    conflicting_path=str(note.path),
                )
            names_changed = (
                existing.title != note.title
                or existing.aliases != note.aliases
                or not same_file
            )
            self._detach(existing)

        self._attach(note)
        if names_changed:
            # Body links of other notes may resolve differently now
            self._rebuild_edges()
        else:
            self._link(note)
        logger.debug(f"Indexed note {note.id} ({note.path})")

    def remove_note(self, note_id: str) -> Optional[Note]:
        """Drop a note. Edges pointing at it become dangling."""
        note = self._notes.get(note_id)
        if note is None:
            return None
        self._detach(note)
        self._rebuild_edges()
        logger.debug(f"Removed note {note_id} from index")
        return note

    def record_failure(self, failure: IndexFailure) -> None:
        self._failures.append(failure)

    def record_conflict(self, conflict: IndexConflict) -> None:
        self._conflicts.append(conflict)

    def _attach(self, note: Note) -> None:
        self._notes[note.id] = note
        self._by_type[note.type][note.id] = None
        self._by_path[_path_key(note.path.resolve())] = note.id

    def _detach(self, note: Note) -> None:
        self._unlink(note.id)
        self._notes.pop(note.id, None)
        self._by_type.get(note.type, {}).pop(note.id, None)
        key = _path_key(note.path.resolve())
        if self._by_path.get(key) == note.id:
            del self._by_path[key]

    def _derive(self, note: Note) -> List[Edge]:
        edges = derive_edges(note.id, note.metadata)
        description = note.get("description")
        text = "\n".join(t for t in (note.body, str(description or "")) if t)
        body_links = (
            (RelationKind.WIKILINK, extract_wikilinks(text), self.resolve),
            (
                RelationKind.MARKDOWN,
                extract_markdown_links(text),
                lambda url: self.resolve_path(url, note.path),
            ),
        )
        for relation, targets, resolve in body_links:
            seen = set()
            for target in targets:
                target_id = resolve(target)
                if target_id is None:
                    logger.debug(f"Unresolved {relation.value} link {target!r} in note {note.id}")
                    continue
                if target_id == note.id or target_id in seen:
                    continue
                seen.add(target_id)
                edges.append(Edge(source_id=note.id, target_id=target_id, relation=relation))
        return edges

    def _link(self, note: Note) -> None:
        edges = self._derive(note)
        self._outgoing[note.id] = edges
        for edge in edges:
            self._incoming[edge.target_id].append(edge)

    def _unlink(self, note_id: str) -> None:
        for edge in self._outgoing.pop(note_id, []):
            incoming = self._incoming.get(edge.target_id)
            if incoming and edge in incoming:
                incoming.remove(edge)
                if not incoming:
                    del self._incoming[edge.target_id]

    def _rebuild_edges(self) -> None:
        """Derive every note's outgoing edges, then the reverse map in one scan."""
        self._outgoing = {note.id: self._derive(note) for note in self._notes.values()}
        incoming: Dict[str, List[Edge]] = defaultdict(list)
        for edges in self._outgoing.values():
            for edge in edges:
                incoming[edge.target_id].append(edge)
        self._incoming = incoming


def _path_key(path: Path) -> str:
    """Lookup key for a note file: posix path, ``.md`` dropped, case-folded."""
    text = path.as_posix()
    if text.lower().endswith(".md"):
        text = text[:-3]
    return text.casefold()


class Indexer:
    """Builds NoteIndex instances from a notebook directory."""

    def __init__(self, config: NotebookConfig, parser: Optional[FrontMatterParser] = None):
        self.config = config
        self.parser = parser or FrontMatterParser()

    def iter_note_files(self, root: Optional[Path] = None) -> List[Path]:
        """All note files under the root, sorted by relative path.

        The control directory and ``.git`` are always skipped; other
        dot-directories are skipped when ``config.skip_hidden`` is set.
        """
        root = Path(root).resolve() if root else self.config.root
        extension = self.config.note_extension.lower()
        skip = {self.config.control_dir, ".git"}
        found = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(
                d for d in dirnames
                if d not in skip and not (self.config.skip_hidden and d.startswith("."))
            )
            for filename in filenames:
                if filename.lower().endswith(extension):
                    found.append(Path(dirpath) / filename)
        return sorted(found, key=lambda p: p.relative_to(root).as_posix())

    def load_note(self, path: Path) -> Note:
        """Load one file as a typed note, requiring ``id`` and ``type``.

        Raises:
            ConstructionError: If the file cannot be read.
            ParseError: If the front matter is malformed or incomplete.
        """
        note = note_from_file(path, parser=self.parser)
        missing = [
            key for key in REQUIRED_KEYS
            if note.get(key) is None or not str(note.get(key)).strip()
        ]
        if missing:
            raise ParseError(
                f"Missing required front matter key(s): {', '.join(missing)}",
                path=str(path),
                code=ErrorCode.NOTE_MISSING_FIELD,
            )
        return note

    def _try_load(self, path: Path) -> Union[Note, IndexFailure]:
        try:
            return self.load_note(path)
        except (ConstructionError, ParseError) as e:
            return IndexFailure(path=path, error=e)

    def build(self, notebook_root: Optional[Path] = None) -> NoteIndex:
        """Walk the notebook and build a fresh index.

        Unreadable or malformed files are collected as failures and
        skipped. A duplicate ID keeps the first file in walk order and
        records an IndexConflict for the other.
        """
        root = Path(notebook_root).resolve() if notebook_root else self.config.root
        with timed_operation("index_build", root=str(root)) as op:
            index = NoteIndex(root)
            files = self.iter_note_files(root)

            if self.config.index_workers > 1 and len(files) > 1:
                with ThreadPoolExecutor(max_workers=self.config.index_workers) as pool:
                    results = list(pool.map(self._try_load, files))
            else:
                results = [self._try_load(path) for path in files]

            for result in results:
                if isinstance(result, IndexFailure):
                    logger.warning(f"Cannot index {result.path}: {result.error}")
                    index.record_failure(result)
                    continue
                existing = index.by_id(result.id)
                if existing is not None:
                    conflict = IndexConflict(
                        result.id,
                        existing_path=str(existing.path),
                        conflicting_path=str(result.path),
                    )
                    logger.warning(str(conflict))
                    index.record_conflict(conflict)
                    continue
                index._attach(result)

            index._rebuild_edges()

            unresolved = index.unresolved_edges()
            op["note_count"] = len(index)
            op["failures"] = len(index.failures())
            op["conflicts"] = len(index.conflicts())
            logger.info(
                f"Indexed {len(index)} notes from {len(files)} files: "
                f"{len(index.failures())} failed, {len(index.conflicts())} duplicate IDs, "
                f"{len(unresolved)} unresolved edges"
            )
        return index

    def refresh(self, index: NoteIndex, path: Union[str, Path]) -> Optional[Note]:
        """Re-read one file into an existing index.

        A file that no longer exists is removed from the index.

        Returns:
            The loaded note, or None if the file was removed.
        """
        path = Path(path)
        if not path.is_absolute():
            path = self.config.get_absolute_path(path)
        if not path.exists():
            stale = index.find_by_path(path)
            if stale is not None:
                index.remove_note(stale.id)
            return None

        note = self.load_note(path)
        previous = index.find_by_path(path)
        if previous is not None and previous.id != note.id:
            # The file's ID changed; its old identity is gone
            index.remove_note(previous.id)
        index.index_note(note)
        return note
