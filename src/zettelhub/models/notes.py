"""Note models for notebook files.

A note is one markdown file: the capability set ``{id, type, title,
metadata, body}`` plus typed accessors for the front matter fields
each note type uses. Notes are immutable once loaded.
"""

import datetime
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Protocol, Type, Union, runtime_checkable

from zettelhub.exceptions import ConstructionError, ErrorCode
from zettelhub.models.links import extract_id, extract_ids
from zettelhub.storage.markdown_parser import FrontMatterParser, ParsedDocument, normalize_keys
from zettelhub.utils import as_list, first

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class Note:
    """A generic note loaded from a markdown file.

    Args:
        path: Location of the file. Required.
        metadata: Supplementary metadata. File values win on overlapping keys.
        document: Already-parsed file content; skips reading ``path``.
        parser: Parser to use when reading the file.

    Raises:
        ConstructionError: If ``path`` is missing or the file is unreadable.
        ParseError: If the file's front matter is malformed.
    """

    default_type = "note"

    def __init__(
        self,
        path: Optional[PathLike] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        *,
        document: Optional[ParsedDocument] = None,
        parser: Optional[FrontMatterParser] = None,
    ):
        if path is None:
            raise ConstructionError(
                f"{type(self).__name__} requires a path",
                code=ErrorCode.NOTE_PATH_REQUIRED,
            )
        self._path = Path(path)

        if document is None:
            document = _read_document(self._path, parser)

        merged: Dict[str, Any] = normalize_keys(dict(metadata or {}))
        merged.update(document.metadata)
        self._metadata = merged
        self._body = document.body

        self._id = _clean_str(merged.get("id")) or self._path.stem
        self._type = (_clean_str(merged.get("type")) or self.default_type).lower()
        self._title = (
            _clean_str(merged.get("title"))
            or _first_heading(self._body)
            or self._path.stem
        )

    # ------------------------------------------------------------------
    # Core capability set
    # ------------------------------------------------------------------

    @property
    def id(self) -> str:
        return self._id

    @property
    def type(self) -> str:
        return self._type

    @property
    def title(self) -> str:
        return self._title

    @property
    def metadata(self) -> Mapping[str, Any]:
        """Full parsed front matter, read-only."""
        return MappingProxyType(self._metadata)

    @property
    def body(self) -> str:
        return self._body

    @property
    def path(self) -> Path:
        """File location at load time. Not part of the note's identity."""
        return self._path

    @property
    def has_explicit_id(self) -> bool:
        """True if the front matter itself carries a non-empty ``id``."""
        return _clean_str(self._metadata.get("id")) is not None

    def get(self, key: str, default: Any = None) -> Any:
        """Raw metadata lookup that never raises."""
        return self._metadata.get(key, default)

    @property
    def aliases(self) -> List[Any]:
        return as_list(self._metadata.get("aliases"))

    @property
    def tags(self) -> List[Any]:
        return as_list(self._metadata.get("tags"))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self._id!r}, path={str(self._path)!r})"


class Resource(Note):
    """A generic resource note."""

    default_type = "resource"

    @property
    def date(self) -> Optional[Union[str, datetime.date]]:
        """The ``date`` field (string or parsed date), or None."""
        return self._metadata.get("date")


class Bookmark(Resource):
    """A resource pointing at an external location."""

    default_type = "bookmark"

    @property
    def uri(self) -> Optional[str]:
        value = self._metadata.get("uri")
        return str(value) if value is not None else None


class Person(Note):
    """A contact: name, channels, organization and relationships."""

    default_type = "person"

    @property
    def full_name(self) -> str:
        return _clean_str(self._metadata.get("full_name")) or self.title

    @property
    def emails(self) -> List[Any]:
        return as_list(self._metadata.get("emails"))

    @property
    def email(self) -> Optional[Any]:
        """Primary email address."""
        return first(self.emails)

    @property
    def phones(self) -> List[Any]:
        return as_list(self._metadata.get("phones"))

    @property
    def phone(self) -> Optional[Any]:
        """Primary phone number."""
        return first(self.phones)

    @property
    def organization(self) -> Optional[str]:
        """Raw typed link (or plain name) of the person's organization."""
        return self._metadata.get("organization")

    @property
    def organization_id(self) -> Optional[str]:
        return extract_id(self.organization)

    @property
    def role(self) -> Optional[str]:
        return self._metadata.get("role")

    @property
    def birthday(self) -> Optional[Union[str, datetime.date]]:
        return self._metadata.get("birthday")

    @property
    def address(self) -> Optional[Any]:
        return self._metadata.get("address")

    @property
    def website(self) -> Optional[str]:
        return self._metadata.get("website")

    @property
    def social(self) -> Dict[str, Any]:
        """Social profiles (linkedin, github, ...); empty when absent."""
        value = self._metadata.get("social")
        return dict(value) if isinstance(value, Mapping) else {}

    @property
    def relationships(self) -> List[Any]:
        return as_list(self._metadata.get("relationships"))

    @property
    def relationship_ids(self) -> List[str]:
        return extract_ids(self.relationships)

    @property
    def last_contact(self) -> Optional[Union[str, datetime.date]]:
        return self._metadata.get("last_contact")


@runtime_checkable
class OrganizationLike(Protocol):
    """Accessors shared by every organization-shaped note."""

    @property
    def name(self) -> str: ...

    @property
    def website(self) -> Optional[str]: ...

    @property
    def industry(self) -> Optional[str]: ...

    @property
    def address(self) -> Optional[Any]: ...

    @property
    def parent(self) -> Optional[str]: ...

    @property
    def parent_id(self) -> Optional[str]: ...

    @property
    def subsidiaries(self) -> List[Any]: ...

    @property
    def subsidiary_ids(self) -> List[str]: ...


class OrganizationFields:
    """Organization accessor implementation shared by Organization and Account."""

    _metadata: Dict[str, Any]
    title: str

    @property
    def name(self) -> str:
        return _clean_str(self._metadata.get("name")) or self.title

    @property
    def website(self) -> Optional[str]:
        return self._metadata.get("website")

    @property
    def industry(self) -> Optional[str]:
        return self._metadata.get("industry")

    @property
    def address(self) -> Optional[Any]:
        return self._metadata.get("address")

    @property
    def parent(self) -> Optional[str]:
        """Raw typed link to the parent organization."""
        return self._metadata.get("parent")

    @property
    def parent_id(self) -> Optional[str]:
        return extract_id(self.parent)

    @property
    def subsidiaries(self) -> List[Any]:
        return as_list(self._metadata.get("subsidiaries"))

    @property
    def subsidiary_ids(self) -> List[str]:
        return extract_ids(self.subsidiaries)


class Organization(OrganizationFields, Note):
    """A company, institution or group."""

    default_type = "organization"


class Account(OrganizationFields, Note):
    """A customer organization tracked in external systems.

    Has exactly the organization accessors; CRM-specific fields are
    read from ``metadata``.
    """

    default_type = "account"


NOTE_TYPES: Dict[str, Type[Note]] = {
    "note": Note,
    "resource": Resource,
    "bookmark": Bookmark,
    "person": Person,
    "organization": Organization,
    "account": Account,
}


def note_class_for(note_type: Optional[str]) -> Type[Note]:
    """Return the model class for a type tag, defaulting to Note."""
    if note_type is None:
        return Note
    return NOTE_TYPES.get(str(note_type).strip().lower(), Note)


def note_from_file(
    path: PathLike,
    metadata: Optional[Mapping[str, Any]] = None,
    parser: Optional[FrontMatterParser] = None,
) -> Note:
    """Load a file as the note subtype named by its ``type`` field.

    The file is read once; the parsed document is handed to the model.
    """
    if path is None:
        raise ConstructionError("A path is required", code=ErrorCode.NOTE_PATH_REQUIRED)
    path = Path(path)
    document = _read_document(path, parser)
    note_type = document.metadata.get("type")
    if note_type is None and metadata:
        note_type = metadata.get("type")
    cls = note_class_for(note_type)
    return cls(path, metadata, document=document)


def _read_document(path: Path, parser: Optional[FrontMatterParser]) -> ParsedDocument:
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConstructionError(
            f"Cannot read note file: {e}",
            path=str(path),
            code=ErrorCode.NOTE_UNREADABLE,
            original_error=e,
        )
    return (parser or FrontMatterParser()).parse(content, source=path)


def _clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _first_heading(body: str) -> Optional[str]:
    for line in body.splitlines():
        if line.startswith("# "):
            return line[2:].strip() or None
    return None
