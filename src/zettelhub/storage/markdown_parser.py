"""Front matter parsing and serialization for notebook files.

Splits a markdown file into its YAML front matter mapping and body
text. Kept separate from the note models so parsing stays cohesive
and independently testable.
"""
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import frontmatter
import yaml

from zettelhub.exceptions import ErrorCode, ParseError

logger = logging.getLogger(__name__)

BYTE_ORDER_MARK = "\ufeff"

# A delimiter line owns exactly one line terminator; blank lines after it
# belong to the body
FRONT_MATTER_BOUNDARY = re.compile(r"^-{3,}[ \t]*(?:\r?\n|\Z)", re.MULTILINE)


@dataclass
class ParsedDocument:
    """Result of splitting one markdown file.

    Attributes:
        metadata: Front matter mapping with string keys (empty when absent)
        body: Raw text following the front matter
    """

    metadata: Dict[str, Any] = field(default_factory=dict)
    body: str = ""


def normalize_keys(value: Any) -> Any:
    """Recursively stringify mapping keys.

    YAML allows numeric, boolean and date keys; downstream lookups only
    ever use strings.
    """
    if isinstance(value, Mapping):
        return {str(k): normalize_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [normalize_keys(v) for v in value]
    return value


class FrontMatterParser:
    """Parses and serializes markdown with a ``---`` delimited YAML block."""

    def __init__(self) -> None:
        self._handler = frontmatter.YAMLHandler(fm_boundary=FRONT_MATTER_BOUNDARY)

    def has_front_matter(self, content: str) -> bool:
        """Return True if content opens with a front matter delimiter."""
        return bool(self._handler.detect(content.lstrip(BYTE_ORDER_MARK)))

    def parse(self, content: str, source: Optional[Union[str, Path]] = None) -> ParsedDocument:
        """Split raw markdown into metadata and body.

        Args:
            content: Raw file content.
            source: Path or label used in error messages.

        Returns:
            ParsedDocument with string-keyed metadata and the body text.
            Content without a leading delimiter yields empty metadata and
            the whole content as body.

        Raises:
            ParseError: If the block is unterminated, is not valid YAML, or
                does not contain a mapping.
        """
        label = str(source) if source is not None else None
        text = content.lstrip(BYTE_ORDER_MARK)

        if not self._handler.detect(text):
            return ParsedDocument(metadata={}, body=content)

        try:
            fm, body = self._handler.split(text)
        except ValueError as e:
            raise ParseError(
                "Front matter block is not terminated",
                path=label,
                code=ErrorCode.FRONT_MATTER_UNTERMINATED,
                original_error=e,
            )

        try:
            loaded = self._handler.load(fm)
        except yaml.YAMLError as e:
            raise ParseError(
                "Front matter is not valid YAML",
                path=label,
                code=ErrorCode.FRONT_MATTER_INVALID,
                original_error=e,
            )

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, Mapping):
            raise ParseError(
                f"Front matter must be a mapping, got {type(loaded).__name__}",
                path=label,
                code=ErrorCode.FRONT_MATTER_NOT_MAPPING,
            )

        return ParsedDocument(metadata=normalize_keys(loaded), body=body)

    def parse_file(self, path: Union[str, Path]) -> ParsedDocument:
        """Read and parse a file.

        Raises:
            ParseError: If the file cannot be read or its front matter is malformed.
        """
        path = Path(path)
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ParseError(
                f"Cannot read file: {e}",
                path=str(path),
                code=ErrorCode.FRONT_MATTER_INVALID,
                original_error=e,
            )
        return self.parse(content, source=path)

    def render(self, metadata: Mapping[str, Any], body: str) -> str:
        """Serialize metadata and body back to markdown.

        ``parse(render(m, b))`` returns metadata equal to ``m`` and body ``b``.
        """
        if not metadata:
            return body
        fm = self._handler.export(dict(metadata))
        return f"---\n{fm}\n---\n{body}"
