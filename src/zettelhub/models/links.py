"""Typed-link parsing and edge derivation.

Notes reference each other with ``[[<id>|<display title>]]`` values in
their front matter. This module turns those values into IDs and into
the directed edges the index stores.
"""
import logging
import re
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from zettelhub.models.schema import Edge, RelationKind, TypedLink
from zettelhub.utils import as_list, dedupe

logger = logging.getLogger(__name__)

# [[id]] or [[id|Display Title]]; the id may not contain brackets or a pipe
TYPED_LINK_PATTERN = re.compile(r"\[\[\s*([^\[\]|]+?)\s*(?:\|([^\[\]]*))?\]\]")

# [text](url); the url may not contain a closing parenthesis
MARKDOWN_LINK_PATTERN = re.compile(r"\[([^\]]*)\]\(([^)]*)\)")
URL_SCHEME_PATTERN = re.compile(r"^[a-z][a-z0-9+.-]*:", re.IGNORECASE)

# Front matter fields holding typed links, and the edge kind each produces
RELATION_FIELDS: Tuple[Tuple[str, RelationKind], ...] = (
    ("parent", RelationKind.PARENT),
    ("subsidiaries", RelationKind.SUBSIDIARY),
    ("organization", RelationKind.ORGANIZATION),
    ("relationships", RelationKind.RELATIONSHIP),
)


def parse_typed_link(value: Any) -> Optional[TypedLink]:
    """Parse the first typed link found in a value.

    Returns None for non-strings and strings without ``[[...]]``.
    """
    if not isinstance(value, str):
        return None
    match = TYPED_LINK_PATTERN.search(value)
    if not match or not match.group(1).strip():
        return None
    display = match.group(2)
    display = display.strip() if display is not None else None
    return TypedLink(target_id=match.group(1).strip(), display_title=display or None)


def extract_id(value: Any) -> Optional[str]:
    """Extract the target ID from a typed link, or None."""
    link = parse_typed_link(value)
    return link.target_id if link else None


def extract_ids(values: Iterable[Any]) -> List[str]:
    """Extract IDs from a sequence of typed links.

    Order is preserved; entries that are not typed links are skipped.
    """
    ids = []
    for value in values:
        target_id = extract_id(value)
        if target_id is None:
            logger.debug(f"Skipping value without a typed link: {value!r}")
            continue
        ids.append(target_id)
    return ids


def extract_wikilinks(text: str) -> List[str]:
    """Return the unique link targets written as ``[[...]]`` in free text.

    For ``[[target|label]]`` only ``target`` is returned.
    """
    if not text:
        return []
    return dedupe(
        [
            m.group(1).strip()
            for m in TYPED_LINK_PATTERN.finditer(text)
            if m.group(1).strip()
        ]
    )


def extract_markdown_links(text: str) -> List[str]:
    """Return the unique relative targets of ``[text](url)`` links.

    External URLs (anything with a scheme) and same-page ``#anchors`` are
    skipped.
    """
    if not text:
        return []
    urls = []
    for match in MARKDOWN_LINK_PATTERN.finditer(text):
        url = match.group(2).strip()
        if not url or url.startswith("#") or URL_SCHEME_PATTERN.match(url):
            continue
        urls.append(url)
    return dedupe(urls)


def derive_edges(source_id: str, metadata: Mapping[str, Any]) -> List[Edge]:
    """Build the outgoing typed-field edges of one note.

    Only reads the note's own metadata. Absent fields produce no edges;
    repeated references to the same target under one relation produce
    one edge.
    """
    edges: List[Edge] = []
    for field_name, relation in RELATION_FIELDS:
        for target_id in dedupe(extract_ids(as_list(metadata.get(field_name)))):
            edges.append(
                Edge(source_id=source_id, target_id=target_id, relation=relation)
            )
    return edges
