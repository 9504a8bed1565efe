"""Storage layer for ZettelHub."""

from zettelhub.storage.markdown_parser import FrontMatterParser, ParsedDocument

__all__ = [
    "FrontMatterParser",
    "ParsedDocument",
]
