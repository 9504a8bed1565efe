"""Services for ZettelHub."""

from zettelhub.services.history_service import HistoryService
from zettelhub.services.indexer import Indexer, NoteIndex

__all__ = [
    "Indexer",
    "NoteIndex",
    "HistoryService",
]
