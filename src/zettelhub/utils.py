"""Utility functions for ZettelHub."""
from typing import Any, List, Optional


def as_list(value: Any) -> List[Any]:
    """Coerce a metadata value to a list.

    None becomes an empty list, a scalar becomes a one-element list and
    lists/tuples are copied.

    Examples:
        >>> as_list(None)
        []
        >>> as_list("a@example.com")
        ['a@example.com']
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def first(values: List[Any]) -> Optional[Any]:
    """Return the first element of a list, or None when empty."""
    return values[0] if values else None


def dedupe(values: List[Any]) -> List[Any]:
    """Drop repeated items, keeping first occurrences in order."""
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result
