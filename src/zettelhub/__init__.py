"""
ZettelHub - a markdown knowledge base with typed cross-references.
This package indexes a notebook of markdown notes with YAML front matter,
resolves the typed links between them into a graph, and answers history
queries against the notebook's git repository.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("zettelhub")
except PackageNotFoundError:
    __version__ = "0.3.0"
