"""Common test fixtures for ZettelHub."""

import os
import shutil
import tempfile
from pathlib import Path

import pytest

from zettelhub.config import NotebookConfig
from zettelhub.observability import timings
from zettelhub.services.history_service import HistoryService
from zettelhub.storage.markdown_parser import FrontMatterParser

GIT_AVAILABLE = shutil.which("git") is not None


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Strip ZETTELHUB_* variables so tests never see a developer's settings."""
    for name in list(os.environ):
        if name.startswith("ZETTELHUB_"):
            monkeypatch.delenv(name, raising=False)
    timings.reset()
    yield


@pytest.fixture
def notebook_dir():
    """Create a temporary notebook directory."""
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp).resolve()


@pytest.fixture
def make_note(notebook_dir):
    """Factory writing a note file into the notebook.

    Pass ``raw`` to write exact content, or ``metadata`` and ``body`` to
    render a front matter block.
    """
    parser = FrontMatterParser()

    def _make(relpath, metadata=None, body="", raw=None):
        path = notebook_dir / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        content = raw if raw is not None else parser.render(metadata or {}, body)
        path.write_text(content, encoding="utf-8")
        return path

    return _make


@pytest.fixture
def notebook_config(notebook_dir):
    """Config for the temporary notebook."""
    return NotebookConfig(notebook_path=notebook_dir)


@pytest.fixture
def history(notebook_config):
    """HistoryService for an uninitialized notebook."""
    return HistoryService(notebook_config)


@pytest.fixture
def git_notebook(history):
    """HistoryService for a notebook with a fresh git repository."""
    if not GIT_AVAILABLE:
        pytest.skip("git executable not available")
    result = history.init()
    assert result.success, result.message
    return history
