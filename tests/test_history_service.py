"""Tests for the git-backed HistoryService."""

import shutil
import subprocess
from datetime import datetime
from unittest.mock import patch

import pytest

from zettelhub.exceptions import ErrorCode, GitError, RepositoryStateError
from zettelhub.services.history_service import HistoryService
from zettelhub.services.indexer import Indexer

pytestmark = pytest.mark.skipif(
    shutil.which("git") is None, reason="git executable not available"
)


def _commit_file(service, path, content, message):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    result = service.commit(message, paths=[path])
    assert result.success, result.message
    return service.log(limit=1)[0]


class TestUninitialized:
    """Behaviour before ``init``."""

    def test_not_a_repo(self, history):
        """A fresh directory is not a repository."""
        assert not history.is_repo()

    def test_commit_reports_not_a_repository(self, history, notebook_dir):
        """Commit fails as a value, not an exception."""
        (notebook_dir / "a.md").write_text("x")
        result = history.commit("m", all=True)
        assert not result.success
        assert "Not a git repository" in result.message

    def test_queries_are_empty(self, history):
        """Read operations return empty results."""
        assert history.log() == []
        assert history.diff() == ""
        assert history.show("HEAD", "a.md") is None
        assert history.status().is_clean
        assert history.current_branch() is None
        assert not history.is_dirty()

    def test_require_repo_raises(self, history):
        """The guard turns the missing repository into a fault."""
        with pytest.raises(RepositoryStateError) as exc_info:
            history.require_repo()
        assert exc_info.value.code == ErrorCode.NOT_A_REPOSITORY

    def test_accepts_a_path(self, notebook_dir):
        """A bare path is accepted in place of a config."""
        service = HistoryService(notebook_dir)
        assert service.repo_path == notebook_dir


class TestInit:
    """Tests for repository creation."""

    def test_init_creates_repository(self, history, notebook_dir):
        """init creates .git and ignores the control directory."""
        result = history.init()
        assert result.success
        assert history.is_repo()
        assert ".zh/" in (notebook_dir / ".gitignore").read_text().splitlines()

    def test_init_twice_fails(self, git_notebook):
        """A second init reports the existing repository."""
        result = git_notebook.init()
        assert not result.success
        assert "Already a git repository" in result.message

    def test_branch(self, git_notebook):
        """HEAD points at the configured branch."""
        assert git_notebook.current_branch() in ("main", "master")

    def test_init_with_remote(self, history, tmp_path):
        """A remote URL is registered under the configured name."""
        result = history.init(remote=str(tmp_path / "remote.git"))
        assert result.success
        assert history.remote_exists("origin")

    def test_existing_gitignore_is_extended(self, history, notebook_dir):
        """An existing .gitignore keeps its lines."""
        (notebook_dir / ".gitignore").write_text("*.tmp")
        history.init()
        lines = (notebook_dir / ".gitignore").read_text().splitlines()
        assert lines == ["*.tmp", ".zh/"]


class TestStatusAndCommit:
    """Tests for working tree state and recording revisions."""

    def test_status_lists_untracked(self, git_notebook, notebook_dir):
        """New files are untracked and make the tree dirty."""
        (notebook_dir / "new.md").write_text("x")
        status = git_notebook.status()
        assert "new.md" in status.untracked
        assert git_notebook.is_dirty()

    def test_commit_all_cleans_tree(self, git_notebook, notebook_dir):
        """commit(all=True) records everything; status is then clean."""
        (notebook_dir / "a.md").write_text("a")
        (notebook_dir / "sub").mkdir()
        (notebook_dir / "sub" / "b.md").write_text("b")
        result = git_notebook.commit("m", all=True)
        assert result.success, result.message
        status = git_notebook.status()
        assert status.untracked == []
        assert status.modified == []
        assert not git_notebook.is_dirty()

    def test_status_modified_deleted_staged(self, git_notebook, notebook_dir):
        """Changes to tracked files are classified."""
        (notebook_dir / "keep.md").write_text("v1")
        (notebook_dir / "gone.md").write_text("v1")
        git_notebook.commit("base", all=True)

        (notebook_dir / "keep.md").write_text("v2")
        (notebook_dir / "gone.md").unlink()
        (notebook_dir / "staged.md").write_text("s")
        subprocess.run(["git", "-C", str(notebook_dir), "add", "staged.md"], check=True)

        status = git_notebook.status()
        assert status.modified == ["keep.md"]
        assert status.deleted == ["gone.md"]
        assert "staged.md" in status.added
        assert "staged.md" in status.staged

    def test_nothing_to_commit(self, git_notebook):
        """Committing a clean tree fails as a value."""
        git_notebook.commit("init", all=True)
        result = git_notebook.commit("again", all=True)
        assert not result.success
        assert "Nothing to commit" in result.message

    def test_commit_paths_only(self, git_notebook, notebook_dir):
        """Only the named paths are committed."""
        (notebook_dir / "a.md").write_text("a")
        (notebook_dir / "b.md").write_text("b")
        result = git_notebook.commit("just a", paths=[notebook_dir / "a.md"])
        assert result.success, result.message
        untracked = git_notebook.status().untracked
        assert "b.md" in untracked
        assert "a.md" not in untracked

    def test_default_message_uses_template(self, git_notebook, notebook_dir):
        """An empty message falls back to the configured template."""
        git_notebook.commit("base", all=True)
        (notebook_dir / "a.md").write_text("a")
        (notebook_dir / "b.md").write_text("b")
        git_notebook.commit(all=True)
        assert git_notebook.log()[0].message == "Update 2 note(s)"

    def test_default_message_counts_named_paths(self, git_notebook, notebook_dir):
        """A paths commit counts only the paths it records."""
        git_notebook.commit("base", all=True)
        (notebook_dir / "a.md").write_text("a")
        (notebook_dir / "b.md").write_text("b")
        result = git_notebook.commit(paths=[notebook_dir / "a.md"])
        assert result.success, result.message
        entry = git_notebook.log()[0]
        assert entry.message == "Update 1 note(s)"
        assert entry.paths == ("a.md",)


class TestLogShowDiff:
    """Tests for point-in-time queries."""

    def test_log_is_most_recent_first(self, git_notebook, notebook_dir):
        """A limit of 2 over 3 commits returns the 2 newest."""
        path = notebook_dir / "n.md"
        for i in range(3):
            _commit_file(git_notebook, path, f"v{i}\n", f"commit {i}")
        entries = git_notebook.log(limit=2)
        assert [e.message for e in entries] == ["commit 2", "commit 1"]
        assert isinstance(entries[0].timestamp, datetime)
        assert entries[0].paths == ("n.md",)
        assert len(entries[0].short_hash) == 7

    def test_log_empty_repository(self, git_notebook):
        """A repository without commits has no history."""
        assert git_notebook.log() == []

    def test_log_non_positive_limit(self, git_notebook, notebook_dir):
        """A zero limit returns nothing."""
        _commit_file(git_notebook, notebook_dir / "n.md", "v", "c")
        assert git_notebook.log(limit=0) == []

    def test_log_filters_by_path(self, git_notebook, notebook_dir):
        """A path limits the log to revisions touching it."""
        _commit_file(git_notebook, notebook_dir / "a.md", "a", "add a")
        _commit_file(git_notebook, notebook_dir / "b.md", "b", "add b")
        assert [e.message for e in git_notebook.log(path=notebook_dir / "a.md")] == ["add a"]

    def test_show_returns_exact_past_content(self, git_notebook, notebook_dir):
        """show returns content as committed, even after later changes."""
        path = notebook_dir / "n.md"
        first = _commit_file(git_notebook, path, "line one\r\nline two\n", "first")
        _commit_file(git_notebook, path, "rewritten\n", "second")
        assert git_notebook.show(first.revision, path) == "line one\r\nline two\n"
        assert git_notebook.show(first.revision, notebook_dir / "missing.md") is None
        assert git_notebook.show("0" * 40, path) is None

    def test_show_rejects_non_utf8_content(self, git_notebook, notebook_dir):
        """Bytes that are not UTF-8 come back as None, never mangled text."""
        path = notebook_dir / "latin.md"
        path.write_bytes(b"caf\xe9\n")
        result = git_notebook.commit("latin-1 note", paths=[path])
        assert result.success, result.message
        revision = git_notebook.log(limit=1)[0].revision
        assert git_notebook.show(revision, path) is None

    def test_diff(self, git_notebook, notebook_dir):
        """diff is empty when clean and shows working tree changes."""
        path = notebook_dir / "n.md"
        _commit_file(git_notebook, path, "old\n", "c")
        assert git_notebook.diff() == ""
        path.write_text("new\n")
        diff = git_notebook.diff(path=path)
        assert "-old" in diff
        assert "+new" in diff

    def test_checkout_restores_file(self, git_notebook, notebook_dir):
        """checkout puts back a file's content from a revision."""
        path = notebook_dir / "n.md"
        first = _commit_file(git_notebook, path, "original\n", "c1")
        _commit_file(git_notebook, path, "changed\n", "c2")
        result = git_notebook.checkout(path, first.revision)
        assert result.success, result.message
        assert path.read_text() == "original\n"


class TestRemotes:
    """Tests for push and pull."""

    def test_push_without_remote(self, git_notebook):
        """Pushing with no remote is reported, not raised."""
        result = git_notebook.push()
        assert not result.success
        assert "not found" in result.message

    def test_pull_without_remote(self, git_notebook):
        """Pulling with no remote is reported, not raised."""
        result = git_notebook.pull()
        assert not result.success
        assert "not found" in result.message

    def test_push_then_pull_through_bare_remote(self, git_notebook, notebook_dir, tmp_path):
        """Changes pushed by one clone are pulled by another."""
        bare = tmp_path / "remote.git"
        subprocess.run(["git", "init", "--bare", str(bare)], check=True, capture_output=True)
        subprocess.run(
            ["git", "-C", str(bare), "symbolic-ref", "HEAD", "refs/heads/main"], check=True
        )
        subprocess.run(
            ["git", "-C", str(notebook_dir), "remote", "add", "origin", str(bare)], check=True
        )
        _commit_file(git_notebook, notebook_dir / "a.md", "a\n", "add a")
        assert git_notebook.push().success

        clone_dir = tmp_path / "clone"
        subprocess.run(
            ["git", "clone", str(bare), str(clone_dir)], check=True, capture_output=True
        )
        clone = HistoryService(clone_dir)
        for key, value in (("user.email", "c@localhost"), ("user.name", "clone")):
            subprocess.run(["git", "-C", str(clone_dir), "config", key, value], check=True)
        _commit_file(clone, clone_dir / "b.md", "b\n", "add b")
        assert clone.push().success

        result = git_notebook.pull()
        assert result.success, result.message
        assert (notebook_dir / "b.md").read_text() == "b\n"


class TestNoteHistory:
    """Tests for history keyed by note ID."""

    def test_note_log_follows_rename(self, git_notebook, notebook_config, make_note, notebook_dir):
        """A note's history survives moving its file."""
        old = make_note("old-name.md", {"id": "n1", "type": "note"}, "v1\n")
        git_notebook.commit("create", all=True)
        new = notebook_dir / "renamed" / "new-name.md"
        new.parent.mkdir()
        old.rename(new)
        git_notebook.commit("move", all=True)

        index = Indexer(notebook_config).build()
        entries = git_notebook.note_log(index, "n1")
        assert [e.message for e in entries] == ["move", "create"]

        first = entries[-1].revision
        assert "v1" in git_notebook.show_note(index, "n1", first)

    def test_restore_note_after_rename(self, git_notebook, notebook_config, make_note, notebook_dir):
        """Restoring writes the old content to the note's current file."""
        old = make_note("a.md", {"id": "n1", "type": "note"}, "original\n")
        git_notebook.commit("create", all=True)
        first = git_notebook.log(limit=1)[0].revision
        new = notebook_dir / "b.md"
        old.rename(new)
        git_notebook.commit("move", all=True)
        make_note("b.md", {"id": "n1", "type": "note"}, "edited\n")
        git_notebook.commit("edit", all=True)

        index = Indexer(notebook_config).build()
        result = git_notebook.restore_note(index, "n1", first)
        assert result.success, result.message
        assert "original" in new.read_text()
        assert not old.exists()

    def test_unknown_note(self, git_notebook, notebook_config):
        """Unknown IDs give empty results."""
        index = Indexer(notebook_config).build()
        assert git_notebook.note_log(index, "missing") == []
        assert git_notebook.show_note(index, "missing", "HEAD") is None
        assert not git_notebook.restore_note(index, "missing", "HEAD").success


class TestGitErrors:
    """Tests for failures to run git at all."""

    def test_missing_git_executable(self, history):
        """A missing git binary raises GitError."""
        with patch("subprocess.run", side_effect=FileNotFoundError("git")):
            with pytest.raises(GitError) as exc_info:
                history.init()
        assert exc_info.value.code == ErrorCode.GIT_UNAVAILABLE

    def test_timeout(self, git_notebook):
        """Repeated timeouts raise GitError."""
        timeout = subprocess.TimeoutExpired(cmd="git", timeout=1)
        with patch("subprocess.run", side_effect=timeout):
            with pytest.raises(GitError, match="timed out"):
                git_notebook.current_branch()
