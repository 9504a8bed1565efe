"""Version history of a notebook via git.

Treats the notebook's git repository as an append-only log of note
states. Uses subprocess git for portability; the notebook root is
passed with ``-C`` on every call.

Expected failures (no repository yet, missing remote, nothing to
commit) come back as GitResult values or empty results. Exceptions are
raised only when git itself cannot be run.
"""

import logging
import os
import subprocess
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from zettelhub.config import NotebookConfig
from zettelhub.exceptions import ErrorCode, GitError, RepositoryStateError
from zettelhub.models.schema import GitResult, GitStatus, HistoryEntry
from zettelhub.observability import traced

logger = logging.getLogger(__name__)

# Separators for machine-readable git log output
_RECORD_SEP = "\x1e"
_FIELD_SEP = "\x1f"
_LOG_FORMAT = "--format=%x1e%H%x1f%ct%x1f%an%x1f%s"

NOT_A_REPOSITORY = "Not a git repository"
ALREADY_A_REPOSITORY = "Already a git repository"

PathLike = Union[str, Path]


class HistoryService:
    """Git-backed history queries and commands for one notebook."""

    def __init__(self, config: Union[NotebookConfig, PathLike]):
        """Initialize the service.

        Args:
            config: Notebook configuration, or a notebook root path.
                    Unlike a plain git wrapper, nothing is initialized here;
                    call ``init()`` explicitly.
        """
        if not isinstance(config, NotebookConfig):
            config = NotebookConfig(notebook_path=Path(config))
        self.config = config
        self.repo_path = config.root

    # ------------------------------------------------------------------
    # git plumbing
    # ------------------------------------------------------------------

    def _run_git(
        self,
        args: List[str],
        text: bool = True,
        timeout: Optional[int] = None,
        retries: int = 3,
        retry_delay: float = 0.1,
    ) -> subprocess.CompletedProcess:
        """Run a git command via subprocess with retry for lock contention.

        Args:
            args: Git command arguments (without 'git' prefix)
            text: Decode output as text; pass False to get exact bytes
            timeout: Seconds before giving up (defaults to config.git_timeout)
            retries: Number of retries for index.lock contention
            retry_delay: Base delay between retries (multiplied by attempt number)

        Returns:
            CompletedProcess; callers inspect ``returncode``.

        Raises:
            GitError: If git is missing or the command keeps timing out.
        """
        cmd = ["git", "-C", str(self.repo_path), "-c", "core.quotePath=false"] + args
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0", "LC_ALL": "C"}
        timeout = timeout or self.config.git_timeout
        last_error: Optional[GitError] = None

        for attempt in range(retries + 1):
            try:
                result = subprocess.run(
                    cmd,
                    check=False,
                    capture_output=True,
                    text=text,
                    timeout=timeout,
                    env=env,
                )
                stderr = _as_text(result.stderr)
                if result.returncode != 0 and "index.lock" in stderr and attempt < retries:
                    logger.debug(
                        f"Git index.lock contention, retry {attempt + 1}/{retries}: {args}"
                    )
                    time.sleep(retry_delay * (attempt + 1))
                    continue
                return result
            except subprocess.TimeoutExpired as e:
                last_error = GitError(
                    message=f"Git command timed out ({timeout}s): {' '.join(args[:2])}",
                    command=cmd,
                )
                if attempt < retries:
                    time.sleep(retry_delay * (attempt + 1))
                    continue
                raise last_error from e
            except FileNotFoundError:
                raise GitError(
                    message="Git is not installed or not in PATH",
                    command=cmd,
                    code=ErrorCode.GIT_UNAVAILABLE,
                )

        if last_error:
            raise last_error
        raise GitError(f"Git command failed after {retries} retries: {args}", command=cmd)

    def _relative(self, path: PathLike) -> Optional[str]:
        """Notebook-relative posix path, or None when outside the notebook."""
        return self.config.relative_path(Path(path))

    def _not_a_repo(self) -> GitResult:
        return GitResult(False, f"{NOT_A_REPOSITORY}: {self.repo_path}")

    def _has_commits(self) -> bool:
        return self._run_git(["rev-parse", "--verify", "--quiet", "HEAD"]).returncode == 0

    # ------------------------------------------------------------------
    # Repository state
    # ------------------------------------------------------------------

    def is_repo(self) -> bool:
        """True if the notebook root is a git repository root."""
        return (self.repo_path / ".git").exists()

    def require_repo(self) -> None:
        """Raise RepositoryStateError unless the notebook is a repository."""
        if not self.is_repo():
            raise RepositoryStateError(
                NOT_A_REPOSITORY,
                repo_path=str(self.repo_path),
                code=ErrorCode.NOT_A_REPOSITORY,
            )

    @traced("git_init", "remote")
    def init(self, remote: Optional[str] = None) -> GitResult:
        """Initialize a repository in the notebook.

        Creates ``.gitignore`` excluding the control directory, points HEAD
        at the configured branch and sets a local identity when none is
        configured. Refuses to run on an existing repository.

        Args:
            remote: Optional URL added as ``config.git_remote``.
        """
        if self.is_repo():
            return GitResult(False, f"{ALREADY_A_REPOSITORY}: {self.repo_path}")

        logger.info(f"Initializing git repository at {self.repo_path}")
        self.repo_path.mkdir(parents=True, exist_ok=True)
        result = self._run_git(["init"])
        if result.returncode != 0:
            return GitResult(False, result.stderr.strip() or "git init failed")

        self._run_git(["symbolic-ref", "HEAD", f"refs/heads/{self.config.git_branch}"])
        self._ensure_identity()
        self._write_gitignore()

        if remote:
            added = self._run_git(["remote", "add", self.config.git_remote, remote])
            if added.returncode != 0:
                return GitResult(False, added.stderr.strip() or "Failed to add remote")
            logger.info(f"Added remote {self.config.git_remote}: {remote}")

        return GitResult(True, f"Initialized git repository in {self.repo_path}")

    def _ensure_identity(self) -> None:
        if self._run_git(["config", "user.email"]).returncode != 0:
            self._run_git(["config", "user.email", self.config.git_user_email])
        if self._run_git(["config", "user.name"]).returncode != 0:
            self._run_git(["config", "user.name", self.config.git_user_name])

    def _write_gitignore(self) -> None:
        entry = f"{self.config.control_dir}/"
        gitignore = self.repo_path / ".gitignore"
        if not gitignore.exists():
            gitignore.write_text(f"{entry}\n", encoding="utf-8")
            return
        content = gitignore.read_text(encoding="utf-8")
        if entry in content.splitlines():
            return
        prefix = "" if not content or content.endswith("\n") else "\n"
        with open(gitignore, "a", encoding="utf-8") as f:
            f.write(f"{prefix}{entry}\n")

    def status(self) -> GitStatus:
        """Working tree changes relative to the last commit.

        Returns empty lists when the notebook is not a repository.
        """
        status = GitStatus()
        if not self.is_repo():
            return status

        result = self._run_git(["status", "--porcelain", "-z", "--untracked-files=all"])
        if result.returncode != 0:
            logger.warning(f"git status failed: {result.stderr.strip()}")
            return status

        entries = result.stdout.split("\0")
        i = 0
        while i < len(entries):
            entry = entries[i]
            i += 1
            if len(entry) < 4:
                continue
            index_state, tree_state, path = entry[0], entry[1], entry[3:]
            if index_state in "RC":
                # Renames and copies are followed by the original path
                i += 1

            if index_state == "?" and tree_state == "?":
                status.untracked.append(path)
                continue
            if index_state not in " ?!":
                status.staged.append(path)
            if index_state in "ARC":
                status.added.append(path)
            if "D" in (index_state, tree_state):
                status.deleted.append(path)
            if "M" in (index_state, tree_state):
                status.modified.append(path)
        return status

    def is_dirty(self) -> bool:
        """True if anything is modified, staged or untracked."""
        return not self.status().is_clean

    def current_branch(self) -> Optional[str]:
        """Name of the checked-out branch, or None (no repo, detached HEAD)."""
        if not self.is_repo():
            return None
        result = self._run_git(["symbolic-ref", "--short", "-q", "HEAD"])
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    # ------------------------------------------------------------------
    # Recording revisions
    # ------------------------------------------------------------------

    @traced("git_commit", "message", "all", "paths")
    def commit(
        self,
        message: Optional[str] = None,
        all: bool = False,
        paths: Optional[List[PathLike]] = None,
    ) -> GitResult:
        """Record a new revision.

        Args:
            message: Commit message; defaults to config.commit_message_template.
            all: Stage every outstanding change (including untracked files).
            paths: Stage and commit only these files.

        Returns:
            GitResult; fails when the notebook is not a repository or
            nothing is staged.
        """
        if not self.is_repo():
            return self._not_a_repo()

        rel_paths: List[str] = []
        if paths:
            for path in paths:
                rel = self._relative(path)
                if rel is None:
                    return GitResult(False, f"Path is outside the notebook: {path}")
                rel_paths.append(rel)

        if not message or not message.strip():
            if rel_paths and not all:
                changed = len(rel_paths)
            else:
                changed = self.status().changed_count
            message = self.config.commit_message(changed)

        if all:
            staged = self._run_git(["add", "-A"])
        elif rel_paths:
            staged = self._run_git(["add", "-A", "--"] + rel_paths)
        else:
            staged = None
        if staged is not None and staged.returncode != 0:
            return GitResult(False, staged.stderr.strip() or "git add failed")

        pending = self._run_git(
            ["diff", "--cached", "--quiet"] + (["--"] + rel_paths if rel_paths else [])
        )
        if pending.returncode == 0:
            return GitResult(False, "Nothing to commit")

        args = ["commit", "-m", message]
        if rel_paths and not all:
            args += ["--"] + rel_paths
        result = self._run_git(args)
        if result.returncode != 0:
            return GitResult(
                False,
                (result.stderr or result.stdout).strip() or "git commit failed",
            )

        summary = result.stdout.strip().splitlines()
        logger.info(f"Committed: {summary[0] if summary else message}")
        return GitResult(True, summary[0] if summary else "")

    @traced("git_checkout", "path", "revision")
    def checkout(self, path: PathLike, revision: str) -> GitResult:
        """Restore one file in the working tree to its content at ``revision``."""
        if not self.is_repo():
            return self._not_a_repo()
        rel = self._relative(path)
        if rel is None:
            return GitResult(False, f"Path is outside the notebook: {path}")

        result = self._run_git(["checkout", revision, "--", rel])
        if result.returncode != 0:
            return GitResult(False, result.stderr.strip() or f"Cannot restore {rel}")
        return GitResult(True, f"Restored {rel} to {revision[:7]}")

    # ------------------------------------------------------------------
    # Point-in-time queries
    # ------------------------------------------------------------------

    @traced("git_log", "path", "limit")
    def log(
        self,
        path: Optional[PathLike] = None,
        limit: Optional[int] = None,
        follow: bool = True,
    ) -> List[HistoryEntry]:
        """Revisions, most recent first.

        Args:
            path: Only revisions touching this file (following renames
                  when ``follow`` is set).
            limit: Maximum number of entries.

        Returns:
            HistoryEntry list; empty when there is no repository or no commits.
        """
        if not self.is_repo():
            return []
        if limit is not None and limit < 1:
            return []

        args = ["log", _LOG_FORMAT, "--name-only"]
        if limit is not None:
            args.append(f"-n{limit}")
        if path is not None:
            rel = self._relative(path)
            if rel is None:
                logger.warning(f"File {path} is not under notebook {self.repo_path}")
                return []
            if follow:
                args.append("--follow")
            args += ["--", rel]

        result = self._run_git(args)
        if result.returncode != 0 or not result.stdout.strip():
            return []
        return self._parse_log(result.stdout)

    @staticmethod
    def _parse_log(output: str) -> List[HistoryEntry]:
        entries = []
        for record in output.split(_RECORD_SEP):
            if not record.strip():
                continue
            lines = record.split("\n")
            fields = lines[0].split(_FIELD_SEP, 3)
            if len(fields) < 4:
                continue
            revision, unix_timestamp, author, subject = fields
            entries.append(
                HistoryEntry(
                    revision=revision,
                    timestamp=datetime.fromtimestamp(int(unix_timestamp), tz=timezone.utc),
                    author=author,
                    message=subject,
                    paths=tuple(line for line in lines[1:] if line.strip()),
                )
            )
        return entries

    def diff(self, path: Optional[PathLike] = None, revision: Optional[str] = None) -> str:
        """Textual diff of the working tree against ``revision`` (default HEAD)."""
        if not self.is_repo():
            return ""
        args = ["diff"]
        if revision:
            args.append(revision)
        elif self._has_commits():
            args.append("HEAD")
        if path is not None:
            rel = self._relative(path)
            if rel is None:
                return ""
            args += ["--", rel]

        result = self._run_git(args)
        if result.returncode != 0:
            logger.debug(f"git diff failed: {result.stderr.strip()}")
            return ""
        return result.stdout

    def show(self, revision: str, path: PathLike) -> Optional[str]:
        """Content of ``path`` exactly as committed at ``revision``.

        Returns None when there is no repository, when the revision or the
        path at that revision does not exist, or when the blob is not
        valid UTF-8 text.
        """
        if not self.is_repo():
            return None
        rel = self._relative(path)
        if rel is None:
            return None
        result = self._run_git(["show", f"{revision}:{rel}"], text=False)
        if result.returncode != 0:
            return None
        try:
            return result.stdout.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.warning(f"{rel} at {revision} is not UTF-8 text: {e}")
            return None

    # ------------------------------------------------------------------
    # Remotes
    # ------------------------------------------------------------------

    def remote_exists(self, remote: Optional[str] = None) -> bool:
        remote = remote or self.config.git_remote
        return self._run_git(["remote", "get-url", remote]).returncode == 0

    @traced("git_push", "remote", "branch")
    def push(self, remote: Optional[str] = None, branch: Optional[str] = None) -> GitResult:
        """Push the branch to the remote."""
        if not self.is_repo():
            return self._not_a_repo()
        remote = remote or self.config.git_remote
        branch = branch or self.current_branch() or self.config.git_branch
        if not self.remote_exists(remote):
            return GitResult(False, f"Remote '{remote}' not found")

        result = self._run_git(
            ["push", "-u", remote, branch], timeout=self.config.git_timeout * 10
        )
        if result.returncode != 0:
            return GitResult(False, result.stderr.strip() or "git push failed")
        return GitResult(True, f"Pushed {branch} to {remote}")

    @traced("git_pull", "remote", "branch")
    def pull(self, remote: Optional[str] = None, branch: Optional[str] = None) -> GitResult:
        """Pull and merge the branch from the remote."""
        if not self.is_repo():
            return self._not_a_repo()
        remote = remote or self.config.git_remote
        branch = branch or self.current_branch() or self.config.git_branch
        if not self.remote_exists(remote):
            return GitResult(False, f"Remote '{remote}' not found")

        result = self._run_git(
            ["pull", "--no-rebase", "--no-edit", remote, branch],
            timeout=self.config.git_timeout * 10,
        )
        if result.returncode != 0:
            output = f"{result.stdout}\n{result.stderr}".strip()
            if "CONFLICT" in output or "conflict" in output:
                return GitResult(False, f"Merge conflict while pulling: {output}")
            return GitResult(False, result.stderr.strip() or "git pull failed")
        return GitResult(True, f"Pulled {remote}/{branch}")

    # ------------------------------------------------------------------
    # Note identity
    # ------------------------------------------------------------------

    def note_log(self, index, note_id: str, limit: Optional[int] = None) -> List[HistoryEntry]:
        """History of one logical note, following renames of its file.

        Args:
            index: A NoteIndex used to map the ID to its current path.
            note_id: Stable note ID.
        """
        path = index.path_for(note_id)
        if path is None:
            logger.debug(f"Note {note_id} is not indexed; no history")
            return []
        return self.log(path=path, limit=limit, follow=True)

    def _note_path_at(self, index, note_id: str, revision: str) -> Optional[str]:
        """Notebook-relative path a note had at ``revision``."""
        path = index.path_for(note_id)
        if path is None:
            return None
        candidates = [self._relative(path)]
        for entry in self.log(path=path, follow=True):
            candidates.extend(entry.paths)
        for rel in dict.fromkeys(c for c in candidates if c):
            probe = self._run_git(["cat-file", "-e", f"{revision}:{rel}"])
            if probe.returncode == 0:
                return rel
        return None

    def show_note(self, index, note_id: str, revision: str) -> Optional[str]:
        """Content of a note at ``revision``, even if its file was renamed since."""
        if not self.is_repo():
            return None
        rel = self._note_path_at(index, note_id, revision)
        if rel is None:
            return None
        return self.show(revision, self.repo_path / rel)

    def restore_note(self, index, note_id: str, revision: str) -> GitResult:
        """Write a note's content at ``revision`` back to its current file."""
        if not self.is_repo():
            return self._not_a_repo()
        current = index.path_for(note_id)
        if current is None:
            return GitResult(False, f"Note not found: {note_id}")
        rel = self._note_path_at(index, note_id, revision)
        if rel is None:
            return GitResult(False, f"Note {note_id} does not exist at {revision[:7]}")
        if rel == self._relative(current):
            return self.checkout(current, revision)

        content = self.show(revision, self.repo_path / rel)
        if content is None:
            return GitResult(False, f"Cannot read {rel} at {revision[:7]}")
        with open(current, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        return GitResult(True, f"Restored {self._relative(current)} from {rel} at {revision[:7]}")


def _as_text(value: Union[str, bytes, None]) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
