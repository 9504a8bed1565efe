#!/usr/bin/env python
"""Command line entry point for ZettelHub."""
import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from zettelhub import __version__
from zettelhub.config import NotebookConfig, load_config
from zettelhub.exceptions import ConfigurationError, ZettelhubError
from zettelhub.models.schema import Edge
from zettelhub.observability import configure_logging, timings
from zettelhub.services.history_service import HistoryService
from zettelhub.services.indexer import Indexer, NoteIndex

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="zettelhub", description="Markdown knowledge base with typed links"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--notebook",
        help="Notebook root directory",
        type=str,
        default=os.environ.get("ZETTELHUB_NOTEBOOK_PATH"),
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("ZETTELHUB_LOG_LEVEL", "WARNING"),
    )
    parser.add_argument(
        "--timings",
        action="store_true",
        help="Print index and git timings to stderr when done",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("reindex", help="Index the notebook and report problems")

    show = commands.add_parser("show", help="Show one note")
    show.add_argument("note_id")

    links = commands.add_parser("links", help="Outgoing links of a note")
    links.add_argument("note_id")

    backlinks = commands.add_parser("backlinks", help="Notes linking to a note")
    backlinks.add_argument("note_id")

    graph = commands.add_parser("graph", help="Render the links around a note")
    graph.add_argument("note_id")
    graph.add_argument("--format", choices=["dot", "ascii"], default="ascii")

    history = commands.add_parser("history", help="Revisions of one note")
    history.add_argument("note_id")
    history.add_argument("-n", "--limit", type=int, default=None)
    history.add_argument("--json", action="store_true", help="Output JSON")

    diff = commands.add_parser("diff", help="Uncommitted changes")
    diff.add_argument("note_id", nargs="?")
    diff.add_argument("--revision", default=None)

    restore = commands.add_parser("restore", help="Restore a note from a revision")
    restore.add_argument("note_id")
    restore.add_argument("revision")

    git = commands.add_parser("git", help="Notebook repository commands")
    git_commands = git.add_subparsers(dest="git_command", required=True)
    git_init = git_commands.add_parser("init", help="Create the repository")
    git_init.add_argument("--remote", default=None, help="Remote URL")
    git_commands.add_parser("status", help="Working tree changes")
    git_commit = git_commands.add_parser("commit", help="Record a revision")
    git_commit.add_argument("-m", "--message", default=None)
    git_commit.add_argument("-a", "--all", action="store_true", help="Stage all changes")
    git_log = git_commands.add_parser("log", help="Notebook revisions")
    git_log.add_argument("-n", "--limit", type=int, default=None)
    git_sync = git_commands.add_parser("sync", help="Pull then push")
    direction = git_sync.add_mutually_exclusive_group()
    direction.add_argument("--push-only", action="store_true")
    direction.add_argument("--pull-only", action="store_true")

    return parser.parse_args(argv)


def _fail(message: str) -> int:
    print(message, file=sys.stderr)
    return 1


def _label(index: NoteIndex, note_id: str) -> str:
    note = index.by_id(note_id)
    if note is None:
        return f"{note_id} (unresolved)"
    return f"{note.title} [{note_id}]"


def render_dot(index: NoteIndex, note_id: str) -> str:
    """Graphviz digraph of a note and its direct neighbours."""
    nodes, edges = index.neighbourhood(note_id)
    lines = [f'digraph "{_dot_escape(note_id)}" {{']
    for node_id in sorted(nodes):
        note = index.by_id(node_id)
        title = note.title if note else node_id
        style = "" if note else ", style=dashed"
        lines.append(
            f'  "{_dot_escape(node_id)}" [label="{_dot_escape(title)}"{style}];'
        )
    for edge in edges:
        lines.append(
            f'  "{_dot_escape(edge.source_id)}" -> "{_dot_escape(edge.target_id)}" '
            f'[label="{edge.relation.value}"];'
        )
    lines.append("}")
    return "\n".join(lines)


def _dot_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def render_ascii(index: NoteIndex, note_id: str) -> str:
    """Plain-text tree of a note's outgoing and incoming links."""
    lines = [_label(index, note_id)]
    outgoing = index.outgoing_edges(note_id)
    incoming = index.incoming_edges(note_id)
    rows = [(f"--{e.relation.value}-->", e.target_id) for e in outgoing]
    rows += [(f"<--{e.relation.value}--", e.source_id) for e in incoming]
    for i, (arrow, other_id) in enumerate(rows):
        branch = "`-" if i == len(rows) - 1 else "|-"
        lines.append(f"{branch} {arrow} {_label(index, other_id)}")
    return "\n".join(lines)


def _print_edges(index: NoteIndex, edges: List[Edge], outgoing: bool) -> None:
    for edge in edges:
        other = edge.target_id if outgoing else edge.source_id
        print(f"{edge.relation.value}\t{other}\t{_label(index, other)}")


def _cmd_reindex(config: NotebookConfig) -> int:
    index = Indexer(config).build()
    print(f"Indexed {len(index)} notes")
    for failure in index.failures():
        print(f"failed: {failure.path}: {failure.message}", file=sys.stderr)
    for conflict in index.conflicts():
        print(
            f"duplicate id '{conflict.note_id}': {conflict.conflicting_path} "
            f"(kept {conflict.existing_path})",
            file=sys.stderr,
        )
    for edge in index.unresolved_edges():
        print(
            f"unresolved: {edge.source_id} --{edge.relation.value}--> {edge.target_id}",
            file=sys.stderr,
        )
    return 0


def _cmd_note(args: argparse.Namespace, config: NotebookConfig) -> int:
    index = Indexer(config).build()
    note = index.by_id(args.note_id)
    if note is None:
        return _fail(f"Note not found: {args.note_id}")

    if args.command == "show":
        print(f"id: {note.id}")
        print(f"type: {note.type}")
        print(f"title: {note.title}")
        print(f"path: {config.relative_path(note.path)}")
        if note.tags:
            print(f"tags: {', '.join(str(t) for t in note.tags)}")
        print()
        print(note.body, end="" if note.body.endswith("\n") else "\n")
    elif args.command == "links":
        _print_edges(index, index.outgoing_edges(note.id), outgoing=True)
    elif args.command == "backlinks":
        _print_edges(index, index.incoming_edges(note.id), outgoing=False)
    elif args.command == "graph":
        if args.format == "dot":
            print(render_dot(index, note.id))
        else:
            print(render_ascii(index, note.id))
    return 0


def _cmd_history(args: argparse.Namespace, config: NotebookConfig) -> int:
    history = HistoryService(config)
    if not history.is_repo():
        return _fail(f"Not a git repository: {config.root}")
    index = Indexer(config).build()
    if args.note_id not in index:
        return _fail(f"Note not found: {args.note_id}")

    entries = history.note_log(index, args.note_id, limit=args.limit or config.git_history_limit)
    if args.json:
        print(json.dumps([entry.to_dict() for entry in entries], indent=2))
    else:
        for entry in entries:
            print(f"{entry.short_hash}  {entry.timestamp.date().isoformat()}  "
                  f"{entry.author}  {entry.message}")
    return 0


def _cmd_diff(args: argparse.Namespace, config: NotebookConfig) -> int:
    history = HistoryService(config)
    if not history.is_repo():
        return _fail(f"Not a git repository: {config.root}")
    path: Optional[Path] = None
    if args.note_id:
        index = Indexer(config).build()
        path = index.path_for(args.note_id)
        if path is None:
            return _fail(f"Note not found: {args.note_id}")
    print(history.diff(path=path, revision=args.revision), end="")
    return 0


def _cmd_restore(args: argparse.Namespace, config: NotebookConfig) -> int:
    index = Indexer(config).build()
    result = HistoryService(config).restore_note(index, args.note_id, args.revision)
    if not result:
        return _fail(result.message)
    print(result.message)
    return 0


def _cmd_git(args: argparse.Namespace, config: NotebookConfig) -> int:
    history = HistoryService(config)

    if args.git_command == "init":
        result = history.init(remote=args.remote)
    elif args.git_command == "status":
        if not history.is_repo():
            return _fail(f"Not a git repository: {config.root}")
        status = history.status()
        if status.is_clean:
            print("Nothing to commit, working tree clean")
        for label, paths in (
            ("staged", status.staged),
            ("modified", status.modified),
            ("added", status.added),
            ("deleted", status.deleted),
            ("untracked", status.untracked),
        ):
            for path in paths:
                print(f"{label}: {path}")
        return 0
    elif args.git_command == "commit":
        result = history.commit(args.message, all=args.all)
    elif args.git_command == "log":
        if not history.is_repo():
            return _fail(f"Not a git repository: {config.root}")
        for entry in history.log(limit=args.limit or config.git_history_limit):
            print(entry)
        return 0
    else:
        return _sync(history, pull=not args.push_only, push=not args.pull_only)

    if not result:
        return _fail(result.message)
    print(result.message)
    return 0


def _sync(history: HistoryService, pull: bool, push: bool) -> int:
    """Pull then push; a notebook without a remote is left alone."""
    history.require_repo()
    if not history.remote_exists():
        print(f"Remote '{history.config.git_remote}' not found; skipping sync")
        return 0
    if pull:
        result = history.pull()
        if not result:
            return _fail(result.message)
        print(result.message)
    if push:
        result = history.push()
        if not result:
            return _fail(result.message)
        print(result.message)
    return 0


def _dispatch(args: argparse.Namespace, config: NotebookConfig) -> int:
    if args.command == "reindex":
        return _cmd_reindex(config)
    if args.command in ("show", "links", "backlinks", "graph"):
        return _cmd_note(args, config)
    if args.command == "history":
        return _cmd_history(args, config)
    if args.command == "diff":
        return _cmd_diff(args, config)
    if args.command == "restore":
        return _cmd_restore(args, config)
    return _cmd_git(args, config)


def main(argv: Optional[List[str]] = None) -> int:
    """Run the ZettelHub command line."""
    args = parse_args(argv)

    try:
        config = load_config(Path(args.notebook) if args.notebook else None)
    except ConfigurationError as e:
        return _fail(e.message)

    log_level = getattr(logging, args.log_level.upper(), logging.WARNING)
    try:
        log_file = configure_logging(log_dir=config.log_dir, level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logger.warning(f"Failed to configure file logging: {e}")
        log_file = None
    if log_file:
        logger.info(f"Persistent logging enabled: {log_file}")

    try:
        return _dispatch(args, config)
    except ZettelhubError as e:
        logger.debug(f"Command failed: {e.to_dict()}")
        return _fail(str(e))
    finally:
        if args.timings:
            print(timings.report(), file=sys.stderr)


if __name__ == "__main__":
    sys.exit(main())
