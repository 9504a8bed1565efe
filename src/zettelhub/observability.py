"""Logging setup and operation timings for ZettelHub.

Index builds and git commands run inside ``timed_operation``, directly
or through the ``@traced`` decorator. Each run is logged at debug level
and added to the process-wide ``timings`` table, which the command line
prints with ``--timings``.
"""
import functools
import inspect
import itertools
import logging
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, replace
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, TypeVar, Union

from zettelhub.models.schema import GitResult

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"
LOG_FILE_NAME = "zettelhub.log"

ROOT_LOGGER_NAME = "zettelhub"

F = TypeVar("F", bound=Callable[..., Any])

# Numbers the started/finished log lines of one run
_run_numbers = itertools.count(1)


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    console: bool = True,
    max_bytes: int = 2 * 1024 * 1024,
    backup_count: int = 3,
) -> Optional[Path]:
    """Attach handlers to the ``zettelhub`` logger.

    Args:
        log_dir: Directory for a rotating ``zettelhub.log``; None logs to
            the console only.
        level: Level for the logger and every handler added here.
        console: Also log to stderr. A console handler is added once even
            when this is called repeatedly.
        max_bytes: Size at which the log file rotates.
        backup_count: Rotated files kept next to the log file.

    Returns:
        Path of the log file, or None without a log directory.
    """
    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    package_logger.setLevel(level)

    handlers = []
    log_file = None
    if log_dir:
        log_file = Path(log_dir) / LOG_FILE_NAME
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
            )
        )
    if console and not _has_console_handler(package_logger):
        handlers.append(logging.StreamHandler())

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    if log_file:
        package_logger.debug(f"Writing log to {log_file}")
    return log_file


def _has_console_handler(target: logging.Logger) -> bool:
    # RotatingFileHandler is a StreamHandler subclass too
    return any(type(h) is logging.StreamHandler for h in target.handlers)


@dataclass
class OperationStats:
    """Running totals for one operation name."""

    calls: int = 0
    failures: int = 0
    total_ms: float = 0.0
    slowest_ms: float = 0.0
    last_failure: Optional[str] = None

    @property
    def mean_ms(self) -> float:
        return self.total_ms / self.calls if self.calls else 0.0


class OperationTimings:
    """Thread-safe timing table, one row per operation name."""

    def __init__(self) -> None:
        self._stats: Dict[str, OperationStats] = defaultdict(OperationStats)
        self._lock = Lock()

    def record(self, operation: str, duration_ms: float, failure: Optional[str] = None) -> None:
        """Add one run; a non-None ``failure`` counts it as failed."""
        with self._lock:
            stats = self._stats[operation]
            stats.calls += 1
            stats.total_ms += duration_ms
            stats.slowest_ms = max(stats.slowest_ms, duration_ms)
            if failure is not None:
                stats.failures += 1
                stats.last_failure = failure

    def snapshot(self) -> Dict[str, OperationStats]:
        """Copies of the current rows, by operation name."""
        with self._lock:
            return {name: replace(stats) for name, stats in sorted(self._stats.items())}

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()

    def report(self) -> str:
        """Plain-text table of the rows, largest total time first."""
        rows = sorted(self.snapshot().items(), key=lambda row: row[1].total_ms, reverse=True)
        lines = [f"{'operation':<16} {'calls':>5} {'failed':>6} {'mean ms':>9} {'max ms':>9}"]
        for name, stats in rows:
            lines.append(
                f"{name:<16} {stats.calls:>5} {stats.failures:>6} "
                f"{stats.mean_ms:>9.1f} {stats.slowest_ms:>9.1f}"
            )
        return "\n".join(lines)


timings = OperationTimings()


def _describe(values: Mapping[str, Any]) -> str:
    return " ".join(f"{k}={v}" for k, v in values.items() if v is not None)


@contextmanager
def timed_operation(operation: str, **context: Any) -> Iterator[Dict[str, Any]]:
    """Time a block and record it under ``operation``.

    ``context`` is logged when the block starts. The yielded dict holds
    result details logged when it ends; setting its ``failure`` key marks
    the run failed without raising. An exception is recorded as a failure
    and propagates.

    Example:
        with timed_operation("index_build", root=str(root)) as run:
            index = assemble()
            run["note_count"] = len(index)
    """
    number = next(_run_numbers)
    details: Dict[str, Any] = {}
    logger.debug(f"#{number} {operation} started {_describe(context)}".rstrip())
    started = time.perf_counter()
    failure: Optional[str] = None
    try:
        yield details
    except Exception as e:
        failure = str(e) or type(e).__name__
        raise
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        if failure is None:
            failure = details.pop("failure", None)
        timings.record(operation, elapsed_ms, failure)
        outcome = f"failed ({failure})" if failure is not None else "done"
        logger.debug(
            f"#{number} {operation} {outcome} in {elapsed_ms:.1f}ms {_describe(details)}".rstrip()
        )


def traced(operation: str, *arg_names: str) -> Callable[[F], F]:
    """Run every call of the decorated function inside ``timed_operation``.

    ``arg_names`` name the call arguments logged with the run, as in
    ``@traced("git_log", "path", "limit")``. A falsy ``GitResult`` return
    is recorded as a failure carrying its message. A list return logs
    its length.
    """
    def decorator(func: F) -> F:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            arguments = signature.bind(*args, **kwargs).arguments
            context = {name: arguments.get(name) for name in arg_names}
            with timed_operation(operation, **context) as details:
                result = func(*args, **kwargs)
                if isinstance(result, GitResult) and not result:
                    details["failure"] = result.message
                elif isinstance(result, list):
                    details["count"] = len(result)
                return result

        return wrapper  # type: ignore
    return decorator
