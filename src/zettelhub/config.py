"""Configuration module for ZettelHub."""

import logging
import os
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator

from zettelhub.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

# User-level config, shared by every notebook
_USER_ENV = Path.home() / ".zettelhub" / ".env"

CONTROL_DIRNAME = ".zh"


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class NotebookConfig(BaseModel):
    """Configuration for one notebook.

    Instances are passed explicitly to the Indexer and HistoryService;
    there is no process-wide config object.
    """

    # Root directory containing the notes
    notebook_path: Path = Field(
        default_factory=lambda: Path(os.getenv("ZETTELHUB_NOTEBOOK_PATH", "."))
    )
    # Internal bookkeeping directory, never indexed and excluded from git
    control_dir: str = Field(
        default_factory=lambda: os.getenv("ZETTELHUB_CONTROL_DIR", CONTROL_DIRNAME)
    )
    note_extension: str = Field(default=".md")
    # Parse files with this many threads during a full build
    index_workers: int = Field(
        default_factory=lambda: int(os.getenv("ZETTELHUB_INDEX_WORKERS", "1"))
    )
    # Skip dot-directories (other than the control dir, which is always skipped)
    skip_hidden: bool = Field(
        default_factory=lambda: _env_flag("ZETTELHUB_SKIP_HIDDEN", "true")
    )
    # Git configuration
    git_remote: str = Field(
        default_factory=lambda: os.getenv("ZETTELHUB_GIT_REMOTE", "origin")
    )
    git_branch: str = Field(
        default_factory=lambda: os.getenv("ZETTELHUB_GIT_BRANCH", "main")
    )
    git_history_limit: int = Field(
        default_factory=lambda: int(os.getenv("ZETTELHUB_GIT_HISTORY_LIMIT", "20"))
    )
    git_timeout: int = Field(
        default_factory=lambda: int(os.getenv("ZETTELHUB_GIT_TIMEOUT", "30"))
    )
    git_user_name: str = Field(
        default_factory=lambda: os.getenv("ZETTELHUB_GIT_USER_NAME", "zettelhub")
    )
    git_user_email: str = Field(
        default_factory=lambda: os.getenv(
            "ZETTELHUB_GIT_USER_EMAIL", "zettelhub@localhost"
        )
    )
    commit_message_template: str = Field(
        default_factory=lambda: os.getenv(
            "ZETTELHUB_COMMIT_MESSAGE_TEMPLATE", "Update {changed_count} note(s)"
        )
    )
    # Log directory; None means console logging only
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("ZETTELHUB_LOG_DIR"))
            if os.getenv("ZETTELHUB_LOG_DIR")
            else None
        )
    )

    @model_validator(mode="after")
    def _validate_limits(self) -> "NotebookConfig":
        """Validate numeric settings and the commit message template."""
        if self.index_workers < 1:
            raise ValueError("index_workers must be >= 1")
        if self.git_history_limit < 1:
            raise ValueError("git_history_limit must be >= 1")
        if self.git_timeout < 1:
            raise ValueError("git_timeout must be >= 1")
        if "{changed_count}" not in self.commit_message_template:
            raise ValueError(
                "commit_message_template must contain '{changed_count}'"
            )
        if not self.note_extension.startswith("."):
            raise ValueError("note_extension must start with '.'")
        return self

    @property
    def root(self) -> Path:
        """Absolute notebook root."""
        return self.notebook_path.expanduser().resolve()

    @property
    def control_path(self) -> Path:
        """Absolute path of the control directory inside the notebook."""
        return self.root / self.control_dir

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on the notebook root."""
        if path.is_absolute():
            return path
        return self.root / path

    def relative_path(self, path: Path) -> Optional[str]:
        """Notebook-relative posix path, or None when outside the notebook."""
        try:
            return self.get_absolute_path(path).resolve().relative_to(self.root).as_posix()
        except ValueError:
            return None

    def commit_message(self, changed_count: int) -> str:
        """Default commit message for a number of changed files."""
        return self.commit_message_template.replace(
            "{changed_count}", str(changed_count)
        )


def load_config(notebook_path: Optional[Path] = None, **overrides: Any) -> NotebookConfig:
    """Load a NotebookConfig from the environment and .env files.

    Args:
        notebook_path: Notebook root; overrides ZETTELHUB_NOTEBOOK_PATH.
        **overrides: Any other NotebookConfig field.

    Returns:
        A new NotebookConfig instance.

    Raises:
        ConfigurationError: If a setting is invalid.
    """
    load_dotenv(_PROJECT_ROOT / ".env")
    load_dotenv(_USER_ENV)
    if notebook_path is not None:
        overrides["notebook_path"] = Path(notebook_path)
    try:
        cfg = NotebookConfig(**overrides)
    except ValidationError as e:
        errors = e.errors()
        key = ".".join(str(p) for p in errors[0]["loc"]) if errors and errors[0]["loc"] else None
        raise ConfigurationError(f"Invalid configuration: {e}", config_key=key) from e
    logger.debug(f"Loaded config for notebook {cfg.root}")
    return cfg
