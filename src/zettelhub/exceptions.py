"""Custom exceptions for ZettelHub.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_PATH_REQUIRED = 1001
    NOTE_UNREADABLE = 1002
    NOTE_MISSING_FIELD = 1004

    # Parse errors (2xxx)
    FRONT_MATTER_UNTERMINATED = 2001
    FRONT_MATTER_INVALID = 2002
    FRONT_MATTER_NOT_MAPPING = 2003

    # Index errors (3xxx)
    INDEX_DUPLICATE_ID = 3001

    # Repository errors (4xxx)
    NOT_A_REPOSITORY = 4001
    GIT_COMMAND_FAILED = 4004
    GIT_UNAVAILABLE = 4005

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001


class ZettelhubError(Exception):
    """Base exception for all ZettelHub errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CONFIG_INVALID,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class ConstructionError(ZettelhubError, ValueError):
    """Raised when a note cannot be constructed from its arguments.

    A note needs a path; a missing path or an unreadable file is a
    hard failure at construction time.
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOTE_PATH_REQUIRED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if path:
            details["path"] = path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.path = path
        self.original_error = original_error


class ParseError(ZettelhubError, ValueError):
    """Raised when a file's front matter block is malformed."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.FRONT_MATTER_INVALID,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if path:
            details["path"] = path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.path = path
        self.original_error = original_error


class IndexConflict(ZettelhubError):
    """Raised (or collected) when two files claim the same note ID.

    Attributes:
        note_id: The duplicated ID
        existing_path: Path of the note already held by the index
        conflicting_path: Path of the note that was rejected
    """

    def __init__(
        self,
        note_id: str,
        existing_path: Optional[str] = None,
        conflicting_path: Optional[str] = None,
    ):
        details = {"note_id": note_id}
        if existing_path:
            details["existing_path"] = existing_path
        if conflicting_path:
            details["conflicting_path"] = conflicting_path

        super().__init__(
            f"Duplicate note ID '{note_id}'",
            code=ErrorCode.INDEX_DUPLICATE_ID,
            details=details,
        )
        self.note_id = note_id
        self.existing_path = existing_path
        self.conflicting_path = conflicting_path


class RepositoryStateError(ZettelhubError):
    """Raised when an operation needs a repository (or remote) that is missing."""

    def __init__(
        self,
        message: str,
        repo_path: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_A_REPOSITORY,
    ):
        details = {}
        if repo_path:
            details["repo_path"] = repo_path

        super().__init__(message, code=code, details=details)
        self.repo_path = repo_path


class GitError(ZettelhubError):
    """Raised when the git executable cannot be run at all.

    Attributes:
        command: The git command that failed (if applicable)
        returncode: Exit code from git (if applicable)
        stderr: Error output from git (if applicable)
    """

    def __init__(
        self,
        message: str,
        command: Optional[List[str]] = None,
        returncode: Optional[int] = None,
        stderr: Optional[str] = None,
        code: ErrorCode = ErrorCode.GIT_COMMAND_FAILED,
    ):
        details: Dict[str, Any] = {}
        if command:
            details["command"] = " ".join(command)
        if returncode is not None:
            details["returncode"] = returncode
        if stderr:
            details["stderr"] = stderr[:200]

        super().__init__(message, code=code, details=details)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class ConfigurationError(ZettelhubError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key
