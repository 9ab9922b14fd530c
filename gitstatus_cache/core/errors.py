# -*- coding: utf-8 -*-
"""
Git Error Classification
Sprint 2: Centralized error taxonomy for every git-backed operation

Raw stderr text of the git CLI is mapped to a closed set of error codes
at the boundary. Callers branch on the codes, never on the raw text.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Union

from . import log
from .shell import EXECUTABLE_NOT_FOUND_TOKEN, TIME_OUT_ERROR_TOKEN


class StatusError(str, Enum):
    """Errors shared by all git operations."""

    SUCCESS = "Success"
    AUTHENTICATION_FAILED = "AuthenticationFailed"
    UNABLE_TO_CONNECT = "UnableToConnect"
    NOT_A_WORKING_COPY = "NotAWorkingCopy"
    EXECUTABLE_NOT_FOUND = "ExecutableNotFound"
    TARGET_PATH_NOT_FOUND = "TargetPathNotFound"
    UNSUPPORTED_TOOL_VERSION = "UnsupportedToolVersion"
    MISSING_EXTENSION_SUPPORT = "MissingExtensionSupport"
    TIMEOUT = "Timeout"
    UNKNOWN_ERROR = "UnknownError"


class LockError(str, Enum):
    """Extra outcomes of lock / unlock operations."""

    LOCK_ALREADY_EXISTS = "LockAlreadyExists"
    BLOCKED_BY_UNCOMMITTED_CHANGES = "BlockedByUncommittedChanges"
    INSUFFICIENT_PRIVILEGES = "InsufficientPrivileges"
    DIRECTORY_LOCKING_UNSUPPORTED = "DirectoryLockingUnsupported"


class FetchError(str, Enum):
    """Extra outcomes of fetch operations."""

    REMOTE_NOT_FOUND = "RemoteNotFound"
    BRANCH_NOT_FOUND = "BranchNotFound"


LockOutcome = Union[StatusError, LockError]
FetchOutcome = Union[StatusError, FetchError]

# Another fetch moved the ref while ours was running. The data is there.
FETCH_REF_LOCK_SIGNATURE = "error: cannot lock ref"

_FATAL_ERRORS = (
    StatusError.EXECUTABLE_NOT_FOUND,
    StatusError.NOT_A_WORKING_COPY,
)


def classify_common_error(error_text: str) -> StatusError:
    """
    Map git stderr output to a StatusError.

    Args:
        error_text: stderr of the git process (may be empty)

    Returns:
        StatusError: SUCCESS for empty text, UNKNOWN_ERROR if nothing matches
    """
    if not error_text or not error_text.strip():
        return StatusError.SUCCESS

    # Checked before the generic "No such file" rule, the OS error for a
    # missing executable carries the same words.
    if EXECUTABLE_NOT_FOUND_TOKEN in error_text:
        return StatusError.EXECUTABLE_NOT_FOUND

    # fatal: not a git repository (or any of the parent directories): .git
    if "fatal: not a git repository" in error_text:
        return StatusError.NOT_A_WORKING_COPY

    # warning: could not open directory '...': No such file or directory
    if "No such file or directory" in error_text:
        if "could not read Username for" in error_text:
            return StatusError.AUTHENTICATION_FAILED
        return StatusError.TARGET_PATH_NOT_FOUND

    if (
        "fatal: User cancelled dialog." in error_text
        or "fatal: could not read Username for" in error_text
        or "Authentication failed" in error_text
    ):
        return StatusError.AUTHENTICATION_FAILED

    # fatal: unable to access '...': Could not resolve host: ...
    if (
        "fatal: unable to access" in error_text
        or "No such device or address" in error_text
    ):
        return StatusError.UNABLE_TO_CONNECT

    # error: unknown option `porcelain'
    if "error: unknown option" in error_text:
        return StatusError.UNSUPPORTED_TOOL_VERSION

    # Error while retrieving locks: missing protocol: ""
    # git: 'lfs' is not a git command. See 'git --help'.
    if (
        "missing protocol" in error_text
        or "'lfs' is not a git command." in error_text
    ):
        return StatusError.MISSING_EXTENSION_SUPPORT

    if TIME_OUT_ERROR_TOKEN in error_text:
        return StatusError.TIMEOUT

    return StatusError.UNKNOWN_ERROR


def filter_out_lines(text: str, *excluded: str) -> str:
    """Drop lines containing any of the excluded fragments (case-insensitive)."""
    lowered = [ex.lower() for ex in excluded]
    kept = [
        line
        for line in (text or "").split("\n")
        if not any(ex in line.lower() for ex in lowered)
    ]
    return "\n".join(kept)


def classify_lock_error(error_text: str) -> LockOutcome:
    """Map `git lfs lock` stderr to a LockOutcome."""
    if not error_text or not error_text.strip():
        return StatusError.SUCCESS

    # Locking ... failed: Lock exists
    # Also returned when THIS working copy already holds the lock.
    if "failed: Lock exists" in error_text:
        return LockError.LOCK_ALREADY_EXISTS

    if "cannot lock directory" in error_text:
        return LockError.DIRECTORY_LOCKING_UNSUPPORTED

    return classify_common_error(error_text)


# Lines of `git lfs unlock` that are not really errors.
UNLOCK_BENIGN_LINES = (
    # No one has locked this file.
    "unable to get lock ID: no matching locks found",
    # File becomes read-only although it has changes. Fine.
    "unlocking with uncommitted changes because --force",
)


def classify_unlock_error(error_text: str) -> LockOutcome:
    """Map `git lfs unlock` stderr to a LockOutcome."""
    error_text = filter_out_lines(error_text, *UNLOCK_BENIGN_LINES)
    if not error_text.strip():
        return StatusError.SUCCESS

    if "is locked by" in error_text:
        return LockError.LOCK_ALREADY_EXISTS

    if "Cannot unlock file with uncommitted changes" in error_text:
        return LockError.BLOCKED_BY_UNCOMMITTED_CHANGES

    # Server specific, GitHub: collaborators can't break locks.
    if "You must have admin access" in error_text:
        return LockError.INSUFFICIENT_PRIVILEGES

    # Unversioned file was locked, then moved.
    if "cannot find the file specified" in error_text:
        return StatusError.TARGET_PATH_NOT_FOUND

    if "cannot lock directory" in error_text:
        return LockError.DIRECTORY_LOCKING_UNSUPPORTED

    return classify_common_error(error_text)


def classify_fetch_error(error_text: str) -> FetchOutcome:
    """Map `git fetch` stderr to a FetchOutcome."""
    if not error_text or not error_text.strip():
        return StatusError.SUCCESS

    if FETCH_REF_LOCK_SIGNATURE in error_text:
        return StatusError.SUCCESS

    # fatal: '...' does not appear to be a git repository
    if "does not appear to be a git repository" in error_text:
        return FetchError.REMOTE_NOT_FOUND

    # fatal: couldn't find remote ref ...
    if "couldn't find remote ref" in error_text:
        return FetchError.BRANCH_NOT_FOUND

    return classify_common_error(error_text)


def is_fatal(error) -> bool:
    """Errors that keep failing until the user fixes their setup."""
    return error in _FATAL_ERRORS


def describe_error(error, git_cli_path: str = "") -> str:
    """
    User-facing hint for an error code.

    Returns:
        str: hint text, empty when the error should not be shown
    """
    if error == StatusError.SUCCESS:
        return ""

    # Not a checkout - nothing to tell the user.
    if error == StatusError.NOT_A_WORKING_COPY:
        return ""

    # Moved-to paths are queried before they exist, this is normal.
    if error == StatusError.TARGET_PATH_NOT_FOUND:
        return ""

    if error == StatusError.AUTHENTICATION_FAILED:
        return (
            "Git Error: Trying to reach remote server failed because "
            "authentication is needed! Authenticate your git once via CLI "
            "to have working online features."
        )

    if error == StatusError.UNABLE_TO_CONNECT:
        return (
            "Git Error: Unable to connect to git remote server. Check your "
            "network connection. Statuses may be incomplete."
        )

    if error == StatusError.UNSUPPORTED_TOOL_VERSION:
        return (
            "Git Error: Your git version is too old. "
            "Please update to the latest version."
        )

    if error == StatusError.MISSING_EXTENSION_SUPPORT:
        return (
            "Git Error: LFS (Large File Support) extension is missing or "
            "outdated. Please install the latest LFS extension."
        )

    if error == StatusError.EXECUTABLE_NOT_FOUND:
        if not git_cli_path:
            return (
                "Git CLI (Command Line Interface) not found. Please install "
                "it or specify path to a valid \"git\" executable in the "
                "preferences."
            )
        return (
            "Cannot find the \"git\" executable specified in the "
            f"preferences:\n\"{git_cli_path}\""
        )

    name = getattr(error, "value", str(error))
    return f"Git \"{name}\" error occurred. Check the logs for more info."


class ErrorHintReporter:
    """
    Logs error hints once.

    The same hint is not repeated until a different one was shown or
    clear() was called. Used from the main context only.
    """

    def __init__(self):
        self._last_displayed: str = ""
        self.silent = False

    @property
    def last_displayed(self) -> str:
        return self._last_displayed

    def report(self, error, git_cli_path: str = "", suffix: Optional[str] = None) -> bool:
        """
        Log the hint for `error` unless it was the last one shown.

        Returns:
            bool: True if something was logged
        """
        message = describe_error(error, git_cli_path)
        if not message or self.silent:
            return False

        if message == self._last_displayed:
            return False

        text = f"{message} {suffix}" if suffix else message
        log.error(text)
        self._last_displayed = message
        return True

    def clear(self):
        self._last_displayed = ""
