# -*- coding: utf-8 -*-
"""
GitStatusCache Git Client Module
Sprint 2: git CLI wrapper for status, ignores and tracking info
Sprint 3: LFS locks, remote changes and fetch

All calls block the calling thread. Use them from worker threads
(AsyncOperation) unless stated otherwise.
"""

import glob
import os
import subprocess
from typing import Iterable, List, Optional, Tuple

from ..core import log
from ..core.errors import (
    ErrorHintReporter,
    StatusError,
    classify_common_error,
    classify_fetch_error,
    classify_lock_error,
    classify_unlock_error,
    filter_out_lines,
)
from ..core.jobs import AsyncOperation, MainThreadDispatcher
from ..core.result import Result
from ..core.shell import ShellArgs, ShellMonitor, ShellResult, execute_command
from .status_parser import (
    LockSnapshot,
    StatusParseError,
    merge_online_data,
    parse_name_only,
    parse_null_separated,
    parse_status,
)
from .types import StatusData, VCFileStatus

COMMAND_TIMEOUT = 20
ONLINE_COMMAND_TIMEOUT = 45

# Noise git prints on stderr for otherwise successful status calls.
_STATUS_BENIGN_LINES = (
    "warning: in the working copy of",
    "LF will be replaced by CRLF",
    "CRLF will be replaced by LF",
)

_IGNORES_PREFIX_ERROR = "internal error - directory entry not superset of prefix"


def _find_git_executable():
    """
    Find git executable, checking common Windows locations.

    Returns:
        str: Path to git.exe, 'git' if on PATH, or None
    """
    common_paths = [
        os.path.expandvars(
            r"%LOCALAPPDATA%\GitHubDesktop\app-*\resources\app"
            r"\git\cmd\git.exe"
        ),
        r"C:\\Program Files\\Git\\cmd\\git.exe",
        r"C:\\Program Files (x86)\\Git\\cmd\\git.exe",
        os.path.expandvars(
            r"%LOCALAPPDATA%\Programs\Git\cmd\git.exe"
        ),
    ]

    if os.name == "nt":
        for path in common_paths:
            if "*" in path:
                matches = glob.glob(path)
                if matches:
                    path = matches[0]
            if os.path.isfile(path):
                log.debug(f"Found git at: {path}")
                return path

    try:
        result = subprocess.run(
            ["git", "--version"],
            capture_output=True,
            text=True,
            timeout=2,
        )
        if result.returncode == 0:
            return "git"
    except (FileNotFoundError, subprocess.TimeoutExpired):
        pass
    return None


class GitClient:
    """
    git CLI wrapper used by the status cache.

    Paths are relative to project_root, which is also the working
    directory of every command.
    """

    def __init__(
        self,
        project_root=".",
        git_cli_path="",
        command_timeout=COMMAND_TIMEOUT,
        online_command_timeout=ONLINE_COMMAND_TIMEOUT,
        hint_reporter: Optional[ErrorHintReporter] = None,
        auxiliary_suffix=".meta",
    ):
        self.project_root = project_root
        self.git_cli_path = git_cli_path or ""
        self.command_timeout = command_timeout
        self.online_command_timeout = online_command_timeout
        self.hint_reporter = hint_reporter or ErrorHintReporter()
        self.auxiliary_suffix = auxiliary_suffix or ""
        self._git_exe = None

    @classmethod
    def from_preferences(cls, prefs, project_root=".", hint_reporter=None):
        return cls(
            project_root=project_root,
            git_cli_path=prefs.git_cli_path,
            command_timeout=prefs.command_timeout,
            online_command_timeout=prefs.online_command_timeout,
            hint_reporter=hint_reporter,
            auxiliary_suffix=prefs.auxiliary_suffix,
        )

    # ---- plumbing ----

    @property
    def git_command(self) -> str:
        """
        Get the git command to use.

        A configured path is used as is when absolute, otherwise relative
        to the project root. Without configuration git is searched for.
        """
        user_path = self.git_cli_path.strip()
        if user_path:
            if os.path.isabs(user_path) or ":" in user_path:
                return user_path
            return os.path.join(self.project_root, user_path)

        if self._git_exe is None:
            self._git_exe = _find_git_executable() or "git"
        return self._git_exe

    def _abs(self, path: str) -> str:
        return os.path.join(self.project_root, path)

    def _run(
        self,
        args: List[str],
        timeout=None,
        monitor: Optional[ShellMonitor] = None,
        skip_timeout_error=False,
    ) -> ShellResult:
        return execute_command(
            ShellArgs(
                command=self.git_command,
                args=[a for a in args if a],
                working_dir=self.project_root,
                timeout=self.command_timeout if timeout is None else timeout,
                skip_timeout_error=skip_timeout_error,
                monitor=monitor,
            )
        )

    def log_error_hint(self, error, suffix=None) -> bool:
        """Log a user hint for `error` once (see ErrorHintReporter)."""
        return self.hint_reporter.report(error, self.git_cli_path, suffix)

    # ---- diagnostics ----

    def git_version(self) -> Optional[str]:
        result = self._run(["--version"])
        if result.has_errors or result.exit_code != 0:
            return None
        return result.output.strip()

    def check_for_git_errors(self) -> str:
        """
        Run a status at the project root.

        Returns:
            str: git error output, empty when git works
        """
        result = self._run(["status", "--porcelain", "-z", "."])
        return filter_out_lines(result.error, *_STATUS_BENIGN_LINES).strip()

    def check_for_auth_errors(self, dispatcher: MainThreadDispatcher) -> AsyncOperation:
        """
        Check if git can authenticate against the tracked remote.

        Returns:
            AsyncOperation whose result is a StatusError
        """

        def _work(op):
            remote = self.get_tracked_remote()
            result = self._run(["remote", "show", remote], monitor=op)
            if result.has_errors:
                return classify_common_error(result.error)
            return StatusError.SUCCESS

        return AsyncOperation.start(dispatcher, _work, name="check-auth")

    # ---- tracking info ----

    def get_working_branch(self) -> str:
        """Checked out branch, e.g. master."""
        result = self._run(["rev-parse", "--abbrev-ref", "HEAD"])
        return "" if result.has_errors else result.output.strip()

    def get_tracked_remote_branch(self) -> str:
        """Upstream of the working branch, e.g. origin/master."""
        result = self._run(["rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}"])
        return "" if result.has_errors else result.output.strip()

    def get_tracked_remote(self) -> str:
        """Remote of the upstream branch, e.g. origin."""
        return self.get_tracked_remote_branch().split("/", 1)[0]

    def get_diverging_commit(self, tracked_branch: Optional[str] = None) -> str:
        """Commit where the working branch forked from the tracked one."""
        if tracked_branch is None:
            tracked_branch = self.get_tracked_remote_branch()
        if not tracked_branch:
            return ""
        result = self._run(["merge-base", "--fork-point", tracked_branch])
        return "" if result.has_errors else result.output.strip()

    # ---- statuses ----

    def _get_remote_changes(self, path, timeout, monitor) -> List[str]:
        tracked = self.get_tracked_remote_branch()
        if not tracked:
            return []

        fork_point = self.get_diverging_commit(tracked)
        if not fork_point:
            return []

        result = self._run(
            ["diff", f"{fork_point}..{tracked}", "--name-only", path],
            timeout=timeout,
            monitor=monitor,
        )

        # Nothing to do about these errors.
        if result.has_errors:
            return []
        return parse_name_only(result.output)

    def get_statuses(
        self,
        path: str,
        offline: bool,
        timeout=None,
        monitor: Optional[ShellMonitor] = None,
    ) -> Result:
        """
        Statuses of everything under `path` that has something to show
        (changes, locks or remote changes).

        Online mode also asks for remote changes (of the already fetched
        remote branch) and LFS locks.

        Args:
            path: file or folder relative to the project root
            offline: skip the remote diff and lock queries
            timeout: seconds per command (None = online timeout)
            monitor: ShellMonitor receiving the command output

        Returns:
            Result[list[StatusData]], failure code is a StatusError

        Raises:
            StatusParseError: git produced status output we can't read
        """
        path = path.replace("\\", "/")
        if timeout is None:
            timeout = self.online_command_timeout

        locks: Optional[LockSnapshot] = None
        remote_changes: List[str] = []

        if not offline:
            remote_changes = self._get_remote_changes(path, timeout, monitor)

            # Locks don't distinguish between clones of the same user.
            result = self._run(["lfs", "locks", "--verify", "--json"], timeout=timeout, monitor=monitor)
            if result.has_errors:
                error = classify_common_error(result.error)
                return Result.failure(error, "Failed to list LFS locks", details=result.error)

            locks = LockSnapshot.from_json(result.output)
            locks.exclude_outside_paths(path)

        result = self._run(["status", "--porcelain", "-z", path], timeout=timeout, monitor=monitor)
        error_text = filter_out_lines(result.error, *_STATUS_BENIGN_LINES)
        if error_text.strip():
            error = classify_common_error(error_text)
            return Result.failure(error, f"git status failed for {path}", details=error_text)

        if not result.output.strip():
            # git-deleted files still have a status, so only now check the disk.
            if not os.path.exists(self._abs(path)):
                return Result.failure(
                    StatusError.TARGET_PATH_NOT_FOUND, f"Path not found: {path}"
                )

            # Empty output means normal, or ignored.
            ignored = self.get_ignored_paths(path, True)
            data = StatusData(
                status=VCFileStatus.IGNORED if ignored else VCFileStatus.NORMAL,
                path=path,
            )
            if locks is not None:
                locks.apply_to(data)
            return Result.success([data])

        entries = parse_status(result.output)
        merge_online_data(entries, remote_changes, locks, path)
        return Result.success(entries)

    def get_statuses_async(
        self, dispatcher: MainThreadDispatcher, path: str, offline: bool, timeout=None
    ) -> AsyncOperation:
        return AsyncOperation.start(
            dispatcher,
            lambda op: self.get_statuses(path, offline, timeout, op),
            name="get-statuses",
        )

    def get_status(
        self,
        path: str,
        log_error_hint=True,
        monitor: Optional[ShellMonitor] = None,
    ) -> StatusData:
        """
        Offline status of a single file (non recursive).

        Returns a status even when the file has no changes. git doesn't
        know about folders, so folders report the status of their
        auxiliary file (auxiliary_suffix). Errors fall back to Unversioned.
        """
        data, error = self.query_status(path, monitor)
        if log_error_hint and error != StatusError.SUCCESS:
            self.log_error_hint(error)
        return data

    def query_status(
        self,
        path: str,
        monitor: Optional[ShellMonitor] = None,
    ) -> Tuple[StatusData, object]:
        """
        Like get_status() but hands the error code back instead of
        reporting it. Safe to call from worker threads.

        Returns:
            (StatusData, StatusError)
        """
        original_path = path
        if self.auxiliary_suffix and os.path.isdir(self._abs(path)):
            path += self.auxiliary_suffix

        try:
            result = self.get_statuses(path, True, self.command_timeout, monitor)
        except StatusParseError as e:
            log.error_safe(f"Failed to parse status of {path}", e)
            result = Result.failure(StatusError.UNKNOWN_ERROR, str(e))

        entries = result.value or []
        data = entries[0].copy() if entries else StatusData()

        # A moved/deleted file with a new unversioned file at its old place
        # is reported twice for the same path: D then ??. The file on disk wins.
        if (
            data.status == VCFileStatus.DELETED
            and len(entries) == 2
            and entries[1].status == VCFileStatus.UNVERSIONED
            and entries[0].path == entries[1].path
        ):
            data = entries[1].copy()

        if not data.is_valid or not result.ok:
            # Fallback to unversioned, these are never touched.
            data.status = VCFileStatus.UNVERSIONED

        data.path = original_path
        return data, result.code

    def get_ignored_paths(self, path: str, skip_files_in_ignored_directories: bool) -> List[str]:
        """
        Ignored files and folders under `path`.

        Args:
            skip_files_in_ignored_directories: report an ignored folder
                once instead of every file in it
        """
        args = ["ls-files", "-i", "-o", "--exclude-standard"]
        if skip_files_in_ignored_directories:
            args.append("--directory")
        args += ["-z", path]

        result = self._run(args)

        # Nested paths of an ignored folder fail with --directory.
        if skip_files_in_ignored_directories and _IGNORES_PREFIX_ERROR in result.error:
            ignored = self.get_ignored_paths(path, False)
            # The path itself is ignored, no need for the contents.
            return [path] if ignored else []

        if result.has_errors:
            log.debug(f"ls-files failed for {path}: {result.error}")
            return []

        return parse_null_separated(result.output)

    # ---- locks ----

    def _reject_unversioned(self, paths, monitor, action) -> Optional[Result]:
        # Locking unversioned or missing files works, which is confusing.
        for path in paths:
            if self.get_status(path, log_error_hint=False).status == VCFileStatus.UNVERSIONED:
                message = f"Cannot {action} unversioned files."
                if monitor is not None:
                    monitor.append_error_line(message)
                return Result.failure(StatusError.TARGET_PATH_NOT_FOUND, message, details=path)
        return None

    def lock_files(
        self,
        paths: Iterable[str],
        force=False,
        timeout=None,
        monitor: Optional[ShellMonitor] = None,
    ) -> Result:
        """
        Lock files on the LFS server. Force steals the lock.

        Returns:
            Result, failure code is a LockOutcome
        """
        paths = list(paths)
        if timeout is None:
            timeout = self.online_command_timeout

        rejected = self._reject_unversioned(paths, monitor, "lock")
        if rejected is not None:
            return rejected

        # lfs lock has no force argument.
        if force:
            unlocked = self.unlock_files(paths, True, timeout, monitor)
            if not unlocked.ok:
                return unlocked

        result = self._run(["lfs", "lock"] + paths, timeout=timeout, monitor=monitor)
        if result.has_errors:
            error = classify_lock_error(result.error)
            if error != StatusError.SUCCESS:
                return Result.failure(error, "Lock failed", details=result.error)

        return Result.success(paths)

    def unlock_files(
        self,
        paths: Iterable[str],
        force=False,
        timeout=None,
        monitor: Optional[ShellMonitor] = None,
    ) -> Result:
        """
        Unlock files on the LFS server. Force breaks other users' locks.

        Returns:
            Result, failure code is a LockOutcome
        """
        paths = list(paths)
        if timeout is None:
            timeout = self.online_command_timeout

        rejected = self._reject_unversioned(paths, monitor, "unlock")
        if rejected is not None:
            return rejected

        args = ["lfs", "unlock"] + (["--force"] if force else []) + paths
        result = self._run(args, timeout=timeout, monitor=monitor)

        error = classify_unlock_error(result.error)
        if error != StatusError.SUCCESS:
            return Result.failure(error, "Unlock failed", details=result.error)

        return Result.success(paths)

    def lock_files_async(self, dispatcher, paths, force=False, timeout=None) -> AsyncOperation:
        paths = list(paths)
        return AsyncOperation.start(
            dispatcher, lambda op: self.lock_files(paths, force, timeout, op), name="lock"
        )

    def unlock_files_async(self, dispatcher, paths, force=False, timeout=None) -> AsyncOperation:
        paths = list(paths)
        return AsyncOperation.start(
            dispatcher, lambda op: self.unlock_files(paths, force, timeout, op), name="unlock"
        )

    # ---- fetch ----

    def fetch_remote(
        self,
        remote="",
        branch="",
        atomic=False,
        timeout=-1,
        monitor: Optional[ShellMonitor] = None,
        skip_timeout_error=False,
    ) -> Result:
        """
        Download remote changes (no working copy changes).

        On timeout the fetch keeps running in the background; the failure
        meta carries its process_id.

        Returns:
            Result, failure code is a FetchOutcome. meta has process_id and
            timed_out in both cases.
        """
        # -q, or it spams the error stream with progress.
        args = ["fetch"] + (["--atomic"] if atomic else []) + ["-q", remote, branch]
        result = self._run(args, timeout=timeout, monitor=monitor, skip_timeout_error=skip_timeout_error)

        meta = {"process_id": result.process_id, "timed_out": result.timed_out}
        error = classify_fetch_error(result.error)
        if error != StatusError.SUCCESS:
            return Result.failure(error, "Fetch failed", details=result.error, meta=meta)

        if result.has_errors:
            log.debug(f"Fetch collided with another fetch: {result.error}")

        return Result.success(meta)

    def fetch_remote_async(self, dispatcher, remote="", branch="", atomic=False, timeout=-1):
        return AsyncOperation.start(
            dispatcher,
            lambda op: self.fetch_remote(remote, branch, atomic, timeout, op),
            name="fetch",
        )
