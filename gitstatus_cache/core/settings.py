# -*- coding: utf-8 -*-
"""
GitStatusCache Settings Module
Sprint 2: Preferences persisted as JSON next to the project
Sprint 3: Change notifications and immutable snapshots for worker threads

The status database never reads the live Preferences object from a worker
thread. It takes snapshot() on the main context at cycle start.
"""

from __future__ import annotations

import copy
import json
import os
from dataclasses import asdict, dataclass, field, fields
from enum import IntFlag
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from . import log
from .result import Result

PREFERENCES_FILE = os.path.join("UserSettings", "GitStatusCache.json")


class TraceLogs(IntFlag):
    NONE = 0
    GIT_OPERATIONS = 1
    DATABASE_UPDATES = 2
    ALL = GIT_OPERATIONS | DATABASE_UPDATES


@dataclass
class Preferences:
    """
    User configuration consumed by the status cache.

    auto_refresh_interval is in seconds, negative disables the periodic
    refresh (file change notifications still trigger one).
    """

    enable_core_integration: bool = True
    populate_statuses_database: bool = True
    populate_ignores_database: bool = True

    git_cli_path: str = ""

    # Check the server as well (locks and changed files).
    fetch_remote_changes: bool = True
    enable_lock_prompt: bool = False

    auto_refresh_interval: int = 120
    trace_logs: int = int(TraceLogs.GIT_OPERATIONS)

    exclude: List[str] = field(default_factory=list)

    roots: List[str] = field(default_factory=lambda: ["Assets", "Packages"])
    auxiliary_suffix: str = ".meta"
    privileged_suffixes: List[str] = field(default_factory=lambda: [".unity"])

    sanity_statuses_limit: int = 600
    sanity_unversioned_folders_limit: int = 250
    sanity_ignores_limit: int = 250

    # seconds
    command_timeout: float = 20
    online_command_timeout: float = 45

    def clone(self) -> "Preferences":
        return copy.deepcopy(self)

    def has_trace(self, flag: TraceLogs) -> bool:
        return bool(TraceLogs(self.trace_logs) & flag)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Preferences":
        """Create Preferences from a dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        prefs = cls(**{k: v for k, v in (data or {}).items() if k in known})
        prefs.exclude = sanitize_paths_list(prefs.exclude)
        prefs.git_cli_path = sanitize_path(prefs.git_cli_path)
        return prefs


def sanitize_path(path: str) -> str:
    """Trim whitespace and trailing separators, use forward slashes."""
    return (path or "").strip().rstrip("\\/").replace("\\", "/")


def sanitize_paths_list(paths: Iterable[str]) -> List[str]:
    return [sanitize_path(p) for p in (paths or []) if p and p.strip()]


def should_exclude(excludes: Iterable[str], path: str) -> bool:
    """
    Check a path against the exclude list.

    Entries containing "/" are case-insensitive path prefixes. Other entries
    are case-insensitive substrings of the file name.
    """
    lowered_path = path.lower()
    filename = lowered_path.rsplit("/", 1)[-1]

    for exclude in excludes:
        if not exclude:
            continue

        lowered = exclude.lower()
        if "/" in exclude:
            if lowered_path.startswith(lowered):
                return True
        elif lowered in filename:
            return True

    return False


class PreferencesManager:
    """
    Owns the live Preferences and notifies subscribers on change.

    Used from the main context. Worker threads get snapshot() copies.
    """

    def __init__(self, project_root: str = ".", prefs_file: Optional[str] = None):
        self._project_root = project_root
        self._prefs_path = Path(prefs_file or os.path.join(project_root, PREFERENCES_FILE))
        self._prefs = Preferences()
        self._subscribers: List[Callable[[], None]] = []

        # Set when a remote operation failed because of missing credentials.
        self.needs_to_authenticate = False

    @property
    def project_root(self) -> str:
        return self._project_root

    @property
    def prefs_path(self) -> Path:
        return self._prefs_path

    @property
    def prefs(self) -> Preferences:
        return self._prefs

    @property
    def is_cache_active(self) -> bool:
        return (
            self._prefs.enable_core_integration
            and self._prefs.populate_statuses_database
        )

    @property
    def fetch_remote_changes(self) -> bool:
        return self._prefs.fetch_remote_changes and not self.needs_to_authenticate

    def should_exclude(self, path: str) -> bool:
        return should_exclude(self._prefs.exclude, path)

    def snapshot(self) -> Preferences:
        snap = self._prefs.clone()
        snap.fetch_remote_changes = self.fetch_remote_changes
        return snap

    # ---- change notification ----

    def subscribe(self, callback: Callable[[], None]):
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[], None]):
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _notify_changed(self):
        for callback in list(self._subscribers):
            try:
                callback()
            except Exception as e:
                log.error(f"Preferences changed handler failed: {e}")

    def update(self, **changes) -> Result:
        """
        Apply preference changes, save them and notify subscribers.

        Raises:
            AttributeError: for unknown preference names
        """
        known = {f.name for f in fields(Preferences)}
        for key in changes:
            if key not in known:
                raise AttributeError(f"Unknown preference: {key}")

        prefs = self._prefs.clone()
        for key, value in changes.items():
            setattr(prefs, key, value)
        prefs.exclude = sanitize_paths_list(prefs.exclude)
        prefs.git_cli_path = sanitize_path(prefs.git_cli_path)
        self._prefs = prefs

        result = self.save()
        self._notify_changed()
        return result

    # ---- persistence ----

    def load(self) -> Result:
        """
        Load preferences from disk, or keep defaults when there is no file.

        Returns:
            Result with the loaded Preferences
        """
        if not self._prefs_path.exists():
            log.debug(f"No preferences file at {self._prefs_path}, using defaults")
            self._prefs = Preferences()
            return Result.success(self._prefs)

        try:
            with open(self._prefs_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            log.error(f"Invalid JSON in preferences file: {e}")
            log.info("Using default preferences")
            self._prefs = Preferences()
            return Result.failure("INVALID_JSON", str(e), value=self._prefs)
        except OSError as e:
            log.error(f"Failed to load preferences: {e}")
            self._prefs = Preferences()
            return Result.failure("LOAD_ERROR", str(e), value=self._prefs)

        try:
            if not isinstance(data, dict):
                raise TypeError(f"expected an object, got {type(data).__name__}")
            self._prefs = Preferences.from_dict(data)
        except (TypeError, ValueError) as e:
            log.error(f"Invalid preferences data: {e}")
            self._prefs = Preferences()
            return Result.failure("INVALID_DATA", str(e), value=self._prefs)

        log.debug(f"Loaded preferences from {self._prefs_path}")
        return Result.success(self._prefs)

    def save(self) -> Result:
        try:
            self._prefs_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._prefs_path, "w", encoding="utf-8") as f:
                json.dump(self._prefs.to_dict(), f, indent=2)
        except PermissionError as e:
            return Result.failure("PERMISSION_DENIED", str(e))
        except OSError as e:
            log.error(f"Failed to save preferences: {e}")
            return Result.failure("SAVE_ERROR", str(e))

        log.debug(f"Saved preferences to {self._prefs_path}")
        return Result.success(str(self._prefs_path))
