# -*- coding: utf-8 -*-
"""
GitStatusCache Status Database
Sprint 4: Background gather + main context apply of git statuses
Sprint 5: Incremental updates for imported files, persistence, error hints

One refresh cycle:
    invalidate_database() -> gather on a worker (fetch, status per root,
    ignores, sanity limits) -> apply on the main context (merge per resource
    id, cascade Modified to parent folders) -> database_changed handlers.

Only one gather runs at a time. Requests made meanwhile are coalesced into
one follow-up cycle, started after the apply of the running one.
"""

from __future__ import annotations

import os
import posixpath
import time
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional

from ..core import log
from ..core.errors import ErrorHintReporter, StatusError, is_fatal
from ..core.jobs import AsyncOperation, MainThreadDispatcher, OperationState
from ..core.settings import Preferences, PreferencesManager, TraceLogs, should_exclude
from ..core.shell import ConsoleReporter
from ..git.client import GitClient
from ..git.fetch import RemoteFetchCoordinator
from ..git.types import StatusData, VCFileStatus, VCLockStatus
from .entries import StatusMap, strip_auxiliary_suffix
from .index import PathResourceIndex, ResourceIndex, normalize_path
from .store import CacheSnapshot, CacheStore

# More imported files than this are cheaper to handle with a full refresh.
INCREMENTAL_IMPORT_LIMIT = 10

# Statuses that don't make the parent folders look modified.
_NO_CASCADE_STATUSES = (
    VCFileStatus.UNVERSIONED,
    VCFileStatus.IGNORED,
    VCFileStatus.NORMAL,
    VCFileStatus.EXCLUDED,
    VCFileStatus.EXTERNAL,
    VCFileStatus.NONE,
)


@dataclass
class GatherResult:
    """What a gather worker hands over to the main context."""

    statuses: List[StatusData] = field(default_factory=list)
    unversioned_folders: List[str] = field(default_factory=list)
    ignored_entries: List[str] = field(default_factory=list)
    data_is_incomplete: bool = False
    error: object = StatusError.SUCCESS
    # Statuses are still usable when only the fetch failed.
    fetch_error: object = StatusError.SUCCESS


def _is_high_signal(data: StatusData, privileged_suffixes) -> bool:
    lowered = data.path.lower()
    return (
        data.status == VCFileStatus.CONFLICTED
        or data.lock_status != VCLockStatus.NO_LOCK
        or any(lowered.endswith(s.lower()) for s in privileged_suffixes)
    )


def _relative_ignore_path(path: str, project_root: str) -> str:
    path = path.replace("\\", "/")
    root = os.path.abspath(project_root).replace("\\", "/").rstrip("/") + "/"
    if path.startswith(root):
        path = path[len(root):]
    return path


def gather_statuses(
    client,
    fetch_coordinator: Optional[RemoteFetchCoordinator],
    prefs: Preferences,
    monitor=None,
    project_root: str = ".",
) -> GatherResult:
    """
    Collect statuses of all configured roots. Runs on a worker thread.

    Args:
        client: GitClient
        fetch_coordinator: RemoteFetchCoordinator or None (never fetch)
        prefs: snapshot of the preferences, not the live object
        monitor: ShellMonitor for the commands
        project_root: used to detect unversioned folders on disk

    Returns:
        GatherResult

    Raises:
        StatusParseError: unreadable git status output
    """
    result = GatherResult()
    offline = not prefs.fetch_remote_changes and not prefs.enable_lock_prompt

    if fetch_coordinator is not None:
        outcome = fetch_coordinator.maybe_fetch_remote(
            client, not prefs.fetch_remote_changes, prefs.enable_lock_prompt, monitor
        )
        if outcome != StatusError.SUCCESS:
            result.fetch_error = outcome

    statuses: List[StatusData] = []
    unversioned_folders: List[str] = []

    for root in prefs.roots:
        root_result = client.get_statuses(root, offline, prefs.command_timeout * 2, monitor)

        if not root_result.ok:
            # Optional roots may be missing.
            if root_result.code != StatusError.TARGET_PATH_NOT_FOUND:
                result.error = root_result.code
            continue

        for data in root_result.value:
            if should_exclude(prefs.exclude, data.path) or data.status == VCFileStatus.MISSING:
                continue

            # git doesn't list the contents of unversioned folders.
            if data.status == VCFileStatus.UNVERSIONED and os.path.isdir(
                os.path.join(project_root, data.path)
            ):
                unversioned_folders.append(normalize_path(data.path) + "/")

            statuses.append(data)

    # Excluded paths are listed so consumers can show them.
    for excluded in prefs.exclude:
        if "/" in excluded or "\\" in excluded:
            statuses.append(StatusData(status=VCFileStatus.EXCLUDED, path=excluded))

    ignored: List[str] = []
    if prefs.populate_ignores_database:
        for root in prefs.roots:
            ignored.extend(client.get_ignored_paths(root, True))

    result.data_is_incomplete = (
        len(unversioned_folders) >= prefs.sanity_unversioned_folders_limit
        or len(statuses) >= prefs.sanity_statuses_limit
        or len(ignored) > prefs.sanity_ignores_limit
    )

    if len(unversioned_folders) >= prefs.sanity_unversioned_folders_limit:
        unversioned_folders = []

    if len(statuses) >= prefs.sanity_statuses_limit:
        # Too many changes (probably remote ones). Keep conflicts, locks and
        # privileged files (scenes).
        statuses = [s for s in statuses if _is_high_signal(s, prefs.privileged_suffixes)]

    if len(ignored) >= prefs.sanity_ignores_limit:
        ignored = ignored[: prefs.sanity_ignores_limit]

    seen = set()
    for path in ignored:
        path = _relative_ignore_path(path, project_root)
        if path not in seen:
            seen.add(path)
            result.ignored_entries.append(path)

    result.statuses = statuses
    result.unversioned_folders = unversioned_folders
    return result


class StatusDatabase:
    """
    Cache of git statuses keyed by resource id.

    Public methods are for the main context only, except where noted.
    """

    def __init__(
        self,
        preferences: PreferencesManager,
        dispatcher: MainThreadDispatcher,
        index: Optional[ResourceIndex] = None,
        client_factory: Optional[Callable[[Preferences], GitClient]] = None,
        fetch_coordinator: Optional[RemoteFetchCoordinator] = None,
        store: Optional[CacheStore] = None,
        hint_reporter: Optional[ErrorHintReporter] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._prefs_manager = preferences
        self._dispatcher = dispatcher
        self.project_root = preferences.project_root
        self._index = index or PathResourceIndex(self.project_root)
        self._hint_reporter = hint_reporter or ErrorHintReporter()
        self._client_factory = client_factory or self._default_client
        self._fetch_coordinator = fetch_coordinator or RemoteFetchCoordinator.for_project(self.project_root)
        self._store = store
        self._clock = clock

        self._map = StatusMap(preferences.prefs.auxiliary_suffix)
        self._unversioned_folders: List[str] = []
        self._ignored_entries: List[str] = []

        self.data_is_incomplete = False
        self.last_error = StatusError.SUCCESS

        self._gather_op: Optional[AsyncOperation] = None
        self._gather_prefs: Optional[Preferences] = None
        self._pending_refresh = False
        self._last_refresh_time: Optional[float] = None
        self._disabled_by_error = False
        self._temporary_disable_count = 0
        self._initialized = False
        self._notifying = False

        self._changed_handlers: List[Callable[[], None]] = []

    def _default_client(self, prefs: Preferences) -> GitClient:
        return GitClient.from_preferences(prefs, self.project_root, self._hint_reporter)

    # ---- lifecycle ----

    def initialize(self):
        """Load the persisted cache, hook into the main loop and refresh."""
        if self._initialized:
            return
        self._initialized = True

        if self._store is not None:
            snapshot = self._store.load().value
            if snapshot is not None:
                self._restore(snapshot)

        self._prefs_manager.subscribe(self._on_preferences_changed)
        self._dispatcher.add_update_callback(self._on_update)

        if self.is_active:
            self.invalidate_database()

    def shutdown(self):
        """Stop refreshing and persist the cache. Running gathers are aborted."""
        if not self._initialized:
            return
        self._initialized = False

        self._prefs_manager.unsubscribe(self._on_preferences_changed)
        self._dispatcher.remove_update_callback(self._on_update)

        if self._gather_op is not None:
            self._gather_op.abort(kill=False)
        self._pending_refresh = False
        self._save()

    # ---- state ----

    @property
    def is_active(self) -> bool:
        return self._prefs_manager.is_cache_active and not self._disabled_by_error

    @property
    def is_temporarily_disabled(self) -> bool:
        return self._temporary_disable_count > 0

    @property
    def is_updating(self) -> bool:
        return self._gather_op is not None

    @property
    def refresh_interval(self) -> float:
        return self._prefs_manager.prefs.auto_refresh_interval

    @property
    def do_trace_logs(self) -> bool:
        prefs = self._gather_prefs or self._prefs_manager.prefs
        return prefs.has_trace(TraceLogs.DATABASE_UPDATES)

    @property
    def unversioned_folders(self) -> List[str]:
        return list(self._unversioned_folders)

    @property
    def ignored_entries(self) -> List[str]:
        return list(self._ignored_entries)

    def request_temporary_disable(self):
        """Refresh requests are ignored until clear_temporary_disable()."""
        self._temporary_disable_count += 1

    def clear_temporary_disable(self):
        if self._temporary_disable_count == 0:
            log.error("Trying to clear temporary disable more times than it was requested.")
            return
        self._temporary_disable_count -= 1

    def clear_last_displayed_error(self):
        """Show the next error hint again and retry authentication."""
        self._hint_reporter.clear()
        self._prefs_manager.needs_to_authenticate = False

    # ---- notifications ----

    def on_database_changed(self, handler: Callable[[], None]):
        if handler not in self._changed_handlers:
            self._changed_handlers.append(handler)

    def remove_database_changed_handler(self, handler: Callable[[], None]):
        if handler in self._changed_handlers:
            self._changed_handlers.remove(handler)

    def _fire_changed(self):
        if self._notifying:
            log.warning("database_changed raised while handling database_changed, skipped")
            return

        self._notifying = True
        try:
            for handler in list(self._changed_handlers):
                try:
                    handler()
                except Exception as e:
                    log.error(f"database_changed handler failed: {e}")
        finally:
            self._notifying = False

    # ---- scheduling ----

    def invalidate_database(self):
        """Schedule a full refresh. Coalesced while one is running."""
        if not self.is_active or self.is_temporarily_disabled:
            return

        if self._gather_op is not None:
            self._pending_refresh = True
            return

        self._start_update()

    def _on_update(self):
        """Main loop tick (dispatcher update callback)."""
        if not self._initialized or not self.is_active or self.is_temporarily_disabled:
            return

        if self._gather_op is not None:
            return

        interval = self.refresh_interval
        if interval is None or interval <= 0:
            return

        now = self._clock()
        if self._last_refresh_time is None or now - self._last_refresh_time >= interval:
            self.invalidate_database()

    def _on_preferences_changed(self):
        self._disabled_by_error = False
        self._map.auxiliary_suffix = self._prefs_manager.prefs.auxiliary_suffix

        if not self.is_active:
            if self._gather_op is not None:
                self._gather_op.abort(kill=False)
            self._pending_refresh = False
            self._map.clear()
            self._unversioned_folders = []
            self._ignored_entries = []
            self.data_is_incomplete = False
            self._fire_changed()
            return

        # Re-arm the periodic refresh from now.
        self._last_refresh_time = self._clock()
        self.invalidate_database()

    def _start_update(self):
        # Copy, the worker must not see preference edits made meanwhile.
        prefs = self._prefs_manager.snapshot()
        self._gather_prefs = prefs
        self._pending_refresh = False
        self._last_refresh_time = self._clock()
        self.last_error = StatusError.SUCCESS

        client = self._client_factory(prefs)
        fetch_coordinator = self._fetch_coordinator
        project_root = self.project_root
        trace = prefs.has_trace(TraceLogs.DATABASE_UPDATES)

        def _work(op):
            started = time.monotonic()
            with ConsoleReporter(True, self._hint_reporter.silent, "GitStatusCache Operations:") as reporter:
                op.add_abort_listener(reporter.abort)
                gathered = gather_statuses(client, fetch_coordinator, prefs, reporter, project_root)
                if not trace and gathered.error != StatusError.UNKNOWN_ERROR:
                    reporter.clear_logs_and_error_flag()

            if trace:
                log.info(
                    f"Gathered {len(gathered.statuses)} statuses, "
                    f"{len(gathered.ignored_entries)} ignores in "
                    f"{time.monotonic() - started:.2f}s"
                )
            return gathered

        self._gather_op = AsyncOperation.start(self._dispatcher, _work, name="status-gather")
        self._gather_op.on_completed(self._finish_update)

    def _finish_update(self, op: AsyncOperation):
        self._gather_op = None

        if op.error is not None:
            log.error_safe("Status database update failed", op.error)
            self.last_error = StatusError.UNKNOWN_ERROR
        elif op.state == OperationState.ABORTED or op.result is None:
            log.debug("Status database update aborted")
        else:
            gathered: GatherResult = op.result
            self.last_error = gathered.error

            if gathered.error == StatusError.SUCCESS:
                self._apply(gathered)
            else:
                self._handle_error(gathered.error)

            if gathered.fetch_error != StatusError.SUCCESS:
                if self.last_error == StatusError.SUCCESS:
                    self.last_error = gathered.fetch_error
                self._handle_error(gathered.fetch_error)

        self._gather_prefs = None
        self._fire_changed()

        if self._pending_refresh and self.is_active and self._initialized:
            self._dispatcher.post(self.invalidate_database)

    def _handle_error(self, error):
        # The same hint is skipped inside.
        self._hint_reporter.report(error, self._prefs_manager.prefs.git_cli_path)

        if error == StatusError.AUTHENTICATION_FAILED:
            self._prefs_manager.needs_to_authenticate = True

        if is_fatal(error):
            log.warning("Status database disabled until the preferences change.")
            self._disabled_by_error = True
            self._pending_refresh = False

    # ---- apply (main context) ----

    def _apply(self, gathered: GatherResult):
        prefs = self._gather_prefs or self._prefs_manager.prefs

        if len(gathered.statuses) > prefs.sanity_statuses_limit:
            if self.do_trace_logs:
                log.warning(
                    f"Gathered {len(gathered.statuses)} changes which is way too much. "
                    "Ignoring them to keep the application responsive."
                )
            self.data_is_incomplete = True
            return

        new_map = StatusMap(prefs.auxiliary_suffix)
        for data in gathered.statuses:
            self._apply_status(new_map, data, prefs.auxiliary_suffix)

        self._map = new_map
        self._unversioned_folders = list(gathered.unversioned_folders)
        self._ignored_entries = list(gathered.ignored_entries)
        self.data_is_incomplete = gathered.data_is_incomplete

        if self.do_trace_logs:
            log.info(f"Status database updated: {len(new_map)} entries")

        self._save()

    def _apply_status(self, target: StatusMap, data: StatusData, auxiliary_suffix: str):
        data = data.copy(path=normalize_path(data.path))

        resource_path = data.path
        is_auxiliary = False
        if auxiliary_suffix and resource_path.lower().endswith(auxiliary_suffix.lower()):
            resource_path = strip_auxiliary_suffix(resource_path, auxiliary_suffix)
            is_auxiliary = True

        key = self._index.path_to_id(resource_path)
        if not key:
            # Appeared in the background, the index will catch up. Deleted
            # files have no id any more, their path is unique enough.
            if data.status != VCFileStatus.DELETED:
                return
            key = resource_path

        if target.set_status(key, data, False, True, is_auxiliary):
            self._add_modified_folders(target, data)

    def _add_modified_folders(self, target: StatusMap, data: StatusData):
        """Folders have no git status, show them modified if a child is."""
        if data.status in _NO_CASCADE_STATUSES:
            return

        folder_status = VCFileStatus.CONFLICTED if data.is_conflicted else VCFileStatus.MODIFIED

        path = posixpath.dirname(data.path)
        while path:
            key = self._index.path_to_id(path)
            # Folder may be deleted.
            if not key:
                return

            # Added folders should not be shown as modified.
            existing = target.get(key)
            if existing is not None and existing.merged.status == VCFileStatus.ADDED:
                return

            # Folders don't have locks.
            folder = StatusData(status=folder_status, path=path)
            if not target.set_status(key, folder, False, True, False):
                return

            path = posixpath.dirname(path)

    # ---- incremental updates ----

    def _is_under_roots(self, path: str) -> bool:
        path = normalize_path(path)
        for root in self._prefs_manager.prefs.roots:
            root = normalize_path(root)
            if path == root or path.startswith(root + "/"):
                return True
        return False

    def post_process_files(self, imported=(), deleted=(), moved=()) -> Optional[AsyncOperation]:
        """
        Update the cache after the host (re)imported, deleted or moved files.

        Deletes and moves refresh everything. Up to INCREMENTAL_IMPORT_LIMIT
        imported files are re-checked one by one on a worker.

        Returns:
            AsyncOperation of the incremental check, or None
        """
        if not self.is_active or self.is_temporarily_disabled:
            return None

        if deleted or moved:
            self.invalidate_database()
            return None

        imported = list(imported)
        if len(imported) > INCREMENTAL_IMPORT_LIMIT:
            self.invalidate_database()
            return None

        paths = [normalize_path(p) for p in imported if self._is_under_roots(p)]
        if not paths:
            return None

        prefs = self._prefs_manager.snapshot()
        client = self._client_factory(prefs)
        suffix = prefs.auxiliary_suffix

        def _work(op):
            checked = []
            for path in paths:
                if op.abort_requested:
                    break

                # Hints are reported on the main context.
                data, error = client.query_status(path, op)
                is_auxiliary = False

                # Imported but normal - maybe the auxiliary file changed.
                if data.status == VCFileStatus.NORMAL and suffix:
                    data, error = client.query_status(path + suffix, op)
                    is_auxiliary = True

                checked.append((path, data, is_auxiliary, error))
            return checked

        op = AsyncOperation.start(self._dispatcher, _work, name="status-post-process")
        op.on_completed(self._apply_incremental)
        return op

    def _apply_incremental(self, op: AsyncOperation):
        # Cleared or shut down while the check was running.
        if not self._initialized or not self.is_active:
            return

        if op.error is not None:
            log.error_safe("Incremental status update failed", op.error)
            self.invalidate_database()
            return

        if op.state == OperationState.ABORTED or not op.result:
            return

        changed = False
        needs_refresh = False

        for path, data, is_auxiliary, error in op.result:
            if error != StatusError.SUCCESS and self.do_trace_logs:
                self._hint_reporter.report(error, self._prefs_manager.prefs.git_cli_path)

            key = self._index.path_to_id(path)
            if not key:
                continue

            # Conflicted file got reimported, let the full refresh sort it out.
            if data.is_conflicted:
                self._map.set_status(key, data, True, False, is_auxiliary)
                changed = True
                needs_refresh = True
                break

            if data.status == VCFileStatus.NORMAL:
                entry = self._map.get(key)
                if entry is None:
                    continue

                known = entry.merged
                if known.status in (VCFileStatus.NONE, VCFileStatus.NORMAL):
                    continue

                if not known.has_online_data:
                    self._map.remove(key)
                    changed = True
                    continue

                # Reverted to normal but still locked or changed on remote.
                known_is_auxiliary = entry.own.status == VCFileStatus.NORMAL
                source = entry.auxiliary if known_is_auxiliary else entry.own
                self._map.set_status(
                    key, source.copy(status=VCFileStatus.NORMAL), True, False, known_is_auxiliary
                )
                changed = True
                needs_refresh = True
                break

            # Files inside ignored folders come back as unversioned.
            if data.status == VCFileStatus.UNVERSIONED:
                data = data.copy(status=self._check_ignored_or_excluded(data.status, path))

            # Saving a known modified file reimports it, nothing changes then.
            if self._map.set_status(key, data, True, False, is_auxiliary):
                changed = True

        if changed:
            self._fire_changed()

        if needs_refresh:
            self.invalidate_database()

    def _is_ignored_path(self, path: str) -> bool:
        lowered = path.lower()
        for ignored in self._ignored_entries:
            if lowered.startswith(ignored.lower()):
                return True
            if ignored.endswith("/") and ignored == path + "/":
                return True
        return False

    def _check_ignored_or_excluded(self, status: VCFileStatus, path: str) -> VCFileStatus:
        if self._prefs_manager.should_exclude(path):
            return VCFileStatus.EXCLUDED

        if self._is_ignored_path(path):
            return VCFileStatus.IGNORED

        return status

    # ---- queries ----

    def get_known_status(self, resource_id: str) -> StatusData:
        """
        Known merged status of a resource.

        Resources under unversioned folders or ignored entries get a
        synthesized Unversioned / Ignored status. Anything else unknown is
        VCFileStatus.NONE (versioned and unchanged, or not detected yet).
        """
        if not resource_id:
            log.error("Asking for status with empty resource id")
            return StatusData(status=VCFileStatus.NONE)

        entry = self._map.get(resource_id)
        if entry is not None:
            return entry.merged.copy()

        path = None
        if self._unversioned_folders:
            path = self._index.id_to_path(resource_id)
            if path:
                prefixed = (path + "/").lower()
                for folder in self._unversioned_folders:
                    if prefixed.startswith(folder.lower()):
                        return StatusData(status=VCFileStatus.UNVERSIONED, path=path)

        if self._ignored_entries:
            path = path if path is not None else self._index.id_to_path(resource_id)
            if path and self._is_ignored_path(path):
                return StatusData(status=VCFileStatus.IGNORED, path=path)

        return StatusData(status=VCFileStatus.NONE)

    def get_all_known_statuses(
        self,
        resource_id: Optional[str] = None,
        want_merged: bool = True,
        want_own: bool = False,
        want_auxiliary: bool = False,
    ) -> Iterator[StatusData]:
        """
        Lazily yield the stored statuses of one resource (or all of them).

        Invalid (empty) slots are skipped.
        """
        if resource_id is not None:
            entry = self._map.get(resource_id)
            if entry is not None:
                yield from entry.known_statuses(want_merged, want_own, want_auxiliary)
            return

        for entry in self._map:
            yield from entry.known_statuses(want_merged, want_own, want_auxiliary)

    def __len__(self):
        return len(self._map)

    # ---- persistence ----

    def _snapshot(self) -> CacheSnapshot:
        return CacheSnapshot(
            entries=list(self._map),
            unversioned_folders=list(self._unversioned_folders),
            ignored_entries=list(self._ignored_entries),
            data_is_incomplete=self.data_is_incomplete,
        )

    def _restore(self, snapshot: CacheSnapshot):
        self._map = StatusMap(self._prefs_manager.prefs.auxiliary_suffix, snapshot.entries)
        self._unversioned_folders = list(snapshot.unversioned_folders)
        self._ignored_entries = list(snapshot.ignored_entries)
        self.data_is_incomplete = snapshot.data_is_incomplete

    def _save(self):
        if self._store is None:
            return
        result = self._store.save(self._snapshot())
        if not result.ok:
            log.debug(f"Status cache not saved: {result.error.message}")
