# -*- coding: utf-8 -*-
"""
Remote fetch coordination
Sprint 3: At most one background `git fetch` across refresh cycles

git has no way to list remote changes without fetching first, and a fetch
can take much longer than a refresh cycle should. A fetch that outlives its
timeout keeps downloading in the background; its process id is stored in a
marker file and polled by the following cycles until it exits.
"""

import os
import threading
from typing import Callable, Optional

from ..core import log
from ..core.errors import StatusError, TIME_OUT_ERROR_TOKEN
from ..core.shell import ShellMonitor, is_process_alive

FETCH_MARKER_FILE = os.path.join("Temp", "git_fetch_process.txt")


class FetchMarker:
    """
    Durable "fetch in progress" flag holding the process id as decimal text.

    Writes go through a temp file and os.replace(), so readers see either
    no file or a complete id.
    """

    def __init__(self, path: str):
        self.path = path

    def exists(self) -> bool:
        return os.path.isfile(self.path)

    def read(self) -> Optional[int]:
        """
        Returns:
            int | None: recorded process id, None without a (valid) marker
        """
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                text = f.read().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            log.warning_safe(f"Failed to read fetch marker {self.path}", e)
            return None

        try:
            return int(text)
        except ValueError:
            log.warning(f"Invalid fetch marker content: {text!r}")
            return None

    def write(self, process_id: int):
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        tmp_path = f"{self.path}.{os.getpid()}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(str(int(process_id)))
        os.replace(tmp_path, self.path)

    def delete(self):
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass


class RemoteFetchCoordinator:
    """
    Decides when to fetch and keeps at most one fetch alive.

    maybe_fetch_remote() runs on the gather worker thread, once per refresh
    cycle, before the status scan.
    """

    def __init__(
        self,
        marker: FetchMarker,
        process_alive: Callable[[int], bool] = is_process_alive,
    ):
        self.marker = marker
        self._process_alive = process_alive
        # Held while a fetch call is running. Overlapping cycles skip.
        self._fetch_lock = threading.Lock()

    @classmethod
    def for_project(cls, project_root: str) -> "RemoteFetchCoordinator":
        return cls(FetchMarker(os.path.join(project_root, FETCH_MARKER_FILE)))

    @property
    def fetch_in_progress(self) -> bool:
        return self._fetch_lock.locked() or self.marker.exists()

    def maybe_fetch_remote(
        self,
        client,
        offline: bool,
        locking_enabled: bool,
        monitor: Optional[ShellMonitor] = None,
    ):
        """
        Fetch the tracked remote if needed.

        Args:
            client: GitClient
            offline: remote changes are not wanted
            locking_enabled: locks are wanted (they need the remote too)
            monitor: ShellMonitor for the fetch output

        Returns:
            FetchOutcome: SUCCESS unless the fetch itself failed
        """
        if offline and not locking_enabled:
            return StatusError.SUCCESS

        if not self._fetch_lock.acquire(blocking=False):
            if monitor is not None:
                monitor.append_trace_line("Fetch already running, skipping.")
            return StatusError.SUCCESS

        try:
            return self._fetch_or_poll(client, monitor)
        finally:
            self._fetch_lock.release()

    def _fetch_or_poll(self, client, monitor):
        outcome = StatusError.SUCCESS

        if not self.marker.exists():
            remote = client.get_tracked_remote()
            if not remote:
                return outcome

            result = client.fetch_remote(
                remote,
                client.get_working_branch(),
                atomic=True,
                timeout=client.online_command_timeout,
                monitor=monitor,
                skip_timeout_error=True,
            )
            meta = (result.value if result.ok else result.error.meta) or {}

            if not result.ok:
                details = result.error.details or ""
                if TIME_OUT_ERROR_TOKEN not in details:
                    outcome = result.code

            process_id = meta.get("process_id", 0)
            if meta.get("timed_out") and self._process_alive(process_id):
                if monitor is not None:
                    monitor.append_trace_line(
                        "Fetching remote took too long. Skipping until it "
                        "finishes downloading in the background."
                    )
                self.marker.write(process_id)
                return outcome

            return outcome

        process_id = self.marker.read()
        if process_id is None or not self._process_alive(process_id):
            if monitor is not None:
                monitor.append_trace_line("Fetching remote finished. Obtaining remote changes...")
            self.marker.delete()

        return outcome
