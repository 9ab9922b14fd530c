# -*- coding: utf-8 -*-
"""
Git status output parsing
Sprint 2: `git status --porcelain -z` records to StatusData
Sprint 3: LFS lock list (`git lfs locks --verify --json`) and remote changes

Everything here is pure: no processes, no file system access.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .types import LockDetails, StatusData, VCFileStatus, VCLockStatus, VCRemoteFileStatus

# Rules are described in "git status -h".
STATUS_CHAR_MAP: Dict[str, VCFileStatus] = {
    " ": VCFileStatus.NORMAL,
    "A": VCFileStatus.ADDED,
    "R": VCFileStatus.ADDED,
    "C": VCFileStatus.ADDED,
    # Updated but not merged
    "U": VCFileStatus.CONFLICTED,
    "D": VCFileStatus.DELETED,
    "M": VCFileStatus.MODIFIED,
    # Type change
    "T": VCFileStatus.MODIFIED,
    "?": VCFileStatus.UNVERSIONED,
}

_CONFLICT_PREFIXES = ("DD", "AA")


class StatusParseError(ValueError):
    """Porcelain output that doesn't follow the documented format."""


def is_hidden_path(path: str) -> bool:
    """True if any segment after a separator starts with "." ("/." or "\\.")."""
    return "/." in path or "\\." in path


def _classify_record(code: str, line_index: int, lines: List[str]) -> VCFileStatus:
    index_char, work_char = code[0], code[1]

    # Any 'U' means conflict, as do both-deleted / both-added.
    if index_char == "U" or work_char == "U" or code in _CONFLICT_PREFIXES:
        return VCFileStatus.CONFLICTED

    # 1st char is the index, 2nd the working tree. Prefer the working tree.
    status_char = index_char if work_char == " " else work_char
    try:
        return STATUS_CHAR_MAP[status_char]
    except KeyError:
        # Lines instead of raw output, the \0 chars break the logs.
        dump = "\n".join(lines)
        raise StatusParseError(
            f"Unknown status {status_char!r}, line {line_index}:\n{dump}"
        ) from None


def iter_statuses(raw_output: str) -> Iterator[StatusData]:
    """
    Lazily parse `git status --porcelain -z` output.

    Raises:
        StatusParseError: unknown status character or malformed record
    """
    lines = [token for token in (raw_output or "").split("\0") if token]

    line_index = 0
    while line_index < len(lines):
        line = lines[line_index]
        if len(line) < 4 or line[2] != " ":
            raise StatusParseError(f"Malformed status record {line_index}: {line!r}")

        code = line[:2]
        data = StatusData(
            status=_classify_record(code, line_index, lines),
            path=line[3:],
        )

        # Renamed - the next token tells us from where.
        if "R" in code:
            if line_index + 1 < len(lines):
                data.moved_from = lines[line_index + 1]
            line_index += 1

        line_index += 1

        if is_hidden_path(data.path):
            continue

        yield data


def parse_status(raw_output: str) -> List[StatusData]:
    """
    Parse `git status --porcelain -z` output into status records.

    The whole output is parsed before anything is returned, so a bad record
    fails the call without producing partial results.

    Args:
        raw_output: stdout of the status command

    Returns:
        list[StatusData]: records in output order, hidden paths removed

    Raises:
        StatusParseError: unknown status character or malformed record
    """
    return list(iter_statuses(raw_output))


def parse_name_only(raw_output: str) -> List[str]:
    """Paths of `git diff --name-only` output (one per line)."""
    return [line.strip() for line in (raw_output or "").split("\n") if line.strip()]


def parse_null_separated(raw_output: str) -> List[str]:
    """Tokens of -z output (ls-files and friends)."""
    return [token for token in (raw_output or "").split("\0") if token]


@dataclass
class LockEntry:
    """One lock from the `git lfs locks --json` output."""

    path: str
    owner: str = ""
    locked_at: str = ""
    id: str = ""

    def to_lock_details(self) -> LockDetails:
        return LockDetails(owner=self.owner, date=self.locked_at)

    @classmethod
    def from_dict(cls, data: dict) -> "LockEntry":
        owner = data.get("owner") or {}
        return cls(
            path=str(data.get("path") or ""),
            owner=str(owner.get("name") or "") if isinstance(owner, dict) else str(owner),
            locked_at=str(data.get("locked_at") or ""),
            id=str(data.get("id") or ""),
        )


@dataclass
class LockSnapshot:
    """
    Pending locks, split in ours and theirs.

    Each lock is applied to at most one path: apply_and_forget() removes
    it from the pending list.
    """

    ours: List[LockEntry] = field(default_factory=list)
    theirs: List[LockEntry] = field(default_factory=list)

    @classmethod
    def from_json(cls, text: str) -> "LockSnapshot":
        """
        Parse `git lfs locks --verify --json` output.

        Raises:
            StatusParseError: output is not the expected JSON object
        """
        if not text or not text.strip():
            return cls()

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise StatusParseError(f"Invalid lock list JSON: {e}") from e

        if not isinstance(data, dict):
            raise StatusParseError("Invalid lock list JSON: expected an object")

        return cls(
            ours=[LockEntry.from_dict(e) for e in (data.get("ours") or [])],
            theirs=[LockEntry.from_dict(e) for e in (data.get("theirs") or [])],
        )

    def exclude_outside_paths(self, path: str):
        """Drop locks that are not under `path` (case-insensitive prefix)."""
        prefix = path.lower()
        self.ours = [e for e in self.ours if e.path.lower().startswith(prefix)]
        self.theirs = [e for e in self.theirs if e.path.lower().startswith(prefix)]

    def apply_and_forget(self, path: str) -> Tuple[VCLockStatus, LockDetails]:
        """
        Find the lock of `path` and remove it from the pending lists.

        The LFS server doesn't preserve case, paths match case-insensitively.
        """
        lowered = path.lower()

        for i, entry in enumerate(self.ours):
            if entry.path.lower() == lowered:
                del self.ours[i]
                return VCLockStatus.LOCKED_HERE, entry.to_lock_details()

        for i, entry in enumerate(self.theirs):
            if entry.path.lower() == lowered:
                del self.theirs[i]
                return VCLockStatus.LOCKED_OTHER, entry.to_lock_details()

        return VCLockStatus.NO_LOCK, LockDetails.empty()

    def apply_to(self, data: StatusData):
        data.lock_status, data.lock_details = self.apply_and_forget(data.path)

    def leftover_records(self, path_prefix: str = "") -> List[StatusData]:
        """Normal records for the locks no status record claimed."""
        prefix = path_prefix.lower()
        records = []
        for entries, lock_status in (
            (self.ours, VCLockStatus.LOCKED_HERE),
            (self.theirs, VCLockStatus.LOCKED_OTHER),
        ):
            for entry in entries:
                if is_hidden_path(entry.path) or not entry.path.lower().startswith(prefix):
                    continue
                records.append(
                    StatusData(
                        status=VCFileStatus.NORMAL,
                        lock_status=lock_status,
                        path=entry.path,
                        lock_details=entry.to_lock_details(),
                    )
                )
        return records


def merge_online_data(
    entries: List[StatusData],
    remote_changes: Iterable[str],
    locks: Optional[LockSnapshot],
    path_prefix: str = "",
) -> List[StatusData]:
    """
    Attach remote-change flags and locks to parsed status records.

    Existing records get the flags in place. Remote changes with no record
    become Normal records flagged as modified on remote. Locks left over
    after that become Normal records with their lock state.

    Args:
        entries: parsed records, modified in place and extended
        remote_changes: paths changed on the tracked remote branch
        locks: pending locks (consumed), or None when offline
        path_prefix: only locks under this prefix are added as new records

    Returns:
        list[StatusData]: the same `entries` list
    """
    pending: Dict[str, str] = {}
    for change in remote_changes:
        pending.setdefault(change.lower(), change)

    for data in entries:
        if pending.pop(data.path.lower(), None) is not None:
            data.remote_status = VCRemoteFileStatus.MODIFIED
        if locks is not None:
            locks.apply_to(data)

    for change in pending.values():
        if is_hidden_path(change):
            continue

        data = StatusData(
            status=VCFileStatus.NORMAL,
            remote_status=VCRemoteFileStatus.MODIFIED,
            path=change,
        )
        if locks is not None:
            locks.apply_to(data)
        entries.append(data)

    if locks is not None:
        entries.extend(locks.leftover_records(path_prefix))

    return entries
