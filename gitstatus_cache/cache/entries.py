# -*- coding: utf-8 -*-
"""
Cache entries and status merging
Sprint 4: Own + auxiliary status merged by priority

A resource is shown with one status, but git reports the resource and its
auxiliary (.meta) file separately. The stronger of the two wins. Lock and
remote flags are kept from whichever side has them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from ..core import log
from ..git.types import StatusData, VCFileStatus, VCLockStatus, VCRemoteFileStatus

STATUS_PRIORITY: Dict[VCFileStatus, int] = {
    VCFileStatus.CONFLICTED: 10,
    VCFileStatus.OBSTRUCTED: 10,
    VCFileStatus.MODIFIED: 8,
    VCFileStatus.ADDED: 6,
    VCFileStatus.DELETED: 6,
    VCFileStatus.MISSING: 6,
    VCFileStatus.REPLACED: 5,
    VCFileStatus.IGNORED: 3,
    VCFileStatus.UNVERSIONED: 1,
    VCFileStatus.EXTERNAL: 0,
    VCFileStatus.NORMAL: 0,
    VCFileStatus.EXCLUDED: 0,
    VCFileStatus.NONE: -1,
}


def status_priority(status: VCFileStatus) -> int:
    return STATUS_PRIORITY.get(status, 0)


def strip_auxiliary_suffix(path: str, suffix: str) -> str:
    """'Assets/Foo.png.meta' -> 'Assets/Foo.png' (case-insensitive suffix)."""
    if suffix and path.lower().endswith(suffix.lower()):
        return path[: len(path) - len(suffix)]
    return path


@dataclass
class CacheEntry:
    """Statuses known for one resource id (key)."""

    key: str
    merged: StatusData = field(default_factory=StatusData)
    own: StatusData = field(default_factory=StatusData)
    auxiliary: StatusData = field(default_factory=StatusData)

    @property
    def path(self) -> str:
        return self.merged.path

    def known_statuses(self, want_merged=True, want_own=False, want_auxiliary=False) -> Iterator[StatusData]:
        if want_merged and self.merged.is_valid:
            yield self.merged
        if want_own and self.own.is_valid:
            yield self.own
        if want_auxiliary and self.auxiliary.is_valid:
            yield self.auxiliary

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "merged": self.merged.to_dict(),
            "own": self.own.to_dict(),
            "auxiliary": self.auxiliary.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CacheEntry":
        return cls(
            key=data["key"],
            merged=StatusData.from_dict(data.get("merged") or {}),
            own=StatusData.from_dict(data.get("own") or {}),
            auxiliary=StatusData.from_dict(data.get("auxiliary") or {}),
        )


class StatusMap:
    """
    CacheEntry collection keyed by resource id, in insertion order.

    Not thread-safe, owned by the main context.
    """

    def __init__(self, auxiliary_suffix: str = ".meta", entries: Optional[List[CacheEntry]] = None):
        self.auxiliary_suffix = auxiliary_suffix
        self._entries: Dict[str, CacheEntry] = {}
        for entry in entries or []:
            self._entries[entry.key] = entry

    def __len__(self):
        return len(self._entries)

    def __iter__(self) -> Iterator[CacheEntry]:
        return iter(list(self._entries.values()))

    def __contains__(self, key):
        return key in self._entries

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def remove(self, key: str) -> bool:
        if not key:
            log.error("Trying to remove empty resource id")
            return False
        return self._entries.pop(key, None) is not None

    def clear(self):
        self._entries.clear()

    def set_status(
        self,
        key: str,
        data: StatusData,
        skip_priority_check: bool = False,
        compare_online: bool = True,
        is_auxiliary: bool = False,
    ) -> bool:
        """
        Store a status in the own or auxiliary slot and update the merged one.

        Args:
            key: resource id
            data: new status (copied)
            skip_priority_check: overwrite merged regardless of priority
            compare_online: lock/remote differences count as a change
            is_auxiliary: data belongs to the auxiliary file of the resource

        Returns:
            bool: True if the merged status was replaced (priority rose)
        """
        if not key:
            log.error(f"Trying to add empty resource id for \"{data.path}\" with status {data.status.value}")
            return False

        data = data.copy()
        entry = self._entries.get(key)

        if entry is None:
            merged = data.copy()
            if is_auxiliary:
                merged.path = strip_auxiliary_suffix(data.path, self.auxiliary_suffix)
            self._entries[key] = CacheEntry(
                key=key,
                merged=merged,
                own=StatusData() if is_auxiliary else data,
                auxiliary=data if is_auxiliary else StatusData(),
            )
            return True

        slot = entry.auxiliary if is_auxiliary else entry.own
        if slot.equal_statuses(data, skip_online=not compare_online):
            return False

        if is_auxiliary:
            entry.auxiliary = data
        else:
            entry.own = data

        merged = entry.merged

        # Fall or tie: keep the merged status, take the flags it lacks.
        if not skip_priority_check and status_priority(merged.status) >= status_priority(data.status):
            if merged.lock_status == VCLockStatus.NO_LOCK:
                merged.lock_status = data.lock_status
                merged.lock_details = data.lock_details
            if merged.remote_status == VCRemoteFileStatus.NONE:
                merged.remote_status = data.remote_status
            return False

        new_merged = data.copy()
        if new_merged.lock_status == VCLockStatus.NO_LOCK:
            new_merged.lock_status = merged.lock_status
            new_merged.lock_details = merged.lock_details
        if new_merged.remote_status == VCRemoteFileStatus.NONE:
            new_merged.remote_status = merged.remote_status
        if is_auxiliary:
            new_merged.path = strip_auxiliary_suffix(data.path, self.auxiliary_suffix)

        entry.merged = new_merged
        return True
