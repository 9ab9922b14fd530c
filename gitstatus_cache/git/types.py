# -*- coding: utf-8 -*-
"""
Git status data types
Sprint 2: Typed status records shared by the parser, client and cache
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum

from ..core.settings import TraceLogs

__all__ = [
    "VCFileStatus",
    "VCLockStatus",
    "VCRemoteFileStatus",
    "TraceLogs",
    "LockDetails",
    "StatusData",
]


class VCFileStatus(str, Enum):
    NORMAL = "Normal"
    ADDED = "Added"
    CONFLICTED = "Conflicted"
    DELETED = "Deleted"
    IGNORED = "Ignored"
    MODIFIED = "Modified"
    REPLACED = "Replaced"
    UNVERSIONED = "Unversioned"
    MISSING = "Missing"
    EXTERNAL = "External"
    OBSTRUCTED = "Obstructed"
    # Excluded from monitoring by the preferences, may still be tracked.
    EXCLUDED = "Excluded"
    # File not found or worse.
    NONE = "None"


class VCLockStatus(str, Enum):
    NO_LOCK = "NoLock"
    LOCKED_HERE = "LockedHere"
    LOCKED_OTHER = "LockedOther"
    LOCKED_BUT_STOLEN = "LockedButStolen"
    BROKEN_LOCK = "BrokenLock"


class VCRemoteFileStatus(str, Enum):
    NONE = "None"
    MODIFIED = "ModifiedOnRemote"


@dataclass
class LockDetails:
    owner: str = ""
    date: str = ""

    @property
    def is_valid(self) -> bool:
        return bool(self.date)

    @property
    def is_empty(self) -> bool:
        return not self.owner and not self.date

    @classmethod
    def empty(cls) -> "LockDetails":
        return cls()


@dataclass
class StatusData:
    """
    Everything git told us about one path.

    moved_to is set on the Deleted side of a move, moved_from on the
    Added side.
    """

    status: VCFileStatus = VCFileStatus.NONE
    lock_status: VCLockStatus = VCLockStatus.NO_LOCK
    remote_status: VCRemoteFileStatus = VCRemoteFileStatus.NONE
    path: str = ""
    moved_to: str = ""
    moved_from: str = ""
    lock_details: LockDetails = field(default_factory=LockDetails)

    @property
    def is_valid(self) -> bool:
        return bool(self.path)

    @property
    def is_moved_file(self) -> bool:
        return bool(self.moved_to or self.moved_from)

    @property
    def is_conflicted(self) -> bool:
        return self.status == VCFileStatus.CONFLICTED

    @property
    def has_online_data(self) -> bool:
        return (
            self.lock_status != VCLockStatus.NO_LOCK
            or self.remote_status != VCRemoteFileStatus.NONE
        )

    def equal_statuses(self, other: "StatusData", skip_online: bool) -> bool:
        """Compare statuses, optionally ignoring lock and remote fields."""
        return (
            self.status == other.status
            and (skip_online or self.lock_status == other.lock_status)
            and (skip_online or self.remote_status == other.remote_status)
            and (skip_online or self.lock_details == other.lock_details)
        )

    def copy(self, **changes) -> "StatusData":
        data = StatusData(
            status=self.status,
            lock_status=self.lock_status,
            remote_status=self.remote_status,
            path=self.path,
            moved_to=self.moved_to,
            moved_from=self.moved_from,
            lock_details=LockDetails(self.lock_details.owner, self.lock_details.date),
        )
        for key, value in changes.items():
            setattr(data, key, value)
        return data

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        data["lock_status"] = self.lock_status.value
        data["remote_status"] = self.remote_status.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "StatusData":
        lock = data.get("lock_details") or {}
        return cls(
            status=VCFileStatus(data.get("status", VCFileStatus.NONE.value)),
            lock_status=VCLockStatus(data.get("lock_status", VCLockStatus.NO_LOCK.value)),
            remote_status=VCRemoteFileStatus(
                data.get("remote_status", VCRemoteFileStatus.NONE.value)
            ),
            path=data.get("path", ""),
            moved_to=data.get("moved_to", ""),
            moved_from=data.get("moved_from", ""),
            lock_details=LockDetails(lock.get("owner", ""), lock.get("date", "")),
        )

    def __str__(self):
        return f"{self.status.value[0]} {self.path}"
