# -*- coding: utf-8 -*-
"""
Cache persistence
Sprint 5: Keep the status database across restarts (JSON file)
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from ..core import log
from ..core.result import Result
from .entries import CacheEntry

CACHE_FILE = os.path.join("Temp", "GitStatusCache.json")
CACHE_FORMAT_VERSION = 1


@dataclass
class CacheSnapshot:
    entries: List[CacheEntry] = field(default_factory=list)
    unversioned_folders: List[str] = field(default_factory=list)
    ignored_entries: List[str] = field(default_factory=list)
    data_is_incomplete: bool = False

    def to_dict(self) -> dict:
        return {
            "version": CACHE_FORMAT_VERSION,
            "entries": [e.to_dict() for e in self.entries],
            "unversioned_folders": list(self.unversioned_folders),
            "ignored_entries": list(self.ignored_entries),
            "data_is_incomplete": self.data_is_incomplete,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CacheSnapshot":
        return cls(
            entries=[CacheEntry.from_dict(e) for e in data.get("entries", [])],
            unversioned_folders=list(data.get("unversioned_folders", [])),
            ignored_entries=list(data.get("ignored_entries", [])),
            data_is_incomplete=bool(data.get("data_is_incomplete", False)),
        )


class CacheStore:
    """Reads and writes a CacheSnapshot as JSON."""

    def __init__(self, path):
        self.path = Path(path)

    @classmethod
    def for_project(cls, project_root: str) -> "CacheStore":
        return cls(os.path.join(project_root, CACHE_FILE))

    def load(self) -> Result:
        """
        Returns:
            Result[CacheSnapshot]: empty snapshot when there is no file
        """
        if not self.path.exists():
            return Result.success(CacheSnapshot())

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            log.warning(f"Invalid status cache file, starting empty: {e}")
            return Result.failure("INVALID_JSON", str(e), value=CacheSnapshot())
        except OSError as e:
            log.warning(f"Failed to read status cache: {e}")
            return Result.failure("LOAD_ERROR", str(e), value=CacheSnapshot())

        if data.get("version") != CACHE_FORMAT_VERSION:
            log.debug(f"Status cache format {data.get('version')} unsupported, starting empty")
            return Result.success(CacheSnapshot())

        try:
            return Result.success(CacheSnapshot.from_dict(data))
        except (KeyError, TypeError, ValueError) as e:
            log.warning(f"Corrupted status cache, starting empty: {e}")
            return Result.failure("INVALID_DATA", str(e), value=CacheSnapshot())

    def save(self, snapshot: CacheSnapshot) -> Result:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(snapshot.to_dict(), f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            log.error(f"Failed to save status cache: {e}")
            return Result.failure("SAVE_ERROR", str(e))

        return Result.success(str(self.path))

    def clear(self):
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
