# -*- coding: utf-8 -*-
"""
Resource index
Sprint 4: Mapping between project paths and stable resource ids

The embedding application usually owns the real index (asset database,
file ids). It is queried from the main context only.
"""

import os
from typing import Dict, Protocol, runtime_checkable


@runtime_checkable
class ResourceIndex(Protocol):
    def path_to_id(self, path: str) -> str:
        """Stable id of the resource at `path`, empty if unknown."""
        ...

    def id_to_path(self, resource_id: str) -> str:
        """Current path of the resource, empty if unknown."""
        ...


def normalize_path(path: str) -> str:
    return (path or "").replace("\\", "/").rstrip("/")


class PathResourceIndex:
    """
    Uses the normalized project relative path as id.

    Only existing files and folders get an id, like a real index that
    hasn't noticed a file yet. Ids do not survive renames.
    """

    def __init__(self, project_root: str = "."):
        self.project_root = project_root

    def path_to_id(self, path: str) -> str:
        path = normalize_path(path)
        if not path or not os.path.exists(os.path.join(self.project_root, path)):
            return ""
        return path

    def id_to_path(self, resource_id: str) -> str:
        return resource_id or ""


class MappingResourceIndex:
    """In-memory index filled by the host through register()."""

    def __init__(self, mapping: Dict[str, str] = None):
        self._path_to_id: Dict[str, str] = {}
        self._id_to_path: Dict[str, str] = {}
        for path, resource_id in (mapping or {}).items():
            self.register(path, resource_id)

    def register(self, path: str, resource_id: str):
        path = normalize_path(path)
        old_path = self._id_to_path.get(resource_id)
        if old_path is not None:
            self._path_to_id.pop(old_path, None)
        self._path_to_id[path] = resource_id
        self._id_to_path[resource_id] = path

    def unregister(self, path: str):
        resource_id = self._path_to_id.pop(normalize_path(path), None)
        if resource_id is not None:
            self._id_to_path.pop(resource_id, None)

    def path_to_id(self, path: str) -> str:
        return self._path_to_id.get(normalize_path(path), "")

    def id_to_path(self, resource_id: str) -> str:
        return self._id_to_path.get(resource_id, "")
