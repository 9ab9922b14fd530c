# -*- coding: utf-8 -*-
"""
Tests for cache.index and cache.store
"""

import json

from gitstatus_cache.cache.entries import CacheEntry
from gitstatus_cache.cache.index import MappingResourceIndex, PathResourceIndex, normalize_path
from gitstatus_cache.cache.store import CACHE_FORMAT_VERSION, CacheSnapshot, CacheStore
from gitstatus_cache.git.types import StatusData, VCFileStatus, VCLockStatus


class TestResourceIndex:
    def test_normalize_path(self):
        assert normalize_path("Assets\\Sub\\") == "Assets/Sub"
        assert normalize_path(None) == ""

    def test_path_index_only_existing(self, project_root):
        (project_root / "Assets" / "Foo.png").write_bytes(b"png")
        index = PathResourceIndex(str(project_root))

        assert index.path_to_id("Assets\\Foo.png") == "Assets/Foo.png"
        assert index.path_to_id("Assets/Missing.png") == ""
        assert index.path_to_id("") == ""
        assert index.id_to_path("Assets/Foo.png") == "Assets/Foo.png"

    def test_mapping_index_rename(self):
        index = MappingResourceIndex({"Assets/Foo.png": "g1"})
        index.register("Assets/Renamed.png", "g1")

        assert index.path_to_id("Assets/Foo.png") == ""
        assert index.path_to_id("Assets/Renamed.png") == "g1"
        assert index.id_to_path("g1") == "Assets/Renamed.png"

    def test_mapping_index_unregister(self):
        index = MappingResourceIndex({"Assets/Foo.png": "g1"})
        index.unregister("Assets/Foo.png")
        assert index.id_to_path("g1") == ""


class TestCacheStore:
    def _snapshot(self):
        entry = CacheEntry(
            key="g1",
            merged=StatusData(VCFileStatus.MODIFIED, VCLockStatus.LOCKED_HERE, path="Assets/Foo.png"),
            own=StatusData(VCFileStatus.MODIFIED, VCLockStatus.LOCKED_HERE, path="Assets/Foo.png"),
        )
        return CacheSnapshot(
            entries=[entry],
            unversioned_folders=["Assets/New/"],
            ignored_entries=["Assets/Library/"],
            data_is_incomplete=True,
        )

    def test_save_and_load(self, tmp_path):
        store = CacheStore(tmp_path / "Temp" / "cache.json")
        assert store.save(self._snapshot()).ok

        loaded = store.load()
        assert loaded.ok
        assert loaded.value == self._snapshot()

    def test_missing_file_is_empty(self, tmp_path):
        result = CacheStore(tmp_path / "none.json").load()
        assert result.ok
        assert result.value == CacheSnapshot()

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text("{nope", encoding="utf-8")

        result = CacheStore(path).load()
        assert not result.ok
        assert result.value == CacheSnapshot()

    def test_other_version_ignored(self, tmp_path):
        path = tmp_path / "cache.json"
        data = self._snapshot().to_dict()
        data["version"] = CACHE_FORMAT_VERSION + 1
        path.write_text(json.dumps(data), encoding="utf-8")

        assert CacheStore(path).load().value == CacheSnapshot()

    def test_clear(self, tmp_path):
        store = CacheStore.for_project(str(tmp_path))
        store.save(CacheSnapshot())
        store.clear()
        store.clear()
        assert not store.path.exists()
