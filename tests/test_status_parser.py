# -*- coding: utf-8 -*-
"""
Tests for git.status_parser - porcelain records, locks and remote changes
"""

import pytest

from gitstatus_cache.git.status_parser import (
    LockSnapshot,
    StatusParseError,
    is_hidden_path,
    iter_statuses,
    merge_online_data,
    parse_name_only,
    parse_null_separated,
    parse_status,
)
from gitstatus_cache.git.types import (
    StatusData,
    VCFileStatus,
    VCLockStatus,
    VCRemoteFileStatus,
)


LOCKS_JSON = """
{
  "ours": [
    {"id": "1", "path": "Assets/Scene.unity", "owner": {"name": "me"}, "locked_at": "2024-01-01T10:00:00Z"}
  ],
  "theirs": [
    {"id": "2", "path": "Assets/Foo.png", "owner": {"name": "bob"}, "locked_at": "2024-01-02T10:00:00Z"},
    {"id": "3", "path": "Other/Bar.png", "owner": {"name": "bob"}, "locked_at": "2024-01-03T10:00:00Z"}
  ]
}
"""


class TestParseStatus:
    """Test `git status --porcelain -z` parsing"""

    def test_working_tree_modified(self):
        entries = parse_status(" M Assets/Foo.png\0")
        assert len(entries) == 1
        assert entries[0].status == VCFileStatus.MODIFIED
        assert entries[0].path == "Assets/Foo.png"

    def test_index_char_used_when_worktree_clean(self):
        assert parse_status("A  Assets/New.png\0")[0].status == VCFileStatus.ADDED
        assert parse_status("D  Assets/Old.png\0")[0].status == VCFileStatus.DELETED

    def test_worktree_char_preferred(self):
        assert parse_status("AM Assets/New.png\0")[0].status == VCFileStatus.MODIFIED

    @pytest.mark.parametrize("code", ["UU", "AU", "UD", "DD", "AA"])
    def test_conflicts(self, code):
        assert parse_status(f"{code} Assets/Foo.png\0")[0].status == VCFileStatus.CONFLICTED

    def test_rename_consumes_next_token(self):
        entries = parse_status("R  Old.txt\0Old.txt\0?? New.txt\0")

        assert len(entries) == 2
        assert entries[0].status == VCFileStatus.ADDED
        assert entries[0].path == "Old.txt"
        assert entries[0].moved_from == "Old.txt"
        assert entries[0].is_moved_file
        assert entries[1].status == VCFileStatus.UNVERSIONED
        assert entries[1].path == "New.txt"

    def test_untracked_folder_keeps_slash(self):
        assert parse_status("?? Assets/NewFolder/\0")[0].path == "Assets/NewFolder/"

    def test_hidden_paths_skipped(self):
        entries = parse_status(" M Assets/.hidden/a.txt\0 M Assets/a.txt\0")
        assert [e.path for e in entries] == ["Assets/a.txt"]

    def test_empty_output(self):
        assert parse_status("") == []
        assert parse_status("\0") == []

    def test_unknown_status_char(self):
        with pytest.raises(StatusParseError):
            parse_status(" X Assets/Foo.png\0")

    def test_malformed_record(self):
        with pytest.raises(StatusParseError):
            parse_status("M\0")

    def test_bad_record_fails_whole_parse(self):
        with pytest.raises(StatusParseError):
            parse_status(" M Assets/a.png\0 Z broken\0")

    def test_iter_is_lazy(self):
        iterator = iter_statuses(" M a.txt\0 X b.txt\0")
        assert next(iterator).path == "a.txt"
        with pytest.raises(StatusParseError):
            next(iterator)


class TestSmallParsers:
    def test_is_hidden_path(self):
        assert is_hidden_path("Assets/.git/x")
        assert is_hidden_path("Assets\\.vs")
        assert not is_hidden_path("Assets/file.meta")

    def test_parse_name_only(self):
        assert parse_name_only("a.txt\n  \nb/c.txt\n") == ["a.txt", "b/c.txt"]

    def test_parse_null_separated(self):
        assert parse_null_separated("Library/\0Temp/\0") == ["Library/", "Temp/"]


class TestLockSnapshot:
    """Test LFS lock list handling"""

    def test_from_json(self):
        locks = LockSnapshot.from_json(LOCKS_JSON)
        assert [e.path for e in locks.ours] == ["Assets/Scene.unity"]
        assert locks.theirs[0].owner == "bob"

    def test_empty_output(self):
        locks = LockSnapshot.from_json("  ")
        assert locks.ours == [] and locks.theirs == []

    def test_invalid_json(self):
        with pytest.raises(StatusParseError):
            LockSnapshot.from_json("{broken")

    def test_apply_and_forget_case_insensitive(self):
        locks = LockSnapshot.from_json(LOCKS_JSON)

        status, details = locks.apply_and_forget("assets/foo.PNG")
        assert status == VCLockStatus.LOCKED_OTHER
        assert details.owner == "bob"

        # Consumed.
        status, details = locks.apply_and_forget("Assets/Foo.png")
        assert status == VCLockStatus.NO_LOCK
        assert details.is_empty

    def test_exclude_outside_paths(self):
        locks = LockSnapshot.from_json(LOCKS_JSON)
        locks.exclude_outside_paths("Assets")
        assert [e.path for e in locks.theirs] == ["Assets/Foo.png"]


class TestMergeOnlineData:
    """Test combining status records with remote changes and locks"""

    def test_remote_flag_on_existing_record(self):
        entries = [StatusData(status=VCFileStatus.MODIFIED, path="Assets/Foo.png")]
        merge_online_data(entries, ["assets/foo.png"], None)

        assert len(entries) == 1
        assert entries[0].remote_status == VCRemoteFileStatus.MODIFIED

    def test_remote_only_change_becomes_normal_record(self):
        entries = []
        merge_online_data(entries, ["Assets/Bar.png", "Assets/.hidden"], None)

        assert len(entries) == 1
        assert entries[0].status == VCFileStatus.NORMAL
        assert entries[0].remote_status == VCRemoteFileStatus.MODIFIED

    def test_locks_applied_and_leftovers_added(self):
        entries = [StatusData(status=VCFileStatus.MODIFIED, path="Assets/Foo.png")]
        locks = LockSnapshot.from_json(LOCKS_JSON)
        locks.exclude_outside_paths("Assets")

        merge_online_data(entries, [], locks, "Assets")

        assert entries[0].lock_status == VCLockStatus.LOCKED_OTHER
        assert entries[0].lock_details.owner == "bob"
        assert len(entries) == 2
        leftover = entries[1]
        assert leftover.path == "Assets/Scene.unity"
        assert leftover.status == VCFileStatus.NORMAL
        assert leftover.lock_status == VCLockStatus.LOCKED_HERE
