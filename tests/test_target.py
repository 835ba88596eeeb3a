from __future__ import annotations

import hashlib
import stat
import sys
from pathlib import Path

import pytest

from dotstate.actual import get_actual_state_entry
from dotstate.filesystem import abs_slash
from dotstate.lazy import LazyContents, LazyLinkname
from dotstate.models import SCRIPT_ONCE_STATE_BUCKET, EntryState, ScriptOnceState
from dotstate.persistent_state import MemoryPersistentState
from dotstate.system import DryRunSystem, RealSystem
from dotstate.target import (
    TargetStateAbsent,
    TargetStateDir,
    TargetStateFile,
    TargetStatePresent,
    TargetStateRenameDir,
    TargetStateScript,
    TargetStateSymlink,
)

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="requires POSIX permissions and shebangs")

UMASK = 0o022


class RecordingSystem(RealSystem):
    """Real system that records the mutating calls made through it."""

    def __init__(self) -> None:
        super().__init__(MemoryPersistentState())
        self.calls: list[str] = []
        self.scripts: list[bytes] = []

    def write_file(self, path: str, data: bytes, perm: int) -> None:
        self.calls.append("write_file")
        super().write_file(path, data, perm)

    def write_symlink(self, linkname: str, path: str) -> None:
        self.calls.append("write_symlink")
        super().write_symlink(linkname, path)

    def mkdir(self, path: str, perm: int) -> None:
        self.calls.append("mkdir")
        super().mkdir(path, perm)

    def chmod(self, path: str, perm: int) -> None:
        self.calls.append("chmod")
        super().chmod(path, perm)

    def rename(self, old: str, new: str) -> None:
        self.calls.append("rename")
        super().rename(old, new)

    def remove_all(self, path: str) -> None:
        self.calls.append("remove_all")
        super().remove_all(path)

    def run_script(self, name: str, work_dir: str, contents: bytes) -> None:
        self.calls.append("run_script")
        self.scripts.append(contents)


@pytest.fixture
def recording() -> RecordingSystem:
    return RecordingSystem()


def _file(contents: bytes, perm: int = 0o644) -> TargetStateFile:
    return TargetStateFile(perm=perm, lazy=LazyContents(contents=contents))


def _apply_and_check(target, system: RecordingSystem, path: str) -> None:
    target.apply(system, get_actual_state_entry(system, path), UMASK)
    assert target.equal(get_actual_state_entry(system, path), UMASK)
    system.calls.clear()
    assert target.apply(system, get_actual_state_entry(system, path), UMASK) is False
    assert system.calls == []


@posix_only
def test_file_install_new(dest: Path, recording: RecordingSystem) -> None:
    path = abs_slash(dest / "a.txt")
    target = _file(b"hello\n", 0o644)

    changed = target.apply(recording, get_actual_state_entry(recording, path), UMASK)

    assert changed is True
    assert [p.name for p in dest.iterdir()] == ["a.txt"]
    assert (dest / "a.txt").read_bytes() == b"hello\n"
    assert stat.S_IMODE((dest / "a.txt").stat().st_mode) == 0o644


@posix_only
def test_file_permission_only_reconcile(dest: Path, recording: RecordingSystem) -> None:
    (dest / "b").write_text("x")
    (dest / "b").chmod(0o600)
    path = abs_slash(dest / "b")
    target = _file(b"x", 0o644)

    target.apply(recording, get_actual_state_entry(recording, path), UMASK)

    assert recording.calls == ["chmod"]
    assert stat.S_IMODE((dest / "b").stat().st_mode) == 0o644
    assert target.equal(get_actual_state_entry(recording, path), UMASK)


@posix_only
def test_file_contents_changed_rewrites(dest: Path, recording: RecordingSystem) -> None:
    (dest / "c").write_text("old")
    (dest / "c").chmod(0o600)
    path = abs_slash(dest / "c")
    target = _file(b"new", 0o644)

    target.apply(recording, get_actual_state_entry(recording, path), UMASK)

    assert recording.calls == ["remove_all", "write_file"]
    assert (dest / "c").read_bytes() == b"new"
    assert stat.S_IMODE((dest / "c").stat().st_mode) == 0o644


def test_file_replaces_directory(dest: Path, recording: RecordingSystem) -> None:
    (dest / "d" / "nested").mkdir(parents=True)
    path = abs_slash(dest / "d")

    _file(b"data").apply(recording, get_actual_state_entry(recording, path), UMASK)

    assert (dest / "d").read_bytes() == b"data"


@posix_only
@pytest.mark.parametrize(
    "target",
    [
        TargetStateFile(perm=0o600, lazy=LazyContents(contents=b"secret")),
        TargetStateFile(perm=0o755, lazy=LazyContents(contents=b"#!/bin/sh\n")),
        TargetStatePresent(perm=0o644, lazy=LazyContents(contents=b"initial")),
        TargetStateDir(perm=0o700),
        TargetStateSymlink(lazy=LazyLinkname(linkname="somewhere")),
        TargetStateAbsent(),
    ],
    ids=["private-file", "executable-file", "present", "dir", "symlink", "absent"],
)
def test_apply_then_equal_and_idempotent(target, dest: Path, recording: RecordingSystem) -> None:
    (dest / "entry").write_text("something else")

    _apply_and_check(target, recording, abs_slash(dest / "entry"))


def test_file_entry_state() -> None:
    target = _file(b"hello\n", 0o644)

    assert target.entry_state() == EntryState(
        mode=stat.S_IFREG | 0o644,
        contents_sha256=hashlib.sha256(b"hello\n").digest(),
    )


def test_directory_entry_state_has_no_hash() -> None:
    state = TargetStateDir(perm=0o755).entry_state()

    assert state == EntryState(mode=stat.S_IFDIR | 0o755)
    assert state.contents_sha256 is None


def test_symlink_entry_state_hashes_linkname() -> None:
    state = TargetStateSymlink(lazy=LazyLinkname(linkname="target")).entry_state()

    assert state == EntryState(mode=stat.S_IFLNK, contents_sha256=hashlib.sha256(b"target").digest())


def test_unpersisted_entry_states() -> None:
    assert TargetStateAbsent().entry_state() is None
    assert TargetStatePresent(perm=0o644, lazy=LazyContents(contents=b"")).entry_state() is None
    assert TargetStateRenameDir("a", "b").entry_state() is None
    assert TargetStateScript("s", LazyContents(contents=b"")).entry_state() is None


def test_present_keeps_existing_contents(dest: Path, recording: RecordingSystem) -> None:
    (dest / "p").write_text("user edits")
    path = abs_slash(dest / "p")
    target = TargetStatePresent(perm=0o644, lazy=LazyContents(contents=b"template"))

    target.apply(recording, get_actual_state_entry(recording, path), UMASK)

    assert "write_file" not in recording.calls
    assert (dest / "p").read_text() == "user edits"


def test_symlink_replace(dest: Path, recording: RecordingSystem) -> None:
    (dest / "link").symlink_to("old")
    path = abs_slash(dest / "link")
    target = TargetStateSymlink(lazy=LazyLinkname(linkname="new"))

    target.apply(recording, get_actual_state_entry(recording, path), UMASK)

    assert recording.calls == ["remove_all", "write_symlink"]
    assert target.equal(get_actual_state_entry(recording, path), UMASK)


def test_directory_chmod_only(dest: Path, recording: RecordingSystem) -> None:
    (dest / "dir").mkdir(mode=0o755)
    (dest / "dir").chmod(0o755)
    (dest / "dir" / "keep").write_text("x")
    path = abs_slash(dest / "dir")

    TargetStateDir(perm=0o700).apply(recording, get_actual_state_entry(recording, path), UMASK)

    assert recording.calls == ["chmod"]
    assert (dest / "dir" / "keep").exists()


def test_rename_dir(dest: Path, recording: RecordingSystem) -> None:
    (dest / "old").mkdir()
    (dest / "old" / "data").write_text("x")
    path = abs_slash(dest / "new")
    target = TargetStateRenameDir(old_name="old", new_name="new")

    assert target.equal(get_actual_state_entry(recording, path), UMASK) is False
    target.apply(recording, get_actual_state_entry(recording, path), UMASK)

    assert (dest / "new" / "data").exists()
    assert not (dest / "old").exists()


def test_script_once_runs_once_per_contents(dest: Path, recording: RecordingSystem) -> None:
    path = abs_slash(dest / "setup")
    first = TargetStateScript(name="setup", lazy=LazyContents(contents=b"echo hi\n"), once=True)

    assert first.apply(recording, get_actual_state_entry(recording, path), UMASK) is True
    key = hashlib.sha256(b"echo hi\n").hexdigest().encode()
    record = recording.persistent_state().get(SCRIPT_ONCE_STATE_BUCKET, key)
    assert record is not None
    assert ScriptOnceState.from_json(record).name == "setup"

    again = TargetStateScript(name="setup", lazy=LazyContents(contents=b"echo hi\n"), once=True)
    assert again.apply(recording, get_actual_state_entry(recording, path), UMASK) is False
    assert recording.scripts == [b"echo hi\n"]

    changed = TargetStateScript(name="setup", lazy=LazyContents(contents=b"echo hi!\n"), once=True)
    changed.apply(recording, get_actual_state_entry(recording, path), UMASK)

    assert recording.scripts == [b"echo hi\n", b"echo hi!\n"]
    assert len(recording.persistent_state().data()[SCRIPT_ONCE_STATE_BUCKET]) == 2


def test_script_without_once_runs_every_time(dest: Path, recording: RecordingSystem) -> None:
    path = abs_slash(dest / "always")
    target = TargetStateScript(name="always", lazy=LazyContents(contents=b"echo\n"))

    target.apply(recording, get_actual_state_entry(recording, path), UMASK)
    target.apply(recording, get_actual_state_entry(recording, path), UMASK)

    assert recording.calls == ["run_script", "run_script"]
    assert recording.persistent_state().data() == {}


def test_script_empty_contents_do_not_run(dest: Path, recording: RecordingSystem) -> None:
    target = TargetStateScript(name="blank", lazy=LazyContents(contents=b"  \n\n"), once=True)

    assert target.apply(recording, get_actual_state_entry(recording, abs_slash(dest / "blank")), UMASK) is False
    assert recording.calls == []
    assert target.equal(get_actual_state_entry(recording, abs_slash(dest / "blank")), UMASK)


@posix_only
def test_script_runs_in_parent_directory(dest: Path) -> None:
    system = RealSystem(MemoryPersistentState())
    (dest / "sub").mkdir()
    target = TargetStateScript(name="sub/mark", lazy=LazyContents(contents=b"#!/bin/sh\ntouch marker\n"))

    target.apply(system, get_actual_state_entry(system, abs_slash(dest / "sub" / "mark")), UMASK)

    assert (dest / "sub" / "marker").exists()


def test_dry_run_reports_pending_write(dest: Path, system: RealSystem) -> None:
    dry_run = DryRunSystem(system)
    path = abs_slash(dest / "c")

    _file(b"contents").apply(dry_run, get_actual_state_entry(dry_run, path), UMASK)

    assert dry_run.modified
    assert not (dest / "c").exists()


def test_evaluate_surfaces_producer_errors() -> None:
    def broken() -> bytes:
        raise OSError("secret manager unavailable")

    target = TargetStateFile(perm=0o644, lazy=LazyContents(broken))

    with pytest.raises(OSError, match="secret manager unavailable"):
        target.evaluate()
    with pytest.raises(OSError, match="secret manager unavailable"):
        target.entry_state()
