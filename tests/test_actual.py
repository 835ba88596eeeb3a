from __future__ import annotations

import hashlib
import os
import sys
from pathlib import Path

import pytest

from dotstate.actual import (
    ActualStateAbsent,
    ActualStateDir,
    ActualStateFile,
    ActualStateSymlink,
    get_actual_state_entry,
)
from dotstate.errors import UnsupportedEntryError
from dotstate.filesystem import abs_slash
from dotstate.system import DumpSystem, RealSystem


def test_absent(tmp_path: Path, system: RealSystem) -> None:
    entry = get_actual_state_entry(system, abs_slash(tmp_path / "missing"))

    assert isinstance(entry, ActualStateAbsent)


def test_file_reads_lazily(tmp_path: Path, system: RealSystem, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "file"
    path.write_bytes(b"hello\n")
    path.chmod(0o640)

    reads: list[str] = []
    original = system.read_file
    monkeypatch.setattr(system, "read_file", lambda p: reads.append(p) or original(p))

    entry = get_actual_state_entry(system, abs_slash(path))

    assert isinstance(entry, ActualStateFile)
    assert reads == []
    if sys.platform != "win32":
        assert entry.perm == 0o640
    assert entry.contents_sha256() == hashlib.sha256(b"hello\n").digest()
    assert entry.contents() == b"hello\n"
    assert len(reads) == 1


def test_directory(tmp_path: Path, system: RealSystem) -> None:
    directory = tmp_path / "dir"
    directory.mkdir(mode=0o700)

    entry = get_actual_state_entry(system, abs_slash(directory))

    assert isinstance(entry, ActualStateDir)
    if sys.platform != "win32":
        assert entry.perm == 0o700


def test_symlink_is_not_followed(tmp_path: Path, system: RealSystem) -> None:
    (tmp_path / "dir").mkdir()
    (tmp_path / "link").symlink_to("dir")

    entry = get_actual_state_entry(system, abs_slash(tmp_path / "link"))

    assert isinstance(entry, ActualStateSymlink)
    assert entry.linkname() == "dir"


@pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="requires mkfifo")
def test_fifo_is_unsupported(tmp_path: Path, system: RealSystem) -> None:
    fifo = tmp_path / "fifo"
    os.mkfifo(fifo)

    with pytest.raises(UnsupportedEntryError):
        get_actual_state_entry(system, abs_slash(fifo))


def test_remove(tmp_path: Path, system: RealSystem) -> None:
    path = tmp_path / "dir"
    (path / "nested").mkdir(parents=True)
    entry = get_actual_state_entry(system, abs_slash(path))

    entry.remove(system)

    assert not path.exists()


def test_dump_system_reads_as_absent() -> None:
    assert isinstance(get_actual_state_entry(DumpSystem(), "anything"), ActualStateAbsent)
