from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator

import pytest

from dotstate.filesystem import abs_slash
from dotstate.persistent_state import MemoryPersistentState
from dotstate.system import RealSystem


@pytest.fixture(autouse=True)
def process_umask() -> Iterator[int]:
    previous = os.umask(0o022)
    try:
        yield 0o022
    finally:
        os.umask(previous)


@pytest.fixture
def fake_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    return home


@pytest.fixture
def dest(tmp_path: Path) -> Path:
    destination = tmp_path / "dest"
    destination.mkdir()
    return destination


@pytest.fixture
def dest_slash(dest: Path) -> str:
    return abs_slash(dest)


@pytest.fixture
def system() -> RealSystem:
    return RealSystem(MemoryPersistentState())
