"""Actual state entries: what is currently on disk at a path."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Union

from .errors import UnsupportedEntryError
from .lazy import LazyContents, LazyLinkname
from .models import EntryKind
from .system import System


@dataclass(frozen=True, slots=True)
class ActualStateAbsent:
    kind: ClassVar[EntryKind] = EntryKind.ABSENT

    path: str

    def remove(self, system: System) -> None:
        return None


@dataclass(frozen=True, slots=True)
class ActualStateDir:
    kind: ClassVar[EntryKind] = EntryKind.DIRECTORY

    path: str
    perm: int

    def remove(self, system: System) -> None:
        system.remove_all(self.path)


@dataclass(frozen=True, slots=True)
class ActualStateFile:
    kind: ClassVar[EntryKind] = EntryKind.FILE

    path: str
    perm: int
    lazy: LazyContents

    def contents(self) -> bytes:
        return self.lazy.contents()

    def contents_sha256(self) -> bytes:
        return self.lazy.contents_sha256()

    def remove(self, system: System) -> None:
        system.remove_all(self.path)


@dataclass(frozen=True, slots=True)
class ActualStateSymlink:
    kind: ClassVar[EntryKind] = EntryKind.SYMLINK

    path: str
    lazy: LazyLinkname

    def linkname(self) -> str:
        return self.lazy.linkname()

    def remove(self, system: System) -> None:
        system.remove_all(self.path)


ActualStateEntry = Union[ActualStateAbsent, ActualStateDir, ActualStateFile, ActualStateSymlink]


def get_actual_state_entry(system: System, path: str) -> ActualStateEntry:
    """Stat ``path`` through ``system`` and return its actual state.

    Contents and link names are read lazily.
    """

    info = system.stat(path)
    if info is None:
        return ActualStateAbsent(path)
    if info.is_file():
        return ActualStateFile(path, info.perm, LazyContents(lambda: system.read_file(path)))
    if info.is_dir():
        return ActualStateDir(path, info.perm)
    if info.is_symlink():
        return ActualStateSymlink(path, LazyLinkname(lambda: system.read_link(path)))
    raise UnsupportedEntryError(path, info.mode)
