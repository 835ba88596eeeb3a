"""Target state entries: the desired state of a single path.

Each entry supports four operations:

``apply(system, actual, umask)``
    Update the actual state to match the entry. Returns ``True`` if anything
    was changed or run, ``False`` if the actual state already matched.
    Files and directories are created and chmodded with ``perm & ~umask``.
``equal(actual, umask)``
    Return ``True`` if the actual state already matches.
``entry_state()``
    Return the persistable :class:`~dotstate.models.EntryState`, or ``None``
    for entries that are not persisted.
``evaluate()``
    Force any lazy contents so that errors surface before anything is mutated.
"""

from __future__ import annotations

import stat
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import ClassVar, Union

from .actual import (
    ActualStateAbsent,
    ActualStateDir,
    ActualStateEntry,
    ActualStateFile,
    ActualStateSymlink,
)
from .filesystem import is_empty, join, parent_dir, umask_perm_equal
from .lazy import LazyContents, LazyLinkname
from .models import SCRIPT_ONCE_STATE_BUCKET, EntryKind, EntryState, ScriptOnceState
from .system import System


@dataclass(frozen=True, slots=True)
class TargetStateAbsent:
    """The path must not exist."""

    kind: ClassVar[EntryKind] = EntryKind.ABSENT

    def apply(self, system: System, actual: ActualStateEntry, umask: int) -> bool:
        if isinstance(actual, ActualStateAbsent):
            return False
        system.remove_all(actual.path)
        return True

    def equal(self, actual: ActualStateEntry, umask: int) -> bool:
        return isinstance(actual, ActualStateAbsent)

    def entry_state(self) -> EntryState | None:
        return None

    def evaluate(self) -> None:
        return None


@dataclass(frozen=True, slots=True)
class TargetStateDir:
    """The path must be a directory. Children are handled as separate entries."""

    kind: ClassVar[EntryKind] = EntryKind.DIRECTORY

    perm: int

    def apply(self, system: System, actual: ActualStateEntry, umask: int) -> bool:
        if isinstance(actual, ActualStateDir):
            if umask_perm_equal(actual.perm, self.perm, umask):
                return False
            system.chmod(actual.path, self.perm & ~umask)
            return True
        actual.remove(system)
        system.mkdir(actual.path, self.perm & ~umask)
        return True

    def equal(self, actual: ActualStateEntry, umask: int) -> bool:
        return isinstance(actual, ActualStateDir) and umask_perm_equal(actual.perm, self.perm, umask)

    def entry_state(self) -> EntryState | None:
        return EntryState(mode=stat.S_IFDIR | self.perm)

    def evaluate(self) -> None:
        return None


@dataclass(frozen=True, slots=True)
class TargetStateFile:
    """The path must be a regular file with the given contents and permissions."""

    kind: ClassVar[EntryKind] = EntryKind.FILE

    perm: int
    lazy: LazyContents

    def apply(self, system: System, actual: ActualStateEntry, umask: int) -> bool:
        if isinstance(actual, ActualStateFile):
            if actual.contents_sha256() == self.lazy.contents_sha256():
                if umask_perm_equal(actual.perm, self.perm, umask):
                    return False
                system.chmod(actual.path, self.perm & ~umask)
                return True
        contents = self.lazy.contents()
        actual.remove(system)
        system.write_file(actual.path, contents, self.perm & ~umask)
        return True

    def equal(self, actual: ActualStateEntry, umask: int) -> bool:
        if not isinstance(actual, ActualStateFile):
            return False
        if not umask_perm_equal(actual.perm, self.perm, umask):
            return False
        return actual.contents_sha256() == self.lazy.contents_sha256()

    def entry_state(self) -> EntryState | None:
        return EntryState(mode=stat.S_IFREG | self.perm, contents_sha256=self.lazy.contents_sha256())

    def evaluate(self) -> None:
        self.lazy.contents_sha256()


@dataclass(frozen=True, slots=True)
class TargetStatePresent:
    """The path must be a regular file; existing contents are left alone."""

    kind: ClassVar[EntryKind] = EntryKind.FILE

    perm: int
    lazy: LazyContents

    def apply(self, system: System, actual: ActualStateEntry, umask: int) -> bool:
        if isinstance(actual, ActualStateFile):
            if umask_perm_equal(actual.perm, self.perm, umask):
                return False
            system.chmod(actual.path, self.perm & ~umask)
            return True
        contents = self.lazy.contents()
        actual.remove(system)
        system.write_file(actual.path, contents, self.perm & ~umask)
        return True

    def equal(self, actual: ActualStateEntry, umask: int) -> bool:
        return isinstance(actual, ActualStateFile) and umask_perm_equal(actual.perm, self.perm, umask)

    def entry_state(self) -> EntryState | None:
        return None

    def evaluate(self) -> None:
        self.lazy.contents_sha256()


@dataclass(frozen=True, slots=True)
class TargetStateRenameDir:
    """Rename the directory ``old_name`` to ``new_name`` within the entry's parent."""

    kind: ClassVar[EntryKind] = EntryKind.DIRECTORY

    old_name: str
    new_name: str

    def apply(self, system: System, actual: ActualStateEntry, umask: int) -> bool:
        dir = parent_dir(actual.path)
        system.rename(join(dir, self.old_name), join(dir, self.new_name))
        return True

    def equal(self, actual: ActualStateEntry, umask: int) -> bool:
        return False

    def entry_state(self) -> EntryState | None:
        return None

    def evaluate(self) -> None:
        return None


@dataclass(frozen=True, slots=True)
class TargetStateScript:
    """A script to run, optionally at most once per distinct contents."""

    kind: ClassVar[EntryKind] = EntryKind.SCRIPT

    name: str
    lazy: LazyContents
    once: bool = False

    def key(self) -> bytes:
        return self.lazy.contents_sha256().hex().encode()

    def apply(self, system: System, actual: ActualStateEntry, umask: int) -> bool:
        if self.once and system.persistent_state().get(SCRIPT_ONCE_STATE_BUCKET, self.key()) is not None:
            return False
        run_at = datetime.now(timezone.utc)
        contents = self.lazy.contents()
        if is_empty(contents):
            return False
        system.run_script(self.name, parent_dir(actual.path), contents)
        if self.once:
            record = ScriptOnceState(name=self.name, run_at=run_at)
            system.persistent_state().set(SCRIPT_ONCE_STATE_BUCKET, self.key(), record.to_json())
        return True

    def equal(self, actual: ActualStateEntry, umask: int) -> bool:
        # Scripts have no actual state; whether a run-once script ran lives in the persistent state.
        return True

    def entry_state(self) -> EntryState | None:
        return None

    def evaluate(self) -> None:
        self.lazy.contents_sha256()


@dataclass(frozen=True, slots=True)
class TargetStateSymlink:
    """The path must be a symlink pointing at the given link name."""

    kind: ClassVar[EntryKind] = EntryKind.SYMLINK

    lazy: LazyLinkname

    def apply(self, system: System, actual: ActualStateEntry, umask: int) -> bool:
        linkname = self.lazy.linkname()
        if isinstance(actual, ActualStateSymlink) and actual.linkname() == linkname:
            return False
        actual.remove(system)
        system.write_symlink(linkname, actual.path)
        return True

    def equal(self, actual: ActualStateEntry, umask: int) -> bool:
        if not isinstance(actual, ActualStateSymlink):
            return False
        return actual.linkname() == self.lazy.linkname()

    def entry_state(self) -> EntryState | None:
        return EntryState(mode=stat.S_IFLNK, contents_sha256=self.lazy.linkname_sha256())

    def evaluate(self) -> None:
        self.lazy.linkname()


TargetStateEntry = Union[
    TargetStateAbsent,
    TargetStateDir,
    TargetStateFile,
    TargetStatePresent,
    TargetStateRenameDir,
    TargetStateScript,
    TargetStateSymlink,
]
