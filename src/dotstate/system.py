"""System backends: the real filesystem, a dry run, and a dump of the target state."""

from __future__ import annotations

import logging
import os
import shutil
import stat
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Sequence

from .errors import CommandError
from .filesystem import native, perm
from .persistent_state import DryRunPersistentState, MemoryPersistentState, PersistentState

logger = logging.getLogger(__name__)

WalkItem = tuple[str, list[str], list[str]]


@dataclass(frozen=True, slots=True)
class FileInfo:
    """Result of a non-following stat."""

    path: str
    mode: int

    @property
    def perm(self) -> int:
        return perm(self.mode)

    def is_dir(self) -> bool:
        return stat.S_ISDIR(self.mode)

    def is_file(self) -> bool:
        return stat.S_ISREG(self.mode)

    def is_symlink(self) -> bool:
        return stat.S_ISLNK(self.mode)


class System(ABC):
    """Filesystem-like operations the reconciliation engine acts through.

    Paths are absolute forward-slash strings.
    """

    @abstractmethod
    def stat(self, path: str) -> FileInfo | None:
        """Return information about ``path`` without following symlinks, or ``None`` if absent."""

    @abstractmethod
    def read_file(self, path: str) -> bytes: ...

    @abstractmethod
    def read_link(self, path: str) -> str: ...

    @abstractmethod
    def walk(self, top: str) -> Iterator[WalkItem]:
        """Walk ``top`` like ``os.walk``; callers prune by editing the yielded dirnames."""

    @abstractmethod
    def write_file(self, path: str, data: bytes, perm: int) -> None: ...

    @abstractmethod
    def write_symlink(self, linkname: str, path: str) -> None: ...

    @abstractmethod
    def mkdir(self, path: str, perm: int) -> None: ...

    @abstractmethod
    def chmod(self, path: str, perm: int) -> None: ...

    @abstractmethod
    def rename(self, old: str, new: str) -> None: ...

    @abstractmethod
    def remove_all(self, path: str) -> None: ...

    @abstractmethod
    def run_script(self, name: str, work_dir: str, contents: bytes) -> None: ...

    @abstractmethod
    def persistent_state(self) -> PersistentState: ...

    @abstractmethod
    def idempotent_cmd_output(self, args: Sequence[str], *, input: bytes | None = None) -> bytes:
        """Run a side-effect-free command and return its standard output."""


def run_idempotent_command(args: Sequence[str], *, input: bytes | None = None) -> bytes:
    """Run ``args``, forwarding stderr, and return stdout."""

    try:
        completed = subprocess.run(list(args), input=input, stdout=subprocess.PIPE, check=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise CommandError(args, exc) from exc
    return completed.stdout


def _remove_tree(target: Path) -> None:
    if not os.path.lexists(target):
        return
    if target.is_symlink() or not target.is_dir():
        target.unlink()
        return
    shutil.rmtree(target)


class RealSystem(System):
    """Performs every operation on the local filesystem.

    Files and directories are created with exactly the permissions given;
    the process umask does not apply.
    """

    def __init__(self, persistent_state: PersistentState | None = None) -> None:
        self._persistent_state = persistent_state if persistent_state is not None else MemoryPersistentState()

    def stat(self, path: str) -> FileInfo | None:
        try:
            result = os.lstat(native(path))
        except (FileNotFoundError, NotADirectoryError):
            return None
        return FileInfo(path=path, mode=result.st_mode)

    def read_file(self, path: str) -> bytes:
        return native(path).read_bytes()

    def read_link(self, path: str) -> str:
        return Path(os.readlink(native(path))).as_posix()

    def walk(self, top: str) -> Iterator[WalkItem]:
        def raise_error(exc: OSError) -> None:
            raise exc

        for dirpath, dirnames, filenames in os.walk(native(top), onerror=raise_error):
            dirnames.sort()
            yield Path(dirpath).as_posix(), dirnames, sorted(filenames)

    def write_file(self, path: str, data: bytes, perm: int) -> None:
        destination = native(path)
        fd, temp_name = tempfile.mkstemp(prefix=f".{destination.name}.dotstate-tmp-", dir=destination.parent)
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.chmod(temp_path, perm)
            os.replace(temp_path, destination)
        except Exception:
            temp_path.unlink(missing_ok=True)
            raise

    def write_symlink(self, linkname: str, path: str) -> None:
        target = native(path)
        _remove_tree(target)
        os.symlink(linkname, target)

    def mkdir(self, path: str, perm: int) -> None:
        target = native(path)
        os.mkdir(target, perm)
        # os.mkdir is masked by the process umask.
        os.chmod(target, perm)

    def chmod(self, path: str, perm: int) -> None:
        os.chmod(native(path), perm)

    def rename(self, old: str, new: str) -> None:
        os.rename(native(old), native(new))

    def remove_all(self, path: str) -> None:
        _remove_tree(native(path))

    def run_script(self, name: str, work_dir: str, contents: bytes) -> None:
        basename = name.rsplit("/", 1)[-1]
        fd, script_name = tempfile.mkstemp(prefix=f"{basename}.")
        script_path = Path(script_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(contents)
            os.chmod(script_path, 0o700)
            cwd = native(work_dir) if work_dir and native(work_dir).is_dir() else None
            logger.debug("running script %s in %s", name, cwd)
            subprocess.run([str(script_path)], cwd=cwd, check=True)
        except (OSError, subprocess.CalledProcessError) as exc:
            raise CommandError([name], exc) from exc
        finally:
            script_path.unlink(missing_ok=True)

    def persistent_state(self) -> PersistentState:
        return self._persistent_state

    def idempotent_cmd_output(self, args: Sequence[str], *, input: bytes | None = None) -> bytes:
        return run_idempotent_command(args, input=input)


class DryRunSystem(System):
    """Forwards reads to ``wrapped`` and records, but suppresses, every mutation."""

    def __init__(self, wrapped: System) -> None:
        self.wrapped = wrapped
        self.modified = False
        self._persistent_state = DryRunPersistentState(wrapped.persistent_state())

    def _record(self, message: str, *args: object) -> None:
        logger.info("would " + message, *args)
        self.modified = True

    def stat(self, path: str) -> FileInfo | None:
        return self.wrapped.stat(path)

    def read_file(self, path: str) -> bytes:
        return self.wrapped.read_file(path)

    def read_link(self, path: str) -> str:
        return self.wrapped.read_link(path)

    def walk(self, top: str) -> Iterator[WalkItem]:
        return self.wrapped.walk(top)

    def write_file(self, path: str, data: bytes, perm: int) -> None:
        self._record("write %s (%d bytes, mode %o)", path, len(data), perm)

    def write_symlink(self, linkname: str, path: str) -> None:
        self._record("symlink %s -> %s", path, linkname)

    def mkdir(self, path: str, perm: int) -> None:
        self._record("mkdir %s (mode %o)", path, perm)

    def chmod(self, path: str, perm: int) -> None:
        self._record("chmod %s to %o", path, perm)

    def rename(self, old: str, new: str) -> None:
        self._record("rename %s to %s", old, new)

    def remove_all(self, path: str) -> None:
        self._record("remove %s", path)

    def run_script(self, name: str, work_dir: str, contents: bytes) -> None:
        self._record("run script %s in %s", name, work_dir)

    def persistent_state(self) -> PersistentState:
        return self._persistent_state

    def idempotent_cmd_output(self, args: Sequence[str], *, input: bytes | None = None) -> bytes:
        return self.wrapped.idempotent_cmd_output(args, input=input)


class DumpSystem(System):
    """Accumulates the entries written to it into a serialisable mapping.

    Every path reads as absent; other reads are unsupported.
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}
        self._persistent_state = MemoryPersistentState()

    def data(self) -> dict[str, dict[str, Any]]:
        return {name: dict(entry) for name, entry in sorted(self._data.items())}

    def stat(self, path: str) -> FileInfo | None:
        return None

    def read_file(self, path: str) -> bytes:
        raise NotImplementedError(f"{path}: reading is not supported when dumping")

    def read_link(self, path: str) -> str:
        raise NotImplementedError(f"{path}: reading is not supported when dumping")

    def walk(self, top: str) -> Iterator[WalkItem]:
        raise NotImplementedError(f"{top}: walking is not supported when dumping")

    def write_file(self, path: str, data: bytes, perm: int) -> None:
        self._data[path] = {
            "type": "file",
            "name": path,
            "contents": data.decode("utf-8", errors="replace"),
            "perm": perm,
        }

    def write_symlink(self, linkname: str, path: str) -> None:
        self._data[path] = {"type": "symlink", "name": path, "linkname": linkname}

    def mkdir(self, path: str, perm: int) -> None:
        self._data[path] = {"type": "dir", "name": path, "perm": perm}

    def chmod(self, path: str, perm: int) -> None:
        if path in self._data and "perm" in self._data[path]:
            self._data[path]["perm"] = perm

    def rename(self, old: str, new: str) -> None:
        if old in self._data:
            entry = self._data.pop(old)
            entry["name"] = new
            self._data[new] = entry

    def remove_all(self, path: str) -> None:
        self._data.pop(path, None)

    def run_script(self, name: str, work_dir: str, contents: bytes) -> None:
        self._data[name] = {
            "type": "script",
            "name": name,
            "contents": contents.decode("utf-8", errors="replace"),
        }

    def persistent_state(self) -> PersistentState:
        return self._persistent_state

    def idempotent_cmd_output(self, args: Sequence[str], *, input: bytes | None = None) -> bytes:
        return run_idempotent_command(args, input=input)
