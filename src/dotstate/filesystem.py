"""Path, permission, and umask helpers for dotstate."""

from __future__ import annotations

import os
import posixpath
import stat
from pathlib import Path, PurePath

PERM_MASK = 0o7777


def get_umask() -> int:
    """Return the process umask without changing it."""

    current = os.umask(0)
    os.umask(current)
    return current


def umask_perm_equal(perm1: int, perm2: int, umask: int) -> bool:
    """Return ``True`` if ``perm1`` and ``perm2`` are equal once ``umask`` is applied."""

    return perm1 & ~umask == perm2 & ~umask


def is_executable(mode: int) -> bool:
    return mode & 0o111 != 0


def is_private(mode: int) -> bool:
    return mode & 0o077 == 0


def perm(mode: int) -> int:
    """Strip the file type bits from ``mode``."""

    return stat.S_IMODE(mode) & PERM_MASK


def to_slash(path: str | os.PathLike[str]) -> str:
    return PurePath(path).as_posix()


def abs_slash(path: str | os.PathLike[str]) -> str:
    """Return ``path`` as an absolute, user-expanded, forward-slash string."""

    expanded = Path(os.path.expandvars(os.fspath(path))).expanduser()
    return posixpath.normpath(expanded.absolute().as_posix())


def native(path: str) -> Path:
    """Translate an internal slash path to a native ``Path``."""

    return Path(path)


def trim_dir_prefix(path: str, dir: str) -> str:
    """Return ``path`` with the directory prefix ``dir`` stripped.

    Both arguments are absolute slash paths.
    """

    prefix = dir.rstrip("/") + "/"
    if not path.startswith(prefix):
        raise ValueError(f"{path!r} does not have dir prefix {dir!r}")
    return path[len(prefix) :]


def join(dir: str, name: str) -> str:
    if not dir:
        return name
    return posixpath.join(dir, name)


def parent_dir(path: str) -> str:
    return posixpath.dirname(path)


def is_empty(contents: bytes) -> bool:
    """Return ``True`` if ``contents`` holds only whitespace."""

    return not contents.strip()
