"""Source state: the canonical declaration of what the destination should contain."""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, Mapping

from .errors import ParseError
from .lazy import LazyContents, LazyLinkname
from .target import (
    TargetStateAbsent,
    TargetStateDir,
    TargetStateEntry,
    TargetStateFile,
    TargetStatePresent,
    TargetStateScript,
    TargetStateSymlink,
)

IGNORE_FILENAME = ".dotstateignore"

DOT_PREFIX = "dot_"
PRIVATE_PREFIX = "private_"
EXECUTABLE_PREFIX = "executable_"
CREATE_PREFIX = "create_"
REMOVE_PREFIX = "remove_"
SYMLINK_PREFIX = "symlink_"
RUN_PREFIX = "run_"
ONCE_PREFIX = "once_"


@dataclass(frozen=True)
class SourceState:
    """Immutable mapping of target names to target state entries.

    Target names are slash paths relative to the destination directory.
    """

    target_entries: Mapping[str, TargetStateEntry]
    ignore_patterns: tuple[str, ...] = ()
    source_dir: Path | None = field(default=None, compare=False)

    def entries(self) -> Iterator[tuple[str, TargetStateEntry]]:
        for name in sorted(self.target_entries):
            yield name, self.target_entries[name]

    def entry(self, name: str) -> TargetStateEntry | None:
        return self.target_entries.get(name)

    def target_names(self) -> list[str]:
        return sorted(self.target_entries)

    def ignored(self, name: str) -> bool:
        return any(fnmatch.fnmatchcase(name, pattern) for pattern in self.ignore_patterns)


def _strip(name: str, prefix: str) -> tuple[str, bool]:
    if name.startswith(prefix):
        return name[len(prefix) :], True
    return name, False


def _target_basename(name: str, dot: bool) -> str:
    return "." + name if dot else name


def parse_ignore_patterns(lines: Iterable[str]) -> tuple[str, ...]:
    patterns: list[str] = []
    for line in lines:
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            patterns.append(stripped)
    return tuple(patterns)


def _parse_dir(name: str) -> tuple[str, TargetStateDir]:
    name, private = _strip(name, PRIVATE_PREFIX)
    name, dot = _strip(name, DOT_PREFIX)
    return _target_basename(name, dot), TargetStateDir(perm=0o700 if private else 0o777)


def _read_linkname(path: Path) -> str:
    """Return the link name stored in ``path``, without trailing whitespace."""

    try:
        return path.read_bytes().decode().rstrip()
    except UnicodeDecodeError as exc:
        raise ParseError(f"{path}: link name is not valid UTF-8") from exc


def _parse_file(path: Path, parent: str) -> tuple[str, TargetStateEntry]:
    name = path.name

    name, run = _strip(name, RUN_PREFIX)
    if run:
        name, once = _strip(name, ONCE_PREFIX)
        target_name = f"{parent}/{name}" if parent else name
        return target_name, TargetStateScript(name=target_name, lazy=LazyContents(path.read_bytes), once=once)

    name, create = _strip(name, CREATE_PREFIX)
    name, remove = (name, False) if create else _strip(name, REMOVE_PREFIX)
    name, symlink = (name, False) if create or remove else _strip(name, SYMLINK_PREFIX)
    name, private = _strip(name, PRIVATE_PREFIX)
    name, executable = _strip(name, EXECUTABLE_PREFIX)
    name, dot = _strip(name, DOT_PREFIX)
    basename = _target_basename(name, dot)
    target_name = f"{parent}/{basename}" if parent else basename

    perm = 0o666
    if executable:
        perm |= 0o111
    if private:
        perm &= ~0o077

    entry: TargetStateEntry
    if remove:
        entry = TargetStateAbsent()
    elif symlink:
        entry = TargetStateSymlink(lazy=LazyLinkname(lambda: _read_linkname(path)))
    elif create:
        entry = TargetStatePresent(perm=perm, lazy=LazyContents(path.read_bytes))
    else:
        entry = TargetStateFile(perm=perm, lazy=LazyContents(path.read_bytes))
    return target_name, entry


def read_source_state(source_dir: Path) -> SourceState:
    """Build a :class:`SourceState` from the files under ``source_dir``.

    File contents are read lazily when an entry is evaluated.
    """

    if not source_dir.is_dir():
        raise ParseError(f"Source directory '{source_dir}' does not exist")

    entries: dict[str, TargetStateEntry] = {}
    origins: dict[str, Path] = {}

    def add(target_name: str, entry: TargetStateEntry, origin: Path) -> None:
        if target_name in entries:
            raise ParseError(f"{target_name}: duplicate source state entries '{origins[target_name]}' and '{origin}'")
        entries[target_name] = entry
        origins[target_name] = origin

    def visit(directory: Path, parent: str) -> None:
        for child in sorted(directory.iterdir()):
            if child.name.startswith("."):
                continue
            if child.is_dir():
                basename, dir_entry = _parse_dir(child.name)
                target_name = f"{parent}/{basename}" if parent else basename
                add(target_name, dir_entry, child)
                visit(child, target_name)
            else:
                target_name, file_entry = _parse_file(child, parent)
                add(target_name, file_entry, child)

    visit(source_dir, "")

    ignore_file = source_dir / IGNORE_FILENAME
    patterns = parse_ignore_patterns(ignore_file.read_text().splitlines()) if ignore_file.exists() else ()

    return SourceState(target_entries=entries, ignore_patterns=patterns, source_dir=source_dir)
