"""Reconciliation of the destination directory against a source state."""

from __future__ import annotations

import logging
import posixpath
import threading
from typing import Any, Iterable, Protocol, Sequence

from .actual import get_actual_state_entry
from .errors import ApplyError, DotstateError, NotManagedError, ReconcileCancelled
from .filesystem import join, trim_dir_prefix
from .models import ApplyAction, ApplyResult, IncludeSet
from .system import DryRunSystem, DumpSystem, System
from .target import TargetStateEntry

logger = logging.getLogger(__name__)


class SourceStateView(Protocol):
    """The parts of a source state the reconciler consumes."""

    def entries(self) -> Iterable[tuple[str, TargetStateEntry]]: ...

    def entry(self, name: str) -> TargetStateEntry | None: ...

    def ignored(self, name: str) -> bool: ...


class Reconciler:
    """Applies a source state to a destination directory through a :class:`System`.

    ``dest_dir`` is an absolute slash path. Entries are processed one at a time,
    parents before children and siblings in lexicographic order.
    """

    def __init__(self, source_state: SourceStateView, dest_dir: str) -> None:
        self.source_state = source_state
        self.dest_dir = dest_dir.rstrip("/") or "/"

    def apply(
        self,
        system: System,
        args: Sequence[str] = (),
        *,
        target_dir: str | None = None,
        include: IncludeSet | None = None,
        recursive: bool = False,
        umask: int = 0o022,
        keep_going: bool = False,
        cancel: threading.Event | None = None,
    ) -> list[ApplyResult]:
        """Apply the selected targets to ``system``.

        Targets are written under ``target_dir`` (the destination directory by
        default). The first failure raises :class:`ApplyError` unless
        ``keep_going`` is set, in which case failures are reported as
        ``FAILED`` results and processing continues.
        """

        include = include or IncludeSet.all()
        target_dir = self.dest_dir if target_dir is None else target_dir
        results: list[ApplyResult] = []

        for target_name in self.target_names(args, recursive=recursive):
            if cancel is not None and cancel.is_set():
                raise ReconcileCancelled(f"cancelled before {target_name}")
            target = self.source_state.entry(target_name)
            if target is None:
                raise NotManagedError(f"{target_name}: not in source state")
            if not include.includes(target.kind):
                results.append(ApplyResult(target_name, target.kind, ApplyAction.SKIPPED))
                continue
            try:
                changed = self._apply_one(system, target_dir, target_name, target, umask)
            except (DotstateError, OSError, ValueError, NotImplementedError) as exc:
                if not keep_going:
                    raise ApplyError(target_name, exc) from exc
                logger.error("%s: %s", target_name, exc)
                results.append(ApplyResult(target_name, target.kind, ApplyAction.FAILED, error=str(exc)))
                continue
            action = ApplyAction.UPDATED if changed else ApplyAction.UNCHANGED
            results.append(ApplyResult(target_name, target.kind, action))

        return results

    def verify(self, system: System, args: Sequence[str] = (), **options: Any) -> bool:
        """Return ``True`` if applying would not modify ``system``."""

        dry_run = DryRunSystem(system)
        self.apply(dry_run, args, **options)
        return not dry_run.modified

    def dump(self, args: Sequence[str] = (), **options: Any) -> dict[str, dict[str, Any]]:
        """Return the selected target state as a mapping of target name to entry."""

        dump_system = DumpSystem()
        self.apply(dump_system, args, target_dir="", **options)
        return dump_system.data()

    def unmanaged(self, system: System) -> list[str]:
        """Return destination paths, relative to it, that are neither managed nor ignored.

        Unmanaged and ignored directories are not descended into.
        """

        found: list[str] = []
        for dirpath, dirnames, filenames in system.walk(self.dest_dir):
            for name in list(dirnames) + filenames:
                target_name = trim_dir_prefix(join(dirpath, name), self.dest_dir)
                managed = self.source_state.entry(target_name) is not None
                ignored = self.source_state.ignored(target_name)
                if not managed and not ignored:
                    found.append(target_name)
                if name in dirnames and (not managed or ignored):
                    dirnames.remove(name)
        return sorted(found)

    def target_names(self, args: Sequence[str], *, recursive: bool = False) -> list[str]:
        """Resolve ``args`` to sorted, unique target names.

        With no arguments every entry in the source state is selected.
        """

        all_names = [name for name, _ in self.source_state.entries()]
        if not args:
            return sorted(all_names)

        selected: set[str] = set()
        for arg in args:
            target_name = self._resolve_arg(arg)
            if self.source_state.entry(target_name) is None:
                raise NotManagedError(f"{arg}: not in source state")
            selected.add(target_name)
            if recursive:
                prefix = target_name + "/"
                selected.update(name for name in all_names if name.startswith(prefix))
        return sorted(selected)

    # ------------------------------------------------------------------
    # Internal helpers

    def _resolve_arg(self, arg: str) -> str:
        slash = arg.replace("\\", "/")
        if posixpath.isabs(slash):
            try:
                return trim_dir_prefix(posixpath.normpath(slash), self.dest_dir)
            except ValueError as exc:
                raise NotManagedError(f"{arg}: not in destination directory {self.dest_dir}") from exc
        return posixpath.normpath(slash)

    def _apply_one(
        self,
        system: System,
        target_dir: str,
        target_name: str,
        target: TargetStateEntry,
        umask: int,
    ) -> bool:
        target.evaluate()
        target_path = join(target_dir, target_name)
        actual = get_actual_state_entry(system, target_path)
        changed = target.apply(system, actual, umask)
        logger.debug("%s: %s", target_name, "updated" if changed else "unchanged")
        return changed
