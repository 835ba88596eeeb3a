"""Shared models and enums for dotstate."""

from __future__ import annotations

import json
import stat
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping

from .errors import ParseError

SCRIPT_ONCE_STATE_BUCKET = "scriptOnceState"


class EntryKind(str, Enum):
    """Kinds of entries selectable with an include mask."""

    ABSENT = "absent"
    DIRECTORY = "dirs"
    FILE = "files"
    SCRIPT = "scripts"
    SYMLINK = "symlinks"


@dataclass(frozen=True, slots=True)
class IncludeSet:
    """Subset of entry kinds a reconciliation pass acts upon."""

    kinds: frozenset[EntryKind] = frozenset(EntryKind)

    @classmethod
    def all(cls) -> "IncludeSet":
        return cls(frozenset(EntryKind))

    @classmethod
    def parse(cls, raw: str | Iterable[str]) -> "IncludeSet":
        """Parse a comma separated list such as ``"dirs,files"``."""

        names = raw.split(",") if isinstance(raw, str) else list(raw)
        kinds: set[EntryKind] = set()
        for name in (n.strip() for n in names):
            if not name:
                continue
            if name == "all":
                return cls.all()
            try:
                kinds.add(EntryKind(name))
            except ValueError as exc:
                raise ParseError(f"unknown entry type {name!r}") from exc
        return cls(frozenset(kinds))

    def includes(self, kind: EntryKind) -> bool:
        return kind in self.kinds

    def __str__(self) -> str:
        if self.kinds == frozenset(EntryKind):
            return "all"
        return ",".join(kind.value for kind in EntryKind if kind in self.kinds)


@dataclass(frozen=True, slots=True)
class EntryState:
    """Persistable summary of an entry: its mode and the SHA-256 of its contents."""

    mode: int
    contents_sha256: bytes | None = None

    def is_dir(self) -> bool:
        return stat.S_ISDIR(self.mode)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"mode": self.mode}
        if self.contents_sha256 is not None:
            payload["contentsSHA256"] = self.contents_sha256.hex()
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EntryState":
        try:
            mode = int(data["mode"])
            raw_sha256 = data.get("contentsSHA256")
            contents_sha256 = bytes.fromhex(raw_sha256) if raw_sha256 else None
        except (KeyError, TypeError, ValueError) as exc:
            raise ParseError(f"invalid entry state {dict(data)!r}") from exc
        return cls(mode=mode, contents_sha256=contents_sha256)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str | bytes) -> "EntryState":
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ParseError(f"cannot parse entry state: {exc}") from exc
        if not isinstance(data, dict):
            raise ParseError(f"cannot parse entry state: expected an object, got {data!r}")
        return cls.from_dict(data)


@dataclass(frozen=True, slots=True)
class ScriptOnceState:
    """Record stored after a run-once script has executed."""

    name: str
    run_at: datetime

    def to_json(self) -> bytes:
        return json.dumps({"name": self.name, "runAt": self.run_at.isoformat()}).encode()

    @classmethod
    def from_json(cls, raw: bytes | str) -> "ScriptOnceState":
        try:
            data = json.loads(raw)
            return cls(name=data["name"], run_at=datetime.fromisoformat(data["runAt"]))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise ParseError(f"cannot parse script state {raw!r}") from exc


class ApplyAction(str, Enum):
    """Outcome of applying one target."""

    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ApplyResult:
    """Result emitted for each target visited by a reconciliation pass."""

    target_name: str
    kind: EntryKind
    action: ApplyAction
    error: str | None = None
