"""Bucketed key-value persistence for dotstate."""

from __future__ import annotations

import logging
import os
import tempfile
import tomllib
from abc import ABC, abstractmethod
from pathlib import Path

from tomli_w import dump as toml_dump

from .errors import ParseError

logger = logging.getLogger(__name__)

Buckets = dict[str, dict[bytes, bytes]]


class PersistentState(ABC):
    """A store partitioned into named buckets of ``key -> value`` bytes."""

    @abstractmethod
    def get(self, bucket: str, key: bytes) -> bytes | None: ...

    @abstractmethod
    def set(self, bucket: str, key: bytes, value: bytes) -> None: ...

    @abstractmethod
    def delete(self, bucket: str, key: bytes) -> None: ...

    @abstractmethod
    def data(self) -> Buckets:
        """Return a copy of every bucket."""

    def close(self) -> None:
        return None


class MemoryPersistentState(PersistentState):
    """Keeps all buckets in memory."""

    def __init__(self, buckets: Buckets | None = None) -> None:
        self._buckets: Buckets = buckets if buckets is not None else {}

    def get(self, bucket: str, key: bytes) -> bytes | None:
        return self._buckets.get(bucket, {}).get(key)

    def set(self, bucket: str, key: bytes, value: bytes) -> None:
        self._buckets.setdefault(bucket, {})[key] = value

    def delete(self, bucket: str, key: bytes) -> None:
        entries = self._buckets.get(bucket)
        if entries is None:
            return
        entries.pop(key, None)
        if not entries:
            del self._buckets[bucket]

    def data(self) -> Buckets:
        return {bucket: dict(entries) for bucket, entries in self._buckets.items()}


class TOMLPersistentState(MemoryPersistentState):
    """Buckets persisted to a single TOML file.

    Every mutation rewrites the file through a temporary sibling and
    ``os.replace`` so the change is on disk before the call returns.
    """

    def __init__(self, path: Path, buckets: Buckets | None = None) -> None:
        super().__init__(buckets)
        self.path = path

    @classmethod
    def load(cls, path: Path) -> "TOMLPersistentState":
        if not path.exists():
            return cls(path, {})

        try:
            with path.open("rb") as handle:
                data = tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:
            raise ParseError(f"cannot parse persistent state '{path}': {exc}") from exc

        buckets: Buckets = {}
        for bucket, entries in data.items():
            if not isinstance(entries, dict):
                raise ParseError(f"persistent state '{path}': bucket {bucket!r} is not a table")
            buckets[bucket] = {key.encode(): str(value).encode() for key, value in entries.items()}
        return cls(path, buckets)

    def set(self, bucket: str, key: bytes, value: bytes) -> None:
        super().set(bucket, key, value)
        self.save()

    def delete(self, bucket: str, key: bytes) -> None:
        super().delete(bucket, key)
        self.save()

    def reset(self) -> None:
        self._buckets.clear()
        self.path.unlink(missing_ok=True)

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            bucket: {key.decode(): value.decode() for key, value in sorted(entries.items())}
            for bucket, entries in sorted(self._buckets.items())
        }
        fd, temp_name = tempfile.mkstemp(prefix=f".{self.path.name}.tmp-", dir=self.path.parent)
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                toml_dump(payload, handle)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_path, self.path)
        except Exception:
            temp_path.unlink(missing_ok=True)
            raise
        logger.debug("saved persistent state to %s", self.path)


class DryRunPersistentState(PersistentState):
    """Reads through to ``wrapped``; writes go to an in-memory overlay."""

    def __init__(self, wrapped: PersistentState) -> None:
        self.wrapped = wrapped
        self._overlay = MemoryPersistentState()
        self._deleted: set[tuple[str, bytes]] = set()

    def get(self, bucket: str, key: bytes) -> bytes | None:
        value = self._overlay.get(bucket, key)
        if value is not None:
            return value
        if (bucket, key) in self._deleted:
            return None
        return self.wrapped.get(bucket, key)

    def set(self, bucket: str, key: bytes, value: bytes) -> None:
        logger.info("would set %s/%s in persistent state", bucket, key.decode(errors="replace"))
        self._deleted.discard((bucket, key))
        self._overlay.set(bucket, key, value)

    def delete(self, bucket: str, key: bytes) -> None:
        logger.info("would delete %s/%s from persistent state", bucket, key.decode(errors="replace"))
        self._overlay.delete(bucket, key)
        self._deleted.add((bucket, key))

    def data(self) -> Buckets:
        merged = self.wrapped.data()
        for bucket, key in self._deleted:
            merged.get(bucket, {}).pop(key, None)
        for bucket, entries in self._overlay.data().items():
            merged.setdefault(bucket, {}).update(entries)
        return {bucket: entries for bucket, entries in merged.items() if entries}
