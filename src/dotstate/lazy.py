"""Memoised, on-demand producers of contents and link names."""

from __future__ import annotations

import hashlib
from typing import Callable


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


class LazyContents:
    """Produces ``contents`` and their SHA-256 on first use.

    The result of the producer, or the exception it raised, is cached so every
    later access sees the same outcome.
    """

    def __init__(
        self,
        producer: Callable[[], bytes] | None = None,
        *,
        contents: bytes | None = None,
        contents_sha256: bytes | None = None,
    ) -> None:
        if producer is None and contents is None:
            raise ValueError("either producer or contents is required")
        self._producer = producer if contents is None else None
        self._contents = contents
        self._contents_sha256 = contents_sha256
        self._error: BaseException | None = None

    def contents(self) -> bytes:
        if self._error is not None:
            raise self._error
        if self._producer is not None:
            try:
                self._contents = self._producer()
            except Exception as exc:
                self._error = exc
                raise
            self._producer = None
        return self._contents or b""

    def contents_sha256(self) -> bytes:
        if self._contents_sha256 is None:
            self._contents_sha256 = sha256(self.contents())
        return self._contents_sha256


class LazyLinkname:
    """Produces a symlink target and its SHA-256 on first use."""

    def __init__(self, producer: Callable[[], str] | None = None, *, linkname: str | None = None) -> None:
        if producer is None and linkname is None:
            raise ValueError("either producer or linkname is required")
        self._producer = producer if linkname is None else None
        self._linkname = linkname
        self._linkname_sha256: bytes | None = None
        self._error: BaseException | None = None

    def linkname(self) -> str:
        if self._error is not None:
            raise self._error
        if self._producer is not None:
            try:
                self._linkname = self._producer()
            except Exception as exc:
                self._error = exc
                raise
            self._producer = None
        return self._linkname or ""

    def linkname_sha256(self) -> bytes:
        if self._linkname_sha256 is None:
            self._linkname_sha256 = sha256(self.linkname().encode())
        return self._linkname_sha256
